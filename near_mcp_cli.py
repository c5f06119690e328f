#!/usr/bin/env python3
"""Command-line entry point: ``near-mcp run`` and ``near-mcp tools``."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Optional

import click

from near_keystore import FileSystemKeyStore
from near_logging import configure_logging
from near_mcp_server import build_tool_registry, create_mcp_server, run_sse, run_stdio
from near_rpc import NearConfig, NearConfigError

logger = logging.getLogger(__name__)


@click.group()
def cli() -> None:
    """NEAR MCP server."""


@cli.command()
@click.option(
    "--key-dir",
    type=click.Path(file_okay=False),
    help="Keystore directory (default: NEAR_KEYSTORE or ~/.near-keystore)",
)
@click.option("--remote", is_flag=True, help="Serve over SSE instead of stdio")
@click.option("--port", type=int, default=3001, show_default=True, help="Port for SSE")
@click.option("--host", type=str, default="0.0.0.0", show_default=True, help="Host for SSE")
@click.option("--log-level", type=str, help="Log level (default: NEAR_MCP_LOG_LEVEL or INFO)")
def run(
    key_dir: Optional[str],
    remote: bool,
    port: int,
    host: str,
    log_level: Optional[str],
) -> None:
    """Run the MCP server."""
    try:
        cfg = NearConfig.from_env(key_dir=key_dir)
    except NearConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    configure_logging(log_level or cfg.log_level)
    logger.info("Using keystore at %s", cfg.key_dir)

    server = create_mcp_server(cfg, FileSystemKeyStore(cfg.key_dir))
    if remote:
        run_sse(server, host, port)
    else:
        asyncio.run(run_stdio(server))


@cli.command()
def tools() -> None:
    """Print the tool catalogue as JSON."""
    click.echo(json.dumps(build_tool_registry().catalogue(), indent=2))


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
