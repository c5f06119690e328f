"""
Shared helpers for the NEAR MCP server.

Implements:
- Bounded-concurrency async mapper used for batch fetches
- Result type (Ok / Err) with a closed error-kind enumeration
- Token amount value types (NEAR and fungible tokens)
- Big-integer-safe JSON formatting for tool responses
"""

from __future__ import annotations

import asyncio
import enum
import json
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Generic, Iterable, TypeVar, Union

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MCP_SERVER_NAME = "near-mcp"

NEAR_DECIMALS = 24
YOCTO_NEAR_PER_NEAR = 10**NEAR_DECIMALS

TGAS = 10**12
DEFAULT_FUNCTION_CALL_GAS = 30 * TGAS
DEFAULT_GAS = DEFAULT_FUNCTION_CALL_GAS * 10

ONE_YOCTO = 1

# JSON numbers beyond this lose precision in most clients
MAX_SAFE_INTEGER = 2**53 - 1

T = TypeVar("T")
R = TypeVar("R")


# ---------------------------------------------------------------------------
# Bounded-concurrency mapper
# ---------------------------------------------------------------------------


async def map_semaphore(
    items: Iterable[T],
    concurrency: int,
    transform: Callable[[T], Awaitable[R]],
) -> list[R]:
    """
    Apply ``transform`` to every item with at most ``concurrency`` in flight.

    Results are collected in completion order, not input order. Callers that
    need to correlate inputs and outputs should return the item alongside
    the result from ``transform``.

    The first failing transform aborts the mapping: its exception propagates
    and every transform still running is cancelled.
    """
    if concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    results: list[R] = []
    running: set[asyncio.Future[R]] = set()

    async def _drain_one() -> None:
        nonlocal running
        done, running = await asyncio.wait(
            running, return_when=asyncio.FIRST_COMPLETED
        )
        failure: BaseException | None = None
        for fut in done:
            try:
                results.append(fut.result())
            except Exception as exc:
                # retrieve every finished future so none is reported as unhandled
                failure = failure or exc
        if failure is not None:
            raise failure

    try:
        for item in items:
            if len(running) >= concurrency:
                await _drain_one()
            running.add(asyncio.ensure_future(transform(item)))
        while running:
            await _drain_one()
    except BaseException:
        for fut in running:
            fut.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)
        raise

    return results


# ---------------------------------------------------------------------------
# Result type
# ---------------------------------------------------------------------------


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    AUTHORIZATION_MISMATCH = "authorization_mismatch"
    EXTERNAL_DEPENDENCY_FAILURE = "external_dependency_failure"
    UNSUPPORTED_OPERATION = "unsupported_operation"


@dataclass(frozen=True)
class NearError:
    """A classified failure. ``message`` is what the tool caller sees."""

    kind: ErrorKind
    message: str

    def __str__(self) -> str:
        return self.message

    def with_context(self, context: str) -> NearError:
        return NearError(self.kind, f"{self.message}\n\n{context}")


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: NearError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


def not_found(message: str) -> Err:
    return Err(NearError(ErrorKind.NOT_FOUND, message))


def invalid_input(message: str) -> Err:
    return Err(NearError(ErrorKind.INVALID_INPUT, message))


def authorization_mismatch(message: str) -> Err:
    return Err(NearError(ErrorKind.AUTHORIZATION_MISMATCH, message))


def external_failure(message: str) -> Err:
    return Err(NearError(ErrorKind.EXTERNAL_DEPENDENCY_FAILURE, message))


def unsupported(message: str) -> Err:
    return Err(NearError(ErrorKind.UNSUPPORTED_OPERATION, message))


# ---------------------------------------------------------------------------
# Token amounts
# ---------------------------------------------------------------------------


class TokenAmount:
    """
    Non-negative minor-unit amount of a token with ``decimals`` places.

    Use ``to_minor_units()`` for anything that goes into a transaction;
    ``to_decimal()`` is a float approximation for display only.
    """

    __slots__ = ("_minor", "_decimals")

    def __init__(self, minor_units: int, decimals: int) -> None:
        if decimals < 0:
            raise ValueError("Token decimals cannot be negative")
        if minor_units < 0:
            raise ValueError("Token amount cannot be negative")
        self._minor = minor_units
        self._decimals = decimals

    @property
    def decimals(self) -> int:
        return self._decimals

    @classmethod
    def from_minor_units(cls, value: int | str, decimals: int) -> TokenAmount:
        return cls(_parse_minor_units(value), decimals)

    @classmethod
    def from_decimal(cls, value: str | int | float | Decimal, decimals: int) -> TokenAmount:
        return cls(_decimal_to_minor_units(value, decimals), decimals)

    def to_minor_units(self) -> int:
        return self._minor

    def to_decimal(self) -> float:
        return float(Decimal(self._minor).scaleb(-self._decimals))

    def to_decimal_string(self) -> str:
        exact = Decimal(self._minor).scaleb(-self._decimals)
        text = format(exact, "f")
        if "." in text:
            text = text.rstrip("0").rstrip(".")
        return text

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TokenAmount):
            return NotImplemented
        return self._minor == other._minor and self._decimals == other._decimals

    def __hash__(self) -> int:
        return hash((self._minor, self._decimals))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._minor}, decimals={self._decimals})"


class NearToken(TokenAmount):
    """Amount of native NEAR, stored in yoctoNEAR (10^-24 NEAR)."""

    __slots__ = ()

    def __init__(self, yocto_near: int, decimals: int = NEAR_DECIMALS) -> None:
        if decimals != NEAR_DECIMALS:
            raise ValueError("NEAR always has 24 decimals")
        super().__init__(yocto_near, NEAR_DECIMALS)

    @classmethod
    def from_minor_units(cls, value: int | str, decimals: int = NEAR_DECIMALS) -> NearToken:
        try:
            return cls(_parse_minor_units(value))
        except ValueError as exc:
            raise ValueError(f"Invalid yoctoNEAR amount: {value} ({exc})") from exc

    @classmethod
    def from_decimal(
        cls, value: str | int | float | Decimal, decimals: int = NEAR_DECIMALS
    ) -> NearToken:
        return cls(_decimal_to_minor_units(value, NEAR_DECIMALS, unit="NEAR"))

    def __repr__(self) -> str:
        return f"NearToken({self._minor} yocto)"


def _parse_minor_units(value: int | str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"Invalid minor-unit amount: {value!r}")
    if isinstance(value, int):
        parsed = value
    elif isinstance(value, str):
        text = value.strip()
        if not text or not text.lstrip("-").isdigit():
            raise ValueError(f"Invalid minor-unit amount: {value!r}")
        parsed = int(text)
    else:
        raise ValueError(f"Invalid minor-unit amount: {value!r}")
    if parsed < 0:
        raise ValueError("Token amount cannot be negative")
    return parsed


def _decimal_to_minor_units(
    value: str | int | float | Decimal | None,
    decimals: int,
    unit: str = "Token",
) -> int:
    if value is None or value == "" or isinstance(value, bool):
        raise ValueError(f"{unit} amount cannot be empty")
    try:
        # str() keeps floats like 0.1 at their shortest repr instead of the binary value
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"Invalid {unit} amount: {value!r}") from exc
    if not parsed.is_finite():
        raise ValueError(f"Invalid {unit} amount: {value!r}")
    if parsed < 0:
        raise ValueError(f"{unit} amount cannot be negative")
    minor = parsed.scaleb(decimals).quantize(Decimal(1), rounding=ROUND_DOWN)
    return int(minor)


# ---------------------------------------------------------------------------
# JSON formatting
# ---------------------------------------------------------------------------


def _bigint_safe(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return str(value) if abs(value) > MAX_SAFE_INTEGER else value
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, dict):
        return {str(k): _bigint_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_bigint_safe(v) for v in value]
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    if isinstance(value, enum.Enum):
        return value.value
    return value


def stringify_bigint(value: Any) -> str:
    """Serialize to indented JSON, turning unsafe integers into strings."""
    return json.dumps(_bigint_safe(value), indent=2, default=str)
