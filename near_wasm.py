"""
Minimal WebAssembly reader used to list a contract's callable methods.

Only the export section is decoded: NEAR contract methods are the exported
functions of the deployed module.
"""

from __future__ import annotations

WASM_MAGIC = b"\x00asm"
WASM_VERSION = b"\x01\x00\x00\x00"

SECTION_EXPORT = 7
EXPORT_KIND_FUNCTION = 0


class WasmFormatError(ValueError):
    pass


def _read_leb128(data: bytes, offset: int) -> tuple[int, int]:
    """Decode an unsigned LEB128 integer. Returns (value, new offset)."""
    result = 0
    shift = 0
    while True:
        if offset >= len(data):
            raise WasmFormatError("Truncated LEB128 integer")
        byte = data[offset]
        offset += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, offset
        shift += 7
        if shift > 35:
            raise WasmFormatError("LEB128 integer too long")


def _read_name(data: bytes, offset: int) -> tuple[str, int]:
    length, offset = _read_leb128(data, offset)
    end = offset + length
    if end > len(data):
        raise WasmFormatError("Truncated export name")
    try:
        return data[offset:end].decode("utf-8"), end
    except UnicodeDecodeError as exc:
        raise WasmFormatError("Export name is not valid UTF-8") from exc


def list_exported_functions(code: bytes) -> list[str]:
    """Names of exported functions, in module order."""
    if code[:4] != WASM_MAGIC:
        raise WasmFormatError("Not a WebAssembly module")
    if code[4:8] != WASM_VERSION:
        raise WasmFormatError("Unsupported WebAssembly version")

    offset = 8
    names: list[str] = []
    while offset < len(code):
        section_id = code[offset]
        size, offset = _read_leb128(code, offset + 1)
        section_end = offset + size
        if section_end > len(code):
            raise WasmFormatError("Truncated section")
        if section_id == SECTION_EXPORT:
            count, pos = _read_leb128(code, offset)
            for _ in range(count):
                name, pos = _read_name(code, pos)
                if pos >= section_end:
                    raise WasmFormatError("Truncated export entry")
                kind = code[pos]
                _index, pos = _read_leb128(code, pos + 1)
                if kind == EXPORT_KIND_FUNCTION:
                    names.append(name)
            return names
        offset = section_end
    return names
