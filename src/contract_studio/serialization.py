"""JSON-safe conversion applied to every API response."""
from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Largest integer a JSON client can represent exactly (2^53 - 1)
MAX_SAFE_INTEGER = 9007199254740991


def _hex(value: bytes) -> str:
    text = value.hex()
    return text if text.startswith("0x") else f"0x{text}"


def to_json_safe(value: Any) -> Any:
    """Convert big integers to strings and bytes to 0x-hex, recursively."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return str(value) if abs(value) > MAX_SAFE_INTEGER else value
    if isinstance(value, Decimal) and value == value.to_integral_value():
        return to_json_safe(int(value))
    if isinstance(value, (bytes, bytearray)):
        return _hex(bytes(value))
    if isinstance(value, Mapping):
        return {str(k): to_json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_json_safe(v) for v in value]
    return value


def format_chain_value(value: Any) -> Any:
    """Stringify every integer; on-chain integers are unbounded by type."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, int):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return _hex(bytes(value))
    if isinstance(value, Mapping):
        return {str(k): format_chain_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [format_chain_value(v) for v in value]
    return value


class SafeJSONResponse(JSONResponse):
    """Default response class: big integers never lose precision."""

    def render(self, content: Any) -> bytes:
        return super().render(jsonable_encoder(to_json_safe(content)))
