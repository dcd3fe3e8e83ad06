"""Shared plumbing for the asyncpg repositories.

Column codecs sit at the gateway edge: values are encoded on the way in and
decoded on the way out, so routers never see raw JSON text.
"""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import asyncpg

from ..exceptions import DatabaseError, ValidationError
from ..validators import validate_string

logger = logging.getLogger(__name__)

DRIVER_ERRORS = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
    asyncio.TimeoutError,
)


class Column:
    """Plain column: values pass through unchanged."""

    def encode(self, value: Any, field: str) -> Any:
        return value

    def decode(self, value: Any, field: str) -> Any:
        return value


class JsonColumn(Column):
    """JSON stored as text.

    Accepts a JSON string (validated by parsing) or a structured value
    (serialized). `shape` restricts the decoded top-level type.
    """

    def __init__(self, shape: Optional[type | tuple[type, ...]] = None, error: Optional[str] = None):
        self.shape = shape
        self.error = error

    def _invalid(self, field: str, reason: str) -> ValidationError:
        return ValidationError(self.error or f"Invalid JSON for {field}: {reason}", field=field)

    def encode(self, value: Any, field: str) -> Optional[str]:
        if value is None:
            return None
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError as e:
                raise self._invalid(field, e.msg) from e
        if self.shape is not None and not isinstance(value, self.shape):
            raise self._invalid(field, f"expected {_shape_name(self.shape)}")
        try:
            return json.dumps(value)
        except (TypeError, ValueError) as e:
            raise self._invalid(field, str(e)) from e

    def decode(self, value: Any, field: str) -> Any:
        if value is None or not isinstance(value, str):
            return value
        try:
            return json.loads(value)
        except json.JSONDecodeError as e:
            raise DatabaseError(
                f"Stored {field} is not valid JSON",
                operation="decode",
                details={"field": field},
            ) from e


class SourceColumn(Column):
    """Source text; unwraps legacy rows stored as a JSON string literal."""

    def decode(self, value: Any, field: str) -> Any:
        if isinstance(value, str) and len(value) >= 2 and value[0] == value[-1] == '"':
            try:
                unwrapped = json.loads(value)
            except json.JSONDecodeError:
                return value
            if isinstance(unwrapped, str):
                return unwrapped
        return value


class TimestampColumn(Column):
    """Accepts datetimes or ISO-8601 strings (a trailing Z is allowed)."""

    def encode(self, value: Any, field: str) -> Optional[datetime]:
        if value is None or isinstance(value, datetime):
            return value
        if isinstance(value, str):
            text = value.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError as e:
                raise ValidationError(f"{field} must be an ISO-8601 timestamp", field=field) from e
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        raise ValidationError(f"{field} must be an ISO-8601 timestamp", field=field)


class IntegerTextColumn(Column):
    """Unbounded integers (gas, wei) stored as decimal text."""

    def encode(self, value: Any, field: str) -> Optional[str]:
        if value is None or value == "":
            return None
        if isinstance(value, bool):
            raise ValidationError(f"{field} must be an integer", field=field)
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return str(int(value.strip()))
        raise ValidationError(f"{field} must be an integer", field=field)


class IntegerColumn(Column):
    def encode(self, value: Any, field: str) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, bool):
            raise ValidationError(f"{field} must be an integer", field=field)
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"{field} must be an integer", field=field) from e


class BooleanColumn(Column):
    def encode(self, value: Any, field: str) -> bool:
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{field} must be a boolean", field=field)


class TextColumn(Column):
    """Required text column; updates cannot blank it."""

    def encode(self, value: Any, field: str) -> str:
        return validate_string(value, field)


class OptionalTextColumn(Column):
    def encode(self, value: Any, field: str) -> Optional[str]:
        if value is None:
            return None
        if not isinstance(value, str):
            raise ValidationError(f"{field} must be a string", field=field)
        return value


def _shape_name(shape: type | tuple[type, ...]) -> str:
    names = {list: "array", dict: "object", str: "string"}
    if isinstance(shape, tuple):
        return " or ".join(names.get(s, s.__name__) for s in shape)
    return names.get(shape, shape.__name__)


def decode_row(row: Any, codecs: Mapping[str, Column]) -> Optional[dict[str, Any]]:
    """Convert an asyncpg Record to a dict, decoding declared columns."""
    if row is None:
        return None
    data = dict(row)
    for name, codec in codecs.items():
        if name in data:
            data[name] = codec.decode(data[name], name)
    return data


def affected_rows(status: str) -> int:
    """Parse the row count out of an asyncpg command status ("UPDATE 1")."""
    try:
        return int(str(status).rsplit(" ", 1)[-1])
    except ValueError:
        return 0


def build_update(
    table: str,
    keys: Mapping[str, Any],
    data: Mapping[str, Any],
    allowed: Mapping[str, Column],
    *,
    touch_updated_at: bool = True,
) -> tuple[str, list[Any]]:
    """
    Build a parameterized partial UPDATE from an allow-list.

    Unknown keys in `data` are ignored. `keys` become the WHERE clause and
    are bound after the assigned values.

    Raises:
        ValidationError: when no allowed field is present
    """
    assignments: list[str] = []
    values: list[Any] = []
    for name, value in data.items():
        codec = allowed.get(name)
        if codec is None:
            continue
        values.append(codec.encode(value, name))
        assignments.append(f"{name} = ${len(values)}")

    if not assignments:
        raise ValidationError(
            "No valid fields to update",
            details={"allowed_fields": sorted(allowed)},
        )
    if touch_updated_at:
        assignments.append("updated_at = NOW()")

    conditions: list[str] = []
    for column, value in keys.items():
        values.append(value)
        conditions.append(f"{column} = ${len(values)}")

    sql = f"UPDATE {table} SET {', '.join(assignments)} WHERE {' AND '.join(conditions)}"
    return sql, values


class BaseRepository:
    """Repository over an asyncpg pool (anything with `acquire()`)."""

    def __init__(self, pool) -> None:
        self._pool = pool

    @asynccontextmanager
    async def _connection(self, operation: str):
        """Acquire a connection; driver failures surface as DatabaseError."""
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except DRIVER_ERRORS as e:
            logger.error(
                "Database operation %s failed: %s",
                operation,
                e,
                extra={"operation": operation, "error_type": type(e).__name__},
            )
            raise DatabaseError(
                f"Database operation {operation} failed",
                operation=operation,
                details={"reason": str(e)},
            ) from e

    @staticmethod
    def _require(**fields: Any) -> list[str]:
        return [validate_string(value, name) for name, value in fields.items()]
