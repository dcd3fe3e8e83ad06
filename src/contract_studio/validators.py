"""
Input validation utilities for Contract Studio.

Routers call these before any compiler, chain or database work so that a
malformed request is rejected with a 400 naming the offending field(s).

Usage:
    from contract_studio.validators import require_fields, validate_address

    values = require_fields(
        {"contractName": body.contractName, "sourceCode": body.sourceCode},
    )
    validate_address(body.contractAddress)
"""
from __future__ import annotations

import json
import re
from typing import Any, Mapping, Pattern

from .exceptions import ValidationError


# =============================================================================
# Regex Patterns
# =============================================================================

# Ethereum address pattern (0x followed by 40 hex chars)
ETH_ADDRESS_PATTERN: Pattern[str] = re.compile(r"^0x[a-fA-F0-9]{40}$")

# `contract Name [is Base, Other] {`
CONTRACT_DECLARATION_PATTERN: Pattern[str] = re.compile(
    r"contract\s+(\w+)(?:\s+is\s+[^{]+)?\s*\{"
)

PRAGMA_PATTERN: Pattern[str] = re.compile(r"pragma\s+solidity\b")


# =============================================================================
# Field presence
# =============================================================================

def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def require_fields(values: Mapping[str, Any]) -> dict[str, Any]:
    """
    Check that every required field is present and non-empty.

    Collects all missing fields before raising so the client can fix the
    request in one round trip. String values are returned trimmed.

    Raises:
        ValidationError: naming every missing field
    """
    missing = [name for name, value in values.items() if is_blank(value)]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            fields=missing,
        )
    return {
        name: value.strip() if isinstance(value, str) else value
        for name, value in values.items()
    }


def validate_string(value: Any, field: str) -> str:
    """Return the trimmed string or raise naming the field."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required and must be a non-empty string", field=field)
    return value.strip()


# =============================================================================
# Formats
# =============================================================================

def validate_address(address: str, field: str = "contractAddress") -> str:
    """Validate a hex account/contract address."""
    if not ETH_ADDRESS_PATTERN.match(address or ""):
        raise ValidationError(f"Invalid contract address format: {address}", field=field)
    return address


def parse_abi(abi: Any, field: str = "abi") -> list[dict[str, Any]]:
    """Accept an ABI as a JSON string or an already-decoded list."""
    if isinstance(abi, str):
        try:
            abi = json.loads(abi)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Invalid ABI format: {e.msg}", field=field) from e
    if not isinstance(abi, list):
        raise ValidationError("Invalid ABI format: expected a JSON array", field=field)
    return abi


def validate_contract_source(contract_name: str, source_code: str) -> None:
    """
    Check the submitted source declares the submitted contract name and
    carries a version pragma.
    """
    declared = CONTRACT_DECLARATION_PATTERN.findall(source_code)
    if contract_name not in declared:
        raise ValidationError(
            "Contract name mismatch: The provided name does not match the "
            "contract name in the source code",
            field="contractName",
            details={"expected": contract_name, "found": declared},
        )
    if not PRAGMA_PATTERN.search(source_code):
        raise ValidationError(
            "Missing Solidity version: The source code must include a "
            "pragma solidity statement",
            field="sourceCode",
        )


__all__ = [
    "ETH_ADDRESS_PATTERN",
    "CONTRACT_DECLARATION_PATTERN",
    "PRAGMA_PATTERN",
    "is_blank",
    "require_fields",
    "validate_string",
    "validate_address",
    "parse_abi",
    "validate_contract_source",
]
