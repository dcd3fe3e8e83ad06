"""Best-effort normalization of compiler output into a structured diagnostic.

This is a text transform, not a parser: the first typed error header wins
(falling back to the first generic one), an ordered rule table picks the category and suggestion, and anything
unrecognized falls back to the first non-empty line of output.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Optional, Pattern

ANSI_PATTERN: Pattern[str] = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")

# `ParserError: ...`, `TypeError (7407): ...`, `Error HH411: ...`
HEADER_PATTERN: Pattern[str] = re.compile(
    r"^(?:(?P<kind>[A-Z]\w*Error)|Error)(?:\s+\(?(?P<code>HH\d+|\d+)\)?)?:\s*(?P<message>.+)$"
)

LOCATION_PATTERN: Pattern[str] = re.compile(r"-->\s*(?P<file>[^:\s]+):(?P<line>\d+):(?P<column>\d+)")

HARDHAT_CODE_PATTERN: Pattern[str] = re.compile(r"\b(HH\d{3,4})\b")

DEPENDENCY_PATTERNS: tuple[Pattern[str], ...] = (
    re.compile(r"library\s+(\S+?),?\s+imported from"),
    re.compile(r'Source\s+"([^"]+)"\s+not found'),
    re.compile(r'import\s+"([^"]+)"'),
)


@dataclass(frozen=True)
class SourceLocation:
    line: int
    column: int
    file: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"line": self.line, "column": self.column}
        if self.file:
            data["file"] = self.file
        return data


@dataclass
class Diagnostic:
    """Structured compiler failure."""

    category: str
    message: str
    error_type: Optional[str] = None
    code: Optional[str] = None
    location: Optional[SourceLocation] = None
    suggestion: Optional[str] = None
    raw: str = field(default="", repr=False)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"category": self.category, "message": self.message}
        if self.error_type:
            data["error_type"] = self.error_type
        if self.code:
            data["code"] = self.code
        if self.location:
            data["location"] = self.location.to_dict()
        if self.suggestion:
            data["suggestion"] = self.suggestion
        return data


@dataclass(frozen=True)
class DiagnosticRule:
    pattern: Pattern[str]
    category: str
    suggestion: Optional[str] = None


# Evaluated in order against the cleaned output; first match wins.
DIAGNOSTIC_RULES: tuple[DiagnosticRule, ...] = (
    DiagnosticRule(
        re.compile(r"HH411|is not installed|Source\s+\"[^\"]+\"\s+not found|File import callback not supported"),
        "dependency_not_found",
        "Install {dependency} in the toolchain project or remove the import",
    ),
    DiagnosticRule(
        re.compile(r"ParserError|SyntaxError|Expected .+ but got"),
        "syntax",
        "Check the syntax at {where}; a semicolon, brace or parenthesis is likely missing",
    ),
    DiagnosticRule(
        re.compile(r"already declared", re.IGNORECASE),
        "duplicate_declaration",
        "Rename or remove the duplicate declaration at {where}",
    ),
    DiagnosticRule(
        re.compile(r"Undeclared identifier|Identifier not found", re.IGNORECASE),
        "undeclared_identifier",
        "Declare the identifier used at {where} or import the file that defines it",
    ),
    DiagnosticRule(
        re.compile(r"TypeError"),
        "type_error",
        "Check the types of the expression at {where}",
    ),
)

UNKNOWN_CATEGORY = "unknown"


def strip_ansi(text: str) -> str:
    return ANSI_PATTERN.sub("", text)


def drop_note_blocks(text: str) -> str:
    """Remove `Note:` blocks (a Note line and its indented continuation)."""
    kept: list[str] = []
    in_note = False
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith("Note:"):
            in_note = True
            continue
        if in_note:
            if not stripped or HEADER_PATTERN.match(stripped):
                in_note = False
            else:
                continue
        kept.append(line)
    return "\n".join(kept)


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return "Unknown compilation error"


def _dependency(text: str) -> Optional[str]:
    for pattern in DEPENDENCY_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def normalize_diagnostic(output: str) -> Diagnostic:
    """Reduce raw compiler stdout/stderr to a Diagnostic."""
    raw = output or ""
    cleaned = drop_note_blocks(strip_ansi(raw))

    headers = [m for m in (HEADER_PATTERN.match(line.strip()) for line in cleaned.splitlines()) if m]
    # A typed compiler error beats Hardhat's generic "Error HH600" wrapper
    header = next((m for m in headers if m.group("kind")), headers[0] if headers else None)

    if header:
        error_type = header.group("kind")
        message = header.group("message").strip()
        code = header.group("code")
        # Location pointers follow the header they belong to
        location_text = cleaned[cleaned.find(header.group(0)):]
    else:
        error_type = None
        message = _first_line(cleaned)
        code = None
        location_text = cleaned

    if code is None:
        hardhat_code = HARDHAT_CODE_PATTERN.search(cleaned)
        code = hardhat_code.group(1) if hardhat_code else None

    location = None
    loc_match = LOCATION_PATTERN.search(location_text)
    if loc_match:
        location = SourceLocation(
            line=int(loc_match.group("line")),
            column=int(loc_match.group("column")),
            file=loc_match.group("file"),
        )

    category = UNKNOWN_CATEGORY
    suggestion = None
    for rule in DIAGNOSTIC_RULES:
        if rule.pattern.search(cleaned):
            category = rule.category
            if rule.suggestion:
                suggestion = rule.suggestion.format(
                    where=f"line {location.line}" if location else "the reported location",
                    dependency=_dependency(cleaned) or "the missing package",
                )
            break

    return Diagnostic(
        category=category,
        message=message,
        error_type=error_type,
        code=code,
        location=location,
        suggestion=suggestion,
        raw=raw,
    )
