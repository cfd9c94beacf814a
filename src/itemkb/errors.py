"""Structured errors for itemkb.

Only a handful of conditions surface to callers: a missing item, bad input,
and configuration problems. Enrichment failures never reach this module; they
are recovered where they happen.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Machine-readable error codes used by the CLI and MCP responses."""

    ITEM_NOT_FOUND = "ITEM_NOT_FOUND"
    INVALID_ITEM_TYPE = "INVALID_ITEM_TYPE"
    INVALID_ARGUMENT = "INVALID_ARGUMENT"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


def format_error_json(code: ErrorCode | str, message: str, details: dict[str, Any] | None = None) -> str:
    """Format an error as a JSON object string."""
    payload: dict[str, Any] = {"code": code.value if isinstance(code, ErrorCode) else code, "message": message}
    if details:
        payload["details"] = details
    return json.dumps({"error": payload})


class KBError(Exception):
    """Base error carrying a code, message and optional details."""

    def __init__(self, code: ErrorCode, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data

    def to_json(self) -> str:
        return format_error_json(self.code, self.message, self.details)

    @classmethod
    def invalid_argument(cls, message: str, **details: Any) -> KBError:
        return cls(ErrorCode.INVALID_ARGUMENT, message, details or None)

    @classmethod
    def invalid_item_type(cls, item_type: str) -> KBError:
        return cls(
            ErrorCode.INVALID_ITEM_TYPE,
            f"Invalid item type '{item_type}'",
            {"suggestion": "Type must contain only lowercase letters, numbers, and underscores (a-z, 0-9, _)"},
        )


class ItemNotFoundError(KBError):
    """Raised when an item id does not exist."""

    def __init__(self, item_id: int):
        super().__init__(ErrorCode.ITEM_NOT_FOUND, f"Item with ID {item_id} not found", {"id": item_id})
        self.item_id = item_id
