# FILE: repokeeper/conventions/errors.py
"""
Convention engine error taxonomy.

Validation errors are raised to the immediate caller and never recovered:
a convention is either met or the input must be fixed.

    ConventionError (ValueError)
    └── InvalidFormat        grammar violation, names the first violated rule
        └── LineTooLong      length limit exceeded, callers may offer truncation
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict


class ConventionErrorType(str, Enum):
    """Error codes surfaced over the API."""
    INVALID_FORMAT = "INVALID_FORMAT"
    LINE_TOO_LONG = "LINE_TOO_LONG"


class ConventionError(ValueError):
    """Base class for convention violations."""
    error_type = ConventionErrorType.INVALID_FORMAT

    def __init__(self, rule: str, message: str):
        self.rule = rule
        self.message = message
        super().__init__(f"{rule}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_type.value,
            "rule": self.rule,
            "message": self.message,
        }


class InvalidFormat(ConventionError):
    """Input violates the identifier grammar."""


class LineTooLong(InvalidFormat):
    """Input is grammatical but longer than the allowed line length."""
    error_type = ConventionErrorType.LINE_TOO_LONG

    def __init__(self, length: int, limit: int, rule: str = "length"):
        self.length = length
        self.limit = limit
        super().__init__(rule, f"line is {length} characters, limit is {limit}")

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["length"] = self.length
        data["limit"] = self.limit
        return data


__all__ = [
    "ConventionErrorType",
    "ConventionError",
    "InvalidFormat",
    "LineTooLong",
]
