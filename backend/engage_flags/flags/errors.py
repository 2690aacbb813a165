from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class FlagError(Exception):
    code: str
    message: str
    status_code: int
    field: str | None = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": False,
            "error": self.code,
            "message": self.message,
        }
        if self.field:
            payload["field"] = self.field
        return payload


class FlagValidationError(FlagError, ValueError):
    """Client input broke a constraint; nothing was written."""

    def __init__(self, message: str, *, field: str | None = None, code: str = "validation_error"):
        super().__init__(code=code, message=message, status_code=400, field=field)
