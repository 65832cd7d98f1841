"""Structured action response."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ActionResponse(BaseModel):
    """Result of a front-end action, serialized to JSON for the browser."""

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, message: str, **data: Any) -> "ActionResponse":
        """Build a successful response."""
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: str, **data: Any) -> "ActionResponse":
        """Build a failed response."""
        return cls(success=False, error=error, data=data)
