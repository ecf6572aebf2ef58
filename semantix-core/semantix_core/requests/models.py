"""
Request Models
==============
Data models for requests flowing through the delivery pipeline.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


ALLOWED_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")


class RequestStatus(str, Enum):
    """Request lifecycle states."""
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCESS = "success"
    FAILED = "failed"
    RETRYING = "retrying"


class RequestSpec(BaseModel):
    """Caller-supplied description of a backend call."""

    method: str
    endpoint: str
    payload: Any = None
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("method")
    @classmethod
    def _normalize_method(cls, value: str) -> str:
        method = value.strip().upper()
        if method not in ALLOWED_METHODS:
            raise ValueError(f"unsupported HTTP method: {value}")
        return method

    @field_validator("endpoint")
    @classmethod
    def _check_endpoint(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("endpoint must not be empty")
        return value.strip()


@dataclass
class Request:
    """A queued request and its delivery state."""
    id: str
    method: str
    endpoint: str
    payload: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    status: RequestStatus = RequestStatus.PENDING
    attempts: int = 0
    enqueued_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None
    response: Any = None
    error: Optional[BaseException] = None  # Terminal error
    last_error: Optional[BaseException] = None

    @classmethod
    def from_spec(cls, request_id: str, spec: RequestSpec) -> "Request":
        return cls(
            id=request_id,
            method=spec.method,
            endpoint=spec.endpoint,
            payload=spec.payload,
            headers=dict(spec.headers),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in (RequestStatus.SUCCESS, RequestStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "method": self.method,
            "endpoint": self.endpoint,
            "payload": self.payload,
            "headers": dict(self.headers),
            "status": self.status.value,
            "attempts": self.attempts,
            "enqueued_at": self.enqueued_at,
            "completed_at": self.completed_at,
            "response": self.response,
            "error": str(self.error) if self.error else None,
            "last_error": str(self.last_error) if self.last_error else None,
        }
