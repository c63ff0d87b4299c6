"""
clubdocs Error Hierarchy — Structured exceptions for the document workflow.

Every error carries a stable ``kind`` and the HTTP status the API layer maps
it to. Context keyword arguments are kept verbatim and serialized by
``to_dict()`` so the same object can be logged, returned from the API, or
printed by the CLI.

Hierarchy:
    ClubDocsError
    ├── ClubDocsAuthenticationError — Missing / malformed caller identity (401)
    ├── ClubDocsValidationError  — Malformed input (400)
    ├── ClubDocsForbiddenError   — Role insufficient (403)
    ├── ClubDocsNotFoundError    — Document / assignment / id set mismatch (404)
    ├── ClubDocsConflictError    — Illegal transition or lost update race (409)
    ├── ClubDocsIntegrationError — Notification sink / webhook failure
    └── ClubDocsConfigError      — Invalid clubdocs.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class ClubDocsError(Exception):
    """
    Base error for all clubdocs failures.
    All context is serializable to JSON.
    """

    kind: str = "internal"
    http_status: int = 500

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.club_id: Optional[int] = context.get("club_id")
        self.document_id: Optional[int] = context.get("document_id")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict for logs and API bodies."""
        return {
            "error_type": self.error_type,
            "kind": self.kind,
            "message": self.message,
            "club_id": self.club_id,
            "document_id": self.document_id,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("club_id", "document_id")
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.club_id is not None:
            parts.append(f"club_id={self.club_id}")
        if self.document_id is not None:
            parts.append(f"document_id={self.document_id}")
        return " | ".join(parts)


class ClubDocsAuthenticationError(ClubDocsError):
    """Caller identity missing or malformed."""

    kind = "unauthenticated"
    http_status = 401


class ClubDocsValidationError(ClubDocsError):
    """
    Input validation failed (empty id list, past due date, unknown status).
    Includes field-level error details when pydantic produced them.
    """

    kind = "validation"
    http_status = 400

    def __init__(self, message: str, **context: Any):
        self.field: Optional[str] = context.get("field")
        self.validation_errors: Optional[List[Any]] = context.get("validation_errors")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["field"] = self.field
        d["validation_errors"] = self.validation_errors
        return d


class ClubDocsForbiddenError(ClubDocsError):
    """
    Access denied. Logged to the security log files.
    Includes user_id, the club and the role the operation required.
    """

    kind = "forbidden"
    http_status = 403

    def __init__(self, message: str, **context: Any):
        self.user_id: Optional[int] = context.get("user_id")
        self.effective_role: Optional[str] = context.get("effective_role")
        self.required_role: Optional[str] = context.get("required_role")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["user_id"] = self.user_id
        d["effective_role"] = self.effective_role
        d["required_role"] = self.required_role
        return d


class ClubDocsNotFoundError(ClubDocsError):
    """
    Document or assignment not found in the caller's club.

    Bulk paths set ``mismatch_count`` to the number of requested ids that did
    not resolve, and nothing is mutated.
    """

    kind = "not_found"
    http_status = 404

    def __init__(self, message: str, **context: Any):
        self.mismatch_count: Optional[int] = context.get("mismatch_count")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["mismatch_count"] = self.mismatch_count
        return d


class ClubDocsConflictError(ClubDocsError):
    """Transition not allowed from the current state, or a recompute lost its race."""

    kind = "conflict"
    http_status = 409

    def __init__(self, message: str, **context: Any):
        self.current_state: Optional[str] = context.get("current_state")
        self.requested_state: Optional[str] = context.get("requested_state")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["current_state"] = self.current_state
        d["requested_state"] = self.requested_state
        return d


class ClubDocsIntegrationError(ClubDocsError):
    """Notification sink failed (webhook unreachable, non-2xx response)."""

    kind = "integration"
    http_status = 502

    def __init__(self, message: str, **context: Any):
        self.sink: Optional[str] = context.get("sink")
        self.status_code: Optional[int] = context.get("status_code")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["sink"] = self.sink
        d["status_code"] = self.status_code
        return d


class ClubDocsConfigError(ClubDocsError):
    """Configuration error — invalid or unreadable clubdocs.yaml."""

    kind = "config"
    http_status = 500
