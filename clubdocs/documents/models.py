"""
Document workflow value types — enums, request payloads and read views.

The enums carry the exact strings stored in the database and returned over
the API. Request models are validated by pydantic at the HTTP edge and reused
unchanged by the services and the CLI.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DocumentStatus(str, Enum):
    OPEN = "Open"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"


class SubmissionStatus(str, Enum):
    NOT_SUBMITTED = "Not Submitted"
    SUBMITTED = "Submitted"
    APPROVED = "Approved"
    NEEDS_REVISION = "Needs Revision"


class StatusSource(str, Enum):
    DERIVED = "derived"
    MANUAL = "manual"


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class DocumentType(str, Enum):
    REPORT = "Report"
    CHECKLIST = "Checklist"
    REQUEST_FORM = "Request Form"
    CONTRACT = "Contract"
    LETTER = "Letter"
    OTHER = "Other"


class EffectiveRole(str, Enum):
    """Caller's role inside one club, most privileged first."""
    ADMIN = "admin"
    LEADER = "leader"
    MEMBER = "member"
    NONE = "none"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"


# ---------------------------------------------------------------------------
# Request payloads
# ---------------------------------------------------------------------------

class DocumentMeta(BaseModel):
    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    type: DocumentType = DocumentType.REPORT
    due_date: date
    template_path: Optional[str] = None


class CreateDocumentRequest(DocumentMeta):
    assigned_member_ids: List[int] = Field(default_factory=list)


class UpdateDocumentRequest(BaseModel):
    """Partial edit. Fields left as None are not touched."""
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Priority] = None
    type: Optional[DocumentType] = None
    due_date: Optional[date] = None
    template_path: Optional[str] = None
    status: Optional[DocumentStatus] = None
    assigned_member_ids: Optional[List[int]] = None

    def metadata_changes(self) -> dict:
        fields = ("title", "description", "priority", "type", "due_date", "template_path")
        return {k: v for k, v in self.model_dump(include=set(fields)).items() if v is not None}


class UpdateDocumentStatusRequest(BaseModel):
    status: DocumentStatus


class SetSubmissionStatusRequest(BaseModel):
    user_id: int
    submission_status: SubmissionStatus


class ReviewSubmissionRequest(BaseModel):
    """Admin review of one assignment; submission_status must be Approved or Needs Revision."""
    user_id: int
    submission_status: SubmissionStatus
    comment: Optional[str] = None


class BulkUpdateStatusRequest(BaseModel):
    document_ids: List[int]
    status: DocumentStatus


class BulkAssignRequest(BaseModel):
    document_ids: List[int]
    member_ids: List[int]


class BulkDeleteRequest(BaseModel):
    document_ids: List[int]


class BulkExportRequest(BaseModel):
    document_ids: List[int]
    format: ExportFormat = ExportFormat.JSON


# ---------------------------------------------------------------------------
# Read views
# ---------------------------------------------------------------------------

class AssignedMemberView(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    user_id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    avatar: Optional[str] = None
    role: Optional[str] = None
    submission_status: SubmissionStatus = SubmissionStatus.NOT_SUBMITTED
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    file_mime_type: Optional[str] = None
    submitted_at: Optional[datetime] = None
    admin_comment: Optional[str] = None


class DocumentView(BaseModel):
    """Document as returned by every read and mutating operation."""
    model_config = ConfigDict(use_enum_values=True)

    id: int
    club_id: int
    club_name: Optional[str] = None
    title: str
    description: str = ""
    priority: Priority
    type: DocumentType
    template_path: Optional[str] = None
    due_date: date
    status: DocumentStatus
    status_source: StatusSource
    version: int
    created_by: Optional[int] = None
    creator_first_name: Optional[str] = None
    creator_last_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    assigned_member_ids: List[int] = Field(default_factory=list)
    assigned_members: List[AssignedMemberView] = Field(default_factory=list)
    is_overdue: bool = False


class BulkResult(BaseModel):
    """Outcome of a bulk mutation. All-or-nothing, so only aggregates are reported."""
    operation: str
    requested: int
    affected: int
    document_ids: List[int] = Field(default_factory=list)
    documents: List[DocumentView] = Field(default_factory=list)


class ExportResult(BaseModel):
    format: ExportFormat
    media_type: str
    filename: str
    content: str
    count: int
    rows: List[Dict[str, Any]] = Field(default_factory=list)
