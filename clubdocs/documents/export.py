"""
Bulk Export — render documents as JSON or RFC 4180 CSV.

Only document-level fields and aggregate assignment counts are exported;
nothing that identifies an individual member leaves through this path.
"""

from __future__ import annotations

import csv
import io
import json
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, List, Sequence

from clubdocs.db.models import SmartDocument
from clubdocs.documents.models import ExportFormat, ExportResult, SubmissionStatus

# (CSV header, JSON key)
EXPORT_COLUMNS = [
    ("ID", "id"),
    ("Title", "title"),
    ("Description", "description"),
    ("Priority", "priority"),
    ("Type", "type"),
    ("Due Date", "due_date"),
    ("Status", "status"),
    ("Club", "club_name"),
    ("Created At", "created_at"),
    ("Assigned", "assigned_count"),
    ("Submitted", "submitted_count"),
    ("Approved", "approved_count"),
    ("Needs Revision", "needs_revision_count"),
]


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else ""


def export_row(document: SmartDocument) -> Dict[str, Any]:
    counts = Counter(a.submission_status for a in document.assignments)
    return {
        "id": document.id,
        "title": document.title,
        "description": document.description or "",
        "priority": document.priority,
        "type": document.type,
        "due_date": document.due_date.isoformat(),
        "status": document.status,
        "club_name": document.club.name if document.club else "",
        "created_at": _format_timestamp(document.created_at),
        "assigned_count": len(document.assignments),
        "submitted_count": counts[SubmissionStatus.SUBMITTED.value],
        "approved_count": counts[SubmissionStatus.APPROVED.value],
        "needs_revision_count": counts[SubmissionStatus.NEEDS_REVISION.value],
    }


def render_csv(rows: Sequence[Dict[str, Any]]) -> str:
    """CRLF line endings; fields with commas, quotes or newlines are quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow([header for header, _ in EXPORT_COLUMNS])
    for row in rows:
        writer.writerow([row[key] for _, key in EXPORT_COLUMNS])
    return buffer.getvalue()


def render_json(rows: Sequence[Dict[str, Any]]) -> str:
    return json.dumps(list(rows), ensure_ascii=False, default=str)


def build_export(documents: Sequence[SmartDocument], fmt: ExportFormat) -> ExportResult:
    rows: List[Dict[str, Any]] = [export_row(d) for d in documents]
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    if fmt == ExportFormat.CSV:
        return ExportResult(
            format=fmt,
            media_type="text/csv",
            filename=f"documents-export-{stamp}.csv",
            content=render_csv(rows),
            count=len(rows),
            rows=rows,
        )
    return ExportResult(
        format=fmt,
        media_type="application/json",
        filename=f"documents-export-{stamp}.json",
        content=render_json(rows),
        count=len(rows),
        rows=rows,
    )
