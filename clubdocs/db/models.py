"""
clubdocs Models — SQLAlchemy tables for the document workflow.

Tables:
1. users                 — accounts with a global role (member | admin)
2. clubs                 — clubs and their president
3. club_memberships      — user ↔ club with role and approval status
4. smart_documents       — documents issued to a club
5. document_assignments  — one row per (document, member), submission state

users, clubs and club_memberships are owned by the wider club platform; the
workflow only reads them.
"""

from __future__ import annotations

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from clubdocs.db.base import Base, TimestampMixin


# ---------------------------------------------------------------------------
# 1. Users
# ---------------------------------------------------------------------------

class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    avatar = Column(String(500), nullable=True)
    role = Column(String(20), default="member", nullable=False)

    __table_args__ = (
        CheckConstraint("role IN ('member', 'admin')", name="ck_users_role"),
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"


# ---------------------------------------------------------------------------
# 2. Clubs
# ---------------------------------------------------------------------------

class Club(Base, TimestampMixin):
    __tablename__ = "clubs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    president_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    memberships = relationship("ClubMembership", back_populates="club", lazy="select")

    def __repr__(self) -> str:
        return f"<Club(id={self.id}, name='{self.name}')>"


# ---------------------------------------------------------------------------
# 3. Club Memberships
# ---------------------------------------------------------------------------

class ClubMembership(Base, TimestampMixin):
    __tablename__ = "club_memberships"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    club_id = Column(Integer, ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(20), default="member", nullable=False)
    status = Column(String(20), default="pending", nullable=False)

    club = relationship("Club", back_populates="memberships")
    user = relationship("User", lazy="joined")

    __table_args__ = (
        UniqueConstraint("user_id", "club_id", name="uq_membership_user_club"),
        CheckConstraint("role IN ('member', 'leader')", name="ck_membership_role"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_membership_status",
        ),
        Index("idx_membership_club_status", "club_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<ClubMembership(user_id={self.user_id}, club_id={self.club_id}, "
            f"role='{self.role}', status='{self.status}')>"
        )


# ---------------------------------------------------------------------------
# 4. Smart Documents
# ---------------------------------------------------------------------------

class SmartDocument(Base, TimestampMixin):
    __tablename__ = "smart_documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    club_id = Column(Integer, ForeignKey("clubs.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    priority = Column(String(10), nullable=False, default="Medium")
    type = Column(String(20), nullable=False, default="Report")
    due_date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False, default="Open")
    status_source = Column(String(10), nullable=False, default="derived")
    version = Column(Integer, nullable=False, default=1)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    template_path = Column(String(500), nullable=True)

    club = relationship("Club", lazy="joined")
    creator = relationship("User", lazy="joined")
    assignments = relationship(
        "DocumentAssignment",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentAssignment.id",
        lazy="selectin",
    )

    __table_args__ = (
        CheckConstraint("priority IN ('Low', 'Medium', 'High')", name="ck_document_priority"),
        CheckConstraint(
            "type IN ('Report', 'Checklist', 'Request Form', 'Contract', 'Letter', 'Other')",
            name="ck_document_type",
        ),
        CheckConstraint(
            "status IN ('Open', 'In Progress', 'Completed')",
            name="ck_document_status",
        ),
        CheckConstraint("status_source IN ('derived', 'manual')", name="ck_document_status_source"),
        Index("idx_document_club_due", "club_id", "due_date"),
    )

    def __repr__(self) -> str:
        return (
            f"<SmartDocument(id={self.id}, club_id={self.club_id}, "
            f"status='{self.status}', v={self.version})>"
        )


# ---------------------------------------------------------------------------
# 5. Document Assignments
# ---------------------------------------------------------------------------

class DocumentAssignment(Base, TimestampMixin):
    __tablename__ = "document_assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    document_id = Column(
        Integer, ForeignKey("smart_documents.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    submission_status = Column(String(20), nullable=False, default="Not Submitted")
    file_path = Column(String(500), nullable=True)
    file_name = Column(String(255), nullable=True)
    file_size = Column(Integer, nullable=True)
    file_mime_type = Column(String(100), nullable=True)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    admin_comment = Column(Text, nullable=True)

    document = relationship("SmartDocument", back_populates="assignments")
    user = relationship("User", lazy="joined")

    __table_args__ = (
        UniqueConstraint("document_id", "user_id", name="uq_assignment_document_user"),
        CheckConstraint(
            "submission_status IN ('Not Submitted', 'Submitted', 'Approved', 'Needs Revision')",
            name="ck_assignment_submission_status",
        ),
        Index("idx_assignment_user", "user_id"),
    )

    @property
    def has_file(self) -> bool:
        return bool(self.file_path)

    def __repr__(self) -> str:
        return (
            f"<DocumentAssignment(document_id={self.document_id}, user_id={self.user_id}, "
            f"submission_status='{self.submission_status}')>"
        )
