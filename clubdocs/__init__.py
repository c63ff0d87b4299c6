"""
clubdocs — Club document assignment & review workflow engine.

Documents are issued to club members as per-member assignments. Each
assignment moves through its own submission state machine, and the document
carries one aggregate status derived from all of its assignments.

Packages:
    clubdocs.engine        — config, errors, structured logging, actor context
    clubdocs.db            — SQLAlchemy base, sessions, models
    clubdocs.documents     — stores, status derivation, guard, operations
    clubdocs.integrations  — notification sinks, file store
    clubdocs.api           — FastAPI surface
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "documents", "integrations", "api"]
