"""
Document workflow — stores, status derivation, role guard, single and bulk operations.

Import the operation classes from their modules:
    from clubdocs.documents.service import DocumentService
    from clubdocs.documents.bulk import BulkDocumentService
"""
