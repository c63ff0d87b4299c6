"""External collaborators — notification sinks and submission file storage."""
