"""clubdocs engine — configuration, errors, structured logging, actor context."""
