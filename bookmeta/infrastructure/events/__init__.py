"""In-process event buses for change notifications and search progress."""
