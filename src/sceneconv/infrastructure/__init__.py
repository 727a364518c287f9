"""Infrastructure adapters (queue persistence)."""
