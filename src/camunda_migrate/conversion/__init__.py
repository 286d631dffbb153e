"""Entity conversion pipeline."""
