"""Entity config types, loading and validation."""
