"""REST adapter."""
