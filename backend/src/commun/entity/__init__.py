"""Entity property model, coercion, validation and joins."""
