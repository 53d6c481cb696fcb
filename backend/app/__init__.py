"""Payment settlement backend."""
