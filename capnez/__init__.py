"""Generate Cap'n Proto schemas from annotated Python classes."""

__version__ = "0.1.0"