"""FieldChart - offline-first clinical encounter lifecycle and sync engine."""

__version__ = "1.0.0"
