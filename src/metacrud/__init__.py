"""metacrud: metadata-driven REST CRUD endpoints over storage tables."""

__version__ = "0.1.0"
