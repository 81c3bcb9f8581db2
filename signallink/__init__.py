"""SQLite-backed identity, session and prekey storage for a Signal-compatible linked device."""

__version__ = "0.2.3"