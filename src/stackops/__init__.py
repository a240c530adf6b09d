"""Deploy and backup orchestration with retry, locking and audit guarantees."""

__version__ = "0.1.0"
