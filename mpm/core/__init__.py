"""Core engine: manifest and lockfile models, locking, sync, doctor and import."""
