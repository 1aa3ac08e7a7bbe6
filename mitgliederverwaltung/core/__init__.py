"""Core module - configuration, database, logging and the error taxonomy."""
