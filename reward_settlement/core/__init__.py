"""Core infrastructure: settings, logging, exceptions, database sessions."""
