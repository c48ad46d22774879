"""Core primitives: errors, logging, settings and scheduling."""
