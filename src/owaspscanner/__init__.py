"""OWASP Scanner — pattern-based static security scanning of source trees."""

__version__ = "0.1.0"
