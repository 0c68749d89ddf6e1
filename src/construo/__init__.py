"""CONSTRUO 2026 site data synchronisation and certificate generation."""

__version__ = "1.4.0"
