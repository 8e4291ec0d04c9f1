"""URL indexing job pipeline package."""

__version__ = "0.1.0"
