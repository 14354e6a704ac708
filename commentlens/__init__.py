"""Comment Lens - comment analytics pipeline."""

__version__ = "0.1.0"
