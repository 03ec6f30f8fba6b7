"""Content versioning, collaborative editing and publishing workflow for the blog."""

__version__ = "0.1.0"
