"""Content moderation gate for user-selected photos."""

__version__ = "0.1.0"
