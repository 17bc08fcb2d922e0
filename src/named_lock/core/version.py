"""Version information for named-lock."""

__version__ = "1.0.0"
