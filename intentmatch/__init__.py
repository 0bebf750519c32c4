"""Intent matching and reputation engine."""

__version__ = "0.1.0"
