"""PRIVCA: private certificate authority engine."""

__version__ = "0.1.0"
