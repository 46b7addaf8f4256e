"""Courier - directory-watching file transmitter and receiver."""

__version__ = "1.0.0"
