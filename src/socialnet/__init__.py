"""Socialnet - a small social networking service."""

__version__ = "0.1.0"
