"""Compile declarative network descriptions into audit/config shell scripts."""
__version__ = "0.1.0"
