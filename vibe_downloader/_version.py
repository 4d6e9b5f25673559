"""
Defines the application's version string.

This is the single source of truth for the application's version number.
It is used in the CLI banner, in update checks, and for packaging.
"""

__version__ = "1.0.0"
