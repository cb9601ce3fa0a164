"""
Graft - Plugin and platform lifecycle manager for cross-platform app projects.
"""

__version__ = "0.1.0"
