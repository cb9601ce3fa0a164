"""
Graft Platforms - Platform adapter interface and registry.

This module provides:
- The PlatformAdapter interface consumed by install and uninstall
- A registry mapping platform names to adapters
- A generic adapter for platforms without a dedicated one
"""

__all__ = []
