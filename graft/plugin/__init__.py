"""
Graft Plugin System - Plugin resolution, installation and removal.

This module handles:
- Plugin descriptor parsing
- Version constraints and engine checks
- Fetching from local paths, git and the registry
- Dependency graph construction and cycle detection
- Installing and uninstalling plugins per platform
"""

__all__ = []
