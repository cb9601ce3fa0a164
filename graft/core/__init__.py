"""
Graft Core - Error hierarchy and event channel.
"""

__all__ = []
