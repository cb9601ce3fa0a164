"""
Graft Configuration System - the graft.toml project manifest.

This module provides:
- Settings schema declaration and validation
- TOML reading and comment-preserving writing
- Plugin entries saved by add and remove

Example usage:
    from graft.config import ProjectConfig, find_project_root

    config = ProjectConfig.load(find_project_root())
    print(config.settings["registry"])
    config.add_plugin("com.example.camera", "~2.1.0").write()
"""

from graft.config.project import MANIFEST_FILE, PluginEntry, ProjectConfig, find_project_root
from graft.config.schema import ConfigError, ConfigField, ValidationError

__all__ = [
    "MANIFEST_FILE",
    "ConfigError",
    "ConfigField",
    "PluginEntry",
    "ProjectConfig",
    "ValidationError",
    "find_project_root",
]
