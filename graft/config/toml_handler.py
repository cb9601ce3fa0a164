"""
TOML File I/O Handler.

This module provides TOML parsing and writing with comment preservation.

Key features:
- Round-trip TOML documents using tomlkit (preserves comments and formatting)
- Generate TOML from schema with descriptive comments
"""

from pathlib import Path
from typing import Any

import tomlkit
from tomlkit import TOMLDocument
from tomlkit.exceptions import TOMLKitError

from graft.config.schema import ConfigError, ConfigField


class TOMLError(ConfigError):
    """Base exception for TOML-related errors."""

    pass


def read_document(file_path: Path) -> TOMLDocument:
    """
    Read a TOML file as an editable tomlkit document.

    Raises:
        TOMLError: If file cannot be read or parsed
    """
    try:
        return tomlkit.parse(Path(file_path).read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise TOMLError(f"TOML file not found: {file_path}") from e
    except TOMLKitError as e:
        raise TOMLError(f"Failed to parse TOML file {file_path}: {e}") from e
    except OSError as e:
        raise TOMLError(f"Failed to read TOML file {file_path}: {e}") from e


def write_toml(file_path: Path, data: dict[str, Any] | TOMLDocument) -> None:
    """
    Write data to a TOML file using tomlkit (preserves formatting).

    Args:
        file_path: Path to the TOML file
        data: Data or document to write

    Raises:
        TOMLError: If file cannot be written
    """
    file_path = Path(file_path)
    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "w", encoding="utf-8") as f:
            tomlkit.dump(data, f)
    except (OSError, TypeError, ValueError) as e:
        raise TOMLError(f"Failed to write TOML file {file_path}: {e}") from e


def schema_table(schema: dict[str, ConfigField], values: dict[str, Any]):
    """
    Build a tomlkit table from a schema with descriptive comments.

    Args:
        schema: Schema dictionary (field_name -> ConfigField)
        values: Values to write (field_name -> value); defaults fill the rest

    Returns:
        tomlkit table
    """
    table = tomlkit.table()

    for field_name, field in schema.items():
        if field.description:
            table.add(tomlkit.comment(field.description))

        constraints = []
        if field.min is not None:
            constraints.append(f"min: {field.min}")
        if field.max is not None:
            constraints.append(f"max: {field.max}")
        if field.choices is not None:
            constraints.append(f"choices: {field.choices}")
        if constraints:
            table.add(tomlkit.comment(f"Constraints: {', '.join(constraints)}"))

        table.add(field_name, values.get(field_name, field.default))
        table.add(tomlkit.nl())

    return table
