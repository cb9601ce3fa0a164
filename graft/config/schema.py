"""
Settings Schema System.

This module provides the schema and validation for the [settings] table of
graft.toml.

Key features:
- Type-safe field definitions with constraints
- Validation of values against schema
- Defaults for settings a project does not set
"""

from dataclasses import dataclass
from typing import Any

from graft.core.errors import GraftError
from graft.plugin.registry import DEFAULT_REGISTRY


class ConfigError(GraftError):
    """Base exception for configuration errors."""

    pass


class SchemaError(ConfigError):
    """Raised when a field definition is invalid."""

    pass


class ValidationError(ConfigError):
    """Raised when value validation fails."""

    pass


@dataclass
class ConfigField:
    """
    Represents a configuration field with type and constraints.

    Attributes:
        type_: The expected type of the field value
        default: Default value for the field
        description: Human-readable description
        min: Minimum value (for numbers) or minimum length (for strings/lists)
        max: Maximum value (for numbers) or maximum length (for strings/lists)
        choices: List of allowed values (optional)
    """

    type_: type | tuple[type, ...]
    default: Any
    description: str = ""
    min: Any = None
    max: Any = None
    choices: list[Any] | None = None

    def __post_init__(self):
        """Validate field definition."""
        if not isinstance(self.default, self.type_):
            raise SchemaError(
                f"Default value {self.default!r} does not match type {self._type_name()}"
            )

        if self.choices is not None and self.default not in self.choices:
            raise SchemaError(f"Default value {self.default!r} not in choices {self.choices}")

    def _type_name(self) -> str:
        types = self.type_ if isinstance(self.type_, tuple) else (self.type_,)
        return " or ".join(t.__name__ for t in types)

    def validate(self, value: Any) -> None:
        """
        Validate a value against this field's constraints.

        Args:
            value: The value to validate

        Raises:
            ValidationError: If validation fails
        """
        # bool is an int; reject it for numeric fields
        if not isinstance(value, self.type_) or (
            isinstance(value, bool) and bool not in _as_tuple(self.type_)
        ):
            raise ValidationError(
                f"Expected type {self._type_name()}, got {type(value).__name__}"
            )

        if self.choices is not None and value not in self.choices:
            raise ValidationError(f"Value {value!r} not in allowed choices {self.choices}")

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if self.min is not None and value < self.min:
                raise ValidationError(f"Value {value} is less than minimum {self.min}")
            if self.max is not None and value > self.max:
                raise ValidationError(f"Value {value} is greater than maximum {self.max}")

        if isinstance(value, (str, list)):
            if self.min is not None and len(value) < self.min:
                raise ValidationError(f"Length {len(value)} is less than minimum {self.min}")
            if self.max is not None and len(value) > self.max:
                raise ValidationError(f"Length {len(value)} is greater than maximum {self.max}")


def _as_tuple(type_: type | tuple[type, ...]) -> tuple[type, ...]:
    return type_ if isinstance(type_, tuple) else (type_,)


SETTINGS_SCHEMA: dict[str, ConfigField] = {
    "registry": ConfigField(str, DEFAULT_REGISTRY, "Plugin registry URL", min=1),
    "searchpath": ConfigField(
        list, [], "Local directories searched for plugins before the registry"
    ),
    "fetch_timeout": ConfigField(
        (int, float), 60.0, "Registry request timeout in seconds", min=1, max=3600
    ),
    "hook_timeout": ConfigField(
        (int, float), 60.0, "Hook script timeout in seconds", min=1, max=3600
    ),
    "link": ConfigField(bool, False, "Symlink local plugins instead of copying them"),
}


def validate_settings(
    settings: dict[str, Any], schema: dict[str, ConfigField] = SETTINGS_SCHEMA
) -> dict[str, Any]:
    """
    Validate settings against a schema and fill in defaults.

    Args:
        settings: The [settings] table
        schema: The schema dictionary (field_name -> ConfigField)

    Returns:
        Settings with every schema field present

    Raises:
        ValidationError: If a field is unknown or invalid
    """
    for key in settings:
        if key not in schema:
            raise ValidationError(f"Unknown setting: {key}")

    resolved = {}
    for field_name, field in schema.items():
        value = settings.get(field_name, field.default)
        try:
            field.validate(value)
        except ValidationError as e:
            raise ValidationError(f"Setting '{field_name}': {e}") from e
        resolved[field_name] = value
    return resolved


def generate_default_settings(
    schema: dict[str, ConfigField] = SETTINGS_SCHEMA,
) -> dict[str, Any]:
    """Return a settings dictionary with the default value of every field."""
    return {field_name: field.default for field_name, field in schema.items()}
