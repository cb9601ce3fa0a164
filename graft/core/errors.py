"""
Graft error hierarchy.

Every failure surfaced to the operator derives from GraftError so the CLI can
report it as a single human-readable line.
"""


class GraftError(Exception):
    """Base exception for all graft errors."""

    pass


class InputError(GraftError):
    """Raised when an operation is invoked without usable input."""

    pass


class PluginNotInstalledError(InputError):
    """Raised when removing a plugin that is not present in the project."""

    pass


class FetchError(GraftError):
    """Raised when a plugin cannot be fetched from its source."""

    pass


class InvalidPluginError(FetchError):
    """Raised when a plugin directory has no valid descriptor."""

    pass


class PluginIdentityMismatchError(FetchError):
    """Raised when a fetched plugin does not match the expected id or version."""

    pass


class MissingVariablesError(GraftError):
    """Raised when required plugin variables have no value."""

    def __init__(self, message: str, names: list[str]):
        super().__init__(message)
        self.names = names


class CyclicDependencyError(GraftError):
    """Raised when a dependency edge closes a cycle."""

    def __init__(self, parent: str, child: str):
        super().__init__(f"Cyclic dependency from {parent} to {child}")
        self.parent = parent
        self.child = child


class VersionConflictError(GraftError):
    """Raised when an installed dependency does not satisfy a new requirement."""

    pass


class RequiredDependencyError(GraftError):
    """Raised when removing a plugin that other top-level plugins still need."""

    def __init__(self, message: str, dependents: list[str]):
        super().__init__(message)
        self.dependents = dependents


class SecurityError(GraftError):
    """Raised when a plugin references files outside its own directory."""

    pass


class UnsupportedPlatformError(GraftError):
    """Raised when an operation targets an unknown platform."""

    pass


class PlatformError(GraftError):
    """Raised when a platform adapter operation fails."""

    pass
