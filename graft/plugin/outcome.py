"""
Install outcomes.

Every install attempt ends in exactly one of three states, reported as an
InstallOutcome instead of a sentinel exception.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class OutcomeStatus(Enum):
    INSTALLED = "installed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class InstallOutcome:
    """
    Result of installing one plugin on one platform.

    Attributes:
        status: INSTALLED, SKIPPED or FAILED
        plugin_id: Plugin id (or the requested target when the id is unknown)
        platform: Target platform, None for failures before any platform
        result: Value returned by the platform adapter's add_plugin
        reason: Why the install was skipped
        error: Exception that failed the install
        already_installed: The plugin was already recorded on the platform
    """

    status: OutcomeStatus
    plugin_id: str
    platform: str | None = None
    result: Any = None
    reason: str | None = None
    error: BaseException | None = None
    already_installed: bool = False

    @classmethod
    def installed(
        cls, plugin_id: str, platform: str, result: Any, already_installed: bool = False
    ) -> "InstallOutcome":
        return cls(
            OutcomeStatus.INSTALLED,
            plugin_id,
            platform,
            result=result,
            already_installed=already_installed,
        )

    @classmethod
    def skipped(cls, plugin_id: str, platform: str, reason: str) -> "InstallOutcome":
        return cls(OutcomeStatus.SKIPPED, plugin_id, platform, reason=reason)

    @classmethod
    def failed(
        cls, plugin_id: str, error: BaseException, platform: str | None = None
    ) -> "InstallOutcome":
        return cls(OutcomeStatus.FAILED, plugin_id, platform, error=error)

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED

    @property
    def needs_prepare(self) -> bool:
        """A falsy adapter result means the platform must be prepared."""
        return self.status is OutcomeStatus.INSTALLED and not self.result
