"""
Event Bus - Operator-facing notification channel.

This module implements the channel through which install and uninstall
operations report progress:
- log: normal progress messages
- verbose: detailed progress, shown only on request
- warn: non-fatal problems (skipped plugins, unmet requirements)
- results: post-install notices from plugin descriptors

Consumers support:
- Priority-based execution (higher priority = earlier execution)
- Glob pattern matching for event IDs
- Isolation: a failing consumer never stops dispatch to the others
"""

import inspect
import re
import warnings
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

LOG = "log"
VERBOSE = "verbose"
WARN = "warn"
RESULTS = "results"


class EventBusError(Exception):
    """Base exception for event bus errors."""

    pass


class RegistrationError(EventBusError):
    """Raised when consumer registration fails."""

    pass


@dataclass
class Handler:
    """
    Represents a registered event consumer.

    Attributes:
        callback: The consumer function
        priority: Higher priority executes first
        registration_order: Tie-breaker for same priority (lower = earlier)
        requires_src: Whether consumer expects 'src' parameter (pattern variants)
    """

    callback: Callable
    priority: int
    registration_order: int
    requires_src: bool = False

    def __call__(self, event_id: str, payload: Any) -> None:
        """Execute the consumer."""
        if self.requires_src:
            self.callback(event_id, payload)
        else:
            self.callback(payload)


class EventBus:
    """
    Event bus owned by a single project operation.

    Consumers are registered per bus instance; there is no process-wide state.
    """

    def __init__(self):
        self._routes: dict[str, list[Handler]] = {}
        self._patterns: list[tuple[re.Pattern, Handler]] = []
        self._registration_counter = 0

    def _next_registration_order(self) -> int:
        """Get next registration order number."""
        order = self._registration_counter
        self._registration_counter += 1
        return order

    def _glob_to_regex(self, pattern: str) -> re.Pattern:
        """
        Convert glob pattern to compiled regex.

        '*' matches any run of characters, so '*' alone matches every event.
        """
        escaped = re.escape(pattern)
        return re.compile("^" + escaped.replace(r"\*", ".*") + "$")

    def on(self, event_id: str, callback: Callable, priority: int = 0) -> None:
        """
        Register a consumer for an exact event ID.

        Args:
            event_id: Exact event ID to match
            callback: Consumer taking (payload)
            priority: Execution priority (higher = earlier)
        """
        handler = Handler(
            callback=callback,
            priority=priority,
            registration_order=self._next_registration_order(),
        )
        self._routes.setdefault(event_id, []).append(handler)

    def on_re(self, pattern: str, callback: Callable, priority: int = 0) -> None:
        """
        Register a consumer for a glob pattern.

        Args:
            pattern: Glob pattern to match event IDs
            callback: Consumer taking (src: str, payload)
            priority: Execution priority (higher = earlier)

        Raises:
            RegistrationError: If callback doesn't accept 'src' parameter
        """
        params = list(inspect.signature(callback).parameters.keys())
        if len(params) < 1 or params[0] != "src":
            raise RegistrationError(
                f"Pattern-based consumer must have 'src' as first parameter. "
                f"Got: {params}"
            )

        handler = Handler(
            callback=callback,
            priority=priority,
            registration_order=self._next_registration_order(),
            requires_src=True,
        )
        self._patterns.append((self._glob_to_regex(pattern), handler))

    def off(self, callback: Callable) -> None:
        """Remove every registration of a consumer."""
        for event_id, handlers in list(self._routes.items()):
            self._routes[event_id] = [h for h in handlers if h.callback is not callback]
        self._patterns = [
            (pattern, h) for pattern, h in self._patterns if h.callback is not callback
        ]

    def _find_handlers(self, event_id: str) -> list[Handler]:
        """Find exact and pattern consumers, sorted by priority then registration."""
        handlers = list(self._routes.get(event_id, []))
        for pattern, handler in self._patterns:
            if pattern.match(event_id):
                handlers.append(handler)
        return sorted(handlers, key=lambda h: (-h.priority, h.registration_order))

    def emit(self, event_id: str, payload: Any = None) -> None:
        """
        Dispatch an event to every matching consumer.

        Args:
            event_id: The event identifier
            payload: The event payload (usually a message string)
        """
        for handler in self._find_handlers(event_id):
            try:
                handler(event_id, payload)
            except Exception as e:
                warnings.warn(
                    f"Event consumer failed for '{event_id}': {e}",
                    RuntimeWarning,
                    stacklevel=2,
                )

    def log(self, message: str) -> None:
        self.emit(LOG, message)

    def verbose(self, message: str) -> None:
        self.emit(VERBOSE, message)

    def warn(self, message: str) -> None:
        self.emit(WARN, message)

    def results(self, message: str) -> None:
        self.emit(RESULTS, message)
