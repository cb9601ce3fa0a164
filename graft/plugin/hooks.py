"""
Project Lifecycle Hooks.

This module fires named lifecycle hooks around plugin operations.

Key features:
- Python callbacks registered per hook (sync or async)
- Script discovery in <project>/hooks/<hook>/
- Environment variable injection (GRAFT_HOOK, GRAFT_PROJECT_ROOT,
  GRAFT_HOOK_CONTEXT)
- Subprocess execution with timeout
- Exit code handling
"""

import asyncio
import inspect
import json
import os
import sys
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from graft.core.errors import GraftError
from graft.core.events import EventBus


class HookError(GraftError):
    """Raised when a hook callback or script fails."""

    pass


class HookType(Enum):
    """Hook type enumeration."""

    BEFORE_PLUGIN_ADD = "before_plugin_add"
    AFTER_PLUGIN_ADD = "after_plugin_add"
    BEFORE_PLUGIN_RM = "before_plugin_rm"
    AFTER_PLUGIN_RM = "after_plugin_rm"
    BEFORE_PLUGIN_INSTALL = "before_plugin_install"
    AFTER_PLUGIN_INSTALL = "after_plugin_install"
    BEFORE_PLUGIN_UNINSTALL = "before_plugin_uninstall"
    AFTER_PLUGIN_UNINSTALL = "after_plugin_uninstall"


SCRIPT_EXTENSIONS = (".sh", ".bat", ".ps1", ".py")


class HooksRunner:
    """
    Fires hooks for one project.

    Args:
        project_root: Project root directory
        events: Operation event bus
        timeout: Per-script timeout in seconds
        enabled: When False every fire() is a no-op (--nohooks)
    """

    def __init__(
        self,
        project_root: Path,
        events: EventBus | None = None,
        timeout: float = 60.0,
        enabled: bool = True,
    ):
        self.project_root = Path(project_root)
        self.events = events or EventBus()
        self.timeout = timeout
        self.enabled = enabled
        self._callbacks: dict[str, list[Callable]] = {}

    def register(self, hook: HookType | str, callback: Callable) -> None:
        """Register a callback taking the hook context dict."""
        self._callbacks.setdefault(_hook_name(hook), []).append(callback)

    def find_scripts(self, hook: HookType | str) -> list[Path]:
        """Return the hook scripts for a hook, in name order."""
        hook_dir = self.project_root / "hooks" / _hook_name(hook)
        if not hook_dir.is_dir():
            return []
        return sorted(
            p
            for p in hook_dir.iterdir()
            if p.is_file()
            and not p.name.startswith(".")
            and (p.suffix in SCRIPT_EXTENSIONS or os.access(p, os.X_OK))
        )

    async def fire(self, hook: HookType | str, context: dict[str, Any] | None = None) -> None:
        """
        Fire a hook: callbacks first, then scripts.

        Raises:
            HookError: If a callback raises or a script fails
        """
        if not self.enabled:
            return

        name = _hook_name(hook)
        context = context or {}
        self.events.verbose(f"Executing {name} hooks")

        for callback in self._callbacks.get(name, []):
            try:
                result = callback(context)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                raise HookError(f"Hook {name} callback failed: {e}") from e

        for script in self.find_scripts(name):
            await self._run_script(name, script, context)

    async def _run_script(self, name: str, script: Path, context: dict[str, Any]) -> None:
        env = os.environ.copy()
        env["GRAFT_HOOK"] = name
        env["GRAFT_PROJECT_ROOT"] = str(self.project_root)
        env["GRAFT_HOOK_CONTEXT"] = json.dumps(context, default=str)

        if script.suffix == ".py":
            cmd = [sys.executable, str(script)]
        else:
            if script.suffix == ".sh" and os.name != "nt":
                script.chmod(script.stat().st_mode | 0o111)
            cmd = [str(script)]

        self.events.verbose(f"Running hook script {script}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=self.project_root,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise HookError(f"Failed to execute hook {name} ({script}): {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), self.timeout)
        except TimeoutError as e:
            process.kill()
            await process.wait()
            raise HookError(
                f"Hook {name} ({script.name}) timed out after {self.timeout} seconds"
            ) from e

        if stdout.strip():
            self.events.log(stdout.decode(errors="replace").rstrip())
        if process.returncode != 0:
            raise HookError(
                f"Hook {name} ({script.name}) failed with exit code {process.returncode}:\n"
                f"stdout: {stdout.decode(errors='replace')}\n"
                f"stderr: {stderr.decode(errors='replace')}"
            )


def _hook_name(hook: HookType | str) -> str:
    return hook.value if isinstance(hook, HookType) else hook
