"""
Git hook installation.

Each vault hook is a marker line followed by one ``gv`` invocation. A
hook file is inspected first and the result drives exactly one action:

    ABSENT            -> create it (shebang, marker, invocation), chmod +x
    PRESENT_CORRECT   -> nothing to do
    PRESENT_MODIFIED  -> marker present, invocation differs: warn, leave it
    PRESENT_FOREIGN   -> someone else's hook: back it up, then append
"""

from __future__ import annotations

import logging
import os
import stat
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from .config import BASE_NAME, HOOK_COMMANDS, HOOK_MARKER, HOOK_SHEBANG

logger = logging.getLogger(__name__)


class HookState(Enum):
    ABSENT = "absent"
    PRESENT_CORRECT = "present-correct"
    PRESENT_MODIFIED = "present-modified"
    PRESENT_FOREIGN = "present-foreign"


class HookAction(Enum):
    CREATED = "created"
    APPENDED = "appended"
    UNCHANGED = "unchanged"
    SKIPPED = "skipped"
    REMOVED = "removed"


@dataclass(frozen=True)
class HookDefinition:
    name: str
    invocation: str
    marker: str = HOOK_MARKER

    def block(self) -> str:
        return f"{self.marker}\n{self.invocation}\n"

    def render(self) -> str:
        return f"{HOOK_SHEBANG}\n{self.block()}"


@dataclass
class HookResult:
    name: str
    path: Path
    action: HookAction
    backup: Optional[Path] = None
    message: str = ""


def default_hooks(command: str = BASE_NAME) -> List[HookDefinition]:
    return [
        HookDefinition(name, f"{command} {subcommand} --quiet")
        for name, subcommand in HOOK_COMMANDS.items()
    ]


class HookInstaller:
    def __init__(self, hooks_dir: str | Path, clock: Callable[[], datetime] = datetime.now):
        self.hooks_dir = Path(hooks_dir)
        self.clock = clock

    def path_for(self, hook: HookDefinition) -> Path:
        return self.hooks_dir / hook.name

    def state(self, hook: HookDefinition) -> HookState:
        path = self.path_for(hook)
        if not path.exists():
            return HookState.ABSENT
        lines = path.read_text(encoding="utf-8").splitlines()
        if hook.marker not in lines:
            return HookState.PRESENT_FOREIGN
        if hook.invocation in lines:
            return HookState.PRESENT_CORRECT
        return HookState.PRESENT_MODIFIED

    # ------------------------------------------------------------------
    # Install / uninstall
    # ------------------------------------------------------------------

    def install(self, hook: HookDefinition) -> HookResult:
        path = self.path_for(hook)
        state = self.state(hook)

        if state is HookState.PRESENT_CORRECT:
            return HookResult(hook.name, path, HookAction.UNCHANGED)

        if state is HookState.PRESENT_MODIFIED:
            message = (
                f"Hook {path} has the gitvault marker but a different command; "
                f"expected '{hook.invocation}'. Leaving it untouched."
            )
            logger.warning(message)
            return HookResult(hook.name, path, HookAction.SKIPPED, message=message)

        if state is HookState.ABSENT:
            self.hooks_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(hook.render(), encoding="utf-8")
            self._make_executable(path)
            return HookResult(hook.name, path, HookAction.CREATED)

        backup = self._backup(path)
        content = path.read_text(encoding="utf-8")
        if content and not content.endswith("\n"):
            content += "\n"
        path.write_text(content + "\n" + hook.block(), encoding="utf-8")
        self._make_executable(path)
        return HookResult(hook.name, path, HookAction.APPENDED, backup=backup)

    def install_all(self, hooks: List[HookDefinition]) -> List[HookResult]:
        return [self.install(hook) for hook in hooks]

    def uninstall(self, hook: HookDefinition) -> HookResult:
        """Remove our marker and invocation; delete the file if nothing else remains."""
        path = self.path_for(hook)
        if self.state(hook) in (HookState.ABSENT, HookState.PRESENT_FOREIGN):
            return HookResult(hook.name, path, HookAction.UNCHANGED)

        content = path.read_text(encoding="utf-8")
        if content == hook.render():
            path.unlink()
            return HookResult(hook.name, path, HookAction.REMOVED)

        kept: List[str] = []
        skip_next = False
        for line in content.splitlines():
            if line == hook.marker:
                skip_next = True
                continue
            if skip_next and line == hook.invocation:
                skip_next = False
                continue
            skip_next = False
            kept.append(line)
        while kept and not kept[-1].strip():
            kept.pop()
        path.write_text("\n".join(kept) + "\n", encoding="utf-8")
        return HookResult(hook.name, path, HookAction.REMOVED)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _backup(self, path: Path) -> Path:
        stamp = self.clock().strftime("%Y%m%d%H%M%S")
        backup = path.with_name(f"{path.name}.backup-{stamp}")
        counter = 1
        while backup.exists():
            backup = path.with_name(f"{path.name}.backup-{stamp}-{counter}")
            counter += 1
        backup.write_bytes(path.read_bytes())
        os.chmod(backup, path.stat().st_mode)
        return backup

    @staticmethod
    def _make_executable(path: Path) -> None:
        mode = path.stat().st_mode
        os.chmod(path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
