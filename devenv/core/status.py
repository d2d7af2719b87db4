"""Status report items produced by drift detection.

A report is a list of ``StatusItem`` values. Each item is either a
``PlatformStatus`` or a ``PluginStatus``; the ``kind`` field tells them
apart. Items are immutable and can only be created through their ``ok`` and
``drifted`` constructors, which keep ``is_up_to_date`` and ``message``
consistent.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from devenv.config.schemas import PluginEntry

UP_TO_DATE_MESSAGE = "is OK."

FileState = Literal["missing", "modified"]

_FILE_STATE_MESSAGES: dict[str, str] = {
    "missing": "is missing.",
    "modified": "has been modified.",
}


@dataclass(frozen=True)
class FileStatus:
    """A single installed file that no longer matches the manifest."""

    path: str
    state: FileState

    @property
    def message(self) -> str:
        return _FILE_STATE_MESSAGES[self.state]


def _check_consistency(is_up_to_date: bool, message: str, has_files: bool = False) -> None:
    if is_up_to_date and (message != UP_TO_DATE_MESSAGE or has_files):
        raise ValueError("An up-to-date status cannot carry a drift message or files")
    if not is_up_to_date and message == UP_TO_DATE_MESSAGE:
        raise ValueError("An out-of-date status needs a message describing the drift")


@dataclass(frozen=True)
class PlatformStatus:
    """Status of the platform installation."""

    name: str
    is_up_to_date: bool
    message: str
    files: tuple[FileStatus, ...] = ()
    kind: Literal["platform"] = field(default="platform", init=False)

    def __post_init__(self) -> None:
        _check_consistency(self.is_up_to_date, self.message, bool(self.files))

    @classmethod
    def ok(cls, name: str) -> PlatformStatus:
        return cls(name=name, is_up_to_date=True, message=UP_TO_DATE_MESSAGE)

    @classmethod
    def drifted(
        cls, name: str, message: str, files: list[FileStatus] | None = None
    ) -> PlatformStatus:
        return cls(name=name, is_up_to_date=False, message=message, files=tuple(files or ()))


@dataclass(frozen=True)
class PluginStatus:
    """Status of one plugin working copy."""

    name: str
    is_up_to_date: bool
    message: str
    plugin: PluginEntry
    kind: Literal["plugin"] = field(default="plugin", init=False)

    def __post_init__(self) -> None:
        _check_consistency(self.is_up_to_date, self.message)

    @classmethod
    def ok(cls, plugin: PluginEntry) -> PluginStatus:
        return cls(name=plugin.path, is_up_to_date=True, message=UP_TO_DATE_MESSAGE, plugin=plugin)

    @classmethod
    def drifted(cls, plugin: PluginEntry, message: str) -> PluginStatus:
        return cls(name=plugin.path, is_up_to_date=False, message=message, plugin=plugin)


StatusItem = PlatformStatus | PluginStatus


@dataclass
class EnvironmentStatus:
    """Full status report for an environment."""

    platform: PlatformStatus
    plugins: list[PluginStatus] = field(default_factory=list)

    @property
    def items(self) -> list[StatusItem]:
        return [self.platform, *self.plugins]

    @property
    def is_up_to_date(self) -> bool:
        return all(item.is_up_to_date for item in self.items)
