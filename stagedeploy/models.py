"""
Value types shared by the deployment engine.

Locations, remote endpoints, folder selectors and run results. Everything
here is plain data; the behaviour lives in stagedeploy.deploy.
"""

import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union


DEFAULT_SSH_PORT = 22
DEFAULT_MAX_BACKUPS = 3

WINDOWS_PATH_PATTERN = re.compile(r'^[A-Za-z]:[\\/]')


class LocationKind(Enum):
    LOCAL = 'local'
    REMOTE = 'ssh'


class TargetShell(Enum):
    """Command dialect used for commands that run on a location's host."""
    WINDOWS = 'windows'
    POSIX = 'posix'


def detect_shell(path: str) -> TargetShell:
    """Drive-letter paths (C:\\ or C:/) are Windows hosts, anything else is POSIX."""
    if WINDOWS_PATH_PATTERN.match(path or ''):
        return TargetShell.WINDOWS
    return TargetShell.POSIX


def timestamp_slug(moment: Optional[datetime] = None) -> str:
    """
    UTC ISO-8601 timestamp safe for file names.

    Colons and the fraction dot become dashes: 2024-01-15T12-00-00-000Z.
    Names built from it sort chronologically as plain strings.
    """
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H-%M-%S") + f"-{moment.microsecond // 1000:03d}Z"


def to_sftp_path(path: str) -> str:
    """SFTP always takes forward slashes, even against Windows OpenSSH."""
    return path.replace('\\', '/')


def to_windows_path(path: str) -> str:
    return path.replace('/', '\\')


def join_remote_path(base: str, *segments: str) -> str:
    """
    Join path segments for a remote location.

    Backslashes are normalised to forward slashes and repeated separators are
    collapsed, so 'C:\\site' + 'bin' gives 'C:/site/bin'.
    """
    joined = '/'.join([base, *segments])
    return re.sub(r'/+', '/', to_sftp_path(joined))


@dataclass(frozen=True)
class RemoteEndpoint:
    """
    SSH credentials for a remote location.

    Two endpoints with the same host and port share one session regardless of
    username, so `key` leaves the username out.
    """
    host: str
    username: str
    port: int = DEFAULT_SSH_PORT
    password: Optional[str] = field(default=None, repr=False)
    private_key: Optional[str] = None

    def __post_init__(self):
        if not self.host:
            raise ValueError("Remote endpoint requires a host")
        if not self.username:
            raise ValueError("Remote endpoint requires a username")
        if not self.password and not self.private_key:
            raise ValueError("Either password or private_key must be provided")

    @property
    def key(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class Location:
    """
    A file tree root, either on this machine or behind an SSH session.

    Locations are immutable: use child() to address something beneath one.
    The target shell is resolved from the path shape when the location is
    built and travels with it to every remote command.
    """
    kind: LocationKind
    path: str
    remote: Optional[RemoteEndpoint] = None
    shell: TargetShell = field(init=False, compare=False)

    def __post_init__(self):
        if not self.path:
            raise ValueError("Location path must not be empty")
        if self.kind is LocationKind.REMOTE and self.remote is None:
            raise ValueError(f"Remote location requires an endpoint: {self.path}")
        object.__setattr__(self, 'shell', detect_shell(self.path))

    @classmethod
    def local(cls, path: Union[str, Path]) -> 'Location':
        return cls(LocationKind.LOCAL, str(path))

    @classmethod
    def ssh(cls, path: str, remote: RemoteEndpoint) -> 'Location':
        return cls(LocationKind.REMOTE, path, remote)

    @property
    def is_remote(self) -> bool:
        return self.kind is LocationKind.REMOTE

    @property
    def transport_path(self) -> str:
        """Path as handed to the filesystem or SFTP layer."""
        if self.is_remote:
            return to_sftp_path(self.path)
        return self.path

    def child(self, *segments: str) -> 'Location':
        if self.is_remote:
            path = join_remote_path(self.path, *segments)
        else:
            path = os.path.join(self.path, *segments)
        return Location(self.kind, path, self.remote)

    def describe(self) -> str:
        if self.is_remote:
            return f"ssh://{self.remote.username}@{self.remote.key}/{self.path}"
        return self.path


@dataclass(frozen=True)
class WholeFolder:
    """Copy a folder under the source root with everything in it."""
    name: str


@dataclass(frozen=True)
class FolderFiles:
    """Copy only the listed files from a folder under the source root."""
    name: str
    files: Tuple[str, ...]


FolderSelector = Union[WholeFolder, FolderFiles]


def parse_selectors(raw: Optional[List[Any]]) -> List[FolderSelector]:
    """
    Convert profile `folders` entries into selectors.

    Args:
        raw: List whose items are either a folder name or a one-or-more key
             mapping of folder name to list of file names

    Returns:
        Selectors in declaration order (empty when raw is empty or None)

    Raises:
        ValueError: If an entry has any other shape
    """
    selectors: List[FolderSelector] = []

    for item in raw or []:
        if isinstance(item, str):
            selectors.append(WholeFolder(item))
        elif isinstance(item, dict):
            for folder_name, files in item.items():
                if not isinstance(files, list) or not files:
                    raise ValueError(f"Folder '{folder_name}' must map to a non-empty list of file names")
                selectors.append(FolderFiles(str(folder_name), tuple(str(f) for f in files)))
        else:
            raise ValueError(f"Invalid folder selector: {item!r}")

    return selectors


def describe_selector(selector: FolderSelector) -> str:
    if isinstance(selector, WholeFolder):
        return selector.name
    if isinstance(selector, FolderFiles):
        return f"{selector.name}[{', '.join(selector.files)}]"
    raise TypeError(f"Unknown folder selector: {selector!r}")


@dataclass(frozen=True)
class BackupConfig:
    path: str
    max_backups: int = DEFAULT_MAX_BACKUPS

    def __post_init__(self):
        if not self.path:
            raise ValueError("Backup path must not be empty")
        if not isinstance(self.max_backups, int) or self.max_backups < 1:
            raise ValueError(f"max_backups must be an integer >= 1, got {self.max_backups!r}")


@dataclass(frozen=True)
class LoggingConfig:
    path: str
    filename: str


@dataclass
class DeployResult:
    """
    Outcome of one deploy or restore run.

    `success` is derived from the error list and cannot be set on its own.
    """
    start_time: datetime
    end_time: Optional[datetime] = None
    files_deployed: int = 0
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def duration(self) -> float:
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'startTime': self.start_time.isoformat(),
            'endTime': self.end_time.isoformat() if self.end_time else None,
            'filesDeployed': self.files_deployed,
            'duration': f"{self.duration:.2f}s",
            'errors': list(self.errors),
            'warnings': list(self.warnings),
        }


@dataclass(frozen=True)
class GeneratedScript:
    """A batch script produced for one run, with CRLF line endings."""
    name: str
    content: str

    def write(self, directory: Union[str, Path]) -> Path:
        """Write the script into directory and return its path."""
        target_dir = Path(directory)
        target_dir.mkdir(parents=True, exist_ok=True)
        script_path = target_dir / self.name
        script_path.write_bytes(self.content.encode('utf-8'))
        return script_path
