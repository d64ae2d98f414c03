"""
Location-agnostic file operations.

FileOperations answers "how do I copy, list, count or delete at this
location" for any mix of local and SSH locations:

- local -> local: shutil on this machine
- local -> ssh: recursive SFTP upload
- ssh -> local: recursive SFTP download
- ssh -> ssh: server-side copy over the shared session (or a local relay
  when the two locations live on different servers)

It also owns the SSH session cache for one run. Build one per deploy or
restore and close it when the run ends, success or not.
"""

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from stagedeploy.models import (
    FolderFiles,
    FolderSelector,
    Location,
    TargetShell,
    WholeFolder,
    to_sftp_path,
    to_windows_path,
)
from .errors import DeployError, NotFoundError
from .transport import RemoteTransport


logger = logging.getLogger(__name__)


class FileOperations:
    """
    File operations over local and remote locations, with one SSH session
    per host:port shared by every location on that server.
    """

    def __init__(self, ssh_timeout: int = 30, transport_factory=RemoteTransport):
        """
        Args:
            ssh_timeout: Connection timeout passed to each new transport
            transport_factory: Callable building a transport from an endpoint
        """
        self.ssh_timeout = ssh_timeout
        self.transport_factory = transport_factory
        self.connections: Dict[str, RemoteTransport] = {}

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close_all_connections()
        return False

    # -- sessions ---------------------------------------------------------

    def ensure_connection(self, location: Location) -> Optional[RemoteTransport]:
        """
        Return the session for a remote location, connecting on first use.

        Returns:
            None for local locations
        """
        if not location.is_remote:
            return None

        key = location.remote.key
        if key in self.connections:
            return self.connections[key]

        transport = self.transport_factory(location.remote, timeout=self.ssh_timeout)
        transport.connect()
        self.connections[key] = transport
        return transport

    def _transport(self, location: Location) -> RemoteTransport:
        transport = self.ensure_connection(location)
        if transport is None:
            raise DeployError(f"SSH connection required for {location.path}")
        return transport

    def close_all_connections(self):
        """Disconnect and forget every cached session."""
        for key in list(self.connections):
            transport = self.connections.pop(key)
            transport.disconnect()

    @staticmethod
    def same_server(first: Location, second: Location) -> bool:
        """True when both locations are remote and share host:port."""
        if not (first.is_remote and second.is_remote):
            return False
        return first.remote.key == second.remote.key

    # -- queries ----------------------------------------------------------

    def exists(self, location: Location) -> bool:
        if not location.is_remote:
            return os.path.exists(location.path)
        return self._transport(location).stat(location.transport_path) is not None

    def is_directory(self, location: Location) -> bool:
        if not location.is_remote:
            return os.path.isdir(location.path)
        entry = self._transport(location).stat(location.transport_path)
        return bool(entry and entry.is_directory)

    def verify_directory_exists(self, location: Location):
        """
        Check that a directory exists without creating it.

        Raises:
            NotFoundError: If the directory is missing
        """
        if not self.exists(location):
            where = " on remote" if location.is_remote else ""
            raise NotFoundError(f"Directory does not exist{where}: {location.path}")

    def make_directory(self, location: Location):
        """Create a directory and any missing parents."""
        if not location.is_remote:
            Path(location.path).mkdir(parents=True, exist_ok=True)
        else:
            self._transport(location).make_directory_recursive(location.transport_path)

    def list_entries(self, location: Location) -> List[str]:
        """Names directly under location, or [] if it does not exist."""
        if not location.is_remote:
            if not os.path.isdir(location.path):
                return []
            return sorted(os.listdir(location.path))
        return self._transport(location).list_directory(location.transport_path)

    def count_files(self, location: Location) -> int:
        """Recursive file count; directories themselves are not counted."""
        if not location.is_remote:
            return _count_local_files(location.path)

        return self._transport(location).count_files(location.transport_path)

    # -- deletion ---------------------------------------------------------

    def delete_contents(self, location: Location):
        """
        Remove every file and directory directly under location.

        The root directory itself stays. Missing roots are a no-op.
        """
        if not location.is_remote:
            if not os.path.isdir(location.path):
                return
            for name in os.listdir(location.path):
                _remove_local(os.path.join(location.path, name))
            return

        transport = self._transport(location)
        root = location.transport_path
        for name in transport.list_directory(root):
            child = f"{root}/{name}"
            entry = transport.stat(child)
            if entry and entry.is_directory:
                transport.delete_directory_recursive(child)
            else:
                transport.delete_file(child)

    def delete_path(self, location: Location):
        """Delete a file or a whole directory tree. Missing paths are a no-op."""
        if not location.is_remote:
            if os.path.lexists(location.path):
                _remove_local(location.path)
            return

        transport = self._transport(location)
        entry = transport.stat(location.transport_path)
        if entry is None:
            return
        if entry.is_directory:
            transport.delete_directory_recursive(location.transport_path)
        else:
            transport.delete_file(location.transport_path)

    # -- copying ----------------------------------------------------------

    def copy(self, source: Location, dest: Location,
             selectors: Optional[Sequence[FolderSelector]] = None) -> int:
        """
        Copy source into dest.

        Args:
            source: Location to read from
            dest: Location to write into (created if missing)
            selectors: Optional folder selectors; when given only the selected
                folders/files are copied

        Returns:
            Number of files copied

        Raises:
            NotFoundError: If the source, a selected folder or a selected file
                is missing. Nothing is copied in that case.
        """
        if selectors:
            return self._copy_selected(source, dest, selectors)
        return self._copy_tree(source, dest)

    def validate_selectors(self, source: Location, selectors: Sequence[FolderSelector]):
        """
        Check that every selected folder and file exists under source.

        Raises:
            NotFoundError: On the first missing folder or file
        """
        for selector in selectors:
            if isinstance(selector, WholeFolder):
                folder = source.child(selector.name)
                if not self.exists(folder):
                    raise NotFoundError(f"Source folder does not exist: {folder.path}")
            elif isinstance(selector, FolderFiles):
                folder = source.child(selector.name)
                if not self.exists(folder):
                    raise NotFoundError(f"Source folder does not exist: {folder.path}")
                for file_name in selector.files:
                    file_location = folder.child(file_name)
                    if not self.exists(file_location):
                        raise NotFoundError(f"Source file does not exist: {file_location.path}")
            else:
                raise TypeError(f"Unknown folder selector: {selector!r}")

    def _copy_selected(self, source: Location, dest: Location,
                       selectors: Sequence[FolderSelector]) -> int:
        self.validate_selectors(source, selectors)
        total = 0

        for selector in selectors:
            if isinstance(selector, WholeFolder):
                total += self._copy_tree(source.child(selector.name), dest.child(selector.name))
            elif isinstance(selector, FolderFiles):
                src_folder = source.child(selector.name)
                dest_folder = dest.child(selector.name)
                self.make_directory(dest_folder)
                for file_name in selector.files:
                    parts = to_sftp_path(file_name).split('/')
                    if len(parts) > 1:
                        self.make_directory(dest_folder.child(*parts[:-1]))
                    self.copy_file(src_folder.child(*parts), dest_folder.child(*parts))
                    total += 1
            else:
                raise TypeError(f"Unknown folder selector: {selector!r}")

        logger.debug(f"Copied {total} selected files from {source.path} to {dest.path}")
        return total

    def copy_file(self, source: Location, dest: Location):
        """Copy a single file between any two locations."""
        if not source.is_remote and not dest.is_remote:
            shutil.copy2(source.path, dest.path)
        elif not source.is_remote:
            self._transport(dest).upload_file(source.path, dest.transport_path)
        elif not dest.is_remote:
            self._transport(source).download_file(source.transport_path, dest.path)
        elif self.same_server(source, dest):
            self._transport(source).copy_file(source.path, dest.path)
        else:
            with tempfile.TemporaryDirectory(prefix='stagedeploy_relay_') as relay_dir:
                relay_path = os.path.join(relay_dir, os.path.basename(to_sftp_path(source.path)))
                self._transport(source).download_file(source.transport_path, relay_path)
                self._transport(dest).upload_file(relay_path, dest.transport_path)

    def _copy_tree(self, source: Location, dest: Location) -> int:
        if not source.is_remote and not dest.is_remote:
            return self._copy_local_to_local(source.path, dest.path)

        if not source.is_remote:
            return self._copy_local_to_remote(source.path, dest)

        if not dest.is_remote:
            return self._copy_remote_to_local(source, dest.path)

        if self.same_server(source, dest):
            transport = self._transport(source)
            if transport.stat(source.transport_path) is None:
                raise NotFoundError(f"Source path does not exist on remote: {source.path}")
            return transport.copy_directory(source.transport_path, dest.transport_path)

        # Different servers: relay through a local scratch directory
        with tempfile.TemporaryDirectory(prefix='stagedeploy_relay_') as relay_dir:
            self._copy_remote_to_local(source, relay_dir)
            return self._copy_local_to_remote(relay_dir, dest)

    def _copy_local_to_local(self, src_path: str, dest_path: str) -> int:
        if not os.path.exists(src_path):
            raise NotFoundError(f"Source path does not exist: {src_path}")

        Path(dest_path).mkdir(parents=True, exist_ok=True)
        shutil.copytree(src_path, dest_path, dirs_exist_ok=True)
        return _count_local_files(src_path)

    def _copy_local_to_remote(self, src_path: str, dest: Location) -> int:
        if not os.path.exists(src_path):
            raise NotFoundError(f"Source path does not exist: {src_path}")

        transport = self._transport(dest)
        transport.make_directory_recursive(dest.transport_path)
        return self.upload_directory(src_path, dest.transport_path, transport)

    def upload_directory(self, local_path: str, remote_path: str, transport: RemoteTransport) -> int:
        """Upload a local tree below an existing remote directory."""
        count = 0

        for entry in sorted(os.scandir(local_path), key=lambda e: e.name):
            remote_child = f"{remote_path}/{entry.name}"
            if entry.is_dir():
                transport.make_directory_recursive(remote_child)
                count += self.upload_directory(entry.path, remote_child, transport)
            else:
                transport.upload_file(entry.path, remote_child)
                count += 1

        return count

    def _copy_remote_to_local(self, source: Location, dest_path: str) -> int:
        transport = self._transport(source)
        if transport.stat(source.transport_path) is None:
            raise NotFoundError(f"Source path does not exist on remote: {source.path}")

        Path(dest_path).mkdir(parents=True, exist_ok=True)
        return self.download_directory(source.transport_path, dest_path, transport)

    def download_directory(self, remote_path: str, local_path: str, transport: RemoteTransport) -> int:
        """Download a remote tree into an existing local directory."""
        count = 0

        for name in transport.list_directory(remote_path):
            remote_child = f"{remote_path}/{name}"
            local_child = os.path.join(local_path, name)
            entry = transport.stat(remote_child)
            if entry and entry.is_directory:
                Path(local_child).mkdir(parents=True, exist_ok=True)
                count += self.download_directory(remote_child, local_child, transport)
            else:
                transport.download_file(remote_child, local_child)
                count += 1

        return count

    def copy_on_remote_server(self, staging: Location, destination: Location) -> int:
        """
        Replace destination with the contents of staging in one server-side
        command, for two locations on the same server.

        Returns:
            Number of files now under destination
        """
        if not self.same_server(staging, destination):
            raise DeployError("Server-side copy requires both locations on the same SSH server")

        transport = self._transport(staging)

        if TargetShell.WINDOWS in (staging.shell, destination.shell):
            src = to_windows_path(staging.path)
            dst = to_windows_path(destination.path)
            command = (
                'powershell.exe -NoProfile -NonInteractive -Command "try { '
                f"Remove-Item -LiteralPath '{dst}\\*' -Recurse -Force -ErrorAction SilentlyContinue; "
                f"New-Item -ItemType Directory -Force -Path '{dst}' | Out-Null; "
                f"Copy-Item -Path '{src}\\*' -Destination '{dst}' -Recurse -Force; "
                f"$c = (Get-ChildItem -Path '{dst}' -Recurse -File | Measure-Object).Count; "
                'Write-Output $c } catch { Write-Error $_; exit 1 }"'
            )
            output = transport.execute(command)
        else:
            src = to_sftp_path(staging.path)
            dst = to_sftp_path(destination.path)
            transport.execute(f'rm -rf "{dst}" && mkdir -p "{dst}" && cp -r "{src}"/. "{dst}"/')
            output = transport.execute(f'find "{dst}" -type f | wc -l')

        try:
            return int(output.strip())
        except ValueError:
            return 0


def _count_local_files(path: str) -> int:
    if os.path.isfile(path):
        return 1
    count = 0
    for _, _, files in os.walk(path):
        count += len(files)
    return count


def _remove_local(path: str):
    if os.path.isdir(path) and not os.path.islink(path):
        shutil.rmtree(path)
    else:
        os.remove(path)
