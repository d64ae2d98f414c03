"""
SSH/SFTP transport for remote locations.

One RemoteTransport wraps one paramiko SSHClient and its SFTP channel. The
caller (FileOperations) keeps at most one transport per host:port and reuses
it for every location on that server.
"""

import errno
import logging
import stat as stat_module
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

import paramiko
from paramiko import SSHClient, AutoAddPolicy

from stagedeploy.models import RemoteEndpoint, TargetShell, detect_shell, to_sftp_path, to_windows_path
from .errors import RemoteCommandError, RemoteConnectionError, TransportNotConnectedError


logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int], None]


@dataclass(frozen=True)
class RemoteStat:
    is_directory: bool
    is_file: bool


@dataclass(frozen=True)
class CommandResult:
    exit_status: int
    stdout: str
    stderr: str


class ProgressReporter:
    """
    Turns byte counts into a bounded, non-decreasing percentage stream.

    paramiko calls back with (bytes_transferred, total_bytes); the sink only
    sees integers in 0..100 and never sees the value go down.
    """

    def __init__(self, sink: Optional[ProgressCallback]):
        self.sink = sink
        self.last = -1

    def __call__(self, transferred: int, total: int):
        if total > 0:
            percent = int(transferred * 100 / total)
        else:
            percent = 100
        self.report(percent)

    def report(self, percent: int):
        percent = max(0, min(100, percent))
        if percent <= self.last:
            return
        self.last = percent
        if self.sink:
            self.sink(percent)


def _is_missing(error: Exception) -> bool:
    return isinstance(error, FileNotFoundError) or getattr(error, 'errno', None) == errno.ENOENT


class RemoteTransport:
    """
    Persistent SSH + SFTP session to one remote endpoint.

    All operations raise TransportNotConnectedError until connect() succeeds.
    """

    def __init__(self, endpoint: RemoteEndpoint, timeout: int = 30):
        """
        Args:
            endpoint: Host, port and credentials
            timeout: Connection timeout in seconds
        """
        self.endpoint = endpoint
        self.timeout = timeout
        self.ssh_client = None
        self.sftp_client = None

    @property
    def is_connected(self) -> bool:
        return self.sftp_client is not None

    def connect(self) -> 'RemoteTransport':
        """
        Establish the SSH session and open SFTP.

        Raises:
            RemoteConnectionError: If authentication or the connection fails
        """
        connect_kwargs = {
            'hostname': self.endpoint.host,
            'port': self.endpoint.port,
            'username': self.endpoint.username,
            'timeout': self.timeout
        }

        if self.endpoint.private_key:
            key_path = Path(self.endpoint.private_key).expanduser()
            if not key_path.exists():
                raise RemoteConnectionError(f"Private key not found: {self.endpoint.private_key}")
            connect_kwargs['key_filename'] = str(key_path)
        elif self.endpoint.password:
            connect_kwargs['password'] = self.endpoint.password
        else:
            raise RemoteConnectionError("Either password or private_key must be provided")

        client = SSHClient()
        client.set_missing_host_key_policy(AutoAddPolicy())

        try:
            client.connect(**connect_kwargs)
            self.sftp_client = client.open_sftp()
        except paramiko.AuthenticationException as e:
            client.close()
            raise RemoteConnectionError(f"SSH authentication failed for {self.endpoint.key}: {e}")
        except paramiko.SSHException as e:
            client.close()
            raise RemoteConnectionError(f"SSH connection to {self.endpoint.key} failed: {e}")
        except OSError as e:
            client.close()
            raise RemoteConnectionError(f"Failed to connect to {self.endpoint.key}: {e}")

        self.ssh_client = client
        logger.info(f"SSH connected to {self.endpoint.key}")
        return self

    def _require_sftp(self):
        if self.sftp_client is None:
            raise TransportNotConnectedError(f"SFTP not connected to {self.endpoint.key}")
        return self.sftp_client

    def list_directory(self, path: str) -> List[str]:
        """Return entry names under path, or [] when path does not exist."""
        sftp = self._require_sftp()
        try:
            return sftp.listdir(to_sftp_path(path))
        except IOError as e:
            if _is_missing(e):
                return []
            raise

    def stat(self, path: str) -> Optional[RemoteStat]:
        """Return file type flags for path, or None when it does not exist."""
        sftp = self._require_sftp()
        try:
            attrs = sftp.stat(to_sftp_path(path))
        except IOError as e:
            if _is_missing(e):
                return None
            raise

        mode = attrs.st_mode or 0
        return RemoteStat(
            is_directory=stat_module.S_ISDIR(mode),
            is_file=stat_module.S_ISREG(mode)
        )

    def make_directory_recursive(self, path: str):
        """
        Create every missing segment of path.

        For drive-letter paths the drive itself ('C:') is the starting point
        and is never created.
        """
        sftp = self._require_sftp()
        path = to_sftp_path(path)
        parts = [p for p in path.split('/') if p]

        if detect_shell(path) is TargetShell.WINDOWS:
            current = parts.pop(0)
        elif path.startswith('/'):
            current = ''
        else:
            current = '.'

        for part in parts:
            current = f"{current}/{part}"
            if self.stat(current) is None:
                try:
                    sftp.mkdir(current)
                except IOError:
                    # Created concurrently or already present
                    if self.stat(current) is None:
                        raise

    def upload_file(self, local_path: str, remote_path: str):
        sftp = self._require_sftp()
        sftp.put(str(local_path), to_sftp_path(remote_path))

    def upload_file_with_progress(self, local_path: str, remote_path: str,
                                  on_progress: Optional[ProgressCallback] = None):
        """Upload one file, reporting 0-100 progress to on_progress."""
        sftp = self._require_sftp()
        reporter = ProgressReporter(on_progress)
        reporter.report(0)
        sftp.put(str(local_path), to_sftp_path(remote_path), callback=reporter)
        reporter.report(100)

    def download_file(self, remote_path: str, local_path: str):
        sftp = self._require_sftp()
        sftp.get(to_sftp_path(remote_path), str(local_path))

    def delete_file(self, path: str):
        sftp = self._require_sftp()
        sftp.remove(to_sftp_path(path))

    def delete_directory_recursive(self, path: str):
        """Delete children depth-first, then the directory itself."""
        sftp = self._require_sftp()
        path = to_sftp_path(path)

        for name in self.list_directory(path):
            child = f"{path}/{name}"
            entry = self.stat(child)
            if entry and entry.is_directory:
                self.delete_directory_recursive(child)
            else:
                sftp.remove(child)

        sftp.rmdir(path)

    def copy_directory(self, src_path: str, dest_path: str) -> int:
        """
        Copy a directory tree on the server with one recursive copy command,
        without moving bytes through us.

        Returns:
            Number of files under the source tree
        """
        src_path = to_sftp_path(src_path).rstrip('/') or '/'
        dest_path = to_sftp_path(dest_path).rstrip('/') or '/'

        if detect_shell(src_path) is TargetShell.WINDOWS:
            src = to_windows_path(src_path).rstrip('\\')
            dest = to_windows_path(dest_path).rstrip('\\')
            command = f'cmd.exe /c xcopy "{src}\\*" "{dest}\\" /E /I /Y /Q'
        else:
            command = f'mkdir -p "{dest_path}" && cp -r "{src_path}"/. "{dest_path}"/'
        self.execute(command)

        return self.count_files(src_path)

    def count_files(self, path: str) -> int:
        """Recursive file count over SFTP; directories are not counted."""
        path = to_sftp_path(path)
        count = 0
        for name in self.list_directory(path):
            child = f"{path}/{name}"
            entry = self.stat(child)
            if entry and entry.is_directory:
                count += self.count_files(child)
            else:
                count += 1
        return count

    def copy_file(self, src_path: str, dest_path: str):
        """Copy a single file with the server's own copy command."""
        if detect_shell(src_path) is TargetShell.WINDOWS:
            command = f'cmd.exe /c copy /y "{to_windows_path(src_path)}" "{to_windows_path(dest_path)}"'
        else:
            command = f'cp "{to_sftp_path(src_path)}" "{to_sftp_path(dest_path)}"'
        self.execute(command)

    def run_command(self, command: str) -> CommandResult:
        """Run a command on the remote host and capture its exit status and output."""
        if self.ssh_client is None:
            raise TransportNotConnectedError(f"SSH client not connected to {self.endpoint.key}")

        logger.debug(f"[{self.endpoint.key}] exec: {command}")
        _, stdout, stderr = self.ssh_client.exec_command(command)
        output = stdout.read().decode('utf-8', errors='replace')
        error_output = stderr.read().decode('utf-8', errors='replace')
        exit_status = stdout.channel.recv_exit_status()
        return CommandResult(exit_status, output, error_output)

    def execute(self, command: str) -> str:
        """
        Run a command on the remote host.

        Returns:
            Captured stdout

        Raises:
            RemoteCommandError: If the command exits non-zero and wrote to
                stderr. A non-zero exit with empty stderr still returns stdout.
        """
        result = self.run_command(command)
        if result.exit_status != 0 and result.stderr:
            raise RemoteCommandError(result.stderr.strip(), result.exit_status)
        return result.stdout

    def disconnect(self):
        """Close SFTP and SSH. Safe to call more than once."""
        if self.sftp_client:
            try:
                self.sftp_client.close()
            except Exception as e:
                logger.debug(f"Ignoring SFTP close error: {e}")
            self.sftp_client = None

        if self.ssh_client:
            try:
                self.ssh_client.close()
            except Exception as e:
                logger.debug(f"Ignoring SSH close error: {e}")
            self.ssh_client = None
            logger.info(f"SSH connection to {self.endpoint.key} closed")
