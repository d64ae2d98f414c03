"""
Payload pipeline: stage -> compress -> transfer -> extract.

Source files are gathered into a local scratch directory, zipped, sent to the
staging location as a single archive and unpacked there.
"""

import logging
import os
from pathlib import Path
from typing import Callable, Optional, Sequence

from stagedeploy.models import FolderSelector, Location, TargetShell, to_sftp_path, to_windows_path
from .compression import DEFAULT_TIMEOUT, create_archive, extract_archive
from .file_ops import FileOperations
from .transport import ProgressReporter


logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024


class TransferPipeline:
    """Moves a deployment payload from the source to the staging location."""

    def __init__(self, file_ops: FileOperations, seven_zip: Optional[str] = None,
                 compression_timeout: int = DEFAULT_TIMEOUT):
        self.file_ops = file_ops
        self.seven_zip = seven_zip
        self.compression_timeout = compression_timeout

    def stage_to_scratch(self, source: Location, selectors: Optional[Sequence[FolderSelector]],
                         scratch_dir: str) -> int:
        """
        Copy the selected source files into a local scratch directory.

        Returns:
            Number of files staged

        Raises:
            NotFoundError: If a selected folder or file is missing
        """
        scratch = Location.local(scratch_dir)
        self.file_ops.make_directory(scratch)
        count = self.file_ops.copy(source, scratch, selectors)
        logger.info(f"Staged {count} files from {source.describe()} into {scratch_dir}")
        return count

    def compress(self, scratch_dir: str, archive_path: str,
                 on_progress: Optional[Callable[[int], None]] = None) -> str:
        return create_archive(
            scratch_dir,
            archive_path,
            on_progress=on_progress,
            seven_zip=self.seven_zip,
            timeout=self.compression_timeout
        )

    def transfer(self, local_archive: str, staging: Location, archive_name: str,
                 on_progress: Optional[Callable[[int], None]] = None) -> Location:
        """
        Send the archive to the staging location.

        Returns:
            Location of the archive at staging
        """
        target = staging.child(archive_name)

        if not staging.is_remote:
            _copy_with_progress(local_archive, target.path, ProgressReporter(on_progress))
        else:
            transport = self.file_ops.ensure_connection(staging)
            transport.upload_file_with_progress(local_archive, target.transport_path, on_progress)

        logger.info(f"Transferred {archive_name} to {target.describe()}")
        return target

    def extract_at_staging(self, staging: Location, archive_name: str):
        """Unpack the archive in the staging directory, then delete it."""
        if not staging.is_remote:
            archive_path = os.path.join(staging.path, archive_name)
            extract_archive(archive_path, staging.path)
            os.remove(archive_path)
            return

        transport = self.file_ops.ensure_connection(staging)
        transport.execute(build_extract_command(staging, archive_name))


def build_extract_command(staging: Location, archive_name: str) -> str:
    """Remote command that unpacks and removes the archive in staging."""
    if staging.shell is TargetShell.WINDOWS:
        directory = to_windows_path(staging.path).rstrip('\\')
        archive = f"{directory}\\{archive_name}"
        return (
            'powershell.exe -NoProfile -NonInteractive -Command '
            f"\"Expand-Archive -Path '{archive}' -DestinationPath '{directory}' -Force; "
            f"Remove-Item -Path '{archive}' -Force\""
        )

    directory = to_sftp_path(staging.path)
    return f'cd "{directory}" && unzip -o "{archive_name}" && rm "{archive_name}"'


def _copy_with_progress(src: str, dest: str, reporter: ProgressReporter):
    total = os.path.getsize(src)
    copied = 0
    reporter.report(0)
    Path(dest).parent.mkdir(parents=True, exist_ok=True)

    with open(src, 'rb') as reader, open(dest, 'wb') as writer:
        while True:
            chunk = reader.read(CHUNK_SIZE)
            if not chunk:
                break
            writer.write(chunk)
            copied += len(chunk)
            reporter(copied, total)

    reporter.report(100)
