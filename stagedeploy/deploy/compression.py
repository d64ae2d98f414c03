"""
Archive handling for deployment payloads.

Payloads are zipped with the external 7-Zip tool, run from inside the
scratch directory so archive entries carry no leading directory. If 7-Zip is
missing or fails the stage fails: there is no in-process fallback.
Extraction on this machine uses zipfile.
"""

import logging
import os
import shutil
import subprocess
import sys
import zipfile
from pathlib import Path
from typing import Callable, Optional

from stagedeploy.models import timestamp_slug
from .errors import CompressionError, NotFoundError, ToolUnavailableError


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 300
ARCHIVE_EXTENSION = '.zip'


def default_seven_zip() -> str:
    return '7z.exe' if sys.platform == 'win32' else '7z'


def find_seven_zip(command: Optional[str] = None) -> str:
    """
    Resolve the 7-Zip executable.

    Args:
        command: Executable name or path (defaults to 7z / 7z.exe)

    Returns:
        Absolute path of the executable

    Raises:
        ToolUnavailableError: If it is not installed or not on PATH
    """
    command = command or default_seven_zip()
    resolved = shutil.which(command)
    if not resolved:
        raise ToolUnavailableError(f"{command} executable not found in PATH. Install 7-Zip or add it to PATH.")
    return resolved


def remove_stale_archives(directory: str) -> int:
    """Delete *.zip files directly inside directory so they are not re-archived."""
    removed = 0
    for name in os.listdir(directory):
        if name.lower().endswith(ARCHIVE_EXTENSION):
            stale = os.path.join(directory, name)
            try:
                os.remove(stale)
                removed += 1
                logger.info(f"Removed old archive from scratch: {stale}")
            except OSError as e:
                logger.warning(f"Failed to remove old archive {stale}: {e}")
    return removed


def create_archive(
    source_dir: str,
    output_path: str,
    on_progress: Optional[Callable[[int], None]] = None,
    seven_zip: Optional[str] = None,
    timeout: int = DEFAULT_TIMEOUT
) -> str:
    """
    Zip the contents of source_dir into output_path with 7-Zip.

    Args:
        source_dir: Directory whose contents become the archive root
        output_path: Archive file to create
        on_progress: Optional callback receiving 0-100
        seven_zip: 7-Zip executable override
        timeout: Seconds before the 7-Zip process is killed

    Returns:
        Absolute path of the created archive

    Raises:
        NotFoundError: If source_dir does not exist
        ToolUnavailableError: If 7-Zip cannot be found
        CompressionError: If 7-Zip fails, times out or writes nothing
    """
    if not os.path.isdir(source_dir):
        raise NotFoundError(f"Source path does not exist: {source_dir}")

    if on_progress:
        on_progress(5)

    archive_path = os.path.abspath(output_path)
    Path(archive_path).parent.mkdir(parents=True, exist_ok=True)
    remove_stale_archives(source_dir)

    executable = find_seven_zip(seven_zip)
    args = [executable, 'a', '-tzip', archive_path, '.', '-r']
    logger.info(f"Starting 7-Zip compression of {source_dir} into {archive_path}")

    try:
        completed = subprocess.run(
            args,
            cwd=source_dir,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout
        )
    except FileNotFoundError:
        raise ToolUnavailableError(f"{executable} could not be started")
    except subprocess.TimeoutExpired:
        _remove_partial(archive_path)
        raise CompressionError(f"7-Zip timed out after {timeout}s and was terminated")

    if completed.returncode != 0:
        _remove_partial(archive_path)
        message = (completed.stderr or completed.stdout or '').strip()
        raise CompressionError(message or f"7z exited with code {completed.returncode}")

    if not os.path.exists(archive_path):
        raise CompressionError(f"Output file was not created: {archive_path}")

    if on_progress:
        on_progress(100)

    logger.info(f"Compression completed: {archive_path} ({format_size(get_archive_size(archive_path))})")
    return archive_path


def _remove_partial(archive_path: str):
    if os.path.exists(archive_path):
        try:
            os.remove(archive_path)
        except OSError as e:
            logger.warning(f"Could not remove partial archive {archive_path}: {e}")


def extract_archive(archive_path: str, output_dir: str) -> int:
    """
    Extract a zip archive into output_dir.

    Returns:
        Number of files extracted

    Raises:
        CompressionError: If the archive is missing or corrupt
    """
    if not os.path.exists(archive_path):
        raise CompressionError(f"Archive not found: {archive_path}")

    try:
        with zipfile.ZipFile(archive_path, 'r') as zipf:
            members = [m for m in zipf.infolist() if not m.is_dir()]
            zipf.extractall(output_dir)
    except zipfile.BadZipFile as e:
        raise CompressionError(f"Invalid archive {archive_path}: {e}")

    return len(members)


def generate_archive_filename(prefix: str = 'deploy') -> str:
    """
    Build a timestamped archive name.

    Format: {prefix}-{YYYY-MM-DDTHH-MM-SS-mmmZ}.zip
    """
    return f"{prefix}-{timestamp_slug()}{ARCHIVE_EXTENSION}"


def get_archive_size(archive_path: str) -> int:
    """
    Size of an archive in bytes.

    Raises:
        CompressionError: If the file does not exist
    """
    try:
        return os.path.getsize(archive_path)
    except FileNotFoundError:
        raise CompressionError(f"Archive not found: {archive_path}")


def format_size(size_bytes: int) -> str:
    return f"{size_bytes / 1024 / 1024:.2f}MB"
