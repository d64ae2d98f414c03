"""
Deploy and restore executors - orchestrate a complete run.

Deploy workflow:
1. Stage the selected source files into local scratch
2. Compress scratch into one zip with 7-Zip
3. Empty staging and transfer the archive to it
4. Extract the archive at staging
5. Generate update.bat / restore.bat and publish them to staging
6. Run update.bat (backup destination, copy, rotate backups)
7. Clean staging and scratch

Restore workflow:
1. Generate restore.bat and publish it to staging
2. Run restore.bat (copy the newest backup back to destination)
3. Remove restore.bat from staging

A failing stage is recorded in the result and ends the run. SSH sessions and
local scratch are released whatever happens, and the run log is saved last.
"""

import logging
import os
import shutil
import subprocess
import warnings
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Sequence

from stagedeploy.config import get_config
from stagedeploy.deploy_log import DeployLogger
from stagedeploy.models import DeployResult, FolderSelector, Location, TargetShell, timestamp_slug, to_sftp_path, to_windows_path
from stagedeploy.profiles import AppConfig
from .compression import format_size, generate_archive_filename, get_archive_size
from .errors import PartialCleanupWarning, ScriptExecutionError
from .file_ops import FileOperations
from .pipeline import TransferPipeline
from .scripts import RESTORE_SCRIPT, UPDATE_SCRIPT, generate_restore_script, generate_update_script


logger = logging.getLogger(__name__)

StageProgress = Callable[[Enum, int], None]


class DeployStage(Enum):
    STAGING = 'staging'
    COMPRESSING = 'compressing'
    TRANSFERRING = 'transferring'
    EXTRACTING = 'extracting'
    GENERATING_SCRIPTS = 'generating_scripts'
    EXECUTING_UPDATE = 'executing_update'
    CLEANUP = 'cleanup'
    DONE = 'done'


class RestoreStage(Enum):
    UPLOAD_SCRIPT = 'upload_script'
    EXECUTE_SCRIPT = 'execute_script'
    DELETE_SCRIPT = 'delete_script'
    DONE = 'done'


def publish_script(file_ops: FileOperations, local_script: str, staging: Location, name: str):
    """Copy a generated script into staging, replacing any previous copy."""
    target = staging.child(name)
    if not staging.is_remote:
        shutil.copyfile(local_script, target.path)
        return

    transport = file_ops.ensure_connection(staging)
    if transport.stat(target.transport_path) is not None:
        transport.delete_file(target.transport_path)
    transport.upload_file(local_script, target.transport_path)


def build_remote_script_command(staging: Location, name: str) -> str:
    if staging.shell is TargetShell.WINDOWS:
        directory = to_windows_path(staging.path).rstrip('\\')
        script_path = f"{directory}\\{name}"
        return f'cmd.exe /c "{script_path}"'
    script_path = f"{to_sftp_path(staging.path).rstrip('/')}/{name}"
    return f'bash -lc "\\"{script_path}\\""'


def build_elevated_command(script_path: str) -> list:
    """PowerShell invocation that runs a batch file as administrator and waits for it."""
    ps_command = (
        f"$process = Start-Process -FilePath 'cmd.exe' -ArgumentList '/c', '\"{script_path}\"' "
        "-Verb RunAs -Wait -PassThru -WindowStyle Hidden; "
        "exit $process.ExitCode"
    )
    return [
        'powershell.exe',
        '-NoProfile',
        '-NonInteractive',
        '-ExecutionPolicy', 'Bypass',
        '-Command', ps_command
    ]


def run_script(file_ops: FileOperations, staging: Location, name: str) -> str:
    """
    Run a script that has been published to staging.

    Local staging runs it elevated on this machine; remote staging runs it
    through the SSH session with cmd.exe or bash depending on the path shape.

    Returns:
        Captured stdout

    Raises:
        ScriptExecutionError: If the script cannot be started or exits non-zero
    """
    if not staging.is_remote:
        script_path = os.path.abspath(os.path.join(staging.path, name))
        try:
            completed = subprocess.run(
                build_elevated_command(script_path),
                cwd=staging.path,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True
            )
        except FileNotFoundError:
            raise ScriptExecutionError(f"powershell.exe is not available to run {name}")

        if completed.returncode != 0:
            output = (completed.stderr or completed.stdout or '').strip()
            raise ScriptExecutionError(f"{name} exited with code {completed.returncode}: {output}")
        return completed.stdout

    transport = file_ops.ensure_connection(staging)
    result = transport.run_command(build_remote_script_command(staging, name))

    if result.exit_status != 0:
        output = (result.stderr or result.stdout).strip()
        raise ScriptExecutionError(f"{name} exited with code {result.exit_status}: {output}")
    return result.stdout


class _RunExecutor:
    """Shared run skeleton: result bookkeeping, guaranteed release, summary and log save."""

    label = 'Run'

    def __init__(self, config: AppConfig, deploy_logger: Optional[DeployLogger] = None,
                 settings=None, file_ops: Optional[FileOperations] = None,
                 on_progress: Optional[StageProgress] = None):
        self.config = config
        self.settings = settings or get_config()
        self.deploy_logger = deploy_logger or DeployLogger(config.logging)
        self.file_ops = file_ops or FileOperations(ssh_timeout=self.settings.SSH_TIMEOUT)
        self.on_progress = on_progress
        self.run_id = timestamp_slug()
        self.work_dir = os.path.join(self.settings.TEMP_DIR, self.run_id)
        self.stage = None
        self.result = None

    def execute(self) -> DeployResult:
        """
        Run every stage in order.

        Never raises: failures end up in result.errors.
        """
        self.result = DeployResult(start_time=datetime.now())
        self.deploy_logger.info(f"Starting {self.label.lower()}", {'profile': self.config.profile_name})

        try:
            os.makedirs(self.work_dir, exist_ok=True)
            self._execute_workflow()
        except Exception as e:
            stage = self.stage.value if self.stage else 'setup'
            message = f"{stage}: {e}"
            self.result.errors.append(message)
            self.deploy_logger.error(f"{self.label} failed at {stage}", {'error': str(e)})
            logger.debug("Stage failure", exc_info=True)
        finally:
            self._release()

        self.result.end_time = datetime.now()
        self._summarize()
        return self.result

    def _execute_workflow(self):
        raise NotImplementedError

    def _enter(self, stage: Enum):
        self.stage = stage
        logger.info(f"{self.label} stage: {stage.value}")
        self._progress(0)

    def _progress(self, percent: int):
        if self.on_progress and self.stage is not None:
            self.on_progress(self.stage, percent)

    def _warn(self, message: str):
        self.result.warnings.append(message)
        self.deploy_logger.warn(message)
        warnings.warn(PartialCleanupWarning(message), stacklevel=2)

    def _release(self):
        """Close SSH sessions and drop local scratch."""
        try:
            self.file_ops.close_all_connections()
        except Exception as e:
            logger.warning(f"Failed to close SSH connections: {e}")

        if os.path.exists(self.work_dir):
            try:
                shutil.rmtree(self.work_dir)
            except OSError as e:
                self._warn(f"Failed to remove scratch directory {self.work_dir}: {e}")

    def _summarize(self):
        self.deploy_logger.info(f"{self.label} completed", {
            'success': self.result.success,
            'filesDeployed': self.result.files_deployed,
            'duration': f"{self.result.duration:.2f}s",
        })
        try:
            self.deploy_logger.save()
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to save deployment log: {e}")

    def _write_script(self, script) -> str:
        return str(script.write(os.path.join(self.work_dir, 'scripts')))


class DeployExecutor(_RunExecutor):
    """
    Orchestrates one deployment from source to destination.
    """

    label = 'Deployment'

    def __init__(self, config: AppConfig, selectors: Optional[Sequence[FolderSelector]] = None,
                 deploy_logger: Optional[DeployLogger] = None, **kwargs):
        """
        Args:
            config: Resolved profile
            selectors: Folder selectors (defaults to the profile's own)
            deploy_logger: Run log sink (defaults to one built from config.logging)
        """
        super().__init__(config, deploy_logger, **kwargs)
        self.selectors = list(selectors) if selectors is not None else list(config.selectors)
        self.pipeline = TransferPipeline(
            self.file_ops,
            seven_zip=self.settings.SEVEN_ZIP,
            compression_timeout=self.settings.COMPRESSION_TIMEOUT
        )
        self.archive_path = None

    def _execute_workflow(self):
        staging = self.config.staging
        scratch_dir = os.path.join(self.work_dir, 'payload')

        # Step 1: Stage source files
        self._enter(DeployStage.STAGING)
        self.result.files_deployed = self.pipeline.stage_to_scratch(self.config.source, self.selectors, scratch_dir)
        self.deploy_logger.success(f"Staged {self.result.files_deployed} files")

        # Step 2: Compress
        self._enter(DeployStage.COMPRESSING)
        archive_name = generate_archive_filename()
        self.archive_path = self.pipeline.compress(
            scratch_dir,
            os.path.join(self.work_dir, archive_name),
            on_progress=self._progress
        )
        self.deploy_logger.success(
            f"Files compressed to {archive_name}",
            {'size': format_size(get_archive_size(self.archive_path))}
        )

        # Step 3: Transfer
        self._enter(DeployStage.TRANSFERRING)
        self.file_ops.make_directory(staging)
        self.file_ops.verify_directory_exists(staging)
        self.file_ops.delete_contents(staging)
        target = self.pipeline.transfer(self.archive_path, staging, archive_name, on_progress=self._progress)
        self.deploy_logger.success(f"Transferred {archive_name} to staging", {'destination': target.path})

        # Step 4: Extract
        self._enter(DeployStage.EXTRACTING)
        self.pipeline.extract_at_staging(staging, archive_name)
        self.deploy_logger.success('Files decompressed in staging')

        # Step 5: Scripts
        self._enter(DeployStage.GENERATING_SCRIPTS)
        update_script = generate_update_script(staging, self.config.destination, self.config.backup, self.selectors)
        restore_script = generate_restore_script(staging, self.config.destination, self.config.backup)
        for script in (update_script, restore_script):
            publish_script(self.file_ops, self._write_script(script), staging, script.name)
        self.deploy_logger.success('BAT files uploaded to staging')

        # Step 6: Update
        self._enter(DeployStage.EXECUTING_UPDATE)
        run_script(self.file_ops, staging, UPDATE_SCRIPT)
        self.deploy_logger.success(f"{UPDATE_SCRIPT} executed successfully")

        # Step 7: Cleanup
        self._enter(DeployStage.CLEANUP)
        self._cleanup_staging()

        self._enter(DeployStage.DONE)

    def _cleanup_staging(self):
        """Empty staging and drop the local archive; failures only warn."""
        try:
            self.file_ops.delete_contents(self.config.staging)
        except Exception as e:
            self._warn(f"Failed to clean staging: {e}")

        if self.archive_path and os.path.exists(self.archive_path):
            try:
                os.remove(self.archive_path)
            except OSError as e:
                self._warn(f"Failed to remove archive {self.archive_path}: {e}")

        self.deploy_logger.info('Temporary files cleaned')


class RestoreExecutor(_RunExecutor):
    """
    Puts the newest backup back into the destination.
    """

    label = 'Restore'

    def _execute_workflow(self):
        staging = self.config.staging

        self._enter(RestoreStage.UPLOAD_SCRIPT)
        script = generate_restore_script(staging, self.config.destination, self.config.backup)
        self.file_ops.make_directory(staging)
        publish_script(self.file_ops, self._write_script(script), staging, script.name)
        self.deploy_logger.success(f"{RESTORE_SCRIPT} uploaded to staging")

        self._enter(RestoreStage.EXECUTE_SCRIPT)
        run_script(self.file_ops, staging, RESTORE_SCRIPT)
        self.deploy_logger.success(f"{RESTORE_SCRIPT} executed successfully")

        self._enter(RestoreStage.DELETE_SCRIPT)
        try:
            self.file_ops.delete_path(staging.child(RESTORE_SCRIPT))
            self.deploy_logger.info(f"{RESTORE_SCRIPT} removed from staging")
        except Exception as e:
            self._warn(f"Failed to remove {RESTORE_SCRIPT}: {e}")

        self._enter(RestoreStage.DONE)


def run_deploy(config: AppConfig, selectors: Optional[Sequence[FolderSelector]] = None, **kwargs) -> DeployResult:
    """
    Deploy a resolved profile.

    Returns:
        DeployResult; check result.success
    """
    return DeployExecutor(config, selectors, **kwargs).execute()


def run_restore(config: AppConfig, **kwargs) -> DeployResult:
    return RestoreExecutor(config, **kwargs).execute()
