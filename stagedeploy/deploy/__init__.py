"""
Deployment engine for stagedeploy.

This module handles the core deployment functionality including:
- SSH/SFTP transport
- File operations across local and remote locations
- Compression and transfer to staging
- Update/restore script generation
- Backup rotation
- Deploy and restore orchestration
"""

from .executor import DeployExecutor, RestoreExecutor, run_deploy, run_restore
from .transport import RemoteTransport
from .file_ops import FileOperations
from .compression import create_archive
from .pipeline import TransferPipeline
from .scripts import generate_update_script, generate_restore_script
from .retention import BackupRotation

__all__ = [
    'DeployExecutor',
    'RestoreExecutor',
    'run_deploy',
    'run_restore',
    'RemoteTransport',
    'FileOperations',
    'create_archive',
    'TransferPipeline',
    'generate_update_script',
    'generate_restore_script',
    'BackupRotation'
]
