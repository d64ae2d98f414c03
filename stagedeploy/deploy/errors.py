"""
Exceptions raised by the deployment engine.

Each pipeline stage raises one of these; the executors catch them, record the
message on the result and abort the remaining stages.
"""


class DeployError(Exception):
    """Base class for deployment engine failures."""
    pass


class RemoteConnectionError(DeployError):
    """Raised when an SSH/SFTP session cannot be established."""
    pass


class TransportNotConnectedError(DeployError):
    """Raised when a transport operation is issued before connect()."""
    pass


class RemoteCommandError(DeployError):
    """Raised when a remote command exits non-zero and wrote to stderr."""

    def __init__(self, message: str, exit_status: int = None):
        super().__init__(message)
        self.exit_status = exit_status


class NotFoundError(DeployError):
    """Raised when a source path, folder or selected file does not exist."""
    pass


class CompressionError(DeployError):
    """Raised when archive creation or extraction fails."""
    pass


class ToolUnavailableError(CompressionError):
    """Raised when the external compression tool cannot be found."""
    pass


class ScriptExecutionError(DeployError):
    """Raised when the update or restore script fails on the target host."""
    pass


class PartialCleanupWarning(UserWarning):
    """A best-effort cleanup step failed; the run result is unaffected."""
    pass
