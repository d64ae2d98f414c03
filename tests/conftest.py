"""
Shared pytest fixtures for stagedeploy tests.

This module provides fixtures for:
- A filesystem-backed fake SSH transport (no network)
- Local and remote locations
- Source trees and sample archives
- Profile files and resolved AppConfig objects
- Test settings pointing scratch space into tmp_path
"""

import os
import shutil
import zipfile
from unittest.mock import MagicMock, patch

import pytest

from stagedeploy.config import Config
from stagedeploy.deploy.errors import RemoteCommandError
from stagedeploy.deploy.transport import CommandResult, ProgressReporter, RemoteStat
from stagedeploy.models import BackupConfig, Location, LoggingConfig, RemoteEndpoint
from stagedeploy.profiles import AppConfig


class FakeTransport:
    """
    Stand-in for RemoteTransport that maps remote paths into a local folder.

    'C:/deploy/staging' on host web01 lives at <root>/web01/C/deploy/staging.
    Every command passed to execute()/run_command() is recorded.
    """

    def __init__(self, endpoint, timeout=30, root=None, exit_status=0):
        self.endpoint = endpoint
        self.timeout = timeout
        self.root = root
        self.exit_status = exit_status
        self.connected = False
        self.disconnect_calls = 0
        self.commands = []

    @property
    def is_connected(self):
        return self.connected

    def local(self, path):
        normalised = path.replace('\\', '/').replace(':', '')
        return os.path.join(self.root, self.endpoint.host, normalised.lstrip('/'))

    def connect(self):
        self.connected = True
        return self

    def list_directory(self, path):
        local = self.local(path)
        if not os.path.isdir(local):
            return []
        return sorted(os.listdir(local))

    def stat(self, path):
        local = self.local(path)
        if not os.path.exists(local):
            return None
        return RemoteStat(is_directory=os.path.isdir(local), is_file=os.path.isfile(local))

    def make_directory_recursive(self, path):
        os.makedirs(self.local(path), exist_ok=True)

    def upload_file(self, local_path, remote_path):
        shutil.copyfile(local_path, self.local(remote_path))

    def upload_file_with_progress(self, local_path, remote_path, on_progress=None):
        reporter = ProgressReporter(on_progress)
        reporter.report(0)
        self.upload_file(local_path, remote_path)
        size = os.path.getsize(local_path)
        reporter(size // 2, size)
        reporter.report(100)

    def download_file(self, remote_path, local_path):
        shutil.copyfile(self.local(remote_path), local_path)

    def delete_file(self, path):
        os.remove(self.local(path))

    def delete_directory_recursive(self, path):
        shutil.rmtree(self.local(path))

    def copy_directory(self, src_path, dest_path):
        shutil.copytree(self.local(src_path), self.local(dest_path), dirs_exist_ok=True)
        return sum(len(files) for _, _, files in os.walk(self.local(src_path)))

    def count_files(self, path):
        return sum(len(files) for _, _, files in os.walk(self.local(path)))

    def copy_file(self, src_path, dest_path):
        shutil.copyfile(self.local(src_path), self.local(dest_path))

    def run_command(self, command):
        self.commands.append(command)
        return CommandResult(self.exit_status, '', 'failed' if self.exit_status else '')

    def execute(self, command):
        result = self.run_command(command)
        if result.exit_status != 0 and result.stderr:
            raise RemoteCommandError(result.stderr, result.exit_status)
        return result.stdout

    def disconnect(self):
        self.disconnect_calls += 1
        self.connected = False


class FakeTransportFactory:
    """Builds FakeTransports and remembers them, like FileOperations' transport_factory."""

    def __init__(self, root):
        self.root = root
        self.created = []
        self.exit_status = 0

    def __call__(self, endpoint, timeout=30):
        transport = FakeTransport(endpoint, timeout=timeout, root=self.root, exit_status=self.exit_status)
        self.created.append(transport)
        return transport

    def path(self, host, remote_path):
        """Local folder backing remote_path on host."""
        return FakeTransport(RemoteEndpoint(host, 'deploy', password='x'), root=self.root).local(remote_path)


@pytest.fixture
def fake_transports(tmp_path):
    """Factory for filesystem-backed fake SSH transports rooted in tmp_path/remote."""
    root = tmp_path / 'remote'
    root.mkdir()
    return FakeTransportFactory(str(root))


@pytest.fixture
def file_ops(fake_transports):
    """FileOperations wired to the fake transport factory."""
    from stagedeploy.deploy.file_ops import FileOperations

    ops = FileOperations(ssh_timeout=5, transport_factory=fake_transports)
    yield ops
    ops.close_all_connections()


@pytest.fixture
def endpoint():
    return RemoteEndpoint(host='web01.example.com', username='deploy', password='secret')


@pytest.fixture
def other_endpoint():
    return RemoteEndpoint(host='web02.example.com', username='deploy', password='secret')


@pytest.fixture
def source_tree(tmp_path):
    """
    Create a source tree for deployments.

    Creates:
    - bin/app.dll
    - bin/lib/helper.dll
    - config/web.config
    - config/appsettings.json
    - index.html
    """
    source = tmp_path / 'source'
    (source / 'bin' / 'lib').mkdir(parents=True)
    (source / 'config').mkdir()
    (source / 'bin' / 'app.dll').write_bytes(b'\x00app')
    (source / 'bin' / 'lib' / 'helper.dll').write_bytes(b'\x00helper')
    (source / 'config' / 'web.config').write_text('<configuration />')
    (source / 'config' / 'appsettings.json').write_text('{"env": "prod"}')
    (source / 'index.html').write_text('<html></html>')
    return source


@pytest.fixture
def sample_archive(tmp_path):
    """Zip with two entries at its root plus one nested entry."""
    archive_path = tmp_path / 'deploy-test.zip'
    with zipfile.ZipFile(archive_path, 'w') as zipf:
        zipf.writestr('index.html', '<html></html>')
        zipf.writestr('bin/app.dll', b'\x00app')
        zipf.writestr('bin/lib/helper.dll', b'\x00helper')
    return archive_path


def make_zip(source_dir, output_path, on_progress=None, seven_zip=None, timeout=None):
    """zipfile replacement for create_archive in tests that must not need 7-Zip."""
    with zipfile.ZipFile(output_path, 'w') as zipf:
        for root, _, files in os.walk(source_dir):
            for name in files:
                full = os.path.join(root, name)
                zipf.write(full, os.path.relpath(full, source_dir))
    if on_progress:
        on_progress(100)
    return os.path.abspath(output_path)


@pytest.fixture
def fake_archiver():
    """Patch 7-Zip compression with an in-process zip writer."""
    with patch('stagedeploy.deploy.pipeline.create_archive', side_effect=make_zip) as mock_archive:
        yield mock_archive


@pytest.fixture
def settings(tmp_path):
    """Config class with scratch and logs inside tmp_path."""
    return type('TestConfig', (Config,), {
        'TEMP_DIR': str(tmp_path / 'scratch'),
        'LOG_DIR': str(tmp_path / 'app-logs'),
        'SSH_TIMEOUT': 5,
        'COMPRESSION_TIMEOUT': 10,
    })


@pytest.fixture
def local_config(tmp_path, source_tree):
    """AppConfig with every location on this machine."""
    return AppConfig(
        source=Location.local(str(source_tree)),
        staging=Location.local(str(tmp_path / 'staging')),
        destination=Location.local(str(tmp_path / 'site')),
        backup=BackupConfig(str(tmp_path / 'backups'), max_backups=3),
        logging=LoggingConfig(str(tmp_path / 'logs'), 'deploy'),
        profile_name='local'
    )


@pytest.fixture
def remote_config(tmp_path, source_tree, endpoint):
    """AppConfig deploying a local source to a Windows host over SSH."""
    return AppConfig(
        source=Location.local(str(source_tree)),
        staging=Location.ssh('C:/deploy/staging', endpoint),
        destination=Location.ssh('C:/inetpub/site', endpoint),
        backup=BackupConfig('C:/deploy/backups', max_backups=5),
        logging=LoggingConfig(str(tmp_path / 'logs'), 'remote'),
        profile_name='remote'
    )


@pytest.fixture
def profile_file(tmp_path):
    """
    Write a profile file with two profiles.

    - intranet: SSH staging/destination with folder selectors and a password
    - local: everything local, no selectors
    """
    content = """
profiles:
  intranet:
    description: Intranet IIS site
    password: letmein
    source:
      path: ./dist
      folders:
        - bin
        - config:
            - web.config
    staging:
      type: ssh
      path: C:/deploy/staging
      ssh:
        host: web01.example.com
        username: deploy
        password: secret
    destination:
      type: ssh
      path: C:/inetpub/intranet
      ssh:
        host: web01.example.com
        port: 2222
        username: deploy
        privateKey: ~/.ssh/id_ed25519
    backup:
      path: C:/deploy/backups
      maxBackups: 5
    logging:
      path: ./logs
      filename: intranet
  local:
    source:
      path: ./dist
    staging:
      type: local
      path: ./staging
    destination:
      type: local
      path: ./site
    backup:
      path: ./backups
    logging:
      path: ./logs
      filename: local
"""
    path = tmp_path / 'stagedeploy.config.yaml'
    path.write_text(content)
    return path


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SSH/SFTP testing.

    Returns a MagicMock that simulates SSH connections.
    """
    with patch('stagedeploy.deploy.transport.SSHClient') as mock_ssh:
        # Mock SFTP client
        mock_sftp = MagicMock()
        mock_ssh.return_value.open_sftp.return_value = mock_sftp

        # Mock connection success
        mock_ssh.return_value.connect.return_value = None

        yield mock_ssh
