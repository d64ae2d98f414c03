"""
Unit tests for value types (stagedeploy/models.py).

Tests locations, endpoints, folder selectors, backup settings and results.
"""

from dataclasses import fields
from datetime import datetime, timedelta, timezone

import pytest

from stagedeploy.models import (
    BackupConfig,
    DeployResult,
    FolderFiles,
    GeneratedScript,
    Location,
    LocationKind,
    RemoteEndpoint,
    TargetShell,
    WholeFolder,
    describe_selector,
    detect_shell,
    join_remote_path,
    parse_selectors,
    timestamp_slug,
)


class TestRemoteEndpoint:
    """Test RemoteEndpoint validation and session keys."""

    def test_key_is_host_and_port(self):
        """Test that the session key ignores the username."""
        first = RemoteEndpoint('web01', 'alice', password='x')
        second = RemoteEndpoint('web01', 'bob', private_key='~/.ssh/id_rsa')

        assert first.key == 'web01:22'
        assert first.key == second.key

    def test_custom_port(self):
        """Test that a non-default port is part of the key."""
        assert RemoteEndpoint('web01', 'alice', port=2222, password='x').key == 'web01:2222'

    def test_requires_credentials(self):
        """Test that neither password nor key is rejected."""
        with pytest.raises(ValueError, match="password or private_key"):
            RemoteEndpoint('web01', 'alice')

    def test_requires_host(self):
        """Test that an empty host is rejected."""
        with pytest.raises(ValueError, match="host"):
            RemoteEndpoint('', 'alice', password='x')

    def test_password_not_in_repr(self):
        """Test that the password never shows up in repr()."""
        assert 'hunter2' not in repr(RemoteEndpoint('web01', 'alice', password='hunter2'))


class TestLocation:
    """Test Location construction and derivation."""

    def test_remote_requires_endpoint(self):
        """Test that an SSH location without an endpoint is rejected."""
        with pytest.raises(ValueError, match="endpoint"):
            Location(LocationKind.REMOTE, 'C:/site')

    def test_shell_detected_from_path(self, endpoint):
        """Test that drive-letter paths select the Windows shell."""
        assert Location.ssh('C:\\inetpub\\site', endpoint).shell is TargetShell.WINDOWS
        assert Location.ssh('D:/deploy', endpoint).shell is TargetShell.WINDOWS
        assert Location.ssh('/srv/site', endpoint).shell is TargetShell.POSIX

    def test_child_does_not_mutate(self, endpoint):
        """Test that child() returns a new location."""
        parent = Location.ssh('C:\\deploy', endpoint)
        child = parent.child('staging', 'bin')

        assert parent.path == 'C:\\deploy'
        assert child.path == 'C:/deploy/staging/bin'
        assert child.remote == endpoint

    def test_local_child_uses_os_join(self, tmp_path):
        """Test child paths of local locations."""
        child = Location.local(tmp_path).child('bin')
        assert child.path == str(tmp_path / 'bin')
        assert not child.is_remote

    def test_transport_path_uses_forward_slashes(self, endpoint):
        """Test that SFTP paths are normalised."""
        assert Location.ssh('C:\\deploy\\staging', endpoint).transport_path == 'C:/deploy/staging'

    def test_empty_path_rejected(self):
        """Test that an empty path is rejected."""
        with pytest.raises(ValueError):
            Location.local('')


class TestPathHelpers:
    """Test path helper functions."""

    def test_detect_shell(self):
        assert detect_shell('c:/x') is TargetShell.WINDOWS
        assert detect_shell('C:') is TargetShell.POSIX
        assert detect_shell('relative/path') is TargetShell.POSIX

    def test_join_remote_path_collapses_separators(self):
        assert join_remote_path('C:\\site\\', '\\bin', 'app.dll') == 'C:/site/bin/app.dll'
        assert join_remote_path('/srv//site', 'bin') == '/srv/site/bin'

    def test_timestamp_slug_format(self):
        """Test that timestamps are file-name safe and sortable."""
        moment = datetime(2024, 1, 15, 12, 30, 45, 123000, tzinfo=timezone.utc)
        assert timestamp_slug(moment) == '2024-01-15T12-30-45-123Z'

    def test_timestamp_slug_converts_to_utc(self):
        moment = datetime(2024, 1, 15, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
        assert timestamp_slug(moment).startswith('2024-01-15T12-00-00')

    def test_timestamp_slug_sorts_chronologically(self):
        earlier = timestamp_slug(datetime(2024, 1, 9, 23, 59, 59, tzinfo=timezone.utc))
        later = timestamp_slug(datetime(2024, 1, 10, 0, 0, 0, tzinfo=timezone.utc))
        assert sorted([later, earlier]) == [earlier, later]


class TestSelectors:
    """Test folder selector parsing."""

    def test_parse_mixed_selectors_keeps_order(self):
        """Test that strings and mappings become the two variants in order."""
        selectors = parse_selectors(['bin', {'config': ['web.config', 'app.json']}, 'assets'])

        assert selectors == [
            WholeFolder('bin'),
            FolderFiles('config', ('web.config', 'app.json')),
            WholeFolder('assets'),
        ]

    def test_parse_empty(self):
        assert parse_selectors(None) == []
        assert parse_selectors([]) == []

    def test_parse_mapping_with_several_folders(self):
        selectors = parse_selectors([{'a': ['1'], 'b': ['2']}])
        assert selectors == [FolderFiles('a', ('1',)), FolderFiles('b', ('2',))]

    def test_parse_rejects_empty_file_list(self):
        with pytest.raises(ValueError, match="non-empty list"):
            parse_selectors([{'config': []}])

    def test_parse_rejects_other_shapes(self):
        with pytest.raises(ValueError, match="Invalid folder selector"):
            parse_selectors([42])

    def test_describe_selector(self):
        assert describe_selector(WholeFolder('bin')) == 'bin'
        assert describe_selector(FolderFiles('config', ('a', 'b'))) == 'config[a, b]'

    def test_describe_unknown_selector(self):
        with pytest.raises(TypeError):
            describe_selector('bin')


class TestBackupConfig:
    """Test BackupConfig validation."""

    def test_default_max_backups(self):
        assert BackupConfig('/backups').max_backups == 3

    @pytest.mark.parametrize('value', [0, -1, 'three'])
    def test_invalid_max_backups(self, value):
        with pytest.raises(ValueError, match="max_backups"):
            BackupConfig('/backups', max_backups=value)


class TestDeployResult:
    """Test DeployResult derived fields."""

    def test_success_follows_errors(self):
        """Test that success is computed from the error list."""
        result = DeployResult(start_time=datetime.now())
        assert result.success is True

        result.errors.append('transferring: boom')
        assert result.success is False

    def test_warnings_do_not_fail(self):
        result = DeployResult(start_time=datetime.now(), warnings=['cleanup failed'])
        assert result.success is True

    def test_duration_and_dict(self):
        start = datetime(2024, 1, 15, 12, 0, 0)
        result = DeployResult(start_time=start, end_time=start + timedelta(seconds=2.5), files_deployed=4)

        assert result.duration == 2.5
        data = result.to_dict()
        assert data['duration'] == '2.50s'
        assert data['filesDeployed'] == 4
        assert data['success'] is True

    def test_has_no_unset_fields(self):
        """Test that every field is one the executors fill in."""
        names = {f.name for f in fields(DeployResult)}
        assert names == {'start_time', 'end_time', 'files_deployed', 'errors', 'warnings'}


class TestGeneratedScript:
    """Test writing generated scripts."""

    def test_write_keeps_crlf(self, tmp_path):
        """Test that content is written byte-for-byte."""
        script = GeneratedScript('update.bat', '@echo off\r\nexit /b 0')
        path = script.write(tmp_path / 'scripts')

        assert path == tmp_path / 'scripts' / 'update.bat'
        assert path.read_bytes() == b'@echo off\r\nexit /b 0'
