"""
Unit tests for the payload pipeline (stagedeploy/deploy/pipeline.py).
"""

import os
from unittest.mock import patch

import pytest

from stagedeploy.deploy.errors import NotFoundError
from stagedeploy.deploy.pipeline import TransferPipeline, build_extract_command
from stagedeploy.models import FolderFiles, Location, WholeFolder


@pytest.fixture
def pipeline(file_ops):
    return TransferPipeline(file_ops, seven_zip='7z', compression_timeout=60)


class TestStageToScratch:
    """Test gathering the payload locally."""

    def test_everything_without_selectors(self, pipeline, source_tree, tmp_path):
        scratch = tmp_path / 'scratch'

        assert pipeline.stage_to_scratch(Location.local(source_tree), None, str(scratch)) == 5
        assert (scratch / 'bin' / 'lib' / 'helper.dll').exists()

    def test_selected_only(self, pipeline, source_tree, tmp_path):
        scratch = tmp_path / 'scratch'
        selectors = [FolderFiles('config', ('web.config',))]

        assert pipeline.stage_to_scratch(Location.local(source_tree), selectors, str(scratch)) == 1
        assert sorted(os.listdir(scratch)) == ['config']

    def test_remote_source(self, pipeline, fake_transports, endpoint, tmp_path):
        remote_root = fake_transports.path(endpoint.host, '/srv/build')
        os.makedirs(os.path.join(remote_root, 'bin'))
        with open(os.path.join(remote_root, 'bin', 'app'), 'w') as f:
            f.write('binary')

        count = pipeline.stage_to_scratch(Location.ssh('/srv/build', endpoint), [WholeFolder('bin')],
                                          str(tmp_path / 'scratch'))

        assert count == 1
        assert (tmp_path / 'scratch' / 'bin' / 'app').read_text() == 'binary'

    def test_missing_selector_fails(self, pipeline, source_tree, tmp_path):
        with pytest.raises(NotFoundError):
            pipeline.stage_to_scratch(Location.local(source_tree), [WholeFolder('assets')], str(tmp_path / 's'))


class TestCompress:
    """Test that compression settings reach create_archive."""

    def test_passes_settings(self, pipeline, tmp_path):
        with patch('stagedeploy.deploy.pipeline.create_archive', return_value='/x/deploy.zip') as mock_archive:
            assert pipeline.compress(str(tmp_path), str(tmp_path / 'deploy.zip')) == '/x/deploy.zip'

        kwargs = mock_archive.call_args[1]
        assert kwargs['seven_zip'] == '7z'
        assert kwargs['timeout'] == 60


class TestTransfer:
    """Test sending the archive to staging."""

    def test_local_transfer_reports_progress(self, pipeline, sample_archive, tmp_path):
        staging = Location.local(tmp_path / 'staging')
        seen = []

        target = pipeline.transfer(str(sample_archive), staging, 'deploy.zip', seen.append)

        assert target.path == str(tmp_path / 'staging' / 'deploy.zip')
        assert (tmp_path / 'staging' / 'deploy.zip').read_bytes() == sample_archive.read_bytes()
        assert seen[0] == 0 and seen[-1] == 100
        assert seen == sorted(seen)

    def test_remote_transfer(self, pipeline, fake_transports, sample_archive, endpoint):
        staging = Location.ssh('C:/deploy/staging', endpoint)
        pipeline.file_ops.make_directory(staging)
        seen = []

        target = pipeline.transfer(str(sample_archive), staging, 'deploy.zip', seen.append)

        assert target.path == 'C:/deploy/staging/deploy.zip'
        backing = fake_transports.path(endpoint.host, 'C:/deploy/staging/deploy.zip')
        assert os.path.getsize(backing) == sample_archive.stat().st_size
        assert seen[0] == 0 and seen[-1] == 100


class TestExtract:
    """Test unpacking at staging."""

    def test_local_extract_removes_archive(self, pipeline, sample_archive, tmp_path):
        staging = tmp_path / 'staging'
        staging.mkdir()
        (staging / 'deploy.zip').write_bytes(sample_archive.read_bytes())

        pipeline.extract_at_staging(Location.local(staging), 'deploy.zip')

        assert sorted(os.listdir(staging)) == ['bin', 'index.html']

    def test_remote_windows_command(self, pipeline, fake_transports, endpoint):
        pipeline.extract_at_staging(Location.ssh('C:/deploy/staging', endpoint), 'deploy.zip')

        assert fake_transports.created[0].commands == [
            "powershell.exe -NoProfile -NonInteractive -Command "
            "\"Expand-Archive -Path 'C:\\deploy\\staging\\deploy.zip' -DestinationPath 'C:\\deploy\\staging' -Force; "
            "Remove-Item -Path 'C:\\deploy\\staging\\deploy.zip' -Force\""
        ]

    def test_posix_command(self, endpoint):
        command = build_extract_command(Location.ssh('/srv/staging/', endpoint), 'deploy.zip')
        assert command == 'cd "/srv/staging/" && unzip -o "deploy.zip" && rm "deploy.zip"'
