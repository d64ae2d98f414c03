"""
Deployment profiles loaded from a YAML file.

    profiles:
      intranet:
        description: Intranet IIS site
        password: <optional gate, plain or werkzeug hash>
        source:
          path: ./dist
          folders:
            - bin
            - config: [web.config]
        staging:
          type: ssh
          path: C:/deploy/staging
          ssh: {host: web01, username: deploy, privateKey: ~/.ssh/id_ed25519}
        destination:
          type: ssh
          path: C:/inetpub/intranet
          ssh: {host: web01, username: deploy, privateKey: ~/.ssh/id_ed25519}
        backup:
          path: C:/deploy/backups
          maxBackups: 5
        logging:
          path: ./logs
          filename: intranet
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from stagedeploy.config import Config
from stagedeploy.models import (
    DEFAULT_MAX_BACKUPS,
    DEFAULT_SSH_PORT,
    BackupConfig,
    FolderSelector,
    Location,
    LocationKind,
    LoggingConfig,
    RemoteEndpoint,
    parse_selectors,
)


class ConfigError(Exception):
    """Raised when the profile file is missing or invalid."""
    pass


@dataclass(frozen=True)
class AppConfig:
    """Everything one deploy or restore run needs, resolved from a profile."""
    source: Location
    staging: Location
    destination: Location
    backup: BackupConfig
    logging: LoggingConfig
    selectors: Tuple[FolderSelector, ...] = ()
    password: Optional[str] = field(default=None, repr=False)
    profile_name: Optional[str] = None


def find_config_file(cwd: Optional[str] = None) -> Optional[str]:
    """Return the default profile file in cwd, or None if there is none."""
    candidate = os.path.join(cwd or os.getcwd(), Config.CONFIG_FILENAME)
    if os.path.exists(candidate):
        return candidate
    return None


class ProfileStore:
    """Validated profiles from one YAML file."""

    def __init__(self, profiles: Dict[str, Dict[str, Any]], path: Optional[str] = None):
        self.profiles = profiles
        self.path = path

    @classmethod
    def load(cls, path: Optional[str] = None) -> 'ProfileStore':
        """
        Read and validate a profile file.

        Args:
            path: File to read (defaults to stagedeploy.config.yaml in the
                working directory)

        Raises:
            ConfigError: If the file is missing, is not YAML, or a profile is
                malformed
        """
        file_path = path or find_config_file()
        if not file_path:
            raise ConfigError(
                f"Configuration file not found. Create '{Config.CONFIG_FILENAME}' in the current directory."
            )

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                raw = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigError(f"Configuration file not found: {file_path}")
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {file_path}: {e}")

        return cls.from_dict(raw, file_path)

    @classmethod
    def from_dict(cls, raw: Any, path: Optional[str] = None) -> 'ProfileStore':
        if not isinstance(raw, dict) or not raw.get('profiles'):
            raise ConfigError('Missing "profiles" in configuration. At least one profile is required.')
        if not isinstance(raw['profiles'], dict):
            raise ConfigError('"profiles" must be a mapping of profile name to settings')

        for name, profile in raw['profiles'].items():
            _validate_profile(str(name), profile)

        return cls({str(k): v for k, v in raw['profiles'].items()}, path)

    def profile_names(self) -> List[str]:
        return list(self.profiles)

    def description(self, name: str) -> Optional[str]:
        return self._profile(name).get('description')

    def _profile(self, name: str) -> Dict[str, Any]:
        if name not in self.profiles:
            available = ', '.join(self.profiles) or 'none'
            raise ConfigError(f'Profile "{name}" not found. Available profiles: {available}')
        return self.profiles[name]

    def build(self, name: str) -> AppConfig:
        """
        Resolve a profile into an AppConfig.

        Raises:
            ConfigError: If the profile does not exist or holds invalid values
        """
        profile = self._profile(name)
        source_raw = profile['source']
        backup_raw = profile['backup']
        logging_raw = profile['logging']

        try:
            return AppConfig(
                source=_build_location(source_raw, f"{name}.source", default_type='local'),
                staging=_build_location(profile['staging'], f"{name}.staging"),
                destination=_build_location(profile['destination'], f"{name}.destination"),
                backup=BackupConfig(
                    path=backup_raw['path'],
                    max_backups=backup_raw.get('maxBackups') or DEFAULT_MAX_BACKUPS
                ),
                logging=LoggingConfig(path=logging_raw['path'], filename=logging_raw['filename']),
                selectors=tuple(parse_selectors(source_raw.get('folders'))),
                password=profile.get('password'),
                profile_name=name
            )
        except ValueError as e:
            raise ConfigError(f'Profile "{name}": {e}')


def _require_section(profile: Dict[str, Any], key: str, name: str) -> Dict[str, Any]:
    section = profile.get(key)
    if not isinstance(section, dict):
        raise ConfigError(f'Profile "{name}" must have a "{key}" configuration')
    return section


def _validate_profile(name: str, profile: Any):
    if not isinstance(profile, dict):
        raise ConfigError(f'Profile "{name}" must be a mapping')

    source = _require_section(profile, 'source', name)
    if not source.get('path'):
        raise ConfigError(f'Profile "{name}.source" must have "path" defined')

    for key in ('staging', 'destination'):
        section = _require_section(profile, key, name)
        if not section.get('path') or not section.get('type'):
            raise ConfigError(f'Profile "{name}.{key}" must have "path" and "type" defined')

    for key in ('source', 'staging', 'destination'):
        section = profile[key]
        kind = section.get('type', 'local')
        if kind not in ('local', 'ssh'):
            raise ConfigError(f'Profile "{name}.{key}" has unknown type "{kind}" (expected local or ssh)')
        if kind == 'ssh' and not section.get('ssh'):
            raise ConfigError(f'Profile "{name}.{key}" is SSH but missing "ssh" configuration')
        if section.get('ssh'):
            _validate_ssh(section['ssh'], f"{name}.{key}.ssh")

    backup = _require_section(profile, 'backup', name)
    if not backup.get('path'):
        raise ConfigError(f'Profile "{name}.backup" must have "path" defined')
    max_backups = backup.get('maxBackups')
    if max_backups is not None and (not isinstance(max_backups, int) or max_backups < 1):
        raise ConfigError(f'Profile "{name}.backup.maxBackups" must be an integer >= 1')

    logging_section = _require_section(profile, 'logging', name)
    if not logging_section.get('path') or not logging_section.get('filename'):
        raise ConfigError(f'Profile "{name}.logging" must have "path" and "filename" defined')

    try:
        parse_selectors(source.get('folders'))
    except ValueError as e:
        raise ConfigError(f'Profile "{name}.source.folders": {e}')


def _validate_ssh(raw: Any, where: str):
    if not isinstance(raw, dict):
        raise ConfigError(f'"{where}" must be a mapping')
    if not raw.get('host') or not isinstance(raw['host'], str):
        raise ConfigError(f'Invalid or missing "host" in {where}')
    if not raw.get('username') or not isinstance(raw['username'], str):
        raise ConfigError(f'Invalid or missing "username" in {where}')
    if not raw.get('password') and not raw.get('privateKey'):
        raise ConfigError(f'Either "password" or "privateKey" is required in {where}')


def _build_endpoint(raw: Dict[str, Any]) -> RemoteEndpoint:
    return RemoteEndpoint(
        host=raw['host'],
        username=raw['username'],
        port=int(raw.get('port') or DEFAULT_SSH_PORT),
        password=raw.get('password'),
        private_key=raw.get('privateKey')
    )


def _build_location(raw: Dict[str, Any], where: str, default_type: Optional[str] = None) -> Location:
    kind = LocationKind(raw.get('type') or default_type)
    path = str(raw['path'])

    if kind is LocationKind.REMOTE:
        if not raw.get('ssh'):
            raise ConfigError(f'Profile "{where}" is SSH but no SSH config provided')
        return Location.ssh(path, _build_endpoint(raw['ssh']))

    return Location.local(path)
