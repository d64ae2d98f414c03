#!/usr/bin/env python3
"""
Command-line interface for stagedeploy.
Parses arguments, resolves the profile and runs a deploy or restore.
"""
import argparse
import logging
import os
import subprocess
import sys
from getpass import getpass
from typing import List, Optional

from stagedeploy import __version__, configure_logging
from stagedeploy.auth import verify_profile_password
from stagedeploy.config import get_config
from stagedeploy.deploy.executor import run_deploy, run_restore
from stagedeploy.models import describe_selector
from stagedeploy.profiles import AppConfig, ConfigError, ProfileStore, find_config_file


logger = logging.getLogger(__name__)

RULE = '=' * 50


def _preload_profiles(argv: List[str]) -> Optional[ProfileStore]:
    """Load profiles before the real parse so their names can become flags."""
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument('-c', '--config')
    known, _ = pre.parse_known_args(argv)
    try:
        return ProfileStore.load(known.config)
    except ConfigError:
        return None


def build_parser(profile_names: List[str]) -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog='stagedeploy',
        description='Deploy files to Windows hosts over SSH with automatic backups and logging',
    )
    ap.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    ap.add_argument('-c', '--config', help='path to configuration file')
    ap.add_argument('-p', '--profile', help='profile from the configuration to use')
    ap.add_argument('--list-profiles', action='store_true', help='list all available profiles')
    ap.add_argument('--deploy', action='store_true', help='deploy files from source to destination')
    ap.add_argument('--restore', action='store_true', help='restore the latest backup for the profile')
    ap.add_argument('--dry-run', action='store_true', help='show what would be done without making changes')
    ap.add_argument('--edit', action='store_true', help='open the configuration file in the default editor')
    ap.add_argument('-v', '--verbose', action='store_true', help='debug logging')

    shortcuts = ap.add_argument_group('profile shortcuts')
    for name in profile_names:
        try:
            shortcuts.add_argument(f'--{name}', dest=f'shortcut_{name}', action='store_true',
                                   help=f'shortcut for --profile {name}')
        except argparse.ArgumentError:
            # Name collides with a built-in option; only --profile selects it
            continue
    return ap


def _selected_profile(args, profile_names: List[str]) -> Optional[str]:
    if args.profile:
        return args.profile
    for name in profile_names:
        if getattr(args, f'shortcut_{name}', False):
            return name
    return None


def list_profiles(store: Optional[ProfileStore]) -> int:
    if store is None or not store.profile_names():
        print('\nNo profiles defined in configuration.\n')
        return 0
    print('\nAvailable profiles:')
    for name in store.profile_names():
        description = store.description(name)
        print(f"  {name}{f' - {description}' if description else ''}")
    print('')
    return 0


def open_in_editor(config_path: str) -> int:
    if not os.path.exists(config_path):
        print(f'\nConfig file not found: {config_path}\n', file=sys.stderr)
        return 1

    print(f'Opening {config_path}...')
    if sys.platform == 'win32':
        os.startfile(config_path)
        return 0

    opener = 'open' if sys.platform == 'darwin' else 'xdg-open'
    try:
        subprocess.run([opener, config_path], check=True)
    except (OSError, subprocess.CalledProcessError) as e:
        print(f'Failed to open editor: {e}', file=sys.stderr)
        return 1
    return 0


def print_summary(config: AppConfig):
    print(f'\nActive Profile: {config.profile_name}')
    print('\nConfiguration:')
    print(f'  Source:      {config.source.kind.value} - {config.source.path}')
    if config.selectors:
        print(f"  Folders:     {', '.join(describe_selector(s) for s in config.selectors)}")
    print(f'  Staging:     {config.staging.kind.value} - {config.staging.path}')
    print(f'  Destination: {config.destination.kind.value} - {config.destination.path}')
    print(f'  Backups:     {config.backup.path} (max: {config.backup.max_backups})')
    print(f'  Logs:        {config.logging.path}')


def print_result(label: str, result) -> None:
    print('\n' + RULE)
    if result.success:
        print(f'\n{label} completed successfully!\n')
    else:
        print(f'\n{label} completed with errors\n')
        for error in result.errors:
            print(f'  - {error}')
    if label == 'Deployment':
        print(f'  Files deployed: {result.files_deployed}')
    print(f'  Duration: {result.duration:.2f}s')
    print(RULE + '\n')


def _report_stage(stage, percent: int):
    if percent in (0, 100):
        print(f'  [{stage.value}] {percent}%')


def check_password(config: AppConfig) -> bool:
    if not config.password:
        return True
    print('\nThis profile requires a password to proceed.')
    if not verify_profile_password(config.password, getpass('Enter password: ')):
        print('\nError: Incorrect password. Operation aborted.\n', file=sys.stderr)
        return False
    print('Password verified. Continuing...\n')
    return True


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else list(argv)

    store = _preload_profiles(argv)
    profile_names = store.profile_names() if store else []
    ap = build_parser(profile_names)
    args = ap.parse_args(argv)

    settings = get_config()
    configure_logging(debug=args.verbose or settings.DEBUG, log_dir=settings.LOG_DIR)

    try:
        if args.list_profiles:
            if store is None:
                store = ProfileStore.load(args.config)
            return list_profiles(store)

        if args.edit:
            config_path = args.config or find_config_file() or os.path.join(os.getcwd(), settings.CONFIG_FILENAME)
            return open_in_editor(config_path)

        profile_name = _selected_profile(args, profile_names)
        if not profile_name:
            print('\nError: A profile is required. Use --profile <name> or --<profile-name>\n', file=sys.stderr)
            print('Available commands:')
            print('  stagedeploy --list-profiles              List all available profiles')
            print('  stagedeploy --profile <name> --deploy    Deploy using specified profile')
            print('  stagedeploy --profile <name> --restore   Restore latest backup for profile')
            if profile_names:
                print(f'  stagedeploy --{profile_names[0]} --deploy   Deploy using {profile_names[0]} profile')
            print('')
            return 1

        if not (args.deploy or args.restore or args.dry_run):
            ap.print_help()
            return 0

        if store is None:
            store = ProfileStore.load(args.config)
        config = store.build(profile_name)
        print_summary(config)

        if args.dry_run:
            print('\n[DRY RUN] No changes will be made.\n')
            return 0

        if not check_password(config):
            return 1

        if args.deploy:
            print('\nStarting deployment...\n')
            result = run_deploy(config, settings=settings, on_progress=_report_stage)
            print_result('Deployment', result)
        else:
            print('\nStarting restore...\n')
            result = run_restore(config, settings=settings)
            print_result('Restore', result)

        return 0 if result.success else 1

    except ConfigError as e:
        print(f'\nError: {e}\n', file=sys.stderr)
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        print('\nInterrupted by user.')
        return 130


if __name__ == '__main__':
    sys.exit(main())
