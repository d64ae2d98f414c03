"""
Batch script generation for the target Windows host.

The update script backs up the destination, copies the staged payload over
it, prunes old backups and appends to update.log. The restore script puts the
newest backup back. Both exit 0 on success and jump to a shared :error label
(exit 1) from every guarded step.

Generation is pure: no I/O, and the timestamps are evaluated by the script on
the host at run time. Backups made by these scripts are named
backup_<yyyyMMdd_HHmmss>.
"""

from typing import List, Optional, Sequence

from stagedeploy.models import (
    BackupConfig,
    FolderFiles,
    FolderSelector,
    GeneratedScript,
    Location,
    WholeFolder,
    to_windows_path,
)


UPDATE_SCRIPT = 'update.bat'
RESTORE_SCRIPT = 'restore.bat'
UPDATE_LOG = 'update.log'
RESTORE_LOG = 'restore.log'

LINE_ENDING = '\r\n'
RULE = 'echo ============================================'

POWERSHELL_DATE = 'for /f %%I in (\'powershell -NoProfile -Command "Get-Date -Format {fmt}"\') do set "{var}=%%I"'
LIST_BACKUPS_NEWEST_FIRST = 'for /f "tokens=*" %%F in (\'dir /b /ad /o-n "%backup_dir%\\backup_*" 2^>nul\') do ('


def _win(path: str) -> str:
    return to_windows_path(path).rstrip('\\')


def _check(success: str, failure: str) -> List[str]:
    """Errorlevel guard placed after a command that must succeed."""
    return [
        'if !errorlevel! equ 0 (',
        f'echo {success}',
        ') else (',
        f'echo ERROR: {failure}',
        'goto :error',
        ')',
    ]


def _timestamps(*pairs) -> List[str]:
    return [POWERSHELL_DATE.format(fmt=fmt, var=var) for fmt, var in pairs]


def generate_copy_commands(source_dir: str, dest_dir: str,
                           selectors: Optional[Sequence[FolderSelector]] = None) -> List[str]:
    """
    Copy commands for the staged payload, one block per selector in order.

    Without selectors every top-level folder and file of staging is copied,
    except the .bat scripts themselves.
    """
    lines: List[str] = []

    if not selectors:
        # %errorlevel% expands when the block is parsed, so loops test it with "if errorlevel 1"
        lines.append(f'for /d %%D in ("{source_dir}\\*") do (')
        lines.append(f'xcopy "%%D\\*" "{dest_dir}\\%%~nxD\\" /E /I /Y /Q')
        lines.append('if errorlevel 1 (')
        lines.append('echo ERROR: Failed to copy folder %%~nxD')
        lines.append('goto :error')
        lines.append(')')
        lines.append(')')
        lines.append(f'for %%F in ("{source_dir}\\*") do (')
        lines.append('if /i not "%%~xF"==".bat" (')
        lines.append(f'copy /y "%%F" "{dest_dir}\\"')
        lines.append('if errorlevel 1 (')
        lines.append('echo ERROR: Failed to copy %%~nxF')
        lines.append('goto :error')
        lines.append(')')
        lines.append(')')
        lines.append(')')
        return lines

    for selector in selectors:
        if isinstance(selector, WholeFolder):
            name = to_windows_path(selector.name)
            lines.append(f'xcopy "{source_dir}\\{name}\\*" "{dest_dir}\\{name}\\" /E /I /Y /Q')
            lines.extend(_check(f'Folder copied: {name}', f'Failed to copy folder {name}'))
        elif isinstance(selector, FolderFiles):
            name = to_windows_path(selector.name)
            lines.append(f'if not exist "{dest_dir}\\{name}" mkdir "{dest_dir}\\{name}"')
            for file_name in selector.files:
                relative = f'{name}\\{to_windows_path(file_name)}'
                parent = relative.rsplit('\\', 1)[0]
                if parent != name:
                    lines.append(f'if not exist "{dest_dir}\\{parent}" mkdir "{dest_dir}\\{parent}"')
                lines.append(f'copy /y "{source_dir}\\{relative}" "{dest_dir}\\{relative}"')
                lines.extend(_check(f'File copied: {relative}', f'Failed to copy {relative}'))
        else:
            raise TypeError(f"Unknown folder selector: {selector!r}")

    return lines


def generate_update_script(staging: Location, destination: Location, backup: BackupConfig,
                           selectors: Optional[Sequence[FolderSelector]] = None) -> GeneratedScript:
    """
    Build update.bat for a deployment.

    Args:
        staging: Where the payload was extracted (and where the script runs)
        destination: Directory being updated
        backup: Backup root and retention count
        selectors: Folder selectors mirrored as copy commands

    Returns:
        GeneratedScript named update.bat
    """
    source_dir = _win(staging.path)
    dest_dir = _win(destination.path)
    backup_dir = _win(backup.path)
    logfile = f'{source_dir}\\{UPDATE_LOG}'

    lines = [
        '@echo off',
        'setlocal enabledelayedexpansion',
        f'set "source_dir={source_dir}"',
        f'set "dest_dir={dest_dir}"',
        f'set "backup_dir={backup_dir}"',
        f'set "logfile={logfile}"',
        f'set "max_backups={backup.max_backups}"',
        '',
        RULE,
        'echo FILE UPDATE SCRIPT',
        RULE,
        'echo.',
        'echo - Create backup of: %dest_dir%',
        'echo - Copy files from: %source_dir%',
        'echo - Keep %max_backups% most recent backups',
        'echo - Save log to: %logfile%',
        'echo.',
        '',
        *_timestamps(('yyyy-MM-dd', 'date_str'), ('HH:mm:ss', 'time_str'), ('yyyyMMdd_HHmmss', 'timestamp')),
        '',
        RULE,
        'echo Starting update process...',
        'echo Date: %date_str% %time_str%',
        RULE,
        'echo.',
        '',
        'if not exist "%backup_dir%" (',
        'mkdir "%backup_dir%"',
        'if errorlevel 1 (',
        'echo ERROR: Could not create backup folder %backup_dir%',
        'goto :error',
        ')',
        'echo Backup folder created: %backup_dir%',
        ')',
        '',
        'echo.',
        'echo [1/4] Creating backup of destination folder...',
        'set "current_backup=%backup_dir%\\backup_%timestamp%"',
        'if exist "%dest_dir%" (',
        'xcopy "%dest_dir%\\*" "%current_backup%\\" /E /I /Q /Y',
        *_check('Backup created successfully: %current_backup%', 'Could not create backup'),
        ') else (',
        'echo Destination folder does not exist. Nothing to back up.',
        ')',
        '',
        'echo.',
        'echo [2/4] Copying new files...',
        *generate_copy_commands(source_dir, dest_dir, selectors),
        '',
        'echo.',
        'echo [3/4] Managing old backups...',
        'set /a counter=0',
        LIST_BACKUPS_NEWEST_FIRST,
        'set /a counter+=1',
        'if !counter! gtr %max_backups% (',
        'rd /s /q "%backup_dir%\\%%F"',
        'echo Old backup deleted: %%F',
        ')',
        ')',
        'echo Total backups kept: %max_backups%',
        '',
        'echo.',
        'echo [4/4] Saving log entry...',
        f'{RULE} >> "%logfile%"',
        'echo Update completed: %date_str% %time_str% >> "%logfile%"',
        'echo User: %USERNAME% >> "%logfile%"',
        'echo Computer: %COMPUTERNAME% >> "%logfile%"',
        'echo Source: %source_dir% >> "%logfile%"',
        'echo Destination: %dest_dir% >> "%logfile%"',
        'echo Backup saved to: %current_backup% >> "%logfile%"',
        f'{RULE} >> "%logfile%"',
        'echo. >> "%logfile%"',
        '',
        'echo.',
        RULE,
        'echo PROCESS COMPLETED SUCCESSFULLY',
        RULE,
        'echo Files copied from: %source_dir%',
        'echo Destination: %dest_dir%',
        'echo Backup saved to: %current_backup%',
        'echo Log saved to: %logfile%',
        'echo.',
        'exit /b 0',
        '',
        ':error',
        'echo.',
        RULE,
        'echo ERROR: Process did not complete successfully',
        RULE,
        'echo Please review the error messages above',
        'echo.',
        f'{RULE} >> "%logfile%"',
        'echo ERROR in update: %date_str% %time_str% >> "%logfile%"',
        'echo User: %USERNAME% >> "%logfile%"',
        'echo Computer: %COMPUTERNAME% >> "%logfile%"',
        'echo Process failed - review details >> "%logfile%"',
        f'{RULE} >> "%logfile%"',
        'echo. >> "%logfile%"',
        'exit /b 1',
    ]

    return GeneratedScript(UPDATE_SCRIPT, LINE_ENDING.join(lines))


def generate_restore_script(staging: Location, destination: Location,
                            backup: BackupConfig) -> GeneratedScript:
    """
    Build restore.bat, which copies the newest backup_* folder back into the
    destination. The destination is not touched when no backup exists.
    """
    dest_dir = _win(destination.path)
    backup_dir = _win(backup.path)
    logfile = f'{_win(staging.path)}\\{RESTORE_LOG}'

    lines = [
        '@echo off',
        'setlocal enabledelayedexpansion',
        '',
        f'set "dest_dir={dest_dir}"',
        f'set "backup_dir={backup_dir}"',
        f'set "logfile={logfile}"',
        '',
        *_timestamps(('yyyy-MM-dd', 'date_str'), ('HH:mm:ss', 'time_str')),
        '',
        RULE,
        'echo RESTORE LATEST BACKUP',
        RULE,
        'echo Date: %date_str% %time_str%',
        'echo.',
        '',
        'if not exist "%backup_dir%" (',
        'echo ERROR: Backup folder not found',
        'echo Expected location: %backup_dir%',
        'goto :error',
        ')',
        '',
        'echo Searching for the most recent backup...',
        'set "latest_backup="',
        LIST_BACKUPS_NEWEST_FIRST,
        'if not defined latest_backup set "latest_backup=%%F"',
        ')',
        '',
        'if not defined latest_backup (',
        'echo ERROR: No backups found in folder',
        'echo Location: %backup_dir%',
        'goto :error',
        ')',
        '',
        'set "backup_path=%backup_dir%\\%latest_backup%"',
        '',
        'echo.',
        RULE,
        'echo BACKUP FOUND',
        RULE,
        'echo Backup to restore: %latest_backup%',
        'echo Location: %backup_path%',
        'echo Destination: %dest_dir%',
        RULE,
        'echo.',
        '',
        'echo [1/2] Cleaning destination folder...',
        'if exist "%dest_dir%" (',
        'rd /s /q "%dest_dir%"',
        'if exist "%dest_dir%" (',
        'echo ERROR: Could not remove destination folder',
        'goto :error',
        ')',
        'echo Destination folder removed',
        ')',
        'mkdir "%dest_dir%"',
        *_check('Destination folder recreated', 'Could not recreate destination folder'),
        '',
        'echo.',
        'echo [2/2] Restoring files from backup...',
        'xcopy "%backup_path%\\*" "%dest_dir%\\" /E /I /Y /Q',
        *_check('Files restored successfully', 'Failed to restore files'),
        '',
        f'{RULE} >> "%logfile%"',
        'echo Restore completed: %date_str% %time_str% >> "%logfile%"',
        'echo User: %USERNAME% >> "%logfile%"',
        'echo Computer: %COMPUTERNAME% >> "%logfile%"',
        'echo Backup restored: %latest_backup% >> "%logfile%"',
        'echo Source: %backup_path% >> "%logfile%"',
        'echo Destination: %dest_dir% >> "%logfile%"',
        f'{RULE} >> "%logfile%"',
        'echo. >> "%logfile%"',
        '',
        'echo.',
        RULE,
        'echo RESTORE COMPLETED SUCCESSFULLY',
        RULE,
        'echo Backup restored: %latest_backup%',
        'echo Files copied to: %dest_dir%',
        'echo Log saved to: %logfile%',
        'echo.',
        'exit /b 0',
        '',
        ':error',
        'echo.',
        RULE,
        'echo ERROR: Restore did not complete',
        RULE,
        'echo Please review the error messages above',
        'echo.',
        f'{RULE} >> "%logfile%"',
        'echo ERROR in restore: %date_str% %time_str% >> "%logfile%"',
        'echo Process failed - review details >> "%logfile%"',
        f'{RULE} >> "%logfile%"',
        'echo. >> "%logfile%"',
        'exit /b 1',
    ]

    return GeneratedScript(RESTORE_SCRIPT, LINE_ENDING.join(lines))
