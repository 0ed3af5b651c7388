# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2025 The GameLog Authors

"""
GameLog In-Place Update Manager

Replaces the files of a running self-hosted GameLog container with a
prebuilt release from GitHub and restarts it.

Update flow:
  1. Resolve the release archive URL for the target version
  2. Download the archive
  3. Extract it into the staging directory
  4. Backup critical application paths
  5. Copy staged files over the live application directory
  6. Run database migrations (failures are logged, not fatal)
  7. Clean up staging and old backups
  8. Exit so the container supervisor restarts on the new code

Any failure after the backup exists triggers a rollback from the most
recent backup. Failures before that point abort with nothing changed.
Only one update may run at a time; see session.py for the gate.
"""

import asyncio
import logging
import os
import shutil
import signal
import tarfile
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import aiohttp

from . import __version__
from .config import UpdaterConfig
from .errors import (
    ApplyFailedError,
    BackupFailedError,
    DownloadFailedError,
    ExtractionFailedError,
    MigrationFailedError,
    RollbackFailedError,
    UpdateError,
)
from .releases import ReleaseClient

logger = logging.getLogger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

DOWNLOAD_CHUNK_SIZE = 65536  # 64KB chunks


# =============================================================================
# DATA MODELS
# =============================================================================

class UpdateStage(str, Enum):
    """Stages of an update run, in order. Any stage may go to ERROR."""
    STARTING = "starting"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    BACKING_UP = "backing_up"
    UPDATING = "updating"
    RESTARTING = "restarting"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class UpdateProgress:
    """Latest progress of an update run."""
    stage: UpdateStage
    message: str
    progress: Optional[int] = None  # 0 to 100
    error: Optional[str] = None
    backup_path: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in (UpdateStage.COMPLETED, UpdateStage.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "message": self.message,
            "progress": self.progress,
            "error": self.error,
            "backupPath": self.backup_path,
        }


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of a finished update run."""
    success: bool
    message: str
    error: Optional[str] = None
    backup_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "error": self.error,
            "backupPath": self.backup_path,
        }


class ProgressReporter:
    """Single-slot progress broadcaster.

    Holds at most one callback and only the latest progress value; there
    is no history. Registering a callback replaces the previous one.
    """

    def __init__(self):
        self._callback: Optional[Callable[[UpdateProgress], None]] = None
        self.latest: Optional[UpdateProgress] = None

    def set_callback(self, callback: Callable[[UpdateProgress], None]) -> None:
        self._callback = callback

    def clear_callback(self) -> None:
        self._callback = None

    def emit(self, progress: UpdateProgress) -> None:
        self.latest = progress
        if self._callback is not None:
            self._callback(progress)


# =============================================================================
# FILE HELPERS
# =============================================================================

def _copy_entry(source: Path, dest: Path) -> None:
    """Copy a file or directory tree over dest, merging into existing dirs."""
    if source.is_dir() and not source.is_symlink():
        if dest.exists() and not dest.is_dir():
            dest.unlink()
        shutil.copytree(source, dest, symlinks=True, dirs_exist_ok=True)
    else:
        if dest.is_dir() and not dest.is_symlink():
            shutil.rmtree(dest)
        elif dest.is_symlink():
            dest.unlink()
        shutil.copy2(source, dest, follow_symlinks=False)


def _strip_first_component(name: str) -> str:
    """Drop the leading path component of an archive member name.

    Works on the raw name like ``tar --strip-components=1``, so a leading
    "." counts as a component: "./gamelog/main.py" becomes "gamelog/main.py".
    Returns "" for the top-level entry itself.
    """
    parts = name.split("/")[1:]
    return "/".join(part for part in parts if part)


def _describe(error: Exception) -> str:
    """Short description of an error, without file paths where possible."""
    if isinstance(error, OSError) and error.strerror:
        return error.strerror
    return str(error) or type(error).__name__


# =============================================================================
# UPDATE MANAGER
# =============================================================================

class InPlaceUpdater:
    """Downloads a release and applies it over the live application.

    Usage:
        updater = InPlaceUpdater(config.updater)
        updater.reporter.set_callback(print)
        result = await updater.execute_update("1.4.0")
    """

    def __init__(
        self,
        config: UpdaterConfig,
        release_client: Optional[ReleaseClient] = None,
        environment: str = "production",
    ):
        self.config = config
        self.app_dir = config.app_dir
        self.staging_dir = config.staging_dir
        self.backup_dir = config.backup_dir
        self.download_dir = config.download_dir
        self.environment = environment

        if release_client is None:
            release_client = ReleaseClient(
                config.github_owner,
                config.github_repo,
                token=config.github_token or os.environ.get("GITHUB_TOKEN"),
                artifact_template=config.artifact_template,
            )
        self.release_client = release_client

        self.reporter = ProgressReporter()
        self._restart_task: Optional[asyncio.Task] = None

    def _emit(
        self,
        stage: UpdateStage,
        message: str,
        progress: Optional[int] = None,
        error: Optional[str] = None,
        backup_path: Optional[str] = None,
    ) -> None:
        self.reporter.emit(UpdateProgress(
            stage=stage,
            message=message,
            progress=progress,
            error=error,
            backup_path=backup_path,
        ))

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def execute_update(self, version: str, restart: bool = True) -> UpdateResult:
        """Run the complete update to ``version``.

        Never raises for update failures; they are returned as an
        unsuccessful UpdateResult.

        Args:
            version: Release version to install (matches the GitHub tag).
            restart: Whether to exit the process after a successful update.
        """
        if self.environment == "development":
            return UpdateResult(
                success=False,
                message="Updates are disabled in development environment",
                error="Cannot run updates in development mode",
            )

        backup_path: Optional[Path] = None

        try:
            logger.info("Starting update %s -> %s", __version__, version)
            self._emit(UpdateStage.DOWNLOADING, "Starting update process...", 0)

            url = await self.release_client.resolve_artifact_url(version)
            archive_path = await self.download_package(url, version)

            self._emit(UpdateStage.EXTRACTING, "Extracting update files...", 25)
            await self.extract_package(archive_path)

            self._emit(UpdateStage.BACKING_UP, "Creating backup of current version...", 50)
            backup_path = await self.create_backup()

            self._emit(UpdateStage.UPDATING, "Applying update files...", 75)
            await self.apply_update()
            await self.run_migrations()

            self._emit(UpdateStage.RESTARTING, "Restarting application...", 95)
            await self.cleanup(archive_path)

            self._emit(UpdateStage.RESTARTING, "Update completed! Restarting application...", 100)
        except Exception as e:
            if isinstance(e, UpdateError):
                logger.error("Update failed: %s", e)
                error_message = str(e)
            else:
                logger.exception("Update failed: %s", e)
                error_message = "Unexpected error during update"

            self._emit(
                UpdateStage.ERROR,
                "Update failed",
                error=error_message,
                backup_path=str(backup_path) if backup_path else None,
            )

            # Nothing in the live directory changes before the backup exists
            if backup_path is not None:
                try:
                    await self.rollback()
                except RollbackFailedError as rollback_error:
                    logger.error("Rollback failed: %s", rollback_error)

            return UpdateResult(
                success=False,
                message="Update failed",
                error=error_message,
                backup_path=str(backup_path) if backup_path else None,
            )

        logger.info("Update to %s complete", version)

        if restart:
            self.schedule_restart()

        return UpdateResult(
            success=True,
            message="Update completed successfully",
            backup_path=str(backup_path),
        )

    def list_backups(self) -> List[Path]:
        """List backup snapshots, newest first."""
        parent = self.backup_dir.parent
        if not parent.exists():
            return []
        prefix = f"{self.backup_dir.name}-"
        backups = [
            entry for entry in parent.iterdir()
            if entry.is_dir() and entry.name.startswith(prefix)
        ]
        return sorted(backups, key=lambda p: p.name, reverse=True)

    # =========================================================================
    # DOWNLOAD
    # =========================================================================

    async def download_package(self, url: str, version: str) -> Path:
        """Stream the release archive to disk.

        Returns:
            Path to the fully written archive.

        Raises:
            DownloadFailedError: Bad status, empty body, timeout or
                network failure. No partial file is left behind.
        """
        self._emit(UpdateStage.DOWNLOADING, f"Downloading {version} from GitHub...", 10)

        dest = self.download_dir / f"gamelog-{version}.tar.gz"
        headers = {"User-Agent": f"GameLog-Updater/{__version__}"}

        try:
            self.download_dir.mkdir(parents=True, exist_ok=True)
            async with aiohttp.ClientSession() as session:
                timeout = aiohttp.ClientTimeout(total=self.config.download_timeout)
                async with session.get(url, headers=headers, timeout=timeout) as resp:
                    if not 200 <= resp.status < 300:
                        raise DownloadFailedError(
                            f"Failed to download update: {resp.status} {resp.reason}"
                        )

                    total_size = resp.content_length or 0
                    downloaded = 0
                    with open(dest, "wb") as f:
                        async for chunk in resp.content.iter_chunked(DOWNLOAD_CHUNK_SIZE):
                            f.write(chunk)
                            downloaded += len(chunk)
                            if total_size > 0:
                                progress = min(25, 10 + downloaded / total_size * 15)
                                self._emit(
                                    UpdateStage.DOWNLOADING,
                                    f"Downloaded {round(downloaded / 1024 / 1024, 2)}MB...",
                                    round(progress),
                                )
                        f.flush()
                        os.fsync(f.fileno())

            if downloaded == 0:
                raise DownloadFailedError("Failed to download update: no response body received")

        except DownloadFailedError:
            self._discard(dest)
            raise
        except (aiohttp.ClientError, TimeoutError, OSError) as e:
            self._discard(dest)
            raise DownloadFailedError(
                f"Failed to download update package: {_describe(e)}"
            ) from e

        logger.info("Downloaded %s (%.1f MB)", dest.name, downloaded / (1024 * 1024))
        return dest

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove partial download %s: %s", path, e)

    # =========================================================================
    # EXTRACT
    # =========================================================================

    async def extract_package(self, archive_path: Path) -> List[str]:
        """Extract the archive into a fresh staging directory.

        The archive's top-level folder is stripped. Safe to call again
        after a crashed run since staging is always wiped first.

        Returns:
            Names of the extracted top-level entries.
        """
        staging = self.staging_dir
        self._emit(UpdateStage.EXTRACTING, "Extracting update files...", 30)

        def _do_extract() -> List[str]:
            if staging.exists():
                shutil.rmtree(staging)
            staging.mkdir(parents=True)

            with tarfile.open(archive_path, "r:*") as tar:
                members = []
                for member in tar.getmembers():
                    stripped = _strip_first_component(member.name)
                    if not stripped:
                        continue
                    if ".." in stripped.split("/"):
                        raise ExtractionFailedError(f"Unsafe path in update package: {member.name}")
                    member.name = stripped
                    if member.islnk():
                        member.linkname = _strip_first_component(member.linkname) or member.linkname
                    members.append(member)
                tar.extractall(staging, members=members, filter="data")

            return sorted(entry.name for entry in staging.iterdir())

        try:
            extracted = await asyncio.to_thread(_do_extract)
        except ExtractionFailedError:
            raise
        except (tarfile.TarError, OSError) as e:
            raise ExtractionFailedError(f"Failed to extract update package: {_describe(e)}") from e

        if not extracted:
            raise ExtractionFailedError("No files were extracted from the update package")

        self._emit(UpdateStage.EXTRACTING, "Update files extracted successfully", 40)
        logger.info("Extracted files: %s", ", ".join(extracted))
        return extracted

    # =========================================================================
    # BACKUP & ROLLBACK
    # =========================================================================

    async def create_backup(self) -> Path:
        """Snapshot the critical paths into a timestamped backup directory.

        Missing critical paths are skipped. The snapshot is assembled in
        the un-timestamped backup directory and renamed when complete.

        Returns:
            Path to the finished snapshot.
        """
        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S-%fZ")
        work_dir = self.backup_dir
        final_path = work_dir.with_name(f"{work_dir.name}-{timestamp}")

        self._emit(UpdateStage.BACKING_UP, "Creating backup of critical files...", 55)

        def _do_backup() -> Path:
            if work_dir.exists():
                shutil.rmtree(work_dir)
            work_dir.mkdir(parents=True)

            for name in self.config.critical_paths:
                source = self.app_dir / name
                if not source.exists() and not source.is_symlink():
                    logger.info("Backup: %s not found, skipping", name)
                    continue
                dest = work_dir / name
                dest.parent.mkdir(parents=True, exist_ok=True)
                _copy_entry(source, dest)

            work_dir.rename(final_path)
            return final_path

        try:
            backup_path = await asyncio.to_thread(_do_backup)
        except OSError as e:
            raise BackupFailedError(f"Failed to create backup: {_describe(e)}") from e

        self._emit(UpdateStage.BACKING_UP, "Backup created successfully", 65)
        logger.info("Backup created at %s", backup_path)
        return backup_path

    async def rollback(self) -> Optional[Path]:
        """Restore the most recent backup over the live directory.

        Returns:
            The snapshot restored from, or None if there was none.

        Raises:
            RollbackFailedError: If copying the snapshot back fails.
        """
        logger.info("Attempting rollback...")

        try:
            backups = self.list_backups()
        except OSError as e:
            raise RollbackFailedError(f"Rollback failed: {_describe(e)}") from e

        if not backups:
            logger.error("No backup found for rollback")
            return None

        latest = backups[0]
        logger.info("Rolling back from: %s", latest)

        def _do_restore() -> None:
            for entry in sorted(latest.iterdir()):
                _copy_entry(entry, self.app_dir / entry.name)

        try:
            await asyncio.to_thread(_do_restore)
        except OSError as e:
            raise RollbackFailedError(f"Rollback failed: {_describe(e)}") from e

        logger.info("Rollback completed")
        return latest

    # =========================================================================
    # APPLY
    # =========================================================================

    async def apply_update(self) -> None:
        """Copy every staged entry except the startup script over app_dir."""
        self._emit(UpdateStage.UPDATING, "Copying new application files...", 80)

        try:
            entries = sorted(self.staging_dir.iterdir(), key=lambda p: p.name)
            for index, entry in enumerate(entries):
                if entry.name == self.config.startup_script:
                    continue

                self._emit(
                    UpdateStage.UPDATING,
                    f"Updating {entry.name}...",
                    round(80 + index / len(entries) * 10),
                )
                await asyncio.to_thread(_copy_entry, entry, self.app_dir / entry.name)
        except OSError as e:
            raise ApplyFailedError(f"Failed to apply update: {_describe(e)}") from e

        self._emit(UpdateStage.UPDATING, "Application files updated successfully", 90)

    # =========================================================================
    # MIGRATIONS
    # =========================================================================

    async def run_migrations(self) -> None:
        """Sync the database schema.

        A failed sync is logged and the update carries on, unless
        fail_on_migration_error is set.
        """
        self._emit(UpdateStage.UPDATING, "Running database migrations...", 92)

        try:
            await self._run_schema_sync()
        except MigrationFailedError as e:
            if self.config.fail_on_migration_error:
                raise
            logger.error("Migration failed, continuing update: %s", e)

    async def _run_schema_sync(self) -> None:
        command = self.config.migration_command
        if not command:
            logger.info("No migration command configured, skipping")
            return

        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                cwd=str(self.app_dir),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except OSError as e:
            raise MigrationFailedError(f"Migration process error: {_describe(e)}") from e

        if proc.returncode != 0:
            logger.error("Migration output: %s", stderr.decode(errors="replace").strip())
            raise MigrationFailedError(f"Migration exited with code {proc.returncode}")

        logger.info("Database migrations completed: %s", stdout.decode(errors="replace").strip())

    # =========================================================================
    # CLEANUP
    # =========================================================================

    async def cleanup(self, archive_path: Optional[Path] = None) -> None:
        """Remove staging and the archive, keep only the newest backups."""
        def _do_cleanup() -> None:
            if self.staging_dir.exists():
                shutil.rmtree(self.staging_dir)
            if archive_path is not None and archive_path.exists():
                archive_path.unlink()
            self._prune_backups()

        try:
            await asyncio.to_thread(_do_cleanup)
        except OSError as e:
            logger.warning("Cleanup error: %s", e)

    def _prune_backups(self) -> None:
        for old_backup in self.list_backups()[self.config.max_backups:]:
            shutil.rmtree(old_backup)
            logger.info("Removed old backup: %s", old_backup)

    # =========================================================================
    # RESTART
    # =========================================================================

    def schedule_restart(self) -> asyncio.Task:
        """Exit the process shortly, leaving the restart to the supervisor."""
        self._restart_task = asyncio.create_task(self._restart_process())
        return self._restart_task

    async def _restart_process(self) -> None:
        # Leaves time for pollers to see the final progress
        await asyncio.sleep(self.config.restart_delay)
        # uvicorn shuts down cleanly with exit code 0 on SIGTERM
        logger.info("Sending SIGTERM to self for restart")
        os.kill(os.getpid(), signal.SIGTERM)
