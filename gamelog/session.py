# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2025 The GameLog Authors

"""
GameLog Update Session

Owns the process-wide "update in progress" flag and the latest progress
of the running update. HTTP handlers start runs through ``try_start`` and
``launch`` and poll ``current_status``; the run itself happens in a
background task.

All methods are called from the event loop thread. ``try_start`` does not
await, so the check and the claim cannot interleave with another request.
"""

import asyncio
import logging
from typing import Callable, Optional

from .updater import InPlaceUpdater, UpdateProgress, UpdateResult, UpdateStage

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 10.0  # seconds a finished run stays visible


class UpdateSession:
    """Single-flight gate plus last-write-wins progress cell."""

    def __init__(self, grace_period: float = DEFAULT_GRACE_PERIOD):
        self.grace_period = grace_period
        self._in_progress = False
        self._progress: Optional[UpdateProgress] = None
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._expiry: Optional[asyncio.TimerHandle] = None

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def task(self) -> Optional[asyncio.Task]:
        """Handle of the current background run, if any."""
        return self._task

    def current_status(self) -> Optional[UpdateProgress]:
        """Latest progress, or None when idle."""
        return self._progress

    def try_start(self) -> bool:
        """Claim the session. Returns False if an update is already running."""
        if self._in_progress:
            return False

        self._cancel_expiry()
        self._in_progress = True
        self._generation += 1
        self._progress = UpdateProgress(
            stage=UpdateStage.STARTING,
            message="Initializing update process...",
            progress=0,
        )
        logger.info("Update session %d started", self._generation)
        return True

    def force_reset(self) -> None:
        """Clear the session without stopping a running update.

        Emergency escape hatch for a session stuck in progress. Progress
        from the abandoned run is ignored afterwards.
        """
        if self._task is not None and not self._task.done():
            logger.warning("Resetting update session while a run is still active")
        self._cancel_expiry()
        self._generation += 1
        self._in_progress = False
        self._progress = None
        self._task = None

    def launch(
        self,
        updater_factory: Callable[[], InPlaceUpdater],
        version: str,
        restart: bool = True,
    ) -> asyncio.Task:
        """Run an update in the background. ``try_start`` must have succeeded."""
        if not self._in_progress:
            raise RuntimeError("Update session not started")

        generation = self._generation
        updater = updater_factory()
        updater.reporter.set_callback(lambda progress: self._publish(generation, progress))

        self._task = asyncio.create_task(self._run(generation, updater, version, restart))
        return self._task

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _publish(self, generation: int, progress: UpdateProgress) -> None:
        if generation == self._generation:
            self._progress = progress

    async def _run(
        self,
        generation: int,
        updater: InPlaceUpdater,
        version: str,
        restart: bool,
    ) -> UpdateResult:
        # Never raises; the task is fire-and-forget
        try:
            result = await updater.execute_update(version, restart=restart)
        except Exception as e:
            logger.exception("Update process failed: %s", e)
            result = UpdateResult(
                success=False,
                message="Update failed",
                error="Unexpected error during update",
            )
            if generation == self._generation:
                self._progress = UpdateProgress(
                    stage=UpdateStage.ERROR,
                    message=result.message,
                    progress=0,
                    error=result.error,
                )
                self._in_progress = False
            return result
        finally:
            updater.reporter.clear_callback()

        if generation == self._generation:
            self._progress = UpdateProgress(
                stage=UpdateStage.COMPLETED if result.success else UpdateStage.ERROR,
                message=result.message,
                progress=100 if result.success else 0,
                error=result.error,
                backup_path=result.backup_path,
            )
            self._schedule_expiry(generation)

        return result

    def _schedule_expiry(self, generation: int) -> None:
        loop = asyncio.get_running_loop()
        self._expiry = loop.call_later(self.grace_period, self._expire, generation)

    def _expire(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._expiry = None
        self._in_progress = False
        self._progress = None
        self._task = None

    def _cancel_expiry(self) -> None:
        if self._expiry is not None:
            self._expiry.cancel()
            self._expiry = None


# Global session instance
_session: Optional[UpdateSession] = None


def get_update_session() -> UpdateSession:
    """Get the global update session (singleton)."""
    global _session
    if _session is None:
        _session = UpdateSession()
    return _session


def reset_update_session(grace_period: float = DEFAULT_GRACE_PERIOD) -> UpdateSession:
    """Replace the global session, e.g. after config is loaded."""
    global _session
    _session = UpdateSession(grace_period=grace_period)
    return _session
