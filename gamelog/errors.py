# SPDX-License-Identifier: GPL-3.0-only
# SPDX-FileCopyrightText: Copyright (c) 2025 The GameLog Authors

"""
GameLog Update Errors

Each stage of an in-place update raises its own error type. The message
is short and safe to show to an admin; details go to the log.
"""


class UpdateError(Exception):
    """Base class for update failures."""
    pass


class NotFoundError(UpdateError):
    """No release artifact matches the requested version."""
    pass


class ReleaseLookupError(UpdateError):
    """The release registry could not be queried."""
    pass


class DownloadFailedError(UpdateError):
    """Network error, timeout or bad HTTP status while downloading."""
    pass


class ExtractionFailedError(UpdateError):
    """The archive is corrupt or contains no files."""
    pass


class BackupFailedError(UpdateError):
    """Critical paths could not be snapshotted."""
    pass


class ApplyFailedError(UpdateError):
    """Copying staged files over the live directory failed."""
    pass


class MigrationFailedError(UpdateError):
    """Schema sync exited non-zero or could not be started."""
    pass


class RollbackFailedError(UpdateError):
    """Restoring the latest backup failed."""
    pass
