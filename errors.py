class WorldManagerError(Exception):
    """Base exception; the API turns it into {"success": false, "error": ...}."""


class ValidationError(WorldManagerError):
    """Request input is invalid; nothing was changed."""


class NotFoundError(WorldManagerError):
    """World or backup archive does not exist."""


class GuardViolation(WorldManagerError):
    """Operation refused because it would endanger the running server."""


class BackupInProgressError(GuardViolation):
    """Another backup of the same world is still running."""


class IOFailure(WorldManagerError):
    """Filesystem or subprocess step failed."""


class SyncError(IOFailure):
    """Upload to remote storage failed or is not configured."""
