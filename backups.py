"""World backups.

A backup quiesces the server's autosave, archives the world directory with
``tar`` and turns autosave back on. ``save-on`` is issued from a ``finally``
block so a failed or timed-out archive never leaves the server with saving
disabled.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from errors import BackupInProgressError, GuardViolation, IOFailure, NotFoundError
from helpers import human_size, iso_mtime, run_cmd_async, size_mb
from worlds import WorldLocks, is_valid_world_name

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.gz"
SAVE_FLUSH_COMMAND = "save-all flush"
SAVE_OFF_COMMAND = "save-off"
SAVE_ON_COMMAND = "save-on"


@dataclass
class BackupArchive:
    filename: str
    size_bytes: int
    created_at: str

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "sizeBytes": self.size_bytes,
            "sizeMB": size_mb(self.size_bytes),
            "createdAt": self.created_at,
        }


def archive_record(path: Path) -> BackupArchive:
    return BackupArchive(filename=path.name, size_bytes=path.stat().st_size, created_at=iso_mtime(path))


def find_archive(backup_dir: Path, filename) -> Path:
    """Resolve an archive name inside *backup_dir*; names with path parts never match."""
    if not isinstance(filename, str) or not filename or Path(filename).name != filename:
        raise NotFoundError("Backup file not found")
    path = Path(backup_dir) / filename
    if not path.is_file():
        raise NotFoundError("Backup file not found")
    return path


class BackupOrchestrator:
    def __init__(
        self,
        data_path: Path,
        backup_dir: Path,
        rcon,
        locks: WorldLocks | None = None,
        settle_seconds: float = 2.0,
        timeout: int = 120,
    ):
        self.data_path = Path(data_path)
        self.backup_dir = Path(backup_dir)
        self.rcon = rcon
        self.locks = locks or WorldLocks()
        self.settle_seconds = settle_seconds
        self.timeout = timeout

    def _archive_path(self, world_name: str) -> Path:
        ts = datetime.now().strftime("%Y-%m-%d_%H%M%S")
        path = self.backup_dir / f"{world_name}_{ts}{ARCHIVE_SUFFIX}"
        n = 1
        while path.exists():
            path = self.backup_dir / f"{world_name}_{ts}-{n}{ARCHIVE_SUFFIX}"
            n += 1
        return path

    async def _create_archive(self, world_name: str, dest: Path) -> None:
        cmd = ["tar", "-czf", str(dest), "-C", str(self.data_path), world_name]
        output, rc = await run_cmd_async(cmd, timeout=self.timeout)
        if rc != 0:
            raise IOFailure(output or f"tar exited with status {rc}")

    async def _best_effort(self, command: str) -> None:
        result = await self.rcon.execute(command)
        if not result.success:
            logger.warning("RCON %r failed during backup: %s", command, result.response)

    async def backup(self, world_name) -> BackupArchive:
        if not is_valid_world_name(world_name) or not (self.data_path / world_name).is_dir():
            raise NotFoundError("World not found")

        if self.locks.owner(world_name) == "delete":
            raise GuardViolation(f"World {world_name} is being deleted")
        if self.locks.is_locked(world_name):
            raise BackupInProgressError(f"A backup of {world_name} is already running")

        async with self.locks.hold(world_name, "backup"):
            logger.info("Starting backup of world %s", world_name)
            await self._best_effort(SAVE_FLUSH_COMMAND)
            await asyncio.sleep(self.settle_seconds)
            await self._best_effort(SAVE_OFF_COMMAND)

            dest = None
            try:
                self.backup_dir.mkdir(parents=True, exist_ok=True)
                dest = self._archive_path(world_name)
                await self._create_archive(world_name, dest)
                archive = archive_record(dest)
            except Exception as e:
                if dest is not None:
                    dest.unlink(missing_ok=True)
                logger.error("Backup of world %s failed: %s", world_name, e)
                if isinstance(e, IOFailure):
                    raise
                raise IOFailure(str(e)) from e
            finally:
                await self._best_effort(SAVE_ON_COMMAND)

        logger.info("Backup created: %s (%s)", archive.filename, human_size(archive.size_bytes))
        return archive

    def list_backups(self) -> list[BackupArchive]:
        """Return backups sorted newest-first."""
        if not self.backup_dir.is_dir():
            return []
        items = []
        for p in self.backup_dir.glob(f"*{ARCHIVE_SUFFIX}"):
            try:
                items.append((p.stat().st_mtime, archive_record(p)))
            except OSError:
                continue
        items.sort(key=lambda item: item[0], reverse=True)
        return [archive for _, archive in items]
