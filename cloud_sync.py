"""Google Drive sync through rclone."""

import configparser
import logging
from pathlib import Path

from backups import find_archive
from errors import SyncError
from helpers import run_cmd_async

logger = logging.getLogger(__name__)

RCLONE_BIN = "rclone"


class CloudSync:
    def __init__(self, config_path: Path, backup_dir: Path, remote: str = "gdrive",
                 remote_path: str = "mc-appliance-backups", timeout: int = 300):
        self.config_path = Path(config_path)
        self.backup_dir = Path(backup_dir)
        self.remote = remote
        self.remote_path = remote_path
        self.timeout = timeout

    @property
    def target(self) -> str:
        return f"{self.remote}:{self.remote_path}/"

    def status(self) -> dict:
        """Configuration check only; the remote itself is never contacted."""
        if not self.config_path.exists():
            return {"configured": False, "message": "rclone not configured"}

        try:
            text = self.config_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning("Could not read rclone config %s: %s", self.config_path, e)
            return {"configured": False, "message": "Could not read rclone config"}

        parser = configparser.ConfigParser(interpolation=None, strict=False)
        try:
            parser.read_string(text)
        except configparser.Error as e:
            # sections parsed before the bad line still count
            logger.warning("rclone config %s is malformed: %s", self.config_path, e)

        if not parser.has_section(self.remote):
            return {"configured": False, "message": "Google Drive remote not set up"}
        return {"configured": True, "message": "Google Drive connected"}

    def is_configured(self) -> bool:
        return self.status()["configured"]

    async def upload(self, filename) -> str:
        if not self.is_configured():
            raise SyncError("Google Drive not configured")
        backup_path = find_archive(self.backup_dir, filename)

        logger.info("Uploading %s to %s", filename, self.target)
        cmd = [RCLONE_BIN, "copy", str(backup_path), self.target, "--config", str(self.config_path)]
        output, rc = await run_cmd_async(cmd, timeout=self.timeout)
        if rc != 0:
            logger.error("Upload of %s failed: %s", filename, output)
            raise SyncError(output or f"rclone exited with status {rc}")
        return f"Uploaded {filename} to Google Drive"

    async def remote_files(self) -> set[str]:
        """Names of the archives already present on the remote."""
        if not self.is_configured():
            raise SyncError("Google Drive not configured")
        cmd = [RCLONE_BIN, "lsf", "--files-only", self.target, "--config", str(self.config_path)]
        output, rc = await run_cmd_async(cmd, timeout=self.timeout)
        if rc != 0:
            raise SyncError(output or f"rclone exited with status {rc}")
        return {line.strip() for line in output.splitlines() if line.strip()}
