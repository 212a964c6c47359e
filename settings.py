"""World Manager configuration (via environment variables)."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

logger = logging.getLogger(__name__)


def _is_truthy(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Invalid value for %s=%r, using %s", name, raw, default)
        return default


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Invalid value for %s=%r, using %s", name, raw, default)
        return default


@dataclass(frozen=True)
class Settings:
    rcon_host: str = "localhost"
    rcon_port: int = 25575
    rcon_password: str = "appliance-rcon-changeme"
    rcon_timeout: float = 5.0
    data_path: Path = Path("/mc-data")
    backup_dir: Path = Path("/backups")
    rclone_config_path: Path = Path("/config/rclone/rclone.conf")
    rclone_remote: str = "gdrive"
    rclone_remote_path: str = "mc-appliance-backups"
    backup_settle_seconds: float = 2.0
    backup_timeout: int = 120
    upload_timeout: int = 300
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    debug: bool = False

    @property
    def properties_file(self) -> Path:
        return self.data_path / "server.properties"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings once at startup; components never read os.environ."""
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            rcon_host=env.get("MC_RCON_HOST", defaults.rcon_host),
            rcon_port=_env_int(env, "MC_RCON_PORT", defaults.rcon_port),
            rcon_password=env.get("MC_RCON_PASSWORD", defaults.rcon_password),
            rcon_timeout=_env_float(env, "RCON_TIMEOUT", defaults.rcon_timeout),
            data_path=Path(env.get("MC_DATA_PATH", str(defaults.data_path))),
            backup_dir=Path(env.get("BACKUP_DIR", str(defaults.backup_dir))),
            rclone_config_path=Path(env.get("RCLONE_CONFIG_PATH", str(defaults.rclone_config_path))),
            rclone_remote=env.get("RCLONE_REMOTE", defaults.rclone_remote),
            rclone_remote_path=env.get("RCLONE_REMOTE_PATH", defaults.rclone_remote_path),
            backup_settle_seconds=_env_float(env, "BACKUP_SETTLE_SECONDS", defaults.backup_settle_seconds),
            backup_timeout=_env_int(env, "BACKUP_TIMEOUT", defaults.backup_timeout),
            upload_timeout=_env_int(env, "UPLOAD_TIMEOUT", defaults.upload_timeout),
            host=env.get("WORLD_MANAGER_HOST", defaults.host),
            port=_env_int(env, "WORLD_MANAGER_PORT", defaults.port),
            log_level=env.get("LOG_LEVEL", defaults.log_level).upper(),
            debug=_is_truthy(env.get("WORLD_MANAGER_DEBUG")),
        )
