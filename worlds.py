"""World discovery and lifecycle (create / delete)."""

import asyncio
import contextlib
import logging
import re
import shutil
from dataclasses import dataclass
from pathlib import Path

from errors import GuardViolation, IOFailure, NotFoundError, ValidationError
from helpers import dir_size, iso_mtime, size_mb
from properties import PropertiesStore

logger = logging.getLogger(__name__)

MARKER_FILE = "level.dat"
DEFAULT_WORLD = "world"
WORLD_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")

GAMEMODES = {"survival", "creative", "adventure", "spectator"}
DIFFICULTIES = {"peaceful", "easy", "normal", "hard"}


@dataclass
class World:
    name: str
    active: bool
    size_bytes: int
    last_modified: str

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "active": self.active,
            "sizeBytes": self.size_bytes,
            "sizeMB": size_mb(self.size_bytes),
            "lastModified": self.last_modified,
        }


def is_valid_world_name(name) -> bool:
    return isinstance(name, str) and bool(WORLD_NAME_RE.match(name))


class WorldLocks:
    """One asyncio.Lock per world name, shared by backup and delete."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._owners: dict[str, str] = {}

    def get(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    def is_locked(self, name: str) -> bool:
        lock = self._locks.get(name)
        return lock is not None and lock.locked()

    def owner(self, name: str) -> str | None:
        """The operation ("backup" or "delete") currently holding *name*."""
        return self._owners.get(name) if self.is_locked(name) else None

    @contextlib.asynccontextmanager
    async def hold(self, name: str, operation: str):
        async with self.get(name):
            self._owners[name] = operation
            try:
                yield
            finally:
                self._owners.pop(name, None)


class WorldRepository:
    def __init__(self, data_path: Path, properties: PropertiesStore, rcon, locks: WorldLocks | None = None):
        self.data_path = Path(data_path)
        self.properties = properties
        self.rcon = rcon
        self.locks = locks or WorldLocks()

    def active_world(self) -> str:
        name = self.properties.get("level-name")
        return name or DEFAULT_WORLD

    def world_path(self, name: str) -> Path:
        return self.data_path / name

    def _load_world(self, entry: Path, active_name: str) -> World:
        try:
            size_bytes = dir_size(entry)
        except OSError as e:
            logger.warning("Could not size world %s: %s", entry.name, e)
            size_bytes = 0
        try:
            last_modified = iso_mtime(entry / MARKER_FILE)
        except OSError:
            last_modified = ""
        return World(
            name=entry.name,
            active=entry.name == active_name,
            size_bytes=size_bytes,
            last_modified=last_modified,
        )

    def list_worlds(self) -> list[World]:
        """Scan the data root. Order follows directory enumeration."""
        active_name = self.active_world()
        worlds = []
        try:
            entries = list(self.data_path.iterdir())
        except OSError as e:
            logger.warning("Error scanning worlds in %s: %s", self.data_path, e)
            return []

        for entry in entries:
            try:
                if not entry.is_dir() or not (entry / MARKER_FILE).exists():
                    continue
            except OSError:
                continue
            worlds.append(self._load_world(entry, active_name))
        return worlds

    def get_world(self, name: str) -> World | None:
        for world in self.list_worlds():
            if world.name == name:
                return world
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def validate_create(self, name, seed=None, gamemode=None, difficulty=None, world_type=None) -> dict[str, str]:
        """Check a create request and return the property edits it implies."""
        if not is_valid_world_name(name):
            raise ValidationError("Invalid world name. Use letters, numbers, hyphens, underscores only.")
        if self.world_path(name).exists():
            raise ValidationError("A world with that name already exists.")

        for label, value in (("seed", seed), ("gamemode", gamemode),
                             ("difficulty", difficulty), ("world type", world_type)):
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"Invalid {label}.")
            if value and any(ord(ch) < 32 for ch in value):
                raise ValidationError(f"Invalid {label}: control characters are not allowed.")
        if gamemode and gamemode not in GAMEMODES:
            raise ValidationError(f"Invalid gamemode: {gamemode}")
        if difficulty and difficulty not in DIFFICULTIES:
            raise ValidationError(f"Invalid difficulty: {difficulty}")

        edits = {"level-name": name, "level-seed": seed or ""}
        if gamemode:
            edits["gamemode"] = gamemode
        if difficulty:
            edits["difficulty"] = difficulty
        if world_type:
            edits["level-type"] = world_type
        return edits

    async def create(self, name, seed=None, gamemode=None, difficulty=None, world_type=None) -> str:
        """Point the server at a new world and ask it to restart.

        Success means the configuration was accepted; the server's supervisor
        restarts the process, which then generates the world directory.
        """
        edits = await asyncio.to_thread(
            self.validate_create, name, seed, gamemode, difficulty, world_type
        )
        if self.properties.exists():
            await asyncio.to_thread(self.properties.mutate, edits)
        else:
            logger.warning("%s missing, world %s not written to configuration", self.properties.path, name)

        result = await self.rcon.execute("stop")
        if not result.success:
            logger.warning("Restart request for world %s not delivered: %s", name, result.response)

        logger.info("World %s configured, restart requested", name)
        return f'World "{name}" configured. The server is restarting to generate it. This may take a minute.'

    async def delete(self, name) -> None:
        if not is_valid_world_name(name):
            raise NotFoundError("World not found")
        world = await asyncio.to_thread(self.get_world, name)
        if world is None:
            raise NotFoundError("World not found")
        if world.active:
            raise GuardViolation("Cannot delete the active world")
        owner = self.locks.owner(name)
        if owner == "delete":
            raise GuardViolation(f"World {name} is already being deleted")
        if self.locks.is_locked(name):
            raise GuardViolation("Cannot delete a world while it is being backed up")

        async with self.locks.hold(name, "delete"):
            try:
                await asyncio.to_thread(shutil.rmtree, self.world_path(name))
            except OSError as e:
                raise IOFailure(f"Could not delete world {name}: {e}") from e
        logger.info("Deleted world %s", name)
