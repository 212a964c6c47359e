"""MC World Manager – FastAPI Backend."""

import asyncio
import json
import logging
import time
from pathlib import Path

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from backups import BackupOrchestrator
from cloud_sync import CloudSync
from errors import SyncError, WorldManagerError
from properties import PropertiesStore
from rcon_client import RconClient, RconResult, server_status, validate_console_command
from settings import Settings
from worlds import WorldLocks, WorldRepository

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).parent
STATIC_VERSION = str(int(time.time()))
LOG_FORMAT = "[WorldManager] %(asctime)s %(levelname)s %(name)s: %(message)s"
FALLBACK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
async def read_body(request: Request) -> dict:
    """Parse a JSON body; anything malformed counts as an empty object."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, ValueError):
        return {}
    return body if isinstance(body, dict) else {}


def failure(exc: WorldManagerError) -> dict:
    return {"success": False, "error": str(exc)}


def _opt_str(body: dict, key: str) -> str | None:
    value = body.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


# ---------------------------------------------------------------------------
# App Setup
# ---------------------------------------------------------------------------
def create_app(settings: Settings | None = None, rcon=None) -> FastAPI:
    """Build the app and its components from one Settings instance."""
    settings = settings or Settings.from_env()
    rcon = rcon or RconClient(settings)
    locks = WorldLocks()
    properties = PropertiesStore(settings.properties_file)
    worlds = WorldRepository(settings.data_path, properties, rcon, locks)
    backups = BackupOrchestrator(
        settings.data_path,
        settings.backup_dir,
        rcon,
        locks,
        settle_seconds=settings.backup_settle_seconds,
        timeout=settings.backup_timeout,
    )
    cloud = CloudSync(
        settings.rclone_config_path,
        settings.backup_dir,
        remote=settings.rclone_remote,
        remote_path=settings.rclone_remote_path,
        timeout=settings.upload_timeout,
    )

    app = FastAPI(title="MC World Manager", docs_url=None, redoc_url=None)
    app.state.settings = settings
    app.state.rcon = rcon
    app.state.worlds = worlds
    app.state.backups = backups
    app.state.cloud = cloud
    app.state.properties = properties

    app.mount("/static", StaticFiles(directory=BASE_DIR / "static"), name="static")
    templates = Jinja2Templates(directory=BASE_DIR / "templates")

    @app.on_event("startup")
    async def startup_event():
        logger.info("RCON: %s:%s", settings.rcon_host, settings.rcon_port)
        logger.info("MC Data: %s", settings.data_path)
        logger.info("Backups: %s", settings.backup_dir)

    # -----------------------------------------------------------------------
    # Status
    # -----------------------------------------------------------------------
    @app.get("/api/status")
    async def api_status():
        data = await server_status(rcon)
        data["serverProperties"] = await asyncio.to_thread(properties.read)
        data["gdrive"] = await asyncio.to_thread(cloud.status)
        return JSONResponse(data)

    @app.get("/api/properties")
    async def api_properties():
        return JSONResponse(await asyncio.to_thread(properties.read))

    @app.get("/api/gdrive/status")
    async def api_gdrive_status():
        return JSONResponse(await asyncio.to_thread(cloud.status))

    # -----------------------------------------------------------------------
    # Worlds
    # -----------------------------------------------------------------------
    @app.get("/api/worlds")
    async def api_worlds():
        result = await asyncio.to_thread(worlds.list_worlds)
        return JSONResponse([w.to_dict() for w in result])

    @app.post("/api/worlds/create")
    async def api_worlds_create(request: Request):
        body = await read_body(request)
        try:
            message = await worlds.create(
                body.get("name"),
                seed=_opt_str(body, "seed"),
                gamemode=_opt_str(body, "gamemode"),
                difficulty=_opt_str(body, "difficulty"),
                world_type=_opt_str(body, "worldType"),
            )
        except WorldManagerError as exc:
            return JSONResponse(failure(exc))
        return JSONResponse({"success": True, "message": message})

    @app.post("/api/worlds/delete")
    async def api_worlds_delete(request: Request):
        body = await read_body(request)
        try:
            await worlds.delete(body.get("name"))
        except WorldManagerError as exc:
            return JSONResponse(failure(exc))
        return JSONResponse({"success": True})

    @app.post("/api/worlds/backup")
    async def api_worlds_backup(request: Request):
        body = await read_body(request)
        try:
            archive = await backups.backup(body.get("name"))
        except WorldManagerError as exc:
            return JSONResponse(failure(exc))
        return JSONResponse({
            "success": True,
            "filename": archive.filename,
            "sizeBytes": archive.size_bytes,
            "sizeMB": archive.to_dict()["sizeMB"],
        })

    # -----------------------------------------------------------------------
    # Backups
    # -----------------------------------------------------------------------
    @app.get("/api/backups")
    async def api_backups():
        result = await asyncio.to_thread(backups.list_backups)
        return JSONResponse([b.to_dict() for b in result])

    @app.post("/api/backups/upload")
    async def api_backups_upload(request: Request):
        body = await read_body(request)
        try:
            message = await cloud.upload(body.get("filename"))
        except WorldManagerError as exc:
            return JSONResponse(failure(exc))
        return JSONResponse({"success": True, "message": message})

    @app.get("/api/backups/remote")
    async def api_backups_remote():
        local = [b.filename for b in await asyncio.to_thread(backups.list_backups)]
        try:
            remote = await cloud.remote_files()
        except SyncError as exc:
            data = failure(exc)
            data.update({"configured": cloud.is_configured(), "files": [], "pending": local})
            return JSONResponse(data)
        return JSONResponse({
            "success": True,
            "configured": True,
            "files": sorted(remote),
            "pending": [name for name in local if name not in remote],
        })

    # -----------------------------------------------------------------------
    # Console
    # -----------------------------------------------------------------------
    @app.post("/api/rcon")
    async def api_rcon(request: Request):
        body = await read_body(request)
        command = body.get("command")
        if not isinstance(command, str):
            command = ""
        command = command.strip()
        is_allowed, error_msg = validate_console_command(command)
        if not is_allowed:
            return JSONResponse(RconResult(False, error_msg).to_dict())
        result = await rcon.execute(command)
        logger.info("RCON command %r (%s)", command, "ok" if result.success else "failed")
        return JSONResponse(result.to_dict())

    # -----------------------------------------------------------------------
    # Fallbacks
    # -----------------------------------------------------------------------
    @app.api_route("/api/{path:path}", methods=FALLBACK_METHODS)
    async def api_not_found(path: str):
        return JSONResponse({"error": "Not found"}, status_code=404)

    @app.api_route("/{path:path}", methods=FALLBACK_METHODS, response_class=HTMLResponse)
    async def index(request: Request, path: str = ""):
        return templates.TemplateResponse(request, "index.html", {
            "static_version": STATIC_VERSION,
            "backup_dir": str(settings.backup_dir),
            "remote_name": settings.rclone_remote,
            "remote_path": settings.rclone_remote_path,
        })

    return app


def main() -> None:
    settings = Settings.from_env()
    level = "DEBUG" if settings.debug else settings.log_level
    logging.basicConfig(level=level, format=LOG_FORMAT)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=level.lower())


if __name__ == "__main__":
    main()
