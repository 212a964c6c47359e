"""Shared fixtures: a scripted RCON stand-in and a throwaway data root."""

import asyncio
import socket
import struct
import sys
import threading
import time
from pathlib import Path

import pytest

# Add the app directory to the path
sys.path.insert(0, str(Path(__file__).parent))

from rcon_client import RconResult
from settings import Settings

PROPERTIES_TEXT = (
    "#Minecraft server properties\n"
    "#Mon Jan 01 00:00:00 UTC 2024\n"
    "difficulty=easy\n"
    "gamemode=survival\n"
    "level-name=world\n"
    "level-seed=\n"
    "level-type=minecraft\\:normal\n"
    "max-players=20\n"
    "motd=A Minecraft Server\n"
)


class FakeRcon:
    """Records every command; replies come from ``responses`` or ``online``."""

    def __init__(self, online: bool = True, responses: dict | None = None):
        self.online = online
        self.responses = responses or {}
        self.commands: list[str] = []

    async def execute(self, command: str) -> RconResult:
        self.commands.append(command)
        if not self.online:
            return RconResult(False, "connect ECONNREFUSED 127.0.0.1:25575")
        return RconResult(True, self.responses.get(command, ""))


def _recv_exact(conn: socket.socket, n: int) -> bytes | None:
    buf = b""
    while len(buf) < n:
        chunk = conn.recv(n - len(buf))
        if not chunk:
            return None
        buf += chunk
    return buf


def _pack(request_id: int, kind: int, payload: bytes) -> bytes:
    body = struct.pack("<ii", request_id, kind) + payload + b"\x00\x00"
    return struct.pack("<i", len(body)) + body


class LoopbackRconServer:
    """A small RCON server on 127.0.0.1 that records every command it receives.

    ``auth_delays`` maps a 1-based session number to seconds to wait before
    answering that session's login. ``eof`` counts sessions the client closed
    cleanly; ``finished`` counts sessions that ended for any reason.
    """

    def __init__(self, password: str = "secret"):
        self.password = password
        self.replies: dict[str, str] = {}
        self.auth_delays: dict[int, float] = {}
        self.hang_up = False
        self.commands: list[str] = []
        self.sessions = 0
        self.finished = 0
        self.eof = 0
        self._cond = threading.Condition()
        self._stop = threading.Event()
        self._sock = socket.create_server(("127.0.0.1", 0))
        self._sock.settimeout(0.05)
        self.port = self._sock.getsockname()[1]
        self._thread = threading.Thread(target=self._accept_loop, daemon=True)

    def client_settings(self, **overrides) -> Settings:
        values = {"rcon_host": "127.0.0.1", "rcon_port": self.port, "rcon_password": self.password,
                  "rcon_timeout": 2.0}
        values.update(overrides)
        return Settings(**values)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        self._thread.join(timeout=2)
        self._sock.close()

    def wait_until(self, predicate, timeout: float = 3.0) -> bool:
        with self._cond:
            return self._cond.wait_for(predicate, timeout)

    def _accept_loop(self) -> None:
        while not self._stop.is_set():
            try:
                conn, _ = self._sock.accept()
            except socket.timeout:
                continue
            with self._cond:
                self.sessions += 1
                number = self.sessions
            threading.Thread(target=self._serve, args=(conn, number), daemon=True).start()

    def _serve(self, conn: socket.socket, number: int) -> None:
        eof = False
        with conn:
            conn.settimeout(5)
            try:
                while not self.hang_up:
                    header = _recv_exact(conn, 4)
                    body = None if header is None else _recv_exact(conn, struct.unpack("<i", header)[0])
                    if body is None:
                        eof = True
                        break
                    request_id, kind = struct.unpack("<ii", body[:8])
                    payload = body[8:-2].decode()
                    if kind == 3:
                        time.sleep(self.auth_delays.get(number, 0))
                        accepted = payload == self.password
                        conn.sendall(_pack(request_id if accepted else -1, 2, b""))
                    else:
                        with self._cond:
                            self.commands.append(payload)
                        conn.sendall(_pack(request_id, 0, self.replies.get(payload, "").encode()))
            except OSError:
                pass
        with self._cond:
            self.finished += 1
            if eof:
                self.eof += 1
            self._cond.notify_all()


def make_world(data_path: Path, name: str, payload: bytes = b"x" * 64) -> Path:
    world = data_path / name
    (world / "region").mkdir(parents=True)
    (world / "level.dat").write_bytes(payload)
    (world / "region" / "r.0.0.mca").write_bytes(payload * 4)
    return world


@pytest.fixture
def data_path(tmp_path):
    path = tmp_path / "mc-data"
    path.mkdir()
    (path / "server.properties").write_text(PROPERTIES_TEXT, encoding="utf-8")
    make_world(path, "world")
    make_world(path, "world_nether")
    (path / "logs").mkdir()
    return path


@pytest.fixture
def settings(tmp_path, data_path):
    return Settings(
        data_path=data_path,
        backup_dir=tmp_path / "backups",
        rclone_config_path=tmp_path / "rclone" / "rclone.conf",
        backup_settle_seconds=0,
        backup_timeout=30,
        upload_timeout=30,
    )


@pytest.fixture
def fake_rcon():
    return FakeRcon()


@pytest.fixture
def rcon_server():
    server = LoopbackRconServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def opened_writers(monkeypatch):
    """Every StreamWriter the RCON client opens, so tests can check it was closed."""
    writers = []
    real_open = asyncio.open_connection

    async def recording_open(*args, **kwargs):
        reader, writer = await real_open(*args, **kwargs)
        writers.append(writer)
        return reader, writer

    monkeypatch.setattr(asyncio, "open_connection", recording_open)
    return writers
