"""Remote-console (RCON) access to the running game server.

Every call to :meth:`RconClient.execute` opens its own session, authenticates,
sends one command, reads the reply and closes the connection again. The whole
exchange runs on the event loop, so a timeout cancels it outright: the stream
is closed before ``execute`` returns and nothing more is sent on it. Failures
never raise; they come back as ``RconResult(success=False, ...)`` so callers
can decide whether a failed exchange matters (a status check just reports the
server as offline).
"""

import asyncio
import contextlib
import logging
import re
import struct
from dataclasses import asdict, dataclass

from rcon.exceptions import EmptyResponse, SessionTimeout, WrongPassword
from rcon.source.proto import LittleEndianSignedInt32, Packet, Type

from settings import Settings

logger = logging.getLogger(__name__)

# Minecraft chat formatting codes (colors and styles)
FORMATTING_CODE_RE = re.compile(r"§[0-9a-fk-or]", re.IGNORECASE)
PLAYER_LIST_RE = re.compile(r"There are (\d+) of a max(?: of)? (\d+) players online")
DEFAULT_MAX_PLAYERS = 20

# Minecraft rejects RCON payloads above 1446 bytes
MAX_COMMAND_LENGTH = 1000


@dataclass(frozen=True)
class RconResult:
    success: bool
    response: str

    def to_dict(self) -> dict:
        return asdict(self)


def strip_formatting(text: str) -> str:
    return FORMATTING_CODE_RE.sub("", text)


def validate_console_command(command: str) -> tuple[bool, str]:
    """Check a console command typed by a user. Returns (is_allowed, error_message)."""
    if not command or not command.strip():
        return False, "No command given"
    if len(command) > MAX_COMMAND_LENGTH:
        return False, f"Command too long (max {MAX_COMMAND_LENGTH} characters)"
    if any(ord(ch) < 32 for ch in command):
        return False, "Command contains control characters"
    return True, ""


def parse_player_list(response: str) -> tuple[int, int, list[str]]:
    """Parse the reply of ``list`` into (player_count, max_players, players)."""
    match = PLAYER_LIST_RE.search(response)
    if not match:
        return 0, DEFAULT_MAX_PLAYERS, []
    count, max_players = int(match.group(1)), int(match.group(2))

    players: list[str] = []
    if count > 0 and ":" in response:
        names = response.split(":", 1)[1]
        players = [p.strip() for p in names.split(",") if p.strip()]
    return count, max_players, players


async def _send(writer: asyncio.StreamWriter, packet: Packet) -> None:
    writer.write(bytes(packet))
    await writer.drain()


async def _read_packet(reader: asyncio.StreamReader) -> Packet:
    """Read one complete packet; a short read never yields a half-parsed header."""
    (size,) = struct.unpack("<i", await reader.readexactly(4))
    if size < 10:
        raise EmptyResponse()
    body = await reader.readexactly(size)
    request_id, kind = struct.unpack("<ii", body[:8])
    return Packet(LittleEndianSignedInt32(request_id), Type(kind), body[8:-2], body[-2:])


class RconClient:
    def __init__(self, settings: Settings):
        self.host = settings.rcon_host
        self.port = settings.rcon_port
        self.password = settings.rcon_password
        self.timeout = settings.rcon_timeout

    async def _exchange(self, command: str) -> str:
        """One login + one command over a fresh connection."""
        reader, writer = await asyncio.open_connection(self.host, self.port)
        try:
            await _send(writer, Packet.make_login(self.password))
            response = await _read_packet(reader)
            while response.type != Type.SERVERDATA_AUTH_RESPONSE:
                response = await _read_packet(reader)
            if response.id == -1:
                raise WrongPassword()

            request = Packet.make_command(command)
            await _send(writer, request)
            response = await _read_packet(reader)
            if response.id != request.id:
                raise SessionTimeout("packet ID mismatch")
            return response.payload.decode("utf-8", errors="replace")
        finally:
            # runs on cancellation too, so a timed-out session is closed before execute returns
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()

    async def execute(self, command: str) -> RconResult:
        try:
            response = await asyncio.wait_for(self._exchange(command), timeout=self.timeout)
        except (asyncio.TimeoutError, TimeoutError):
            return self._failure(command, f"Timed out after {self.timeout:g}s")
        except WrongPassword:
            return self._failure(command, "Authentication failed")
        except SessionTimeout:
            return self._failure(command, "Session timed out")
        except (EmptyResponse, asyncio.IncompleteReadError):
            return self._failure(command, "Empty response from server")
        except OSError as e:
            return self._failure(command, str(e) or type(e).__name__)
        except ValueError as e:
            return self._failure(command, f"Invalid response from server: {e}")
        return RconResult(True, strip_formatting(response))

    def _failure(self, command: str, message: str) -> RconResult:
        logger.debug("RCON %r to %s:%s failed: %s", command, self.host, self.port, message)
        return RconResult(False, message)


async def server_status(rcon) -> dict:
    """Ask the server for ``list``; an unreachable server reads as offline."""
    result = await rcon.execute("list")
    if not result.success:
        return {"online": False, "players": [], "playerCount": 0, "maxPlayers": 0}
    count, max_players, players = parse_player_list(result.response)
    return {"online": True, "players": players, "playerCount": count, "maxPlayers": max_players}
