"""Shared helpers: subprocess runner, sizes and timestamps."""

import asyncio
import subprocess
from datetime import datetime, timezone
from pathlib import Path


def run_cmd(cmd: list[str], timeout: int = 10) -> tuple[str, int]:
    """Run a subprocess and return (stdout+stderr, returncode)."""
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        output = result.stdout
        if result.stderr:
            output += "\n" + result.stderr
        return output.strip(), result.returncode
    except subprocess.TimeoutExpired:
        return f"Command timed out after {timeout}s", 1
    except FileNotFoundError:
        return f"Command not found: {cmd[0]}", 1
    except OSError as e:
        return str(e), 1


async def run_cmd_async(cmd: list[str], timeout: int = 10) -> tuple[str, int]:
    """Async version of run_cmd; the blocking call runs in a worker thread."""
    return await asyncio.to_thread(run_cmd, cmd, timeout)


def size_mb(size_bytes: int) -> str:
    return f"{size_bytes / 1048576:.1f}"


def human_size(size_bytes: float) -> str:
    """Convert bytes to human-readable string."""
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(size_bytes) < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} PB"


def iso_mtime(path: Path) -> str:
    """Modification time of *path* as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc).isoformat()


def dir_size(path: Path) -> int:
    """Recursive size of a directory tree in bytes (symlinks not followed)."""
    total = 0
    stack = [path]
    while stack:
        current = stack.pop()
        for entry in current.iterdir():
            st = entry.lstat()
            if entry.is_dir() and not entry.is_symlink():
                stack.append(entry)
            else:
                total += st.st_size
    return total
