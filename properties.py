"""server.properties access.

The file is kept as an ordered list of lines. Key/value lines are parsed into
entries; comments, blanks and anything without ``=`` are carried through
verbatim, so a write only ever touches the lines of keys that were changed.
"""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "#"


@dataclass
class _Line:
    raw: str
    ending: str
    key: str | None = None
    value: str | None = None


def _split_ending(line: str) -> tuple[str, str]:
    for ending in ("\r\n", "\n", "\r"):
        if line.endswith(ending):
            return line[: -len(ending)], ending
    return line, ""


class PropertiesDocument:
    def __init__(self, lines: list[_Line]):
        self._lines = lines

    @classmethod
    def parse(cls, text: str) -> "PropertiesDocument":
        lines = []
        for chunk in text.splitlines(keepends=True):
            body, ending = _split_ending(chunk)
            line = _Line(raw=body, ending=ending)
            if not body.startswith(COMMENT_PREFIX) and "=" in body:
                key, value = body.split("=", 1)
                line.key = key.strip()
                line.value = value.strip()
            lines.append(line)
        return cls(lines)

    def _find(self, key: str) -> _Line | None:
        for line in self._lines:
            if line.key == key:
                return line
        return None

    def get(self, key: str, default: str | None = None) -> str | None:
        line = self._find(key)
        return default if line is None else line.value

    def set(self, key: str, value: str) -> bool:
        """Replace the first line for *key*. Keys not present are left absent."""
        line = self._find(key)
        if line is None:
            return False
        line.raw = f"{key}={value}"
        line.value = value
        return True

    def unset(self, key: str) -> bool:
        """Clear the value of *key* but keep the key itself."""
        return self.set(key, "")

    def keys(self) -> list[str]:
        return list(self.as_dict())

    def as_dict(self) -> dict[str, str]:
        props: dict[str, str] = {}
        for line in self._lines:
            if line.key is not None and line.key not in props:
                props[line.key] = line.value
        return props

    def render(self) -> str:
        return "".join(line.raw + line.ending for line in self._lines)


class PropertiesStore:
    def __init__(self, path: Path):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def load(self) -> PropertiesDocument | None:
        if not self.path.is_file():
            return None
        # newline="" keeps \r\n endings intact for the round trip
        with open(self.path, "r", encoding="utf-8", newline="") as f:
            return PropertiesDocument.parse(f.read())

    def read(self) -> dict[str, str]:
        doc = self.load()
        return {} if doc is None else doc.as_dict()

    def get(self, key: str, default: str | None = None) -> str | None:
        doc = self.load()
        return default if doc is None else doc.get(key, default)

    def mutate(self, edits: dict[str, str | None]) -> list[str]:
        """Apply *edits* (None or "" clears a value). Returns the keys that were applied."""
        doc = self.load()
        if doc is None:
            return []

        applied = []
        for key, value in edits.items():
            if doc.set(key, "" if value is None else str(value)):
                applied.append(key)
            else:
                logger.info("Property %s not present in %s, left unchanged", key, self.path.name)

        if applied:
            self._write(doc.render())
            logger.info("Updated %s: %s", self.path.name, ", ".join(applied))
        return applied

    def _write(self, content: str) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".server.properties.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(content)
            shutil.copymode(self.path, tmp_name)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
