#!/usr/bin/env python3
"""
Flat KEY=value settings file (.env) handling.

The file is read into an ordered list of lines so that updates rewrite an
existing key in place and new keys are appended at the end; comments and
blank lines survive a round trip. Writes go to a temporary file in the same
directory followed by os.replace, so a crash never leaves a half-written file.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .config_constants import SECRET_FILE_MODE, TIMESTAMP_FORMAT, backup_name
from .console import warn
from .errors import SettingsFileError

logger = logging.getLogger(__name__)

_KEY_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

DEFAULT_PLACEHOLDERS = ('change_me', 'changeme', 'change_me_in_production')


def strip_inline_comment(value: str) -> str:
    """Remove a trailing '#' comment that is not inside quotes."""
    in_quotes = False
    quote_char = None
    for i, char in enumerate(value):
        if char in ('"', "'") and (i == 0 or value[i - 1] != '\\'):
            if not in_quotes:
                in_quotes = True
                quote_char = char
            elif char == quote_char:
                in_quotes = False
        elif char == '#' and not in_quotes and (i == 0 or value[i - 1].isspace()):
            return value[:i].rstrip()
    return value


def unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        inner = value[1:-1]
        if value[0] == '"':
            inner = inner.replace('\\"', '"').replace('\\\\', '\\')
        return inner
    return value


def parse_line(line: str) -> Optional[tuple[str, str]]:
    """
    Parse one settings line into (key, value).

    Returns None for blank lines, comments, and lines without a valid key.
    """
    s = line.strip()
    if not s or s.startswith('#') or '=' not in s:
        return None
    if s.startswith('export '):
        s = s[len('export '):].lstrip()
    key, raw = s.split('=', 1)
    key = key.strip()
    if not _KEY_RE.match(key):
        return None
    return key, unquote(strip_inline_comment(raw.strip()))


def format_value(value: str) -> str:
    """Quote values that would not survive an unquoted round trip."""
    if value == '' or re.search(r'[\s#"\']', value):
        escaped = value.replace('\\', '\\\\').replace('"', '\\"')
        return f'"{escaped}"'
    return value


class SettingsFile:
    """An ordered, line-preserving view of a KEY=value settings file."""

    def __init__(self, path: Path, placeholders: Iterable[str] = DEFAULT_PLACEHOLDERS):
        self.path = Path(path)
        self.placeholders = tuple(p.lower() for p in placeholders)
        self._lines: List[str] = []
        self._values: Dict[str, str] = {}
        self._index: Dict[str, int] = {}
        if self.path.exists():
            self.reload()

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def exists(self) -> bool:
        return self.path.is_file()

    def require(self) -> "SettingsFile":
        """Raise SettingsFileError unless the file exists on disk."""
        if not self.exists():
            raise SettingsFileError(f"Settings file not found: {self.path}")
        return self

    def reload(self) -> None:
        try:
            text = self.path.read_text(encoding='utf-8')
        except OSError as e:
            raise SettingsFileError(f"Cannot read settings file {self.path}: {e}") from e

        self._lines = text.splitlines(keepends=True)
        if self._lines and not self._lines[-1].endswith('\n'):
            self._lines[-1] += '\n'
        self._values = {}
        self._index = {}
        for idx, line in enumerate(self._lines):
            parsed = parse_line(line)
            if parsed is None:
                stripped = line.strip()
                if stripped and not stripped.startswith('#'):
                    warn(f"{self.path.name}:{idx + 1}: ignoring invalid line")
                continue
            key, value = parsed
            self._values[key] = value
            self._index[key] = idx

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(key, default)

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def keys(self) -> List[str]:
        return list(self._values)

    def as_dict(self) -> Dict[str, str]:
        return dict(self._values)

    def is_placeholder(self, value: Optional[str]) -> bool:
        """True for empty values and known placeholder strings."""
        if value is None or value.strip() == '':
            return True
        lowered = value.strip().lower()
        return lowered in self.placeholders or 'change_me' in lowered

    def placeholder_keys(self, keys: Optional[Iterable[str]] = None) -> List[str]:
        """Return the keys whose current values are placeholders."""
        candidates = self.keys() if keys is None else list(keys)
        return [
            k for k in candidates
            if k in self._values and self.is_placeholder(self._values[k])
        ]

    def has_placeholders(self, keys: Optional[Iterable[str]] = None) -> bool:
        return bool(self.placeholder_keys(keys))

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def set(self, key: str, value: str) -> None:
        """Set a key in memory; existing lines are rewritten in place."""
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid settings key: {key!r}")
        entry = f"{key}={format_value(value)}\n"
        if key in self._index:
            self._lines[self._index[key]] = entry
        else:
            self._lines.append(entry)
            self._index[key] = len(self._lines) - 1
        self._values[key] = value

    def update(self, values: Dict[str, str], save: bool = True) -> None:
        for key, value in values.items():
            self.set(key, value)
        if save:
            self.save()
        logger.debug(f"Updated {len(values)} settings in {self.path}: {', '.join(values)}")

    def save(self) -> None:
        """Write the file atomically, preserving its permission bits."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        mode = None
        if self.path.exists():
            mode = self.path.stat().st_mode & 0o777

        fd, tmp = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix='.tmp', dir=self.path.parent)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.writelines(self._lines)
            if mode is not None:
                os.chmod(tmp, mode)
            os.replace(tmp, self.path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def backup(self, stamp: Optional[str] = None) -> Path:
        """Copy the file to <name>.backup.<stamp> with mode 600."""
        self.require()
        stamp = stamp or datetime.now().strftime(TIMESTAMP_FORMAT)
        target = self.path.with_name(backup_name(self.path.name, stamp))
        shutil.copy2(self.path, target)
        os.chmod(target, SECRET_FILE_MODE)
        return target
