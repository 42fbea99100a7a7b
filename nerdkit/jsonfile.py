"""Docker-compatible "json-file" container logs."""

from __future__ import annotations

import json
import logging
import os
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import IO, Any, Mapping

log = logging.getLogger(__name__)

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_TIME_RE = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)
_WS_RE = re.compile(r"\s*")


def _format_time(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    text = (
        f"{value.year:04d}-{value.month:02d}-{value.day:02d}"
        f"T{value.hour:02d}:{value.minute:02d}:{value.second:02d}"
    )
    fraction = f"{value.microsecond:06d}".rstrip("0")
    if fraction:
        text += "." + fraction
    return text + "Z"


def _parse_time(text: str) -> datetime:
    match = _TIME_RE.fullmatch(text)
    if not match:
        raise ValueError(f"invalid time {text!r}")
    year, month, day, hour, minute, second = (int(g) for g in match.groups()[:6])
    fraction, zone = match.group(7), match.group(8)
    micro = int((fraction or "0")[:6].ljust(6, "0"))
    if zone == "Z":
        tz = timezone.utc
    else:
        sign = 1 if zone[0] == "+" else -1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    return datetime(year, month, day, hour, minute, second, micro, tzinfo=tz)


@dataclass
class Entry:
    """One log line: the text (with its line ending), stream name and time."""

    log: str = ""
    stream: str = ""
    time: datetime = field(default_factory=lambda: _ZERO_TIME)

    def to_json(self) -> str:
        """Serialise as a single JSON object without a trailing newline."""
        obj: dict[str, Any] = {}
        if self.log:
            obj["log"] = self.log
        if self.stream:
            obj["stream"] = self.stream
        obj["time"] = _format_time(self.time)
        text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
        return (
            text.replace("<", "\\u003c")
            .replace(">", "\\u003e")
            .replace("&", "\\u0026")
            .replace("\u2028", "\\u2028")
            .replace("\u2029", "\\u2029")
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Entry":
        """Build an Entry from a decoded JSON object."""
        time_text = data.get("time")
        return cls(
            log=data.get("log") or "",
            stream=data.get("stream") or "",
            time=_parse_time(time_text) if time_text else _ZERO_TIME,
        )


def log_path(data_store: str, namespace: str, container_id: str) -> str:
    """Return the path of a container's JSON log file (named as Docker does)."""
    return os.path.join(
        data_store, "containers", namespace, container_id, container_id + "-json.log"
    )


def encode(writer: IO[str], stdout: IO[Any], stderr: IO[Any]) -> None:
    """Copy lines of *stdout* and *stderr* into *writer* as JSON entries.

    Both streams are read concurrently until EOF; an unterminated last line
    is dropped.
    """
    lock = threading.Lock()

    def pump(reader: IO[Any], name: str) -> None:
        while True:
            try:
                line = reader.readline()
            except (OSError, ValueError):
                log.exception("failed to read line from %r", name)
                return
            if isinstance(line, (bytes, bytearray)):
                line = bytes(line).decode("utf-8", errors="replace")
            if not line.endswith("\n"):
                log.debug("reached end of %r", name)
                return
            entry = Entry(log=line, stream=name, time=datetime.now(timezone.utc))
            try:
                with lock:
                    writer.write(entry.to_json() + "\n")
            except (OSError, ValueError):
                log.exception("failed to encode JSON")
                return

    threads = [
        threading.Thread(target=pump, args=(stdout, "stdout"), daemon=True),
        threading.Thread(target=pump, args=(stderr, "stderr"), daemon=True),
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()


def decode(stdout: IO[str], stderr: IO[str], reader: IO[Any]) -> None:
    """Write the log text of each JSON entry in *reader* to its stream."""
    content = reader.read()
    if isinstance(content, (bytes, bytearray)):
        content = bytes(content).decode("utf-8")
    decoder = json.JSONDecoder()
    pos = _WS_RE.match(content, 0).end()
    while pos < len(content):
        obj, pos = decoder.raw_decode(content, pos)
        pos = _WS_RE.match(content, pos).end()
        if not isinstance(obj, dict):
            raise ValueError(f"expected a JSON object, got {obj!r}")
        entry = Entry.from_dict(obj)
        if entry.stream == "stdout":
            stdout.write(entry.log)
        elif entry.stream == "stderr":
            stderr.write(entry.log)
        else:
            log.error("unknown stream name %r, entry=%r", entry.stream, entry)