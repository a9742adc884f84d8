# poi_reach/io/recorder.py
import json
import logging
import sys
from collections import Counter
from dataclasses import asdict
from typing import IO, Protocol

log = logging.getLogger("poi_reach.recorder")


class Sink(Protocol):
    def write(self, ev) -> None: ...


class JsonlSink:
    """One JSON object per event and line. With `path`, the sink owns an append-mode file."""

    def __init__(self, fp: IO[str] | None = None, *, path: str | None = None):
        if fp is not None and path is not None:
            raise ValueError("give fp or path, not both")
        self._owned = path is not None
        self.fp = open(path, "a", encoding="utf-8") if path is not None else (fp or sys.stdout)

    def write(self, ev) -> None:
        self.fp.write(json.dumps(asdict(ev), default=str) + "\n")

    def close(self) -> None:
        if self._owned:
            self.fp.close()


class MemorySink:
    def __init__(self):
        self.events: list = []

    def write(self, ev) -> None:
        self.events.append(ev)

    def named(self, name: str) -> list:
        return [ev for ev in self.events if ev.name == name]


class Recorder:
    """Fans query events out to every sink and counts them by name."""

    def __init__(self, *sinks: Sink):
        self.sinks = sinks or (JsonlSink(),)
        self.counts: Counter[str] = Counter()
        self.failures = 0

    def emit(self, ev) -> None:
        self.counts[ev.name] += 1
        for s in self.sinks:
            try:
                s.write(ev)
            except Exception:
                # analytics must never fail a query
                self.failures += 1
                log.exception("sink %s failed on %s", type(s).__name__, ev.name)

    def close(self) -> None:
        for s in self.sinks:
            close = getattr(s, "close", None)
            if close is not None:
                close()
