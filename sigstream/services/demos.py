"""
Trace persistence for few-shot demos.

Successful generation calls record a ``Trace`` (inputs plus
outputs, keyed by the program that produced it).  Traces are
grouped by key into ``ProgramDemos`` and can be written to a JSON
file, then loaded back and attached to a generator with
``Generator.set_demos()``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, TypeAdapter

from sigstream.schemas.events import Trace

logger = logging.getLogger(__name__)


class ProgramDemos(BaseModel):
    """All recorded traces of one program."""

    key: str
    traces: list[dict[str, Any]] = Field(default_factory=list)


_DEMOS_ADAPTER = TypeAdapter(list[ProgramDemos])


def group_traces(traces: Iterable[Trace]) -> list[ProgramDemos]:
    """Group traces by key, preserving first-seen key order."""
    grouped: dict[str, list[dict[str, Any]]] = {}
    for trace in traces:
        grouped.setdefault(trace.key, []).append(trace.trace)
    return [ProgramDemos(key=key, traces=items) for key, items in grouped.items()]


def save_demos(demos: list[ProgramDemos], path: str | Path) -> None:
    """Write *demos* to *path* as indented JSON."""
    Path(path).write_bytes(_DEMOS_ADAPTER.dump_json(demos, indent=2))
    logger.info("Saved %d demo group(s) to %s", len(demos), path)


def load_demos(path: str | Path) -> list[ProgramDemos]:
    """Read demos previously written by :func:`save_demos`."""
    return _DEMOS_ADAPTER.validate_json(Path(path).read_bytes())
