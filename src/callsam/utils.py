from __future__ import annotations

import gzip
import json
import logging
import sys
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Optional, TextIO, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

PHRED_OFFSET = 33


def phred(ch: str) -> int:
    """Decode one Phred+33 quality character."""
    return ord(ch) - PHRED_OFFSET


def ensure_outdir(path: str | Path) -> Path:
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def open_textmaybe_gzip(path: str | Path, mode: str = "rt") -> TextIO:
    p = str(path)
    if p.endswith(".gz"):
        return gzip.open(p, mode)  # type: ignore[return-value]
    return open(p, mode)


@contextmanager
def open_input(path: Optional[str]) -> Iterator[TextIO]:
    """Open a text input; ``None`` or ``-`` reads stdin."""
    if path is None or path == "-":
        yield sys.stdin
        return
    fh = open_textmaybe_gzip(path, "rt")
    try:
        yield fh
    finally:
        fh.close()


@contextmanager
def open_output(path: Optional[str]) -> Iterator[TextIO]:
    """Open a text output; ``None`` or ``-`` writes stdout."""
    if path is None or path == "-":
        yield sys.stdout
        sys.stdout.flush()
        return
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    fh = open_textmaybe_gzip(path, "wt")
    try:
        yield fh
    finally:
        fh.close()


def write_json(path: str | Path, obj: Any) -> None:
    with open(path, "wt", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, sort_keys=True)


def dataclass_to_jsonable(dc: Any) -> Mapping[str, Any]:
    return asdict(dc)


def chunked(iterable: Iterable[T], n: int) -> Iterable[list[T]]:
    chunk: list[T] = []
    for item in iterable:
        chunk.append(item)
        if len(chunk) >= n:
            yield chunk
            chunk = []
    if chunk:
        yield chunk
