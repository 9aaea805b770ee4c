"""Translation of logical sequence coordinates into byte ranges of the source file.

A record wrapped at ``w`` residues per line, with ``s`` bytes per line once the
terminator is counted, stores residue ``p`` at byte
``o + (p // w) * s + p % w`` where ``o`` is the offset of the first residue.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

from .errors import RangeOutOfBoundsError

if TYPE_CHECKING:
    from .index import IndexRecord


def check_range(record: "IndexRecord", start: int, end: int) -> None:
    if not (0 <= start <= end <= record.total_sequence_length):
        raise RangeOutOfBoundsError(
            f"Invalid interval {record.identifier}:{start}-{end} (len={record.total_sequence_length})"
        )


def translate(record: "IndexRecord", start: int, end: int) -> list[tuple[int, int]]:
    """Split ``[start, end)`` into one ``(byte_offset, byte_length)`` pair per physical line."""
    check_range(record, start, end)
    w = record.line_length
    stride = record.line_width_with_terminator
    origin = record.sequence_start_offset
    pieces: list[tuple[int, int]] = []
    pos = start
    while pos < end:
        line, col = divmod(pos, w)
        take = min(w - col, end - pos)
        pieces.append((origin + line * stride + col, take))
        pos += take
    return pieces


def byte_span(pieces: list[tuple[int, int]]) -> tuple[int, int]:
    if not pieces:
        return (0, 0)
    first, _ = pieces[0]
    last, last_len = pieces[-1]
    return (first, last + last_len - first)
