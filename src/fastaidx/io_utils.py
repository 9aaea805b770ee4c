from __future__ import annotations

import gzip
import re
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterable, Iterator

from .errors import DuplicateIdentifierError, MalformedInputError, SourceReadError

_LINE_END = re.compile(rb"\r\n|\r|\n")


def strip_terminator(line: bytes) -> bytes:
    if line.endswith(b"\r\n"):
        return line[:-2]
    if line.endswith(b"\n") or line.endswith(b"\r"):
        return line[:-1]
    return line


def decode_header(line: bytes) -> str:
    # surrogateescape keeps undecodable bytes distinct and reversible
    return strip_terminator(line).decode("utf-8", errors="surrogateescape")


def identifier_from_description(description: str) -> str:
    toks = description[1:].split(maxsplit=1)
    return toks[0] if toks else ""


@dataclass(frozen=True)
class Entry:
    identifier: str
    description: str
    sequence: bytes
    length: int

    @classmethod
    def from_header(cls, header: bytes | str, chunks: Iterable[bytes]) -> "Entry":
        description = decode_header(header) if isinstance(header, bytes) else header
        seq = b"".join(chunks)
        return cls(identifier_from_description(description), description, seq, len(seq))


def open_fasta(path: str | Path) -> BinaryIO:
    """Open a FASTA file for binary reading, decompressing ``.gz`` on the fly."""
    p = Path(path)
    try:
        if p.suffix == ".gz":
            return gzip.open(p, "rb")
        return p.open("rb")
    except OSError as exc:
        raise SourceReadError(f"Could not open FASTA source {p}: {exc}") from exc


def iter_lines(source: BinaryIO, chunk_size: int = 1 << 16) -> Iterator[bytes]:
    """Yield raw lines, terminator included, splitting on ``\\n``, ``\\r\\n`` and a lone ``\\r``.

    Every byte of ``source`` lands in exactly one yielded line, so summing
    their lengths gives absolute offsets.
    """
    buf = b""
    while True:
        try:
            chunk = source.read(chunk_size)
        except (OSError, EOFError) as exc:
            raise SourceReadError(f"Failed reading FASTA source: {exc}") from exc
        if not chunk:
            break
        buf += chunk
        pos = 0
        for m in _LINE_END.finditer(buf):
            # a trailing "\r" may be the first half of a "\r\n" split across chunks
            if m.group() == b"\r" and m.end() == len(buf):
                break
            yield buf[pos : m.end()]
            pos = m.end()
        buf = buf[pos:]
    if buf:
        yield buf


def stream(source: BinaryIO) -> Iterator[Entry]:
    """Lazily yield the entries of ``source`` in file order.

    The generator is single-use: it consumes ``source`` as it goes, so a
    second pass needs a fresh handle. Blank lines before the first header
    are skipped; anything else before it raises ``MalformedInputError``.
    """
    header: bytes | None = None
    chunks: list[bytes] = []
    for line_no, line in enumerate(iter_lines(source), start=1):
        if line.startswith(b">"):
            if header is not None:
                yield Entry.from_header(header, chunks)
            header = line
            chunks = []
            continue
        content = strip_terminator(line)
        if header is None:
            if content.strip():
                raise MalformedInputError(f"Sequence content before first header at line {line_no}")
            continue
        chunks.append(content)
    if header is not None:
        yield Entry.from_header(header, chunks)


def read_fasta(path: str | Path) -> list[Entry]:
    with open_fasta(path) as handle:
        return list(stream(handle))


def sequence_map(entries: Iterable[Entry]) -> dict[str, bytes]:
    out: dict[str, bytes] = {}
    for e in entries:
        if e.identifier in out:
            raise DuplicateIdentifierError(f"Multiple entries found for id: {e.identifier!r}")
        out[e.identifier] = e.sequence
    return out


def accession_from_description(description: str, separator: str | None = None, id_index: int = 0) -> str:
    # UniProt-style headers: ">tr|P93158|P93158_GOSHI ..." with separator "|" and id_index 1
    if separator and separator in description:
        fields = description.split(separator)
        if id_index >= len(fields):
            raise MalformedInputError(
                f"Header has {len(fields)} fields, cannot take field {id_index}: {description!r}"
            )
        return fields[0][1:] if id_index == 0 else fields[id_index]
    return description[1:]


def accessions(entries: Iterable[Entry], separator: str | None = None, id_index: int = 0) -> list[str]:
    return [accession_from_description(e.description, separator, id_index) for e in entries]


def sequence_lengths(entries: Iterable[Entry], separator: str | None = None, id_index: int = 0) -> dict[str, int]:
    return {accession_from_description(e.description, separator, id_index): e.length for e in entries}
