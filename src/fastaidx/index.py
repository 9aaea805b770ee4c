"""Byte-offset index over a FASTA file with random access to sequence sub-ranges."""
from __future__ import annotations

import gzip
import io
import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Iterable, Iterator

import pandas as pd

from .errors import (
    CompressedSourceError,
    DuplicateIdentifierError,
    InconsistentLineWidthError,
    IndexFormatError,
    MalformedInputError,
    SourceReadError,
    StaleIndexError,
    UnknownIdentifierError,
)
from .io_utils import Entry, decode_header, identifier_from_description, iter_lines, strip_terminator
from .pieces import byte_span, translate
from .runtime import file_sha256

if TYPE_CHECKING:
    from .stats import LengthStats

logger = logging.getLogger(__name__)

INDEX_COLUMNS = [
    "identifier",
    "description",
    "description_offset",
    "sequence_start_offset",
    "total_sequence_length",
    "line_length",
    "line_width_with_terminator",
]


@dataclass(frozen=True)
class IndexRecord:
    identifier: str
    description: str
    description_offset: int
    sequence_start_offset: int
    total_sequence_length: int
    line_length: int
    line_width_with_terminator: int


class _RecordBuilder:
    """Accumulates layout for one record while its lines stream past."""

    def __init__(self, identifier: str, description: str, description_offset: int, sequence_start_offset: int):
        self.identifier = identifier
        self.description = description
        self.description_offset = description_offset
        self.sequence_start_offset = sequence_start_offset
        self.length = 0
        self.line_length = 0
        self.line_width = 0
        self.closed = False

    def add_line(self, content_len: int, raw_len: int, offset: int, line_no: int) -> None:
        if content_len == 0:
            if self.line_length == 0:
                self.sequence_start_offset = offset + raw_len
            else:
                self.closed = True
            return
        if self.closed:
            raise InconsistentLineWidthError(
                f"{self.identifier}: sequence line {line_no} follows a short or blank line; "
                "only the last line of a record may be shorter than the wrap width"
            )
        if self.line_length == 0:
            self.line_length = content_len
            self.line_width = raw_len
        elif content_len > self.line_length:
            raise InconsistentLineWidthError(
                f"{self.identifier}: line {line_no} has {content_len} residues, wrap width is {self.line_length}"
            )
        self.length += content_len
        if content_len < self.line_length or raw_len != self.line_width:
            self.closed = True

    def finish(self) -> IndexRecord:
        return IndexRecord(
            identifier=self.identifier,
            description=self.description,
            description_offset=self.description_offset,
            sequence_start_offset=self.sequence_start_offset,
            total_sequence_length=self.length,
            line_length=self.line_length,
            line_width_with_terminator=self.line_width,
        )


def _pread_fd(handle: BinaryIO) -> int | None:
    """File descriptor usable with ``os.pread``, or None when ``handle`` has no real file behind it."""
    if not hasattr(os, "pread") or not isinstance(handle, (io.BufferedReader, io.FileIO)):
        return None
    try:
        return handle.fileno()
    except io.UnsupportedOperation:
        return None


def _read_at(handle: BinaryIO, offset: int, length: int) -> bytes:
    try:
        fd = _pread_fd(handle)
        if fd is not None:
            data = os.pread(fd, length, offset)
        else:
            handle.seek(offset)
            data = handle.read(length)
    except (OSError, ValueError) as exc:
        raise SourceReadError(f"Failed reading {length} bytes at offset {offset}: {exc}") from exc
    if len(data) != length:
        raise SourceReadError(f"Short read at offset {offset}: wanted {length} bytes, got {len(data)}")
    return data


def _source_name(source: BinaryIO) -> str | None:
    name = getattr(source, "name", None)
    return str(name) if isinstance(name, (str, os.PathLike)) else None


class FastaIndex:
    """Read-only identifier -> layout mapping for one FASTA file.

    Built once by :meth:`build` (or restored by :meth:`load`); queries never
    rescan the file. The source handle stays owned by the caller.
    """

    def __init__(
        self,
        records: dict[str, IndexRecord],
        source: BinaryIO | None = None,
        source_path: str | None = None,
    ):
        self._records = dict(records)
        self._source = source
        self.source_path = source_path

    @classmethod
    def build(cls, source: BinaryIO, stats: "LengthStats | None" = None) -> "FastaIndex":
        if isinstance(source, gzip.GzipFile):
            raise CompressedSourceError(
                f"Tried to build index on non seekable compressed source: {_source_name(source) or '<stream>'}"
            )
        try:
            source.seek(0)
        except (OSError, ValueError) as exc:
            raise SourceReadError(f"FASTA source is not seekable: {exc}") from exc

        records: dict[str, IndexRecord] = {}
        current: _RecordBuilder | None = None
        offset = 0
        for line_no, line in enumerate(iter_lines(source), start=1):
            raw_len = len(line)
            if line.startswith(b">"):
                if current is not None:
                    records[current.identifier] = current.finish()
                description = decode_header(line)
                identifier = identifier_from_description(description)
                if identifier in records:
                    raise DuplicateIdentifierError(f"Multiple entries found for id: {identifier!r} (line {line_no})")
                current = _RecordBuilder(identifier, description, offset, offset + raw_len)
            else:
                content = strip_terminator(line)
                if current is None:
                    if content.strip():
                        raise MalformedInputError(f"Sequence content before first header at line {line_no}")
                else:
                    current.add_line(len(content), raw_len, offset, line_no)
            offset += raw_len
        if current is not None:
            records[current.identifier] = current.finish()

        index = cls(records, source, _source_name(source))
        if stats is not None:
            for rec in records.values():
                stats.observe_length(rec.total_sequence_length)
        logger.info("Indexed %d records (%d bytes) from %s", len(records), offset, index.source_path or "<stream>")
        return index

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._records

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def contains(self, identifier: str) -> bool:
        return identifier in self._records

    def identifiers(self) -> Iterator[str]:
        return iter(self._records)

    def record(self, identifier: str) -> IndexRecord:
        try:
            return self._records[identifier]
        except KeyError:
            raise UnknownIdentifierError(f"Identifier not found in index: {identifier!r}") from None

    def describe(self, identifier: str) -> str:
        return self.record(identifier).description

    def length_of(self, identifier: str) -> int:
        return self.record(identifier).total_sequence_length

    def fetch(self, identifier: str, start: int, end: int, source: BinaryIO | None = None) -> bytes:
        """Return residues ``[start, end)`` of ``identifier``, reading only the lines that hold them."""
        pieces = translate(self.record(identifier), start, end)
        if not pieces:
            return b""
        handle = source if source is not None else self._source
        if handle is None:
            raise SourceReadError("No source handle attached to this index")
        span_offset, span_len = byte_span(pieces)
        view = memoryview(_read_at(handle, span_offset, span_len))
        return b"".join(view[off - span_offset : off - span_offset + n] for off, n in pieces)

    def fetch_entry(self, identifier: str, source: BinaryIO | None = None) -> Entry:
        rec = self.record(identifier)
        seq = self.fetch(identifier, 0, rec.total_sequence_length, source)
        return Entry(rec.identifier, rec.description, seq, len(seq))

    def fetch_map(self, identifiers: Iterable[str], source: BinaryIO | None = None) -> dict[str, bytes]:
        return {i: self.fetch(i, 0, self.length_of(i), source) for i in identifiers}

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([asdict(r) for r in self._records.values()], columns=INDEX_COLUMNS)

    def save(self, path: str | Path, source_path: str | Path | None = None) -> Path:
        """Write the records as TSV plus a ``<path>.json`` sidecar identifying the source."""
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().to_csv(out, sep="\t", index=False, errors="surrogateescape")
        src = str(source_path) if source_path else self.source_path
        meta = {
            "source_path": src,
            "source_sha256": file_sha256(src) if src and Path(src).is_file() else None,
            "n_records": len(self),
        }
        Path(f"{out}.json").write_text(json.dumps(meta, indent=2))
        return out

    @classmethod
    def load(
        cls,
        path: str | Path,
        source: BinaryIO,
        source_path: str | Path | None = None,
        verify: bool = True,
    ) -> "FastaIndex":
        p = Path(path)
        meta_path = Path(f"{p}.json")
        try:
            meta = json.loads(meta_path.read_text())
            df = pd.read_csv(
                p,
                sep="\t",
                dtype={"identifier": str, "description": str},
                keep_default_na=False,
                encoding_errors="surrogateescape",
            )
        except (OSError, ValueError) as exc:
            raise IndexFormatError(f"Could not read index {p}: {exc}") from exc

        missing = [c for c in INDEX_COLUMNS if c not in df.columns]
        if missing:
            raise IndexFormatError(f"Index {p} is missing columns: {', '.join(missing)}")
        if len(df) != meta.get("n_records", len(df)):
            raise IndexFormatError(f"Index {p} has {len(df)} rows, sidecar says {meta['n_records']}")

        src = str(source_path) if source_path else _source_name(source)
        expected = meta.get("source_sha256")
        if verify and expected and src and Path(src).is_file():
            actual = file_sha256(src)
            if actual != expected:
                raise StaleIndexError(f"Index {p} was built for a different version of {src}")

        records: dict[str, IndexRecord] = {}
        for row in df[INDEX_COLUMNS].itertuples(index=False):
            if row.identifier in records:
                raise IndexFormatError(f"Index {p} lists {row.identifier!r} more than once")
            records[row.identifier] = IndexRecord(
                identifier=row.identifier,
                description=row.description,
                description_offset=int(row.description_offset),
                sequence_start_offset=int(row.sequence_start_offset),
                total_sequence_length=int(row.total_sequence_length),
                line_length=int(row.line_length),
                line_width_with_terminator=int(row.line_width_with_terminator),
            )
        logger.info("Loaded index with %d records from %s", len(records), p)
        return cls(records, source, src)
