from __future__ import annotations


class FastaError(Exception):
    """Base class for everything that can go wrong while reading or indexing FASTA."""


class SourceReadError(FastaError):
    """The underlying byte source could not be read."""


class CompressedSourceError(SourceReadError):
    """Random access was requested on a compressed, non-seekable source."""


class MalformedInputError(FastaError):
    """Header/content ordering is structurally invalid."""


class InconsistentLineWidthError(FastaError):
    """A record is not wrapped uniformly (only its last line may be short)."""


class DuplicateIdentifierError(FastaError):
    pass


class RangeOutOfBoundsError(FastaError, IndexError):
    pass


class UnknownIdentifierError(FastaError, KeyError):
    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class StaleIndexError(FastaError):
    """A persisted index does not match the source it is being attached to."""


class IndexFormatError(FastaError):
    pass
