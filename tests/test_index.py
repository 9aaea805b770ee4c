import concurrent.futures
import gzip
import io
import json
import random
from pathlib import Path

import pytest

from fastaidx.errors import (
    CompressedSourceError,
    DuplicateIdentifierError,
    InconsistentLineWidthError,
    IndexFormatError,
    MalformedInputError,
    RangeOutOfBoundsError,
    SourceReadError,
    StaleIndexError,
    UnknownIdentifierError,
)
from fastaidx.index import FastaIndex
from fastaidx.io_utils import stream
from fastaidx.stats import LengthStats

EXAMPLE = b">seq1 desc\nACGT\nACG\n>seq2\nTT\n"


def _random_fasta(rng: random.Random, n_records: int = 12) -> tuple[bytes, dict[str, bytes]]:
    parts = []
    expected = {}
    for i in range(n_records):
        width = rng.randint(1, 9)
        n_lines = rng.choice([0, 1, 2, rng.randint(3, 8)])
        last = rng.randint(1, width) if n_lines else 0
        length = max(0, n_lines - 1) * width + last
        seq = bytes(rng.choice(b"ACGTNacgtn") for _ in range(length))
        term = rng.choice([b"\n", b"\r\n"])
        lines = [seq[j : j + width] for j in range(0, length, width)]
        parts.append(b">rec%d sample %d" % (i, i) + term + b"".join(line + term for line in lines))
        expected[f"rec{i}"] = seq
    return b"".join(parts), expected


class NoReads:
    def seek(self, *args):
        raise AssertionError("seek called")

    def read(self, *args):
        raise AssertionError("read called")


def test_example_layout_and_fetch():
    idx = FastaIndex.build(io.BytesIO(EXAMPLE))
    assert list(idx.identifiers()) == ["seq1", "seq2"]

    rec = idx.record("seq1")
    assert rec.description_offset == 0
    assert rec.sequence_start_offset == 11
    assert rec.total_sequence_length == 7
    assert rec.line_length == 4
    assert rec.line_width_with_terminator == 5

    rec2 = idx.record("seq2")
    assert rec2.description_offset == 20
    assert rec2.sequence_start_offset == 26
    assert rec2.line_length == 2

    assert idx.fetch("seq1", 3, 6) == b"TAC"
    assert idx.fetch("seq1", 0, 7) == b"ACGTACG"
    assert idx.fetch("seq2", 0, 2) == b"TT"
    assert idx.describe("seq1") == ">seq1 desc"
    assert idx.length_of("seq1") == 7


def test_index_agrees_with_reader():
    data, _ = _random_fasta(random.Random(1))
    idx = FastaIndex.build(io.BytesIO(data))
    entries = list(stream(io.BytesIO(data)))
    assert list(idx.identifiers()) == [e.identifier for e in entries]
    for e in entries:
        assert idx.describe(e.identifier) == e.description
        assert idx.fetch(e.identifier, 0, idx.length_of(e.identifier)) == e.sequence
        assert idx.fetch_entry(e.identifier) == e


@pytest.mark.parametrize("seed", [0, 1, 2, 3])
def test_random_slices_match_full_sequence(seed):
    rng = random.Random(seed)
    data, expected = _random_fasta(rng)
    idx = FastaIndex.build(io.BytesIO(data))
    for name, seq in expected.items():
        for _ in range(40):
            start = rng.randint(0, len(seq))
            end = rng.randint(start, len(seq))
            assert idx.fetch(name, start, end) == seq[start:end]


def test_empty_range_performs_no_reads():
    idx = FastaIndex.build(io.BytesIO(EXAMPLE))
    for p in range(8):
        assert idx.fetch("seq1", p, p, source=NoReads()) == b""


def test_zero_length_record():
    idx = FastaIndex.build(io.BytesIO(b">empty\n>b\nAC\n"))
    assert idx.length_of("empty") == 0
    assert idx.fetch("empty", 0, 0) == b""
    assert idx.fetch("b", 0, 2) == b"AC"


def test_single_line_record_width_is_its_length():
    idx = FastaIndex.build(io.BytesIO(b">a\nACGTACGTAC\n"))
    assert idx.record("a").line_length == 10
    assert idx.fetch("a", 2, 9) == b"GTACGTA"


def test_missing_trailing_newline():
    idx = FastaIndex.build(io.BytesIO(b">a\nACGT\nAC"))
    assert idx.fetch("a", 0, 6) == b"ACGTAC"


def test_blank_lines_around_sequence():
    data = b">a\n\nACGT\nAC\n\n\n>b\nA\n"
    idx = FastaIndex.build(io.BytesIO(data))
    assert idx.fetch("a", 0, 6) == b"ACGTAC"
    assert idx.fetch("a", 3, 5) == b"TA"
    assert idx.fetch("b", 0, 1) == b"A"


def test_leading_blank_lines_and_garbage():
    idx = FastaIndex.build(io.BytesIO(b"\n\n>a\nAC\n"))
    assert idx.fetch("a", 0, 2) == b"AC"
    with pytest.raises(MalformedInputError):
        FastaIndex.build(io.BytesIO(b"junk\n>a\nAC\n"))


def test_duplicate_identifier_fails():
    with pytest.raises(DuplicateIdentifierError):
        FastaIndex.build(io.BytesIO(b">a x\nAC\n>b\nA\n>a y\nGG\n"))


@pytest.mark.parametrize(
    "data",
    [
        b">a\nACGT\nAC\nACGT\n",
        b">a\nAC\nACGT\n",
        b">a\nACGT\n\nACGT\n",
        b">a\nACGT\r\nACGT\nACGT\n",
    ],
)
def test_inconsistent_wrapping_fails(data):
    with pytest.raises(InconsistentLineWidthError):
        FastaIndex.build(io.BytesIO(data))


def test_failed_build_leaves_stats_untouched():
    stats = LengthStats()
    with pytest.raises(InconsistentLineWidthError):
        FastaIndex.build(io.BytesIO(b">ok\nAC\n>a\nACGT\nAC\nACGT\n"), stats=stats)
    assert stats.total_entries == 0


def test_build_feeds_length_stats():
    stats = LengthStats()
    FastaIndex.build(io.BytesIO(EXAMPLE), stats=stats)
    assert stats.distribution_to_exportable_form() == {2: 1, 7: 1}
    assert stats.max() == 7


def test_unknown_identifier_leaves_index_usable():
    idx = FastaIndex.build(io.BytesIO(EXAMPLE))
    for call in (lambda: idx.fetch("nope", 0, 1), lambda: idx.describe("nope"), lambda: idx.length_of("nope")):
        with pytest.raises(UnknownIdentifierError):
            call()
    with pytest.raises(KeyError):
        idx.record("nope")
    assert idx.fetch("seq1", 3, 6) == b"TAC"


@pytest.mark.parametrize("start,end", [(5, 3), (0, 8), (-1, 2)])
def test_range_out_of_bounds(start, end):
    idx = FastaIndex.build(io.BytesIO(EXAMPLE))
    with pytest.raises(RangeOutOfBoundsError):
        idx.fetch("seq1", start, end)
    assert idx.fetch("seq2", 0, 2) == b"TT"


def test_membership_and_iteration():
    idx = FastaIndex.build(io.BytesIO(EXAMPLE))
    assert idx.contains("seq1")
    assert "seq2" in idx
    assert not idx.contains("seq3")
    assert len(idx) == 2
    assert list(idx.identifiers()) == list(idx.identifiers()) == list(idx)


def test_fetch_map():
    idx = FastaIndex.build(io.BytesIO(EXAMPLE))
    assert idx.fetch_map(["seq2", "seq1"]) == {"seq2": b"TT", "seq1": b"ACGTACG"}
    with pytest.raises(UnknownIdentifierError):
        idx.fetch_map(["seq1", "missing"])


def test_compressed_source_cannot_be_indexed():
    packed = gzip.GzipFile(fileobj=io.BytesIO(gzip.compress(EXAMPLE)))
    with pytest.raises(CompressedSourceError):
        FastaIndex.build(packed)
    with pytest.raises(SourceReadError):
        FastaIndex.build(gzip.GzipFile(fileobj=io.BytesIO(gzip.compress(EXAMPLE))))


def test_fetch_from_closed_file(tmp_path: Path):
    fasta = tmp_path / "toy.fa"
    fasta.write_bytes(EXAMPLE)
    with fasta.open("rb") as handle:
        idx = FastaIndex.build(handle)
    with pytest.raises(SourceReadError):
        idx.fetch("seq1", 0, 3)


def test_fetch_after_file_truncated(tmp_path: Path):
    fasta = tmp_path / "toy.fa"
    fasta.write_bytes(EXAMPLE)
    with fasta.open("rb") as handle:
        idx = FastaIndex.build(handle)
        fasta.write_bytes(EXAMPLE[:12])
        with pytest.raises(SourceReadError):
            idx.fetch("seq2", 0, 2)


def test_concurrent_fetch_on_real_file(tmp_path: Path):
    rng = random.Random(11)
    data, expected = _random_fasta(rng, n_records=30)
    fasta = tmp_path / "many.fa"
    fasta.write_bytes(data)

    jobs = []
    for name, seq in expected.items():
        for _ in range(10):
            start = rng.randint(0, len(seq))
            jobs.append((name, start, rng.randint(start, len(seq))))

    with fasta.open("rb") as handle:
        idx = FastaIndex.build(handle)
        with concurrent.futures.ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(lambda job: idx.fetch(*job), jobs))

    for (name, start, end), got in zip(jobs, results):
        assert got == expected[name][start:end]


def test_save_and_load_roundtrip(tmp_path: Path):
    data = EXAMPLE + b">NA\nAC\n>x a\t\"quoted\"\nGGGG\nG\n>\nTT\n"
    fasta = tmp_path / "toy.fa"
    fasta.write_bytes(data)
    out = tmp_path / "idx" / "toy.fa.fxi"

    with fasta.open("rb") as handle:
        built = FastaIndex.build(handle)
        built.save(out)

    meta = json.loads(Path(f"{out}.json").read_text())
    assert meta["n_records"] == 5
    assert meta["source_path"] == str(fasta)
    assert len(meta["source_sha256"]) == 64

    with fasta.open("rb") as handle:
        loaded = FastaIndex.load(out, handle)
        assert list(loaded.identifiers()) == ["seq1", "seq2", "NA", "x", ""]
        for name in built.identifiers():
            assert loaded.record(name) == built.record(name)
        assert loaded.describe("x") == '>x a\t"quoted"'
        assert loaded.fetch("x", 2, 5) == b"GGG"
        assert loaded.fetch("NA", 0, 2) == b"AC"


def test_load_detects_stale_source(tmp_path: Path):
    fasta = tmp_path / "toy.fa"
    fasta.write_bytes(EXAMPLE)
    out = tmp_path / "toy.fa.fxi"
    with fasta.open("rb") as handle:
        FastaIndex.build(handle).save(out)

    fasta.write_bytes(EXAMPLE.replace(b"ACGT", b"TTTT"))
    with fasta.open("rb") as handle:
        with pytest.raises(StaleIndexError):
            FastaIndex.load(out, handle)
        assert FastaIndex.load(out, handle, verify=False).fetch("seq1", 0, 4) == b"TTTT"


def test_load_without_sidecar(tmp_path: Path):
    out = tmp_path / "toy.fa.fxi"
    out.write_text("identifier\tdescription\tline_length\nseq1\t>seq1\t4\n")
    with pytest.raises(IndexFormatError):
        FastaIndex.load(out, io.BytesIO(EXAMPLE))
    Path(f"{out}.json").write_text(json.dumps({"source_path": None, "source_sha256": None, "n_records": 1}))
    with pytest.raises(IndexFormatError, match="missing columns"):
        FastaIndex.load(out, io.BytesIO(EXAMPLE))


def test_bare_carriage_return_layout():
    data = b">seq1 desc\rACGT\rACG\r>seq2\rTT\r"
    idx = FastaIndex.build(io.BytesIO(data))
    assert list(idx.identifiers()) == ["seq1", "seq2"]
    rec = idx.record("seq1")
    assert (rec.sequence_start_offset, rec.line_length, rec.line_width_with_terminator) == (11, 4, 5)
    assert idx.fetch("seq1", 3, 6) == b"TAC"
    assert idx.fetch("seq2", 0, 2) == b"TT"
    assert [idx.fetch_entry(e.identifier) for e in stream(io.BytesIO(data))] == list(stream(io.BytesIO(data)))


def test_buffered_reader_without_file_descriptor():
    handle = io.BufferedReader(io.BytesIO(EXAMPLE))
    idx = FastaIndex.build(handle)
    assert idx.fetch("seq1", 3, 6) == b"TAC"
    assert idx.fetch("seq2", 0, 2) == b"TT"


def test_undecodable_identifiers_are_distinct(tmp_path: Path):
    data = b">id\xff x\nAC\n>id\xfe\nGGG\n"
    fasta = tmp_path / "bytes.fa"
    fasta.write_bytes(data)
    out = tmp_path / "bytes.fa.fxi"

    with fasta.open("rb") as handle:
        built = FastaIndex.build(handle)
        names = list(built.identifiers())
        assert len(names) == 2
        assert built.describe(names[0]).encode("utf-8", "surrogateescape") == b">id\xff x"
        built.save(out)
        loaded = FastaIndex.load(out, handle)
        assert list(loaded.identifiers()) == names
        assert loaded.fetch(names[1], 0, 3) == b"GGG"
