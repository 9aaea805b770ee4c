from __future__ import annotations

import argparse
import sys
from pathlib import Path

import pandas as pd

from .config import LOG_LEVELS, load_config
from .errors import FastaError
from .index import FastaIndex
from .io_utils import accessions, open_fasta, sequence_lengths, stream
from .runtime import setup_logging, write_manifest
from .stats import LengthStats


def add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", default=None)
    p.add_argument("--results_root", default="results")
    p.add_argument("--log_level", default=None, type=str.upper, choices=LOG_LEVELS)


def _index_path(fasta: str, cfg: dict, explicit: str | None) -> Path:
    return Path(explicit) if explicit else Path(fasta + cfg["index"]["suffix"])


def cmd_index(args, cfg, logger) -> None:
    out = _index_path(args.fasta, cfg, args.out)
    stats = LengthStats()
    with open_fasta(args.fasta) as handle:
        index = FastaIndex.build(handle, stats=stats)
    index.save(out, source_path=args.fasta)
    stats.write_tsv(Path(args.results_root) / "stats" / "index_lengths.tsv")
    logger.info("Wrote index for %d records to %s", len(index), out)


def cmd_fetch(args, cfg, logger) -> None:
    idx_path = _index_path(args.fasta, cfg, args.index)
    with open_fasta(args.fasta) as handle:
        if idx_path.exists():
            index = FastaIndex.load(idx_path, handle, args.fasta, verify=cfg["index"]["verify_checksum"])
        else:
            logger.info("No index at %s, scanning %s", idx_path, args.fasta)
            index = FastaIndex.build(handle)
        end = index.length_of(args.id) if args.end is None else args.end
        seq = index.fetch(args.id, args.start, end)
    sys.stdout.buffer.write(seq + b"\n")
    sys.stdout.buffer.flush()
    logger.info("Fetched %s:%d-%d (%d residues)", args.id, args.start, end, len(seq))


def cmd_stats(args, cfg, logger) -> None:
    fmt = cfg["stats"]["format"]
    out = Path(args.out) if args.out else Path(args.results_root) / "stats" / f"lengths.{fmt}"
    with open_fasta(args.fasta) as handle:
        stats = LengthStats.from_entries(stream(handle))
    if fmt == "json":
        stats.write_json(out)
    else:
        stats.write_tsv(out)
    logger.info("Summary: %s", stats.summary())


def cmd_accessions(args, cfg, logger) -> None:
    hdr = cfg["headers"]
    out = Path(args.out) if args.out else Path(args.results_root) / "accessions.txt"
    out.parent.mkdir(parents=True, exist_ok=True)
    with open_fasta(args.fasta) as handle:
        accs = accessions(stream(handle), hdr["separator"], int(hdr["id_index"]))
    out.write_text("".join(f"{a}\n" for a in accs), errors="surrogateescape")
    logger.info("Wrote %d accessions to %s", len(accs), out)


def cmd_lengths(args, cfg, logger) -> None:
    hdr = cfg["headers"]
    out = Path(args.out) if args.out else Path(args.results_root) / "sequence_lengths.tsv"
    out.parent.mkdir(parents=True, exist_ok=True)
    with open_fasta(args.fasta) as handle:
        lengths = sequence_lengths(stream(handle), hdr["separator"], int(hdr["id_index"]))
    pd.DataFrame({"accession": list(lengths), "length": list(lengths.values())}).to_csv(
        out, sep="\t", index=False, errors="surrogateescape"
    )
    logger.info("Wrote %d sequence lengths to %s", len(lengths), out)


COMMANDS = {
    "index": cmd_index,
    "fetch": cmd_fetch,
    "stats": cmd_stats,
    "accessions": cmd_accessions,
    "lengths": cmd_lengths,
}


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(prog="fastaidx")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("index")
    add_common(p)
    p.add_argument("--fasta", required=True)
    p.add_argument("--out", default=None)

    p = sub.add_parser("fetch")
    add_common(p)
    p.add_argument("--fasta", required=True)
    p.add_argument("--index", default=None)
    p.add_argument("--id", required=True)
    p.add_argument("--start", type=int, default=0)
    p.add_argument("--end", type=int, default=None)

    for name in ("stats", "accessions", "lengths"):
        p = sub.add_parser(name)
        add_common(p)
        p.add_argument("--fasta", required=True)
        p.add_argument("--out", default=None)

    args = ap.parse_args(argv)
    cfg = load_config(args.config)
    level = args.log_level or cfg["logging"]["level"]
    logger = setup_logging(Path(args.results_root) / cfg["logging"]["log_dir"], args.cmd, level)

    try:
        COMMANDS[args.cmd](args, cfg, logger)
    except (FastaError, OSError) as exc:
        logger.error("%s failed: %s", args.cmd, exc)
        raise SystemExit(1) from exc

    write_manifest(
        Path(args.results_root) / "manifests" / "run_manifest.json",
        args.cmd,
        vars(args),
        [args.fasta],
    )


if __name__ == "__main__":
    main()
