from __future__ import annotations

import hashlib
import json
import logging
import os
import platform
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import importlib.metadata as importlib_metadata

PACKAGE = "fastaidx"
MANIFEST_LIBS = ("numpy", "pandas", "PyYAML")


def setup_logging(log_dir: str | Path, name: str, level: str = "INFO") -> logging.Logger:
    """Route every ``fastaidx.*`` logger to ``<log_dir>/<name>.log`` and stderr."""
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(PACKAGE)
    logger.setLevel(level)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    for handler in (logging.FileHandler(Path(log_dir) / f"{name}.log"), logging.StreamHandler()):
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    return logger


def file_sha256(path: str | Path, chunk_size: int = 1 << 20) -> str:
    h = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            h.update(chunk)
    return h.hexdigest()


def describe_input(path: str | Path | None) -> dict[str, Any]:
    """Identity of one FASTA input as recorded in run manifests."""
    p = Path(path) if path else None
    if p is None or not p.is_file():
        return {"path": str(path) if path else None, "exists": False}
    return {
        "path": str(p),
        "exists": True,
        "size_bytes": p.stat().st_size,
        "compressed": p.suffix == ".gz",
        "sha256": file_sha256(p),
    }


def git_commit() -> str | None:
    try:
        out = subprocess.run(["git", "rev-parse", "HEAD"], capture_output=True, text=True)
    except OSError:
        return None
    return out.stdout.strip() if out.returncode == 0 else None


def _version(dist: str) -> str:
    try:
        return importlib_metadata.version(dist)
    except importlib_metadata.PackageNotFoundError:
        return "not_installed"


def collect_lib_versions() -> dict[str, str]:
    libs = {"python": platform.python_version(), PACKAGE: _version(PACKAGE)}
    libs.update({pkg: _version(pkg) for pkg in MANIFEST_LIBS})
    return libs


def write_manifest(manifest_path: str | Path, command: str, params: dict[str, Any], inputs: list[str]) -> None:
    payload = {
        "tool": PACKAGE,
        "command": command,
        "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        "cwd": os.getcwd(),
        "git_commit": git_commit(),
        "params": params,
        "versions": collect_lib_versions(),
        "inputs": [describe_input(p) for p in inputs],
    }
    Path(manifest_path).parent.mkdir(parents=True, exist_ok=True)
    Path(manifest_path).write_text(json.dumps(payload, indent=2, default=str))
