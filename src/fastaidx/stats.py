from __future__ import annotations

import json
from collections import Counter
from pathlib import Path
from typing import Any, Iterable

import numpy as np
import pandas as pd

from .io_utils import Entry


class LengthStats:
    """Running distribution of sequence lengths, fed one entry at a time."""

    def __init__(self) -> None:
        self.counts: Counter[int] = Counter()
        self.max_length = 0
        self.total_entries = 0

    @classmethod
    def from_entries(cls, entries: Iterable[Entry]) -> "LengthStats":
        stats = cls()
        for e in entries:
            stats.observe(e)
        return stats

    def observe(self, entry: Entry) -> None:
        self.observe_length(entry.length)

    def observe_length(self, length: int) -> None:
        self.counts[length] += 1
        self.max_length = max(self.max_length, length)
        self.total_entries += 1

    def max(self) -> int | None:
        """Longest length seen, or ``None`` before any entry was observed."""
        if self.total_entries == 0:
            return None
        return self.max_length

    def min(self) -> int | None:
        if self.total_entries == 0:
            return None
        return min(self.counts)

    @property
    def total_residues(self) -> int:
        return sum(length * n for length, n in self.counts.items())

    def distribution_to_exportable_form(self) -> dict[int, int]:
        return {length: self.counts[length] for length in sorted(self.counts)}

    def _arrays(self) -> tuple[np.ndarray, np.ndarray]:
        dist = self.distribution_to_exportable_form()
        return (
            np.fromiter(dist.keys(), dtype=np.int64, count=len(dist)),
            np.fromiter(dist.values(), dtype=np.int64, count=len(dist)),
        )

    def n50(self) -> int | None:
        if self.total_residues == 0:
            return None
        lengths, counts = self._arrays()
        lengths, counts = lengths[::-1], counts[::-1]
        cum = np.cumsum(lengths * counts)
        i = int(np.searchsorted(cum, cum[-1] / 2.0))
        return int(lengths[i])

    def summary(self) -> dict[str, Any]:
        if self.total_entries == 0:
            return {"entries": 0, "residues": 0, "min": None, "max": None, "mean": None, "median": None, "n50": None}
        lengths, counts = self._arrays()
        cum = np.cumsum(counts)
        mid = (self.total_entries - 1) / 2.0
        lo = lengths[np.searchsorted(cum, int(np.floor(mid)) + 1)]
        hi = lengths[np.searchsorted(cum, int(np.ceil(mid)) + 1)]
        return {
            "entries": self.total_entries,
            "residues": self.total_residues,
            "min": self.min(),
            "max": self.max(),
            "mean": float(np.average(lengths, weights=counts)),
            "median": (float(lo) + float(hi)) / 2.0,
            "n50": self.n50(),
        }

    def to_frame(self) -> pd.DataFrame:
        lengths, counts = self._arrays()
        return pd.DataFrame({"length": lengths, "count": counts})

    def write_tsv(self, path: str | Path) -> Path:
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        self.to_frame().to_csv(out, sep="\t", index=False)
        return out

    def write_json(self, path: str | Path) -> Path:
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "summary": self.summary(),
            "distribution": {str(k): v for k, v in self.distribution_to_exportable_form().items()},
        }
        out.write_text(json.dumps(payload, indent=2))
        return out
