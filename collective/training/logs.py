"""Per-iteration diagnostic logs, one CSV file per measure.

Values are collected during a restart and appended as one row (one column
per iteration) when the restart finishes. Files are removed when the log
is reset at the start of a run.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import hashlib
import logging

import pandas as pd

LOGGER = logging.getLogger(__name__)

# measure key -> file suffix
LOG_MEASURES: Dict[str, str] = {
    "rms": "-rms.csv",
    "rms_train": "-rms_train.csv",
    "rms_test": "-rms_test.csv",
    "rms_test_original": "-rms_test-original.csv",
    "acc_train": "-acc_train.csv",
    "acc_test_original": "-acc_test-original.csv",
    "flipped": "-flipped.csv",
}


def log_file_prefix(
    class_name: str,
    options: str,
    relation: str,
    num_restarts: int,
    num_iterations: int,
    evaluation: str,
    comparison: str,
) -> str:
    digest = hashlib.md5(options.encode("utf-8")).hexdigest()
    return (
        f"{class_name}-{digest}-{relation}-R{num_restarts}-I{num_iterations}"
        f"-E{evaluation}-C{comparison}"
    )


class CollectiveLog:
    def __init__(self) -> None:
        self._filenames: Dict[str, Path] = {}
        self._values: Dict[str, List[float]] = {}

    def clear(self) -> None:
        self._filenames = {}
        self._values = {}

    def reset(self, directory: Path, prefix: str) -> None:
        """Register one file per measure and remove leftovers of a previous run."""
        self.clear()
        directory = Path(directory)
        for key, suffix in LOG_MEASURES.items():
            path = directory / f"{prefix}{suffix}"
            if path.exists():
                path.unlink()
            self._filenames[key] = path

    def discard_pending(self) -> None:
        """Drop values collected since the last write (e.g. from an aborted restart)."""
        self._values = {}

    def add_value(self, key: str, value: float) -> None:
        self._values.setdefault(key, []).append(float(value))

    def values(self, key: str) -> List[float]:
        return list(self._values.get(key, []))

    def has_values(self) -> bool:
        return any(self._values.values())

    def write(self) -> None:
        """Append the pending values as one row per file, then clear them."""
        for key, path in self._filenames.items():
            values = self._values.get(key, [])
            if not values:
                continue
            row = pd.DataFrame(
                [values], columns=[f"iteration_{i + 1}" for i in range(len(values))]
            )
            path.parent.mkdir(parents=True, exist_ok=True)
            row.to_csv(path, mode="a", header=not path.exists(), index=False)
            LOGGER.debug("Appended %d values to %s", len(values), path)
            self._values[key] = []
