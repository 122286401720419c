import csv
import time
from pathlib import Path

FIELDNAMES = [
    "t",
    "cycle",
    "state",
    "event",
    "pose_x",
    "pose_y",
    "pose_theta",
    "frontier_size",
    "goal_x",
    "goal_y",
    "path_length",
    "coverage_pct",
    "entropy_proxy",
]


class CsvLogger:
    """One row per exploration cycle. Unknown keyword arguments are rejected."""

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

        self.f = self.path.open("w", newline="")

        self.w = csv.DictWriter(self.f, fieldnames=FIELDNAMES)
        self.w.writeheader()

    def log(self, **kwargs):
        row = {"t": time.time(), **kwargs}
        self.w.writerow(row)
        self.f.flush()

    def close(self):
        if not self.f.closed:
            self.f.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
