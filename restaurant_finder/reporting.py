"""Output writers for discovery results."""
from __future__ import annotations

import csv
import json
import os
import tempfile
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, TextIO

from .models import Restaurant

RESULT_FIELDS = [
    "id",
    "name",
    "cuisine",
    "rating",
    "price_level",
    "phone_number",
    "address",
    "lat",
    "lon",
    "distance_m",
    "image_url",
    "category_tags",
    "description",
]


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


@contextmanager
def atomic_writer(
    path: str,
    mode: str = "w",
    encoding: str = "utf-8",
    newline: Optional[str] = None,
) -> Iterator[TextIO]:
    dir_path = os.path.dirname(path) or "."
    base = os.path.basename(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{base}.", suffix=".tmp", dir=dir_path)
    try:
        with os.fdopen(fd, mode, encoding=encoding, newline=newline) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def atomic_write_text(path: str, text: str) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        f.write(text)


def restaurant_rows(
    restaurants: Iterable[Restaurant],
    distances: Optional[Dict[str, float]] = None,
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for r in restaurants:
        row = r.to_dict()
        if distances is not None and r.id in distances:
            row["distance_m"] = round(distances[r.id], 1)
        rows.append(row)
    return rows


def write_results_csv(path: str, rows: Iterable[Dict[str, Any]]) -> None:
    rows = list(rows)
    with atomic_writer(path, mode="w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=RESULT_FIELDS, extrasaction="ignore")
        writer.writeheader()
        for row in rows:
            out = dict(row)
            out["category_tags"] = json.dumps(out.get("category_tags", []), ensure_ascii=False)
            writer.writerow(out)


def write_results_json(path: str, rows: Iterable[Dict[str, Any]]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        json.dump(list(rows), f, ensure_ascii=False, indent=2)


def write_summary(path: str, summary_lines: List[str]) -> None:
    atomic_write_text(path, "\n".join(summary_lines))
