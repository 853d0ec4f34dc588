"""Load recorded tracks (GPX 1.0/1.1 or CSV) into fixes."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from defusedxml import ElementTree as ET

from .errors import TrackFormatError
from .models import Fix, parse_timestamp

LOGGER = logging.getLogger(__name__)

_CSV_ALIASES: Dict[str, tuple[str, ...]] = {
    "lat": ("lat", "latitude"),
    "lng": ("lng", "lon", "long", "longitude"),
    "timestamp": ("timestamp", "ts", "time"),
    "accuracy": ("accuracy", "accuracy_m"),
    "speed": ("speed", "speed_mps"),
}


def load_track(path: str | Path) -> List[Fix]:
    """Load ``path`` by extension; fixes are returned sorted by timestamp."""

    resolved = Path(path)
    if not resolved.exists():
        raise FileNotFoundError(resolved)
    suffix = resolved.suffix.lower()
    if suffix == ".gpx":
        fixes = load_gpx(resolved)
    elif suffix == ".csv":
        fixes = load_csv(resolved)
    else:
        raise TrackFormatError(f"Unsupported track format: {resolved.suffix or '?'}")
    fixes.sort(key=lambda fix: fix.timestamp)
    LOGGER.info("Loaded %d fixes from %s", len(fixes), resolved)
    return fixes


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def load_gpx(path: Path) -> List[Fix]:
    try:
        tree = ET.parse(str(path))
    except ET.ParseError as exc:
        raise TrackFormatError(f"Invalid GPX file {path}: {exc}") from exc
    fixes: List[Fix] = []
    for element in tree.getroot().iter():
        if _local_name(element.tag) != "trkpt":
            continue
        time_text: Optional[str] = None
        speed_text: Optional[str] = None
        for child in element:
            name = _local_name(child.tag)
            if name == "time":
                time_text = (child.text or "").strip()
            elif name == "speed":
                speed_text = (child.text or "").strip()
        if not time_text:
            LOGGER.debug("Skipping trkpt without <time> in %s", path)
            continue
        try:
            fixes.append(
                Fix(
                    lat=float(element.attrib["lat"]),
                    lng=float(element.attrib["lon"]),
                    timestamp=parse_timestamp(time_text),
                    speed_mps=float(speed_text) if speed_text else None,
                )
            )
        except (KeyError, ValueError) as exc:
            raise TrackFormatError(f"Invalid trkpt in {path}: {exc}") from exc
    return fixes


def _resolve_columns(fieldnames: Iterable[str]) -> Dict[str, str]:
    lookup = {name.strip().lower(): name for name in fieldnames}
    resolved: Dict[str, str] = {}
    for key, aliases in _CSV_ALIASES.items():
        for alias in aliases:
            if alias in lookup:
                resolved[key] = lookup[alias]
                break
    missing = {"lat", "lng", "timestamp"} - set(resolved)
    if missing:
        raise TrackFormatError(f"CSV track missing columns: {', '.join(sorted(missing))}")
    return resolved


def _optional(row: Dict[str, str], column: Optional[str]) -> Optional[float]:
    if column is None:
        return None
    value = (row.get(column) or "").strip()
    return float(value) if value else None


def load_csv(path: Path) -> List[Fix]:
    with path.open("r", encoding="utf-8", newline="") as handle:
        reader = csv.DictReader(handle)
        if not reader.fieldnames:
            raise TrackFormatError(f"CSV track {path} has no header row")
        columns = _resolve_columns(reader.fieldnames)
        fixes: List[Fix] = []
        for line_no, row in enumerate(reader, start=2):
            try:
                fixes.append(
                    Fix(
                        lat=float(row[columns["lat"]]),
                        lng=float(row[columns["lng"]]),
                        timestamp=parse_timestamp(row[columns["timestamp"]]),
                        accuracy=_optional(row, columns.get("accuracy")),
                        speed_mps=_optional(row, columns.get("speed")),
                    )
                )
            except (TypeError, ValueError) as exc:
                raise TrackFormatError(f"{path}:{line_no}: {exc}") from exc
    return fixes


__all__ = ["load_csv", "load_gpx", "load_track"]
