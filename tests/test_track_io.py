from __future__ import annotations

from datetime import datetime, timezone

import pytest

from territory_run.errors import TrackFormatError
from territory_run.track_io import load_track

GPX_SAMPLE = """<?xml version="1.0" encoding="UTF-8"?>
<gpx version="1.1" creator="test" xmlns="http://www.topografix.com/GPX/1/1">
  <trk><trkseg>
    <trkpt lat="51.5002" lon="-0.1200"><time>2025-01-01T10:00:12Z</time></trkpt>
    <trkpt lat="51.5000" lon="-0.1200"><time>2025-01-01T10:00:00Z</time></trkpt>
    <trkpt lat="51.5004" lon="-0.1200"></trkpt>
  </trkseg></trk>
</gpx>
"""


def test_gpx_points_are_sorted_and_untimed_points_skipped(tmp_path) -> None:
    path = tmp_path / "loop.gpx"
    path.write_text(GPX_SAMPLE, encoding="utf-8")

    fixes = load_track(path)

    assert [fix.raw for fix in fixes] == [(51.5, -0.12), (51.5002, -0.12)]
    assert fixes[0].timestamp == datetime(2025, 1, 1, 10, 0, tzinfo=timezone.utc)


def test_invalid_gpx_raises_track_format_error(tmp_path) -> None:
    path = tmp_path / "broken.gpx"
    path.write_text("<gpx><trk>", encoding="utf-8")
    with pytest.raises(TrackFormatError):
        load_track(path)


def test_csv_accepts_column_aliases(tmp_path) -> None:
    path = tmp_path / "loop.csv"
    path.write_text(
        "Latitude,Lon,Time,accuracy_m,Speed\n"
        "51.5,-0.12,1735725600,4.5,\n"
        "51.5001,-0.12,2025-01-01T10:00:05Z,,1.4\n",
        encoding="utf-8",
    )

    fixes = load_track(path)

    assert len(fixes) == 2
    assert fixes[0].accuracy == 4.5
    assert fixes[0].speed_mps is None
    assert fixes[1].speed_mps == 1.4
    assert (fixes[1].timestamp - fixes[0].timestamp).total_seconds() == 5.0


def test_csv_missing_columns(tmp_path) -> None:
    path = tmp_path / "bad.csv"
    path.write_text("lat,when\n1,2\n", encoding="utf-8")
    with pytest.raises(TrackFormatError, match="lng, timestamp"):
        load_track(path)


def test_csv_bad_value_reports_line(tmp_path) -> None:
    path = tmp_path / "bad.csv"
    path.write_text("lat,lng,ts\n51.5,-0.1,2025-01-01T10:00:00Z\nnorth,-0.1,2025-01-01T10:00:01Z\n")
    with pytest.raises(TrackFormatError, match=":3:"):
        load_track(path)


def test_unknown_extension_and_missing_file(tmp_path) -> None:
    other = tmp_path / "track.kml"
    other.write_text("<kml/>")
    with pytest.raises(TrackFormatError):
        load_track(other)
    with pytest.raises(FileNotFoundError):
        load_track(tmp_path / "absent.gpx")
