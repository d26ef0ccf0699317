#!/usr/bin/env python3
"""
apple_health_steps.py – Daily step totals from an Apple Health export
======================================================================
Streams ``export.xml`` (or ``export.zip`` containing it) and sums every
``HKQuantityTypeIdentifierStepCount`` record per calendar day.  The day
is the date part of ``startDate`` ("2023-01-01 08:12:00 +0100" →
2023-01-01) – no timezone shifting.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import sys
import xml.etree.ElementTree as ET
import zipfile
from collections import defaultdict
from pathlib import Path
from typing import IO, Optional, Union

# ── Project root on sys.path for config import ────────────────────────────────
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, _PROJECT_ROOT)

from config.settings import STEP_COUNT_TYPE

log = logging.getLogger(__name__)


class NoStepRecordsError(ValueError):
    """The export contains no step-count records."""


def _parse_steps(raw: Optional[str]) -> Optional[int]:
    """Integer part of the value ("123.7" → 123), None when unparseable."""
    if raw is None:
        return None
    try:
        return int(float(raw.strip()))
    except (ValueError, OverflowError):
        return None


def _iter_step_records(stream: IO[bytes]):
    for _event, elem in ET.iterparse(stream, events=("end",)):
        if elem.tag == "Record":
            if elem.get("type") == STEP_COUNT_TYPE:
                yield elem.get("startDate", ""), elem.get("value")
            elem.clear()


def _open_export(path: Path):
    if zipfile.is_zipfile(path):
        archive = zipfile.ZipFile(path)
        names = [n for n in archive.namelist() if n.endswith("export.xml")]
        if not names:
            archive.close()
            raise NoStepRecordsError(f"{path.name}: export.xml not found in archive")
        return archive, archive.open(names[0])
    return None, open(path, "rb")


def parse_step_counts(source: Union[str, Path, IO[bytes]]) -> dict[dt.date, int]:
    """
    Sum step counts per day.

    Parameters
    ----------
    source : path to export.xml / export.zip, or a binary stream

    Returns
    -------
    dict date → total steps, ordered by date.

    Raises
    ------
    NoStepRecordsError  when no usable step-count record is found.
    """
    totals: dict[dt.date, int] = defaultdict(int)
    skipped = 0

    if hasattr(source, "read"):
        archive, stream = None, source
        name = getattr(source, "name", "<stream>")
    else:
        path = Path(source)
        archive, stream = _open_export(path)
        name = path.name

    try:
        for start, raw_value in _iter_step_records(stream):
            steps = _parse_steps(raw_value)
            day_part = start.split(" ")[0]
            try:
                day = dt.date.fromisoformat(day_part)
            except ValueError:
                day = None
            if day is None or steps is None:
                skipped += 1
                continue
            totals[day] += steps
    finally:
        if stream is not source:
            stream.close()
        if archive is not None:
            archive.close()

    if skipped:
        log.debug("%s: skipped %d malformed step records", name, skipped)
    if not totals:
        raise NoStepRecordsError(f"No step count data found in {name}")

    log.info("%s: step totals for %d days", name, len(totals))
    return dict(sorted(totals.items()))
