"""
Collaborators of the analytics engine: where readings and devices come from.

The engine only needs two read accessors; anything offering them (a database
repository, an HTTP client) can stand in for the in-memory versions here.
"""
from __future__ import annotations

import datetime
import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from aggregation import daily, hourly
from data_quality import DataQualityMetrics, validate_readings
from readings import DailyAggregate, Device, HourlyAggregate, Reading, as_utc

log = logging.getLogger(__name__)


class UpstreamFailure(Exception):
    """A reading store or device registry lookup failed."""


class ReadingStore(Protocol):
    def readings_in_range(self, device_ids: Sequence[str], start: datetime.datetime,
                          end: datetime.datetime) -> List[Reading]:
        ...


class DeviceRegistry(Protocol):
    def devices_for_user(self, user_id: str) -> List[Device]:
        ...


class InMemoryReadingStore:
    """Reading store over a list held in memory; no ordering guarantee on output."""

    def __init__(self, readings: Iterable[Reading] = ()):
        self._readings = list(readings)

    def add(self, reading: Reading) -> None:
        self._readings.append(reading)

    def readings_in_range(self, device_ids: Sequence[str], start: datetime.datetime,
                          end: datetime.datetime) -> List[Reading]:
        wanted = set(device_ids)
        start, end = as_utc(start), as_utc(end)
        return [
            r for r in self._readings
            if r.device_id in wanted and start <= r.timestamp <= end
        ]

    def hourly_aggregations(self, device_ids: Sequence[str], start: datetime.datetime,
                            end: datetime.datetime,
                            config: Optional[Dict[str, Any]] = None) -> List[HourlyAggregate]:
        return hourly(self.readings_in_range(device_ids, start, end), config)

    def daily_aggregations(self, device_ids: Sequence[str], start: datetime.datetime,
                           end: datetime.datetime,
                           config: Optional[Dict[str, Any]] = None) -> List[DailyAggregate]:
        return daily(self.readings_in_range(device_ids, start, end), config)


class InMemoryDeviceRegistry:
    def __init__(self, devices: Iterable[Device] = ()):
        self._devices = list(devices)

    def devices_for_user(self, user_id: str) -> List[Device]:
        return [d for d in self._devices if d.user_id == user_id]

    def all_devices(self) -> List[Device]:
        return list(self._devices)


# ────────────────────────────────────────────────────────────────────────────────
# JSON LOADING
# ────────────────────────────────────────────────────────────────────────────────


def _read_json_array(file_path: str | Path) -> List[Dict[str, Any]]:
    fp = Path(file_path)
    log.info("Reading %s", fp)
    try:
        with fp.open("r", encoding="utf-8") as f:
            raw = json.load(f)
    except json.JSONDecodeError as e:
        log.error("JSON parse error: %s", e)
        raise
    if not isinstance(raw, list):
        raise ValueError(f"{fp} must contain a JSON array")
    return raw


def load_data(file_path: str | Path,
              config: Optional[Dict[str, Any]] = None) -> Tuple[List[Reading], DataQualityMetrics]:
    """Load a JSON array of normalized reading records with data quality metrics.

    Records missing a device id, timestamp, current or voltage, or holding
    unparseable values, are skipped and counted.
    """
    rows: List[Reading] = []
    skipped = 0
    for rec in _read_json_array(file_path):
        try:
            rows.append(Reading.from_dict(rec))
        except (KeyError, TypeError, ValueError):
            skipped += 1

    log.info("Valid rows: %d (skipped %d)", len(rows), skipped)
    return rows, validate_readings(rows, config, skipped_records=skipped)


def load_readings(file_path: str | Path) -> List[Reading]:
    return load_data(file_path)[0]


def load_devices(file_path: str | Path) -> List[Device]:
    """Load a JSON array of ``{id, name, location, user_id}`` records."""
    return [
        Device(
            id=str(rec["id"]),
            name=rec.get("name") or str(rec["id"]),
            location=rec.get("location"),
            user_id=None if rec.get("user_id") is None else str(rec["user_id"]),
        )
        for rec in _read_json_array(file_path)
    ]
