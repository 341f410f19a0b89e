"""
Data model for sensor telemetry analytics.

Readings are the only input; every other record here is derived on each
invocation and returned to the caller, who decides whether to persist it.
"""
from __future__ import annotations

import dataclasses
import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

import pandas as pd

UTC = datetime.timezone.utc

FRAME_COLUMNS = [
    "device_id", "timestamp", "current", "voltage", "power", "energy", "consumption"
]


def as_utc(ts: datetime.datetime) -> datetime.datetime:
    """Naive timestamps are taken to be UTC already."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC)


def parse_timestamp(value: Any) -> datetime.datetime:
    if isinstance(value, datetime.datetime):
        return as_utc(value)
    text = str(value).strip().replace("Z", "+00:00")
    return as_utc(datetime.datetime.fromisoformat(text))


# ────────────────────────────────────────────────────────────────────────────────
# ENUMS
# ────────────────────────────────────────────────────────────────────────────────


class AnomalyKind(str, Enum):
    HIGH_CONSUMPTION = "HighConsumption"
    LOW_CONSUMPTION = "LowConsumption"
    UNUSUAL_NIGHT_PATTERN = "UnusualNightPattern"
    SENSOR_FAILURE = "SensorFailure"
    VOLTAGE_OUT_OF_RANGE = "VoltageOutOfRange"


class Severity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"

    @property
    def rank(self) -> int:
        return {"Low": 1, "Medium": 2, "High": 3}[self.value]


class PatternLabel(str, Enum):
    MORNING = "Morning"
    AFTERNOON = "Afternoon"
    EVENING = "Evening"
    NIGHT = "Night"


class EfficiencyRating(str, Enum):
    EXCELLENT = "Excellent"
    GOOD = "Good"
    REGULAR = "Regular"
    NEEDS_IMPROVEMENT = "NeedsImprovement"
    NO_DATA = "NoData"


class RecommendationKind(str, Enum):
    TIME_SHIFT = "TimeShift"
    USAGE_REDUCTION = "UsageReduction"
    DEVICE_OPTIMIZATION = "DeviceOptimization"


class Priority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


# ────────────────────────────────────────────────────────────────────────────────
# INPUTS
# ────────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Reading:
    """One timestamped sample from a device."""
    device_id: str
    timestamp: datetime.datetime
    current: float
    voltage: float
    power: float = 0.0
    energy: float = 0.0
    voltage_nominal: float = 220.0

    def __post_init__(self):
        object.__setattr__(self, "timestamp", as_utc(self.timestamp))

    @property
    def consumption(self) -> float:
        """Approximate power in W, ``current * voltage``."""
        return self.current * self.voltage

    @classmethod
    def from_dict(cls, rec: Dict[str, Any]) -> "Reading":
        """Build a reading from a normalized record; raises on missing fields."""
        return cls(
            device_id=str(rec["device_id"]),
            timestamp=parse_timestamp(rec["timestamp"]),
            current=float(rec["current"]),
            voltage=float(rec["voltage"]),
            power=float(rec.get("power", 0.0) or 0.0),
            energy=float(rec.get("energy", 0.0) or 0.0),
            voltage_nominal=float(rec.get("voltage_nominal", 220.0)),
        )


@dataclass(frozen=True)
class Device:
    id: str
    name: str
    location: Optional[str] = None
    user_id: Optional[str] = None


@dataclass(frozen=True)
class Window:
    start: datetime.datetime
    end: datetime.datetime

    def __post_init__(self):
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))
        if self.end < self.start:
            raise ValueError(f"Window end {self.end} precedes start {self.start}")

    @classmethod
    def last_days(cls, end: datetime.datetime, days: int) -> "Window":
        return cls(end - datetime.timedelta(days=days), end)

    @property
    def length(self) -> datetime.timedelta:
        return self.end - self.start

    @property
    def days(self) -> float:
        return self.length.total_seconds() / 86400

    def contains(self, ts: datetime.datetime) -> bool:
        return self.start <= as_utc(ts) <= self.end

    def previous(self) -> "Window":
        """
        The adjacent window of equal length ending just before this one
        starts, so a reading stamped at ``start`` belongs to this window only.
        """
        end = max(self.start - self.length, self.start - datetime.timedelta(microseconds=1))
        return Window(self.start - self.length, end)


# ────────────────────────────────────────────────────────────────────────────────
# AGGREGATES
# ────────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class HourlyAggregate:
    hour: int
    total_power: float
    total_energy: float
    avg_current: float
    avg_voltage: float
    count: int


@dataclass(frozen=True)
class DailyAggregate:
    date: datetime.date
    total_power: float
    total_energy: float
    avg_current: float
    avg_voltage: float
    max_power: float
    min_power: float
    count: int


# ────────────────────────────────────────────────────────────────────────────────
# ANALYZER RESULTS
# ────────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Pattern:
    label: PatternLabel
    avg_consumption: float
    peak_consumption: float
    start_time: datetime.time
    end_time: datetime.time
    cluster_id: int
    device_names: Tuple[str, ...] = ()
    readings_count: int = 0


@dataclass(frozen=True)
class WeeklyPattern:
    label: str
    weekday_average: float
    weekend_average: float
    difference: float


@dataclass(frozen=True)
class Anomaly:
    device_id: Optional[str]
    kind: AnomalyKind
    observed_value: float
    expected_value: float
    score: float
    severity: Severity
    detected_at: datetime.datetime
    description: str
    resolved: bool = False


@dataclass(frozen=True)
class Forecast:
    target_date: datetime.date
    predicted_consumption: float
    estimated_cost: float
    confidence_interval: float
    confidence: float


@dataclass(frozen=True)
class HourlyForecast:
    hour: datetime.datetime
    predicted_consumption: float


@dataclass(frozen=True)
class EnergyForecast:
    generated_at: Optional[datetime.date]
    horizon_days: int
    confidence: float
    forecasts: Tuple[Forecast, ...] = ()
    total_predicted_consumption: float = 0.0
    estimated_total_cost: float = 0.0


@dataclass(frozen=True)
class DeviceRanking:
    device_id: str
    device_name: str
    location: str
    total_consumption: float
    average_power: float
    max_power: float
    min_power: float
    estimated_cost: float
    operating_hours: float
    efficiency_rating: EfficiencyRating
    last_activity: Optional[datetime.datetime]


@dataclass(frozen=True)
class Recommendation:
    kind: RecommendationKind
    title: str
    description: str
    potential_savings: float
    potential_savings_percent: float
    priority: Priority


@dataclass(frozen=True)
class EnergyDashboard:
    total_consumption: float = 0.0
    average_daily: float = 0.0
    estimated_monthly_cost: float = 0.0
    devices_count: int = 0
    last_updated: Optional[datetime.datetime] = None
    peak_hour: Optional[str] = None
    efficiency_score: int = 0
    compared_to_last_month: float = 0.0
    hourly: Tuple[HourlyAggregate, ...] = field(default_factory=tuple)
    daily: Tuple[DailyAggregate, ...] = field(default_factory=tuple)


# ────────────────────────────────────────────────────────────────────────────────
# CONVERSIONS
# ────────────────────────────────────────────────────────────────────────────────


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value


def as_record(obj: Any) -> Dict[str, Any]:
    """Dataclass result → JSON-ready dict (enum values, ISO dates)."""
    return _plain(dataclasses.asdict(obj))


def readings_frame(readings: Iterable[Reading]) -> pd.DataFrame:
    """Readings → tidy DataFrame with a UTC ``timestamp`` and ``consumption`` column."""
    rows = [
        (r.device_id, r.timestamp, r.current, r.voltage, r.power, r.energy)
        for r in readings
    ]
    df = pd.DataFrame(rows, columns=FRAME_COLUMNS[:-1])
    if df.empty:
        return pd.DataFrame(columns=FRAME_COLUMNS)
    df["timestamp"] = pd.to_datetime(df["timestamp"], utc=True)
    for col in ("current", "voltage", "power", "energy"):
        df[col] = df[col].astype(float)
    df["consumption"] = df["current"] * df["voltage"]
    return df
