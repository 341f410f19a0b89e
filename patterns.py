"""
Time-of-day consumption patterns.

Readings are partitioned into four fixed buckets (morning, afternoon, evening,
night) instead of running an iterative clustering; daily human routines are
the dominant signal in household telemetry.
"""
from __future__ import annotations

import datetime
import logging
from typing import Dict, Any, Iterable, List, Optional

from config import section
from readings import Device, Pattern, PatternLabel, Reading, WeeklyPattern, readings_frame

log = logging.getLogger(__name__)

# (label, first hour, end hour exclusive, cluster id)
TIME_BUCKETS = (
    (PatternLabel.MORNING, 6, 12, 1),
    (PatternLabel.AFTERNOON, 12, 18, 2),
    (PatternLabel.EVENING, 18, 24, 3),
    (PatternLabel.NIGHT, 0, 6, 4),
)

CLUSTER_LABELS = {
    1: "Morning Peak",
    2: "Afternoon Usage",
    3: "Evening Peak",
    4: "Night Base Load",
}


def cluster_labels() -> Dict[int, str]:
    return dict(CLUSTER_LABELS)


def _bucket_time(hour: int) -> datetime.time:
    if hour >= 24:
        return datetime.time(23, 59, 59)
    return datetime.time(hour, 0)


def identify_patterns(readings: Iterable[Reading], devices: Iterable[Device] = (),
                      config: Optional[Dict[str, Any]] = None) -> List[Pattern]:
    """
    Compute per-bucket consumption statistics.

    Consumption is approximated as ``current * voltage`` rather than the stored
    power so that patterns agree with anomaly detection. A bucket with fewer
    than ``patterns.min_bucket_readings`` readings is left out.

    Args:
        readings: Readings of any number of devices, in any order
        devices: Optional registry entries used to name contributing devices
        config: Configuration dictionary

    Returns:
        Patterns in Morning, Afternoon, Evening, Night order
    """
    df = readings_frame(readings)
    if df.empty:
        return []

    min_readings = section(config, "patterns")["min_bucket_readings"]
    names = {d.id: d.name for d in devices}
    hours = df["timestamp"].dt.hour

    patterns = []
    for label, start, end, cluster_id in TIME_BUCKETS:
        bucket = df[(hours >= start) & (hours < end)]
        if len(bucket) < min_readings:
            log.debug("Skipping %s bucket: %d readings", label.value, len(bucket))
            continue

        contributing = sorted({names.get(d, d) for d in bucket["device_id"].unique()})
        patterns.append(Pattern(
            label=label,
            avg_consumption=float(bucket["consumption"].mean()),
            peak_consumption=float(bucket["consumption"].max()),
            start_time=_bucket_time(start),
            end_time=_bucket_time(end),
            cluster_id=cluster_id,
            device_names=tuple(contributing),
            readings_count=int(len(bucket)),
        ))

    log.info("Identified %d consumption patterns", len(patterns))
    return patterns


def weekly_pattern(readings: Iterable[Reading],
                   config: Optional[Dict[str, Any]] = None) -> Optional[WeeklyPattern]:
    """
    Compare weekday against weekend average power.

    Returns a pattern only when the two differ by more than
    ``patterns.weekly_difference_ratio`` of the weekday average.
    """
    df = readings_frame(readings)
    if df.empty:
        return None

    is_weekend = df["timestamp"].dt.dayofweek >= 5  # 5=Saturday, 6=Sunday
    weekday_power = df.loc[~is_weekend, "power"]
    weekend_power = df.loc[is_weekend, "power"]
    if weekday_power.empty or weekend_power.empty:
        return None

    weekday_avg = float(weekday_power.mean())
    weekend_avg = float(weekend_power.mean())
    difference = abs(weekday_avg - weekend_avg)
    ratio = section(config, "patterns")["weekly_difference_ratio"]
    if difference <= weekday_avg * ratio:
        return None

    return WeeklyPattern(
        label="Weekend" if weekend_avg > weekday_avg else "Weekday",
        weekday_average=weekday_avg,
        weekend_average=weekend_avg,
        difference=difference,
    )
