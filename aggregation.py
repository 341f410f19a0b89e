"""
Hourly/daily rollups and the statistical primitives shared by the analyzers.
"""
from __future__ import annotations

import logging
from typing import Dict, Any, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from config import section
from readings import DailyAggregate, HourlyAggregate, Reading, readings_frame

log = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────────
# STATISTICS
# ────────────────────────────────────────────────────────────────────────────────


def mean(values: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for an empty sequence."""
    if len(values) == 0:
        return 0.0
    return float(np.mean(values))


def stddev(values: Sequence[float], sample: bool = True) -> float:
    """
    Standard deviation of ``values``.

    Args:
        values: Numeric sequence
        sample: Bessel-corrected (n-1) when True, population (n) otherwise

    Returns:
        The standard deviation, 0.0 when it is undefined
    """
    n = len(values)
    if n == 0 or (sample and n < 2):
        return 0.0
    return float(np.std(np.asarray(values, dtype=float), ddof=1 if sample else 0))


def coefficient_of_variation(values: Sequence[float], sample: bool = False) -> float:
    """stddev / mean; 0.0 when the mean is not positive."""
    avg = mean(values)
    if avg <= 0:
        return 0.0
    return stddev(values, sample=sample) / avg


# ────────────────────────────────────────────────────────────────────────────────
# ROLLUPS
# ────────────────────────────────────────────────────────────────────────────────


def _with_valid_energy(df: pd.DataFrame, config: Optional[Dict[str, Any]]) -> pd.DataFrame:
    threshold = section(config, "readings")["validity_threshold"]
    df = df.copy()
    df["valid_energy"] = df["energy"].where(df["energy"] > threshold, 0.0)
    return df


def valid_energy_total(readings: Iterable[Reading], config: Optional[Dict[str, Any]] = None) -> float:
    """Sum of energy over readings above the noise floor."""
    threshold = section(config, "readings")["validity_threshold"]
    return float(sum(r.energy for r in readings if r.energy > threshold))


def hourly(readings: Iterable[Reading], config: Optional[Dict[str, Any]] = None) -> List[HourlyAggregate]:
    """
    Group readings by hour of day, folding all days of the range together.

    Energy totals only count readings above the validity threshold; power,
    current and voltage use every reading in the bucket.
    """
    df = readings_frame(readings)
    if df.empty:
        return []
    df = _with_valid_energy(df, config)

    g = (
        df.groupby(df["timestamp"].dt.hour)
        .agg(
            total_power=("power", "sum"),
            total_energy=("valid_energy", "sum"),
            avg_current=("current", "mean"),
            avg_voltage=("voltage", "mean"),
            count=("power", "size"),
        )
        .sort_index()
    )
    return [
        HourlyAggregate(
            hour=int(hour),
            total_power=float(row["total_power"]),
            total_energy=float(row["total_energy"]),
            avg_current=float(row["avg_current"]),
            avg_voltage=float(row["avg_voltage"]),
            count=int(row["count"]),
        )
        for hour, row in g.iterrows()
    ]


def daily(readings: Iterable[Reading], config: Optional[Dict[str, Any]] = None) -> List[DailyAggregate]:
    """One aggregate per calendar date (UTC), ascending."""
    df = readings_frame(readings)
    if df.empty:
        return []
    df = _with_valid_energy(df, config)

    g = (
        df.groupby(df["timestamp"].dt.date)
        .agg(
            total_power=("power", "sum"),
            total_energy=("valid_energy", "sum"),
            avg_current=("current", "mean"),
            avg_voltage=("voltage", "mean"),
            max_power=("power", "max"),
            min_power=("power", "min"),
            count=("power", "size"),
        )
        .sort_index()
    )
    return [
        DailyAggregate(
            date=day,
            total_power=float(row["total_power"]),
            total_energy=float(row["total_energy"]),
            avg_current=float(row["avg_current"]),
            avg_voltage=float(row["avg_voltage"]),
            max_power=float(row["max_power"]),
            min_power=float(row["min_power"]),
            count=int(row["count"]),
        )
        for day, row in g.iterrows()
    ]


def peak_hour(hourly_aggregates: Sequence[HourlyAggregate]) -> Optional[int]:
    """Hour of day with the highest total power, None without data."""
    if not hourly_aggregates:
        return None
    return max(hourly_aggregates, key=lambda h: h.total_power).hour


def daily_frame(daily_aggregates: Iterable[DailyAggregate]) -> pd.DataFrame:
    """Daily aggregates → DataFrame indexed by date, for CSV export and plotting."""
    df = pd.DataFrame([vars(d) for d in daily_aggregates])
    if df.empty:
        return df
    return df.set_index("date").sort_index()
