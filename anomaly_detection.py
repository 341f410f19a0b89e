"""
Anomaly detection for sensor telemetry.

This module flags readings and devices whose consumption, voltage or zero-power
ratio fall outside the statistical bands of their own history.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from aggregation import mean, stddev
from config import section
from readings import (
    Anomaly, AnomalyKind, Device, Reading, Severity, Window, as_record, readings_frame
)

# Setup logging
logger = logging.getLogger(__name__)


def anomaly_score(value: float, avg: float, std: float, z_cap: float = 3.0) -> float:
    """
    Normalize the distance of ``value`` from ``avg`` to [0, 1].

    A z-score of ``z_cap`` or more maps to 1.0. Zero variance scores 0.
    """
    if std == 0:
        return 0.0
    z = abs(value - avg) / std
    return min(z / z_cap, 1.0)


def severity_for_score(score: float, settings: Optional[Dict[str, Any]] = None) -> Severity:
    settings = settings or section(None, "anomaly_detection")
    if score > settings["high_severity_score"]:
        return Severity.HIGH
    if score > settings["medium_severity_score"]:
        return Severity.MEDIUM
    return Severity.LOW


def _report(anomaly: Anomaly, settings: Dict[str, Any]) -> Anomaly:
    if settings["log_anomalies"]:
        logger.warning(
            "Anomaly detected: %s for device %s - Observed: %.2f, Expected: %.2f",
            anomaly.kind.value, anomaly.device_id, anomaly.observed_value, anomaly.expected_value
        )
    return anomaly


def _consumption_anomalies(device_id: str, group: pd.DataFrame,
                           settings: Dict[str, Any]) -> List[Anomaly]:
    values = group["consumption"].tolist()
    avg = mean(values)
    std = stddev(values, sample=True)
    if std == 0:
        return []

    sigma = settings["sigma_multiplier"]
    upper = avg + sigma * std
    lower = max(0.0, avg - sigma * std)
    floor = settings["low_consumption_floor"]

    found = []
    for row in group.itertuples(index=False):
        value = row.consumption
        if value > upper:
            kind = AnomalyKind.HIGH_CONSUMPTION
            description = f"Abnormally high consumption detected: {value:.2f}W (expected ~{avg:.2f}W)"
        elif floor < value < lower and row.power != 0:
            kind = AnomalyKind.LOW_CONSUMPTION
            description = f"Abnormally low consumption detected: {value:.2f}W (expected ~{avg:.2f}W)"
        else:
            continue

        score = anomaly_score(value, avg, std, settings["z_score_cap"])
        found.append(Anomaly(
            device_id=device_id,
            kind=kind,
            observed_value=float(value),
            expected_value=avg,
            score=score,
            severity=severity_for_score(score, settings),
            detected_at=row.timestamp.to_pydatetime(),
            description=description,
        ))
    return found


def _night_pattern_anomaly(device_id: str, group: pd.DataFrame,
                           settings: Dict[str, Any]) -> List[Anomaly]:
    # A constant load has no day/night structure to compare
    if stddev(group["consumption"].tolist(), sample=True) == 0:
        return []

    hours = group["timestamp"].dt.hour
    night_start, night_end = settings["night_hours"]
    day_start, day_end = settings["day_hours"]
    night = group.loc[(hours >= night_start) & (hours < night_end), "consumption"]
    day = group.loc[(hours >= day_start) & (hours < day_end), "consumption"]
    if night.empty or day.empty:
        return []

    night_avg = float(night.mean())
    day_avg = float(day.mean())
    if night_avg <= day_avg * settings["night_day_ratio"]:
        return []

    score = settings["night_pattern_score"]
    return [Anomaly(
        device_id=device_id,
        kind=AnomalyKind.UNUSUAL_NIGHT_PATTERN,
        observed_value=night_avg,
        expected_value=day_avg * settings["night_expected_ratio"],
        score=score,
        severity=severity_for_score(score, settings),
        detected_at=group["timestamp"].iloc[-1].to_pydatetime(),
        description=f"Unusually high night consumption: {night_avg:.2f}W against {day_avg:.2f}W by day",
    )]


def _voltage_anomalies(device_id: str, group: pd.DataFrame, nominal: float,
                       settings: Dict[str, Any]) -> List[Anomaly]:
    tolerance = settings["voltage_tolerance"]
    low, high = nominal - tolerance, nominal + tolerance
    out_of_range = group[(group["voltage"] < low) | (group["voltage"] > high)]

    found = []
    for row in out_of_range.itertuples(index=False):
        deviation = abs(row.voltage - nominal)
        if deviation > settings["voltage_high_deviation"]:
            severity, score = Severity.HIGH, settings["voltage_high_score"]
        else:
            severity, score = Severity.MEDIUM, settings["voltage_medium_score"]
        found.append(Anomaly(
            device_id=device_id,
            kind=AnomalyKind.VOLTAGE_OUT_OF_RANGE,
            observed_value=float(row.voltage),
            expected_value=nominal,
            score=score,
            severity=severity,
            detected_at=row.timestamp.to_pydatetime(),
            description=f"Voltage of {row.voltage:.1f}V detected (expected {low:.0f}-{high:.0f}V)",
        ))
    return found


def _sensor_failure_anomaly(device_id: str, group: pd.DataFrame,
                            settings: Dict[str, Any]) -> List[Anomaly]:
    zeros = group[group["power"] == 0]
    if len(zeros) <= len(group) * settings["zero_power_ratio"]:
        return []

    first_zero = zeros.iloc[0]
    return [Anomaly(
        device_id=device_id,
        kind=AnomalyKind.SENSOR_FAILURE,
        observed_value=0.0,
        expected_value=float(group["power"].mean()),
        score=settings["sensor_failure_score"],
        severity=Severity.HIGH,
        detected_at=first_zero["timestamp"].to_pydatetime(),
        description=f"Multiple zero-power readings detected ({len(zeros)} of {len(group)})",
    )]


def deduplicate(anomalies: Iterable[Anomaly], per_device: bool = False) -> List[Anomaly]:
    """
    Keep the first anomaly of each (kind, calendar date) pair.

    A later, more severe anomaly of the same kind and day is dropped.
    """
    seen = set()
    kept = []
    for anomaly in anomalies:
        key: Tuple = (anomaly.kind, anomaly.detected_at.date())
        if per_device:
            key += (anomaly.device_id,)
        if key in seen:
            continue
        seen.add(key)
        kept.append(anomaly)
    return kept


def rank_anomalies(anomalies: Iterable[Anomaly], limit: Optional[int] = None) -> List[Anomaly]:
    """Order by severity then detection time, both descending, optionally capped."""
    ranked = sorted(
        anomalies,
        key=lambda a: (a.severity.rank, a.detected_at),
        reverse=True,
    )
    return ranked if limit is None else ranked[:limit]


def detect(readings: Iterable[Reading], window: Optional[Window] = None,
           devices: Iterable[Device] = (), config: Optional[Dict[str, Any]] = None) -> List[Anomaly]:
    """
    Detect anomalies in device telemetry.

    Each device is analyzed against its own readings: consumption outside
    ``mean ± sigma_multiplier * stddev``, unusually high night consumption,
    voltage outside the nominal band and a high share of zero-power readings.

    Args:
        readings: Readings in any order
        window: Optional inclusive time range; readings outside it are ignored
        devices: Optional registry entries; when given, only these devices
            are analyzed
        config: Configuration dictionary

    Returns:
        Deduplicated anomalies, most severe and most recent first
    """
    settings = section(config, "anomaly_detection")
    nominal = section(config, "readings")["nominal_voltage"]

    df = readings_frame(readings)
    if window is not None and not df.empty:
        df = df[(df["timestamp"] >= window.start) & (df["timestamp"] <= window.end)]
    known = {d.id for d in devices}
    if known and not df.empty:
        df = df[df["device_id"].isin(known)]
    if df.empty:
        return []

    found: List[Anomaly] = []
    for device_id, group in df.groupby("device_id", sort=True):
        if len(group) < settings["min_device_readings"]:
            logger.debug("Skipping device %s: only %d readings", device_id, len(group))
            continue

        group = group.sort_values("timestamp", kind="stable")
        found.extend(_consumption_anomalies(device_id, group, settings))
        found.extend(_night_pattern_anomaly(device_id, group, settings))
        found.extend(_voltage_anomalies(device_id, group, nominal, settings))
        found.extend(_sensor_failure_anomaly(device_id, group, settings))

    found.sort(key=lambda a: a.detected_at)
    unique = deduplicate(found, per_device=settings["dedup_per_device"])
    for anomaly in unique:
        _report(anomaly, settings)

    logger.info("Detected %d anomalies (%d before deduplication)", len(unique), len(found))
    return rank_anomalies(unique, settings["max_results"])


def anomaly_stats(anomalies: List[Anomaly]) -> Dict[str, Any]:
    """Counts of anomalies by device, kind and severity."""
    stats = {
        "devices_with_anomalies": sorted({a.device_id for a in anomalies if a.device_id}),
        "total_anomalies": len(anomalies),
        "anomalies_by_device": {},
        "anomalies_by_kind": {},
        "anomalies_by_severity": {},
    }
    for a in anomalies:
        for key, value in (("anomalies_by_device", a.device_id),
                           ("anomalies_by_kind", a.kind.value),
                           ("anomalies_by_severity", a.severity.value)):
            stats[key][value] = stats[key].get(value, 0) + 1
    return stats


def main(input_json: str = "readings.json", output_csv: str = "csv_output/anomalies.csv"):
    """
    Main function to detect anomalies in a readings file.

    Args:
        input_json: Path to a JSON array of normalized readings
        output_csv: Path of the CSV report
    """
    from reading_store import load_readings
    from energy_analysis import save_anomalies_to_csv

    # Setup logging
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s · %(levelname)s · %(message)s"
    )

    readings = load_readings(input_json)
    anomalies = detect(readings)

    if not anomalies:
        logger.info("No anomalies detected")
        return []

    stats = anomaly_stats(anomalies)

    # Print anomaly statistics
    print("\n" + "="*80)
    print(" "*30 + "ANOMALY DETECTION RESULTS")
    print("="*80)

    print(f"\nTotal anomalies detected: {stats['total_anomalies']}")

    print("\nAnomalies by kind:")
    for kind, count in stats["anomalies_by_kind"].items():
        print(f"  {kind}: {count}")

    print("\nAnomalies by severity:")
    for severity, count in stats["anomalies_by_severity"].items():
        print(f"  {severity}: {count}")

    save_anomalies_to_csv([as_record(a) for a in anomalies], output_csv)
    return anomalies


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Anomaly detection for sensor telemetry")
    parser.add_argument("--input", "-i", default="readings.json",
                      help="Input JSON file with normalized readings")
    parser.add_argument("--output", "-o", default="csv_output/anomalies.csv",
                      help="Output CSV file")
    args = parser.parse_args()

    main(args.input, args.output)
