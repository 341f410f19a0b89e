"""
Efficiency scores, device ratings and period comparisons.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from aggregation import coefficient_of_variation, mean, valid_energy_total
from config import section
from readings import Anomaly, Device, DeviceRanking, EfficiencyRating, Reading

log = logging.getLogger(__name__)


def power_stability(readings: Sequence[Reading]) -> float:
    """1 - coefficient of variation of power, within [0, 1]."""
    if len(readings) < 2:
        return 0.0
    powers = [r.power for r in readings]
    cv = coefficient_of_variation(powers) if mean(powers) > 0 else 1.0
    return max(0.0, 1.0 - min(1.0, cv))


def voltage_stability(readings: Sequence[Reading], config: Optional[Dict[str, Any]] = None) -> float:
    """1 - relative deviation of mean voltage from nominal, floored at 0."""
    if len(readings) < 2:
        return 0.0
    nominal = section(config, "readings")["nominal_voltage"]
    deviation = abs(mean([r.voltage for r in readings]) - nominal) / nominal
    return max(0.0, 1.0 - deviation)


def efficiency_score(readings: Sequence[Reading], anomalies: Iterable[Anomaly] = (),
                     config: Optional[Dict[str, Any]] = None) -> int:
    """
    Composite 0-100 score.

    Stability and data volume add to the base score; the sum is clamped to
    [0, 100] before each unresolved anomaly subtracts its severity penalty.

    Args:
        readings: Readings of one device or a whole installation
        anomalies: Anomalies detected over the same readings
        config: Configuration dictionary

    Returns:
        Integer score, 0 without readings
    """
    readings = list(readings)
    if not readings:
        return 0

    settings = section(config, "scoring")
    power_score = int(power_stability(readings) * settings["power_stability_weight"])
    voltage_score = int(voltage_stability(readings, config) * settings["voltage_stability_weight"])
    data_score = min(settings["max_data_bonus"], len(readings) // settings["readings_per_bonus_point"])

    score = max(0, min(100, settings["base_score"] + power_score + voltage_score + data_score))

    penalties = settings["anomaly_penalties"]
    penalty = sum(penalties.get(a.severity.value, 0) for a in anomalies if not a.resolved)
    return int(max(0, score - penalty))


def device_efficiency_rating(readings: Sequence[Reading],
                             config: Optional[Dict[str, Any]] = None) -> EfficiencyRating:
    """Rate consumption steadiness by the coefficient of variation of power."""
    if not readings:
        return EfficiencyRating.NO_DATA

    thresholds = section(config, "scoring")["rating_thresholds"]
    cv = coefficient_of_variation([r.power for r in readings])
    if cv < thresholds["Excellent"]:
        return EfficiencyRating.EXCELLENT
    if cv < thresholds["Good"]:
        return EfficiencyRating.GOOD
    if cv < thresholds["Regular"]:
        return EfficiencyRating.REGULAR
    return EfficiencyRating.NEEDS_IMPROVEMENT


def monthly_comparison(current_readings: Sequence[Reading], previous_readings: Sequence[Reading],
                       config: Optional[Dict[str, Any]] = None) -> float:
    """
    Percent change of valid energy between two adjacent periods.

    Returns 0 when there is nothing to compare against, and 100 when the
    previous period consumed nothing but the current one did.
    """
    if not previous_readings:
        return 0.0

    current = valid_energy_total(current_readings, config)
    previous = valid_energy_total(previous_readings, config)
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 1)


def device_ranking(devices: Iterable[Device], readings: Iterable[Reading],
                   config: Optional[Dict[str, Any]] = None) -> List[DeviceRanking]:
    """
    Per-device consumption summary, highest total consumption first.
    """
    tariff = section(config, "billing")["tariff_rate"]
    interval = section(config, "scoring")["reading_interval_hours"]

    by_device: Dict[str, List[Reading]] = {}
    for r in readings:
        by_device.setdefault(r.device_id, []).append(r)

    ranking = []
    for device in devices:
        device_readings = by_device.get(device.id, [])
        powers = [r.power for r in device_readings]
        total = valid_energy_total(device_readings, config)
        active = sum(1 for p in powers if p > 0)

        ranking.append(DeviceRanking(
            device_id=device.id,
            device_name=device.name,
            location=device.location or "Unknown",
            total_consumption=round(total, 2),
            average_power=round(mean(powers), 2),
            max_power=max(powers, default=0.0),
            min_power=min(powers, default=0.0),
            estimated_cost=round(total * tariff, 2),
            operating_hours=round(active * interval, 1),
            efficiency_rating=device_efficiency_rating(device_readings, config),
            last_activity=max((r.timestamp for r in device_readings), default=None),
        ))

    ranking.sort(key=lambda d: d.total_consumption, reverse=True)
    return ranking
