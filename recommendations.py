"""
Savings recommendations derived from patterns and anomalies.
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from config import section
from readings import (
    Anomaly, AnomalyKind, Pattern, PatternLabel, Priority, Recommendation, RecommendationKind
)


def priority_for_savings(savings_percent: float) -> Priority:
    if savings_percent > 20:
        return Priority.HIGH
    if savings_percent > 10:
        return Priority.MEDIUM
    return Priority.LOW


def generate_recommendations(patterns: Iterable[Pattern], anomalies: Iterable[Anomaly],
                             average_daily: float,
                             config: Optional[Dict[str, Any]] = None) -> List[Recommendation]:
    """
    Suggest actions for a heavy evening load, consumption spikes and a
    high daily average.

    Args:
        patterns: Time-of-day patterns for the period
        anomalies: Anomalies for the period
        average_daily: Average daily valid energy (kWh)
        config: Configuration dictionary

    Returns:
        Recommendations, possibly empty
    """
    settings = section(config, "recommendations")
    recommendations = []

    evening = next((p for p in patterns if p.label == PatternLabel.EVENING), None)
    if evening is not None and evening.avg_consumption > average_daily * settings["evening_share"]:
        percent = settings["time_shift_percent"]
        recommendations.append(Recommendation(
            kind=RecommendationKind.TIME_SHIFT,
            title="Shift appliance use out of the evening peak",
            description="Most consumption falls between 18:00 and 24:00. "
                        "Run washing machines and similar loads in the afternoon.",
            potential_savings=evening.avg_consumption * percent / 100,
            potential_savings_percent=percent,
            priority=priority_for_savings(percent),
        ))

    if any(a.kind == AnomalyKind.HIGH_CONSUMPTION for a in anomalies):
        percent = settings["usage_reduction_percent"]
        recommendations.append(Recommendation(
            kind=RecommendationKind.USAGE_REDUCTION,
            title="Check appliances with abnormal consumption",
            description="Consumption spikes were detected. Look for faulty equipment "
                        "or devices left on standby.",
            potential_savings=average_daily * percent / 100,
            potential_savings_percent=percent,
            priority=priority_for_savings(percent),
        ))

    if average_daily > settings["high_daily_consumption"]:
        percent = settings["device_optimization_percent"]
        recommendations.append(Recommendation(
            kind=RecommendationKind.DEVICE_OPTIMIZATION,
            title="Consider more efficient equipment",
            description="Daily consumption is above average. LED lighting and "
                        "high-efficiency appliances can reduce it significantly.",
            potential_savings=average_daily * percent / 100,
            potential_savings_percent=percent,
            priority=priority_for_savings(percent),
        ))

    return recommendations
