"""
Short-term consumption forecasts.

Daily forecasts combine a per-weekday baseline, an ordinary least-squares trend
over the daily history and a month-based seasonal multiplier. Hourly forecasts
project the historical hour-of-day profile.
"""
from __future__ import annotations

import datetime
import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional, Sequence

from aggregation import mean, stddev
from config import section
from readings import (
    DailyAggregate, EnergyForecast, Forecast, HourlyForecast, Reading, readings_frame
)

log = logging.getLogger(__name__)


def linear_trend(values: Sequence[float]) -> float:
    """Closed-form OLS slope of ``values`` against their index; 0 for n < 2."""
    n = len(values)
    if n < 2:
        return 0.0
    sum_x = n * (n - 1) / 2
    sum_xx = (n - 1) * n * (2 * n - 1) / 6
    sum_y = float(sum(values))
    sum_xy = float(sum(i * y for i, y in enumerate(values)))
    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        return 0.0
    return (n * sum_xy - sum_x * sum_y) / denominator


def forecast_confidence(eligible_days: int, config: Optional[Dict[str, Any]] = None) -> float:
    settings = section(config, "forecast")
    if eligible_days < settings["min_eligible_days"]:
        return settings["low_confidence"]
    return min(
        settings["max_confidence"],
        settings["base_confidence"] + eligible_days * settings["confidence_per_day"],
    )


def weekday_baselines(days: Iterable[DailyAggregate]) -> Dict[int, float]:
    """Mean daily energy per weekday (Monday=0)."""
    by_weekday = defaultdict(list)
    for d in days:
        by_weekday[d.date.weekday()].append(d.total_energy)
    return {weekday: mean(values) for weekday, values in by_weekday.items()}


def seasonal_fallback_factor(month: int, profile: Optional[str] = None,
                             config: Optional[Dict[str, Any]] = None) -> float:
    """
    Fixed month factor used when history has nothing for the target month.

    Raises:
        KeyError: ``profile`` is not configured
    """
    settings = section(config, "forecast")
    profile = profile or settings["seasonal_profile"]
    for entry in settings["seasonal_fallback"][profile]:
        if month in entry["months"]:
            return float(entry["factor"])
    return 1.0


def seasonal_factor(target: datetime.date, days: Sequence[DailyAggregate],
                    config: Optional[Dict[str, Any]] = None) -> float:
    """
    Ratio of the target month's mean daily energy to the overall mean,
    clamped to ``forecast.seasonal_bounds``.
    """
    settings = section(config, "forecast")
    month_values = [d.total_energy for d in days if d.date.month == target.month]
    overall = mean([d.total_energy for d in days])
    if not month_values or overall <= 0:
        return seasonal_fallback_factor(target.month, config=config)

    lower, upper = settings["seasonal_bounds"]
    return max(lower, min(upper, mean(month_values) / overall))


def _history(daily_aggregates: Sequence[DailyAggregate], min_readings: int) -> List[DailyAggregate]:
    ordered = sorted(daily_aggregates, key=lambda d: d.date)
    return [d for d in ordered if d.count >= min_readings]


def forecast(daily_aggregates: Sequence[DailyAggregate], horizon_days: Optional[int] = None,
             anchor_date: Optional[datetime.date] = None,
             config: Optional[Dict[str, Any]] = None) -> List[Forecast]:
    """
    Project daily consumption ``horizon_days`` ahead.

    Args:
        daily_aggregates: Daily rollups, in any order
        horizon_days: Number of days to forecast (``forecast.horizon_days``)
        anchor_date: Day before the first forecast day; defaults to the
            latest date in ``daily_aggregates``
        config: Configuration dictionary

    Returns:
        One forecast per day, empty without history
    """
    settings = section(config, "forecast")
    tariff = section(config, "billing")["tariff_rate"]
    horizon = settings["horizon_days"] if horizon_days is None else horizon_days
    if not daily_aggregates or horizon <= 0:
        return []

    eligible = _history(daily_aggregates, settings["min_day_readings"])
    confidence = forecast_confidence(len(eligible), config)
    # Low-confidence mode still forecasts from whatever days were supplied
    history = eligible or sorted(daily_aggregates, key=lambda d: d.date)

    energies = [d.total_energy for d in history]
    overall = mean(energies)
    trend = linear_trend(energies)
    baselines = weekday_baselines(history)
    interval = settings["interval_z"] * stddev(energies, sample=False)

    anchor = anchor_date or max(d.date for d in daily_aggregates)
    forecasts = []
    for offset in range(1, horizon + 1):
        target = anchor + datetime.timedelta(days=offset)
        baseline = baselines.get(target.weekday(), overall)
        multiplier = seasonal_factor(target, history, config)
        predicted = max(0.0, (baseline + trend * offset) * multiplier)
        forecasts.append(Forecast(
            target_date=target,
            predicted_consumption=round(predicted, 2),
            estimated_cost=round(predicted * tariff, 2),
            confidence_interval=round(interval, 2),
            confidence=confidence,
        ))

    log.info("Generated %d daily forecasts (trend %.4f kWh/day, confidence %.2f)",
             len(forecasts), trend, confidence)
    return forecasts


def forecast_summary(daily_aggregates: Sequence[DailyAggregate], horizon_days: Optional[int] = None,
                     anchor_date: Optional[datetime.date] = None,
                     config: Optional[Dict[str, Any]] = None) -> EnergyForecast:
    """Daily forecasts plus their totals."""
    settings = section(config, "forecast")
    horizon = settings["horizon_days"] if horizon_days is None else horizon_days
    forecasts = forecast(daily_aggregates, horizon, anchor_date, config)
    if not forecasts:
        return EnergyForecast(generated_at=anchor_date, horizon_days=horizon, confidence=0.0)

    return EnergyForecast(
        generated_at=anchor_date or max(d.date for d in daily_aggregates),
        horizon_days=horizon,
        confidence=forecasts[0].confidence,
        forecasts=tuple(forecasts),
        total_predicted_consumption=round(sum(f.predicted_consumption for f in forecasts), 2),
        estimated_total_cost=round(sum(f.estimated_cost for f in forecasts), 2),
    )


def forecast_hourly(readings: Iterable[Reading], hours_ahead: Optional[int] = None,
                    start: Optional[datetime.datetime] = None,
                    config: Optional[Dict[str, Any]] = None) -> List[HourlyForecast]:
    """
    Project hourly consumption (W) from the hour-of-day profile of ``readings``.

    Hours without history use ``forecast.default_hourly_consumption``; weekend
    hours are scaled by ``forecast.weekend_factor`` and every hour by the
    ``hourly`` seasonal fallback profile.
    """
    settings = section(config, "forecast")
    hours = settings["hours_ahead"] if hours_ahead is None else hours_ahead
    df = readings_frame(readings)
    if df.empty or hours <= 0:
        return []

    profile = df.groupby(df["timestamp"].dt.hour)["consumption"].mean().to_dict()
    if start is None:
        last = df["timestamp"].max().to_pydatetime()
        start = last.replace(minute=0, second=0, microsecond=0) + datetime.timedelta(hours=1)

    predictions = []
    for i in range(hours):
        hour = start + datetime.timedelta(hours=i)
        base = profile.get(hour.hour, settings["default_hourly_consumption"])
        weekend = settings["weekend_factor"] if hour.weekday() >= 5 else 1.0
        seasonal = seasonal_fallback_factor(hour.month, "hourly", config)
        predictions.append(HourlyForecast(
            hour=hour,
            predicted_consumption=max(0.0, float(base) * weekend * seasonal),
        ))
    return predictions
