from __future__ import annotations
import datetime
import logging
import os
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

import pandas as pd

from aggregation import daily, daily_frame, hourly, peak_hour, valid_energy_total
from anomaly_detection import detect
from config import load_config, section
from data_quality import DataQualityMetrics
from forecasting import forecast_hourly, forecast_summary
from patterns import identify_patterns, weekly_pattern
from reading_store import DeviceRegistry, ReadingStore, UpstreamFailure, load_data, load_devices
from readings import (
    Anomaly, DailyAggregate, Device, DeviceRanking, EfficiencyRating, EnergyDashboard,
    EnergyForecast, HourlyAggregate, HourlyForecast, Pattern, Reading, Recommendation,
    WeeklyPattern, Window, as_record
)
from recommendations import generate_recommendations
from scoring import device_efficiency_rating, device_ranking, efficiency_score, monthly_comparison

log = logging.getLogger(__name__)

T = TypeVar("T")


# ────────────────────────────────────────────────────────────────────────────────
# RESULTS
# ────────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a service call: a value, or the reason an upstream lookup failed."""
    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "Result[T]":
        return cls(error=error)


@dataclass(frozen=True)
class AnalysisReport:
    hourly: Tuple[HourlyAggregate, ...] = ()
    daily: Tuple[DailyAggregate, ...] = ()
    patterns: Tuple[Pattern, ...] = ()
    weekly: Optional[WeeklyPattern] = None
    anomalies: Tuple[Anomaly, ...] = ()
    forecast: EnergyForecast = field(
        default_factory=lambda: EnergyForecast(generated_at=None, horizon_days=0, confidence=0.0)
    )
    hourly_forecast: Tuple[HourlyForecast, ...] = ()
    efficiency_score: int = 0
    efficiency_rating: EfficiencyRating = EfficiencyRating.NO_DATA
    ranking: Tuple[DeviceRanking, ...] = ()
    recommendations: Tuple[Recommendation, ...] = ()
    total_consumption: float = 0.0
    average_daily: float = 0.0


# ────────────────────────────────────────────────────────────────────────────────
# FORK-JOIN ANALYSIS
# ────────────────────────────────────────────────────────────────────────────────


def _period_days(readings: Tuple[Reading, ...], window: Optional[Window]) -> float:
    if window is not None:
        return window.days
    return float(len({r.timestamp.date() for r in readings}))


def run_analyzers(readings: Iterable[Reading], devices: Iterable[Device] = (),
                  window: Optional[Window] = None, horizon_days: Optional[int] = None,
                  config: Optional[Dict[str, Any]] = None,
                  executor: Optional[Executor] = None) -> AnalysisReport:
    """
    Run every analyzer over one snapshot of readings and combine the results.

    The analyzers share no mutable state, so they are submitted as independent
    tasks; pass an ``executor`` to control where they run.

    Args:
        readings: Readings of the analyzed devices
        devices: Registry entries for naming and ranking
        window: Analysis period; readings outside it are ignored
        horizon_days: Days to forecast
        config: Configuration dictionary
        executor: Executor for the analyzer tasks, a private thread pool if None

    Returns:
        AnalysisReport
    """
    snapshot = tuple(
        r for r in readings if window is None or window.contains(r.timestamp)
    )
    devices = tuple(devices)
    if not snapshot:
        return AnalysisReport()

    hourly_aggs = hourly(snapshot, config)
    daily_aggs = daily(snapshot, config)

    pool = executor or ThreadPoolExecutor(max_workers=4)
    try:
        tasks = {
            "patterns": pool.submit(identify_patterns, snapshot, devices, config),
            "weekly": pool.submit(weekly_pattern, snapshot, config),
            "anomalies": pool.submit(detect, snapshot, None, (), config),
            "forecast": pool.submit(forecast_summary, daily_aggs, horizon_days, None, config),
            "hourly_forecast": pool.submit(forecast_hourly, snapshot, None, None, config),
            "score": pool.submit(efficiency_score, snapshot, (), config),
            "rating": pool.submit(device_efficiency_rating, snapshot, config),
            "ranking": pool.submit(device_ranking, devices, snapshot, config),
        }
        results = {name: task.result() for name, task in tasks.items()}
    finally:
        if executor is None:
            pool.shutdown()

    total = valid_energy_total(snapshot, config)
    days = _period_days(snapshot, window)
    average_daily = total / days if days > 0 else 0.0
    recommendations = generate_recommendations(
        results["patterns"], results["anomalies"], average_daily, config
    )

    return AnalysisReport(
        hourly=tuple(hourly_aggs),
        daily=tuple(daily_aggs),
        patterns=tuple(results["patterns"]),
        weekly=results["weekly"],
        anomalies=tuple(results["anomalies"]),
        forecast=results["forecast"],
        hourly_forecast=tuple(results["hourly_forecast"]),
        efficiency_score=results["score"],
        efficiency_rating=results["rating"],
        ranking=tuple(results["ranking"]),
        recommendations=tuple(recommendations),
        total_consumption=round(total, 2),
        average_daily=round(average_daily, 2),
    )


# ────────────────────────────────────────────────────────────────────────────────
# SERVICE
# ────────────────────────────────────────────────────────────────────────────────


class EnergyAnalysisService:
    """
    Analytics over a user's devices, backed by a reading store and a device
    registry. Lookup failures come back as failed results and are not retried.
    """

    def __init__(self, store: ReadingStore, registry: DeviceRegistry,
                 config: Optional[Dict[str, Any]] = None,
                 clock: Optional[Callable[[], datetime.datetime]] = None):
        self.store = store
        self.registry = registry
        self.config = config
        self.clock = clock or (lambda: datetime.datetime.now(datetime.timezone.utc))

    def _default_window(self, days: Optional[int] = None) -> Window:
        days = days or section(self.config, "analysis_window")["days"]
        return Window.last_days(self.clock(), days)

    def _devices(self, user_id: str) -> List[Device]:
        try:
            return list(self.registry.devices_for_user(user_id))
        except Exception as e:
            raise UpstreamFailure(f"device lookup failed for user {user_id}: {e}") from e

    def _readings(self, devices: List[Device], window: Window) -> List[Reading]:
        if not devices:
            return []
        try:
            return list(self.store.readings_in_range([d.id for d in devices], window.start, window.end))
        except Exception as e:
            raise UpstreamFailure(f"reading lookup failed: {e}") from e

    def _call(self, what: str, user_id: str, fn: Callable[[], T]) -> Result[T]:
        try:
            return Result.success(fn())
        except UpstreamFailure as e:
            log.error("Error computing %s for user %s: %s", what, user_id, e)
            return Result.failure(str(e))

    def dashboard(self, user_id: str, window: Optional[Window] = None) -> Result[EnergyDashboard]:
        def build() -> EnergyDashboard:
            period = window or self._default_window()
            devices = self._devices(user_id)
            readings = self._readings(devices, period)
            if not readings:
                return EnergyDashboard(devices_count=len(devices))

            tariff = section(self.config, "billing")["tariff_rate"]
            billing_days = section(self.config, "billing")["billing_period_days"]
            total = valid_energy_total(readings, self.config)
            average_daily = total / period.days if period.days > 0 else 0.0
            hourly_aggs = hourly(readings, self.config)
            peak = peak_hour(hourly_aggs)
            previous = self._readings(devices, period.previous())

            return EnergyDashboard(
                total_consumption=round(total, 2),
                average_daily=round(average_daily, 2),
                estimated_monthly_cost=round(average_daily * billing_days * tariff, 2),
                devices_count=len(devices),
                last_updated=max(r.timestamp for r in readings),
                peak_hour=None if peak is None else f"{peak:02d}:00",
                efficiency_score=efficiency_score(readings, (), self.config),
                compared_to_last_month=monthly_comparison(readings, previous, self.config),
                hourly=tuple(hourly_aggs),
                daily=tuple(daily(readings, self.config)),
            )

        return self._call("dashboard", user_id, build)

    def patterns(self, user_id: str, window: Optional[Window] = None) -> Result[List[Pattern]]:
        def build() -> List[Pattern]:
            devices = self._devices(user_id)
            readings = self._readings(devices, window or self._default_window())
            return identify_patterns(readings, devices, self.config)

        return self._call("patterns", user_id, build)

    def anomalies(self, user_id: str, days: Optional[int] = None) -> Result[List[Anomaly]]:
        def build() -> List[Anomaly]:
            period = self._default_window(days)
            devices = self._devices(user_id)
            return detect(self._readings(devices, period), period, devices, self.config)

        return self._call("anomalies", user_id, build)

    def forecast(self, user_id: str, days: Optional[int] = None) -> Result[EnergyForecast]:
        def build() -> EnergyForecast:
            period = self._default_window()
            devices = self._devices(user_id)
            daily_aggs = daily(self._readings(devices, period), self.config)
            return forecast_summary(daily_aggs, days, period.end.date(), self.config)

        return self._call("forecast", user_id, build)

    def device_ranking(self, user_id: str) -> Result[List[DeviceRanking]]:
        def build() -> List[DeviceRanking]:
            devices = self._devices(user_id)
            return device_ranking(devices, self._readings(devices, self._default_window()), self.config)

        return self._call("device ranking", user_id, build)

    def analyze(self, user_id: str, window: Optional[Window] = None,
                executor: Optional[Executor] = None) -> Result[AnalysisReport]:
        def build() -> AnalysisReport:
            period = window or self._default_window()
            devices = self._devices(user_id)
            readings = self._readings(devices, period)
            report = run_analyzers(readings, devices, period, config=self.config, executor=executor)
            log.info("Analysis completed for user %s: %d patterns, %d anomalies",
                     user_id, len(report.patterns), len(report.anomalies))
            return report

        return self._call("analysis", user_id, build)


# ────────────────────────────────────────────────────────────────────────────────
# REPORTING
# ────────────────────────────────────────────────────────────────────────────────


def save_anomalies_to_csv(anomalies: List[Dict], file_path: str) -> None:
    """
    Save detected anomalies to CSV file for auditing.

    Args:
        anomalies: List of anomaly records
        file_path: Path to save the CSV file
    """
    if not anomalies:
        log.info("No anomalies detected to save")
        return

    # Convert list of anomaly dictionaries to DataFrame
    anomaly_df = pd.DataFrame(anomalies)

    directory = os.path.dirname(file_path)
    if directory:
        os.makedirs(directory, exist_ok=True)

    # Save to CSV
    anomaly_df.to_csv(file_path, index=False)
    log.info("Saved %d anomaly records to %s", len(anomalies), file_path)


def export_csv(report: AnalysisReport, csv_dir: Path) -> List[Path]:
    """Write the tabular parts of a report as CSV files."""
    csv_dir.mkdir(parents=True, exist_ok=True)
    written = []

    tables = {
        "hourly_consumption.csv": pd.DataFrame([as_record(h) for h in report.hourly]),
        "daily_consumption.csv": daily_frame(report.daily).reset_index(),
        "forecast.csv": pd.DataFrame([as_record(f) for f in report.forecast.forecasts]),
        "patterns.csv": pd.DataFrame([as_record(p) for p in report.patterns]),
        "device_ranking.csv": pd.DataFrame([as_record(d) for d in report.ranking]),
    }
    for name, df in tables.items():
        if df.empty:
            continue
        df.to_csv(csv_dir / name, index=False)
        written.append(csv_dir / name)

    if report.anomalies:
        path = csv_dir / "anomalies.csv"
        save_anomalies_to_csv([as_record(a) for a in report.anomalies], str(path))
        written.append(path)
    return written


def print_report(report: AnalysisReport, quality: Optional[DataQualityMetrics] = None) -> None:
    if quality is not None:
        quality.print_summary()

    print("\n" + "="*80)
    print(" "*28 + "TELEMETRY ANALYSIS REPORT")
    print("="*80)

    print(f"\nTotal consumption: {report.total_consumption:,.2f} kWh")
    print(f"Average daily:     {report.average_daily:,.2f} kWh")
    print(f"Efficiency score:  {report.efficiency_score} ({report.efficiency_rating.value})")

    print("\n1. TIME-OF-DAY PATTERNS (W)")
    print("-"*50)
    if report.patterns:
        for p in report.patterns:
            print(f"{p.label.value:>10}: avg {p.avg_consumption:>10,.2f} | peak {p.peak_consumption:>10,.2f}")
    else:
        print("No patterns found.")
    if report.weekly is not None:
        print(f"Higher consumption on {report.weekly.label.lower()}s "
              f"({report.weekly.difference:,.1f}W difference)")

    print("\n2. ANOMALIES")
    print("-"*50)
    if report.anomalies:
        for a in report.anomalies:
            print(f"[{a.severity.value:>6}] {a.detected_at:%Y-%m-%d %H:%M} {a.device_id}: {a.description}")
    else:
        print("No anomalies detected.")

    print(f"\n3. FORECAST (confidence {report.forecast.confidence:.2f})")
    print("-"*50)
    for f in report.forecast.forecasts:
        print(f"{f.target_date:%a %d %b}: {f.predicted_consumption:>8,.2f} kWh "
              f"± {f.confidence_interval:,.2f} | cost {f.estimated_cost:,.2f}")

    if report.ranking:
        print("\n4. DEVICE RANKING")
        print("-"*50)
        for d in report.ranking:
            print(f"{d.device_name:>20}: {d.total_consumption:>8,.2f} kWh | {d.efficiency_rating.value}")

    if report.recommendations:
        print("\n5. RECOMMENDATIONS")
        print("-"*50)
        for rec in report.recommendations:
            print(f"[{rec.priority.value:>6}] {rec.title}")

    print("\n" + "="*80 + "\n")


def main(file_path: str | Path, devices_path: Optional[str] = None,
         config_path: str = "analytics_config.json", output_csv: bool = True,
         draw_charts: bool = True, horizon_days: Optional[int] = None) -> AnalysisReport:
    """
    Analyze a readings file and report on it.

    Args:
        file_path: JSON array of normalized readings
        devices_path: Optional JSON array of device records
        config_path: Configuration file
        output_csv: Whether to write CSV files
        draw_charts: Whether to draw charts
        horizon_days: Days to forecast

    Returns:
        The analysis report
    """
    start_time = datetime.datetime.now()
    config = load_config(config_path)

    readings, quality = load_data(file_path, config)
    devices = load_devices(devices_path) if devices_path else []
    report = run_analyzers(readings, devices, horizon_days=horizon_days, config=config)
    print_report(report, quality)

    if output_csv:
        csv_dir = Path("csv_output")
        export_csv(report, csv_dir)
        log.info("CSV files saved in %s", csv_dir.resolve())

    if draw_charts:
        from plots import draw_report
        draw_report(report, config)

    execution_time = datetime.datetime.now() - start_time
    log.info(f"Analysis completed in {execution_time.total_seconds():.2f} seconds")
    return report


if __name__ == "__main__":
    import argparse

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s · %(levelname)s · %(message)s"
    )

    parser = argparse.ArgumentParser(description="Sensor telemetry analysis")
    parser.add_argument("--input", "-i", default="readings.json",
                      help="Input JSON file path")
    parser.add_argument("--devices", "-d", default=None,
                      help="Device registry JSON file path")
    parser.add_argument("--config", "-c", default="analytics_config.json",
                      help="Configuration file path")
    parser.add_argument("--horizon", type=int, default=None,
                      help="Days to forecast")
    parser.add_argument("--no-csv", action="store_true",
                      help="Disable CSV output")
    parser.add_argument("--no-charts", action="store_true",
                      help="Disable chart output")
    args = parser.parse_args()

    main(args.input, args.devices, args.config, output_csv=not args.no_csv,
         draw_charts=not args.no_charts, horizon_days=args.horizon)
