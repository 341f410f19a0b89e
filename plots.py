"""
Charts for the analysis report.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import matplotlib

matplotlib.use("Agg")

import matplotlib.dates as mdates
import matplotlib.pyplot as plt

from config import section
from readings import Anomaly, AnomalyKind, DailyAggregate, Forecast, HourlyAggregate, Pattern

log = logging.getLogger(__name__)


def configure(config: Optional[Dict[str, Any]] = None) -> Path:
    """Apply the visualization settings and return the output directory."""
    settings = section(config, "visualization")
    plt.rcParams["axes.prop_cycle"] = plt.cycler(color=settings["color_palette"])
    plt.rcParams.update({
        "figure.figsize": tuple(settings["figure_size"]),
        "font.size": settings["font_size"]
    })
    out_dir = Path(settings["output_dir"])
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir


def _fmt_y(ax):
    ax.yaxis.set_major_formatter(lambda x, pos: f"{x:,.2f}")


def line_hourly(hourly: Sequence[HourlyAggregate], out_dir: Path) -> Optional[Path]:
    if not hourly:
        log.warning("No hourly data available for plotting")
        return None

    fig, ax = plt.subplots()
    ax.plot([h.hour for h in hourly], [h.total_energy for h in hourly], marker="o", linewidth=2)
    ax.set_title("Energy by Hour of Day (UTC)")
    ax.set_xlabel("Hour")
    ax.set_ylabel("kWh")
    ax.set_xticks(range(0, 24, 2))
    _fmt_y(ax)
    plt.tight_layout()
    path = out_dir / "hourly_consumption.png"
    plt.savefig(path, dpi=150)
    plt.close(fig)
    return path


def line_daily_forecast(daily: Sequence[DailyAggregate], forecasts: Sequence[Forecast],
                        anomalies: Sequence[Anomaly], out_dir: Path) -> Optional[Path]:
    if not daily:
        log.warning("No daily data available for plotting")
        return None

    fig, ax = plt.subplots()
    ax.plot([d.date for d in daily], [d.total_energy for d in daily],
            linewidth=2, label="Consumption")

    if forecasts:
        dates = [f.target_date for f in forecasts]
        predicted = [f.predicted_consumption for f in forecasts]
        ax.plot(dates, predicted, linestyle="--", linewidth=2, label="Forecast")
        ax.fill_between(
            dates,
            [max(0.0, p - f.confidence_interval) for p, f in zip(predicted, forecasts)],
            [p + f.confidence_interval for p, f in zip(predicted, forecasts)],
            alpha=0.2,
        )

    # Mark high anomalies on their day's total
    totals = {d.date: d.total_energy for d in daily}
    high_days = sorted({
        a.detected_at.date() for a in anomalies
        if a.kind == AnomalyKind.HIGH_CONSUMPTION and a.detected_at.date() in totals
    })
    if high_days:
        ax.scatter(high_days, [totals[d] for d in high_days], color="red", s=50,
                   label="High Consumption Anomaly", zorder=3)

    ax.set_title("Daily Consumption and Forecast (UTC)")
    ax.set_xlabel("Date")
    ax.set_ylabel("kWh")
    locator = mdates.AutoDateLocator()
    ax.xaxis.set_major_locator(locator)
    ax.xaxis.set_major_formatter(mdates.ConciseDateFormatter(locator))
    ax.legend()
    _fmt_y(ax)
    plt.tight_layout()
    path = out_dir / "daily_consumption_forecast.png"
    plt.savefig(path, dpi=150)
    plt.close(fig)
    return path


def bar_patterns(patterns: Sequence[Pattern], out_dir: Path) -> Optional[Path]:
    if not patterns:
        log.warning("No patterns available for plotting")
        return None

    fig, ax = plt.subplots()
    labels = [p.label.value for p in patterns]
    x = range(len(patterns))
    ax.bar([i - 0.2 for i in x], [p.avg_consumption for p in patterns], width=0.4, label="Average")
    ax.bar([i + 0.2 for i in x], [p.peak_consumption for p in patterns], width=0.4, label="Peak")
    ax.set_xticks(list(x))
    ax.set_xticklabels(labels)
    ax.set_title("Consumption by Time of Day")
    ax.set_ylabel("W")
    ax.legend()
    _fmt_y(ax)
    plt.tight_layout()
    path = out_dir / "time_of_day_patterns.png"
    plt.savefig(path, dpi=150)
    plt.close(fig)
    return path


def draw_report(report: Any, config: Optional[Dict[str, Any]] = None) -> List[Path]:
    """Render every chart for an ``AnalysisReport``; returns the written files."""
    out_dir = configure(config)
    log.info("Generating charts → %s", out_dir.resolve())
    written = [
        line_hourly(report.hourly, out_dir),
        line_daily_forecast(report.daily, report.forecast.forecasts, report.anomalies, out_dir),
        bar_patterns(report.patterns, out_dir),
    ]
    return [p for p in written if p is not None]
