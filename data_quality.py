"""
Data quality module for telemetry analysis.

This module provides functions for assessing and reporting on data quality.
"""
import pandas as pd
import numpy as np
import logging
from typing import Dict, List, Any, Iterable, Optional
from dataclasses import dataclass, field

from config import section
from readings import Reading, readings_frame

logger = logging.getLogger(__name__)


@dataclass
class DataQualityMetrics:
    """Data quality metrics container."""
    total_records: int = 0
    valid_energy_records: int = 0
    zero_power_records: int = 0
    voltage_out_of_range: int = 0
    skipped_records: int = 0
    devices_with_insufficient_readings: List[str] = field(default_factory=list)
    readings_per_device: Dict[str, int] = field(default_factory=dict)
    reading_frequency: Dict[str, pd.Timedelta] = field(default_factory=dict)

    @property
    def validity_ratio(self) -> float:
        """Calculate the ratio of readings above the energy noise floor."""
        return self.valid_energy_records / self.total_records if self.total_records > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to a dictionary."""
        return {
            "total_records": self.total_records,
            "valid_energy_records": self.valid_energy_records,
            "validity_ratio": self.validity_ratio,
            "zero_power_records": self.zero_power_records,
            "voltage_out_of_range": self.voltage_out_of_range,
            "skipped_records": self.skipped_records,
            "devices_with_insufficient_readings": self.devices_with_insufficient_readings,
            "readings_per_device": self.readings_per_device,
            "avg_reading_frequency": {
                device: freq.total_seconds() / 3600  # Convert to hours
                for device, freq in self.reading_frequency.items()
            }
        }

    def print_summary(self) -> None:
        """Print a summary of data quality metrics."""
        print("\n" + "="*80)
        print(" "*30 + "DATA QUALITY SUMMARY")
        print("="*80)

        print("\nReadings:")
        print(f"  Loaded: {self.total_records} (skipped malformed: {self.skipped_records})")
        print(f"  Above energy noise floor: {self.valid_energy_records} ({self.validity_ratio:.2%})")
        print(f"  Zero power: {self.zero_power_records}")
        print(f"  Voltage outside nominal band: {self.voltage_out_of_range}")

        if self.readings_per_device:
            counts = list(self.readings_per_device.values())
            print(f"\nDevices: {len(counts)} (median {np.median(counts):.0f} readings each)")
            for device in self.devices_with_insufficient_readings:
                print(f"  {device}: {self.readings_per_device[device]} readings, too few for anomaly checks")

        if self.reading_frequency:
            minutes = [freq.total_seconds() / 60 for freq in self.reading_frequency.values()]
            print(f"\nTypical reading interval: {np.mean(minutes):.1f} min")

        print("\n" + "="*80)


def calculate_device_reading_frequency(df: pd.DataFrame) -> Dict[str, pd.Timedelta]:
    """
    Mean interval between consecutive readings of each device.

    Intervals outside 1.5 IQR of the device's own intervals (outages, bursts)
    are left out of the mean.
    """
    freqs = {}
    for device, stamps in df.groupby("device_id")["timestamp"]:
        gaps = stamps.sort_values().diff().dropna()
        if gaps.empty:
            continue
        q1, q3 = gaps.quantile([0.25, 0.75])
        fence = 1.5 * (q3 - q1)
        typical = gaps[gaps.between(q1 - fence, q3 + fence)]
        if not typical.empty:
            freqs[str(device)] = typical.mean()
    return freqs


def validate_readings(readings: Iterable[Reading], config: Optional[Dict[str, Any]] = None,
                      skipped_records: int = 0) -> DataQualityMetrics:
    """
    Validate a reading set and calculate quality metrics.

    Args:
        readings: Readings to assess
        config: Configuration dictionary
        skipped_records: Malformed records dropped by the loader

    Returns:
        DataQualityMetrics
    """
    df = readings_frame(readings)
    metrics = DataQualityMetrics(total_records=len(df), skipped_records=skipped_records)
    if df.empty:
        return metrics

    threshold = section(config, "readings")["validity_threshold"]
    nominal = section(config, "readings")["nominal_voltage"]
    tolerance = section(config, "anomaly_detection")["voltage_tolerance"]
    min_readings = section(config, "anomaly_detection")["min_device_readings"]

    metrics.valid_energy_records = int((df["energy"] > threshold).sum())
    metrics.zero_power_records = int((df["power"] == 0).sum())
    metrics.voltage_out_of_range = int(((df["voltage"] - nominal).abs() > tolerance).sum())

    # Count readings per device
    device_counts = {str(k): int(v) for k, v in df.groupby('device_id').size().items()}
    metrics.readings_per_device = device_counts

    # Find devices with insufficient readings
    metrics.devices_with_insufficient_readings = sorted(
        dev for dev, count in device_counts.items() if count < min_readings
    )

    # Calculate reading frequency
    metrics.reading_frequency = calculate_device_reading_frequency(df)

    if metrics.devices_with_insufficient_readings:
        logger.info("%d devices have fewer than %d readings",
                    len(metrics.devices_with_insufficient_readings), min_readings)
    return metrics
