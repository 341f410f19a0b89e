"""
Configuration file for telemetry analytics.
"""
import copy
import json
import logging
from typing import Dict, Any, Optional

log = logging.getLogger(__name__)

# Default configuration
DEFAULT_CONFIG = {
    # Reading validity
    "readings": {
        "validity_threshold": 0.08,   # kWh per reading; lower values are sensor noise
        "nominal_voltage": 220.0,
    },

    # Billing
    "billing": {
        "tariff_rate": 0.75,          # currency units per kWh
        "currency": "BRL",
        "billing_period_days": 30,
    },

    # Time-of-day patterns
    "patterns": {
        "min_bucket_readings": 5,
        "weekly_difference_ratio": 0.1,
    },

    "anomaly_detection": {
        "sigma_multiplier": 2.5,       # band width around the mean, in standard deviations
        "low_consumption_floor": 0.1,  # W; values at or below are idle, not anomalous
        "z_score_cap": 3.0,            # z-score mapped to an anomaly score of 1.0
        "high_severity_score": 0.8,
        "medium_severity_score": 0.6,
        "night_hours": [0, 6],
        "day_hours": [6, 22],
        "night_day_ratio": 0.8,
        "night_expected_ratio": 0.3,
        "night_pattern_score": 0.7,
        "voltage_tolerance": 20.0,
        "voltage_high_deviation": 30.0,
        "voltage_high_score": 0.9,
        "voltage_medium_score": 0.7,
        "zero_power_ratio": 0.1,
        "sensor_failure_score": 0.9,
        "min_device_readings": 10,
        "dedup_per_device": False,
        "max_results": 50,
        "log_anomalies": True,
    },

    "forecast": {
        "horizon_days": 7,
        "hours_ahead": 24,
        "min_day_readings": 10,
        "min_eligible_days": 7,
        "low_confidence": 0.3,
        "base_confidence": 0.5,
        "confidence_per_day": 0.015,
        "max_confidence": 0.95,
        "interval_z": 1.96,            # 95% normal-approximation band
        "seasonal_bounds": [0.5, 2.0],
        "seasonal_profile": "daily",
        # Month-based factors used when history has no data for the target month.
        # The two profiles drifted apart upstream; kept side by side until the
        # intended factors are confirmed.
        "seasonal_fallback": {
            "daily": [
                {"months": [12, 1, 2], "factor": 1.15},
                {"months": [6, 7, 8], "factor": 0.95},
            ],
            "hourly": [
                {"months": [12, 1, 2], "factor": 1.2},
                {"months": [6, 7, 8], "factor": 1.1},
            ],
        },
        "weekend_factor": 1.1,
        "default_hourly_consumption": 50.0,  # W
    },

    "scoring": {
        "base_score": 100,
        "power_stability_weight": 20,
        "voltage_stability_weight": 10,
        "max_data_bonus": 10,
        "readings_per_bonus_point": 100,
        "rating_thresholds": {
            "Excellent": 0.2,
            "Good": 0.4,
            "Regular": 0.6,
        },
        "anomaly_penalties": {
            "High": 5,
            "Medium": 2,
            "Low": 1,
        },
        "reading_interval_hours": 0.25,
    },

    "recommendations": {
        "evening_share": 0.4,
        "time_shift_percent": 20,
        "usage_reduction_percent": 15,
        "high_daily_consumption": 10.0,  # kWh/day
        "device_optimization_percent": 25,
    },

    # Analysis window
    "analysis_window": {
        "days": 30,
        "timezone": "UTC",
    },

    # Visualization settings
    "visualization": {
        "output_dir": "visualizations",
        "figure_size": [12, 8],
        "font_size": 12,
        "color_palette": [
            "#0072B2", "#D55E00", "#009E73",
            "#CC79A7", "#F0E442", "#56B4E9", "#E69F00"
        ]
    },
}


def load_config(config_path: str = "analytics_config.json") -> Dict[str, Any]:
    """
    Load configuration from file or return default if file doesn't exist.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    try:
        with open(config_path, 'r') as f:
            config = json.load(f)
    except FileNotFoundError:
        return copy.deepcopy(DEFAULT_CONFIG)
    except json.JSONDecodeError as e:
        log.warning("Ignoring invalid configuration file %s: %s", config_path, e)
        return copy.deepcopy(DEFAULT_CONFIG)

    # Merge with defaults to ensure all required keys exist
    merged_config = copy.deepcopy(DEFAULT_CONFIG)
    _deep_update(merged_config, config)
    return merged_config


def save_config(config: Dict[str, Any], config_path: str = "analytics_config.json") -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration dictionary
        config_path: Path to save configuration file
    """
    with open(config_path, 'w') as f:
        json.dump(config, f, indent=4)


def with_overrides(overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Defaults with ``overrides`` merged on top; the defaults are left untouched."""
    return _deep_update(copy.deepcopy(DEFAULT_CONFIG), overrides)


def section(config: Optional[Dict[str, Any]], name: str) -> Dict[str, Any]:
    """
    Return one configuration section, filling keys missing from ``config``
    with their defaults.
    """
    merged = copy.deepcopy(DEFAULT_CONFIG.get(name, {}))
    if config:
        _deep_update(merged, copy.deepcopy(config.get(name, {})))
    return merged


def _deep_update(source: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """
    Update a nested dictionary with another nested dictionary.

    Args:
        source: Source dictionary to be updated
        update: Dictionary with updates

    Returns:
        Updated source dictionary
    """
    for key, value in update.items():
        if key in source and isinstance(source[key], dict) and isinstance(value, dict):
            _deep_update(source[key], value)
        else:
            source[key] = value
    return source
