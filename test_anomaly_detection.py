import os
import random
import tempfile
import unittest
from datetime import datetime, timedelta, timezone

import pandas as pd

from anomaly_detection import (
    anomaly_score, anomaly_stats, deduplicate, detect, rank_anomalies, severity_for_score
)
from config import with_overrides
from readings import Anomaly, AnomalyKind, Device, Reading, Severity, Window

BASE = datetime(2025, 3, 3, 10, 0, tzinfo=timezone.utc)


def reading(ts, current=1.0, voltage=220.0, power=None, device_id="dev-1", energy=0.1):
    return Reading(
        device_id=device_id,
        timestamp=ts,
        current=current,
        voltage=voltage,
        power=current * voltage if power is None else power,
        energy=energy,
    )


def anomaly(kind, severity, detected_at, device_id="dev-1"):
    return Anomaly(
        device_id=device_id,
        kind=kind,
        observed_value=1.0,
        expected_value=1.0,
        score=0.5,
        severity=severity,
        detected_at=detected_at,
        description="",
    )


class TestScoring(unittest.TestCase):

    def test_zero_variance_scores_zero(self):
        self.assertEqual(anomaly_score(500.0, 220.0, 0.0), 0.0)

    def test_score_is_capped(self):
        self.assertAlmostEqual(anomaly_score(250.0, 220.0, 20.0), 0.5)
        self.assertEqual(anomaly_score(10_000.0, 220.0, 20.0), 1.0)

    def test_severity_thresholds(self):
        self.assertEqual(severity_for_score(0.81), Severity.HIGH)
        self.assertEqual(severity_for_score(0.8), Severity.MEDIUM)
        self.assertEqual(severity_for_score(0.61), Severity.MEDIUM)
        self.assertEqual(severity_for_score(0.6), Severity.LOW)


class TestDetect(unittest.TestCase):

    def test_constant_load_has_no_anomalies(self):
        step = timedelta(seconds=36)
        readings = [reading(BASE + i * step) for i in range(24 * 100 * 10)]
        self.assertEqual(detect(readings), [])

    def test_single_spike_is_high_consumption(self):
        readings = [reading(BASE + timedelta(minutes=i)) for i in range(49)]
        readings.append(reading(BASE + timedelta(minutes=49), current=10.0))

        anomalies = detect(readings)

        self.assertEqual(len(anomalies), 1)
        [found] = anomalies
        self.assertEqual(found.kind, AnomalyKind.HIGH_CONSUMPTION)
        self.assertEqual(found.severity, Severity.HIGH)
        self.assertAlmostEqual(found.observed_value, 2200.0)
        self.assertEqual(found.score, 1.0)
        self.assertEqual(found.detected_at, BASE + timedelta(minutes=49))

    def test_zero_power_is_never_low_consumption(self):
        readings = [reading(BASE + timedelta(minutes=i), current=5.0) for i in range(30)]
        readings.append(reading(BASE + timedelta(minutes=30), current=0.002, power=0.0))

        kinds = {a.kind for a in detect(readings)}

        self.assertNotIn(AnomalyKind.LOW_CONSUMPTION, kinds)

    def test_low_consumption_with_nonzero_power(self):
        readings = [reading(BASE + timedelta(minutes=i), current=5.0) for i in range(30)]
        readings.append(reading(BASE + timedelta(minutes=30), current=0.002))

        low = [a for a in detect(readings) if a.kind == AnomalyKind.LOW_CONSUMPTION]

        self.assertEqual(len(low), 1)
        self.assertAlmostEqual(low[0].observed_value, 0.44)

    def test_too_few_readings_are_skipped(self):
        readings = [reading(BASE + timedelta(minutes=i)) for i in range(8)]
        readings.append(reading(BASE + timedelta(minutes=8), current=50.0, voltage=150.0))
        self.assertEqual(detect(readings), [])

    def test_voltage_out_of_range(self):
        readings = [reading(BASE + timedelta(minutes=i)) for i in range(12)]
        readings.append(reading(BASE + timedelta(days=1), voltage=185.0))
        readings.append(reading(BASE + timedelta(days=2), voltage=195.0))
        readings.append(reading(BASE + timedelta(days=3), voltage=235.0))

        voltage = {
            a.observed_value: a for a in detect(readings)
            if a.kind == AnomalyKind.VOLTAGE_OUT_OF_RANGE
        }

        self.assertEqual(sorted(voltage), [185.0, 195.0])
        self.assertEqual(voltage[185.0].severity, Severity.HIGH)
        self.assertAlmostEqual(voltage[185.0].score, 0.9)
        self.assertEqual(voltage[195.0].severity, Severity.MEDIUM)
        self.assertAlmostEqual(voltage[195.0].score, 0.7)
        self.assertEqual(voltage[195.0].expected_value, 220.0)

    def test_sensor_failure(self):
        readings = [reading(BASE + timedelta(minutes=i)) for i in range(15)]
        readings += [reading(BASE + timedelta(minutes=20 + i), current=0.0) for i in range(5)]

        failures = [a for a in detect(readings) if a.kind == AnomalyKind.SENSOR_FAILURE]

        self.assertEqual(len(failures), 1)
        self.assertEqual(failures[0].severity, Severity.HIGH)
        self.assertEqual(failures[0].detected_at, BASE + timedelta(minutes=20))

    def test_sensor_failure_from_reversed_readings(self):
        readings = [reading(BASE + timedelta(minutes=i)) for i in range(15)]
        readings += [reading(BASE + timedelta(minutes=20 + i), current=0.0) for i in range(5)]

        failures = [a for a in detect(readings[::-1]) if a.kind == AnomalyKind.SENSOR_FAILURE]

        self.assertEqual(len(failures), 1)
        self.assertEqual(failures[0].detected_at, BASE + timedelta(minutes=20))

    def test_few_zero_readings_are_not_a_failure(self):
        readings = [reading(BASE + timedelta(minutes=i)) for i in range(19)]
        readings.append(reading(BASE + timedelta(minutes=19), current=0.0))

        kinds = {a.kind for a in detect(readings)}

        self.assertNotIn(AnomalyKind.SENSOR_FAILURE, kinds)

    def test_unusual_night_pattern(self):
        night = BASE.replace(hour=3)
        readings = [reading(night + timedelta(minutes=i), current=2.0) for i in range(10)]
        readings += [reading(BASE.replace(hour=12) + timedelta(minutes=i)) for i in range(10)]

        anomalies = detect(readings)

        self.assertEqual([a.kind for a in anomalies], [AnomalyKind.UNUSUAL_NIGHT_PATTERN])
        self.assertAlmostEqual(anomalies[0].observed_value, 440.0)
        self.assertAlmostEqual(anomalies[0].expected_value, 66.0)
        self.assertEqual(anomalies[0].severity, Severity.MEDIUM)

    def test_same_kind_same_day_keeps_earliest(self):
        readings = [reading(BASE + timedelta(minutes=i)) for i in range(40)]
        readings.append(reading(BASE + timedelta(minutes=45), current=10.0))
        readings.append(reading(BASE + timedelta(minutes=90), current=10.0))

        high = [a for a in detect(readings) if a.kind == AnomalyKind.HIGH_CONSUMPTION]

        self.assertEqual(len(high), 1)
        self.assertEqual(high[0].detected_at, BASE + timedelta(minutes=45))

    def test_earliest_spike_wins_for_shuffled_input(self):
        readings = [reading(BASE + timedelta(minutes=i)) for i in range(40)]
        readings.append(reading(BASE + timedelta(minutes=45), current=10.0))
        readings.append(reading(BASE + timedelta(minutes=90), current=10.0))
        shuffled = list(readings)
        random.Random(7).shuffle(shuffled)

        for ordering in (readings[::-1], shuffled):
            high = [a for a in detect(ordering) if a.kind == AnomalyKind.HIGH_CONSUMPTION]
            self.assertEqual(len(high), 1)
            self.assertEqual(high[0].detected_at, BASE + timedelta(minutes=45))
        self.assertEqual(detect(shuffled), detect(readings))

    def test_dedup_per_device_keeps_each_device(self):
        readings = []
        for device_id in ("a", "b"):
            readings += [reading(BASE + timedelta(minutes=i), device_id=device_id) for i in range(40)]
            readings.append(reading(BASE + timedelta(minutes=45), current=10.0, device_id=device_id))
        config = with_overrides({"anomaly_detection": {"dedup_per_device": True}})

        self.assertEqual(len(detect(readings)), 1)
        self.assertEqual({a.device_id for a in detect(readings, config=config)}, {"a", "b"})

    def test_window_and_device_filters(self):
        readings = [reading(BASE + timedelta(minutes=i)) for i in range(49)]
        readings.append(reading(BASE + timedelta(days=5), current=10.0))
        window = Window(BASE, BASE + timedelta(days=1))

        self.assertEqual(detect(readings, window), [])
        self.assertEqual(detect(readings, devices=[Device("other", "Other")]), [])

    def test_empty_input(self):
        self.assertEqual(detect([]), [])


class TestRanking(unittest.TestCase):

    def test_severity_then_recency(self):
        old_high = anomaly(AnomalyKind.HIGH_CONSUMPTION, Severity.HIGH, BASE)
        new_high = anomaly(AnomalyKind.SENSOR_FAILURE, Severity.HIGH, BASE + timedelta(hours=1))
        newest_low = anomaly(AnomalyKind.LOW_CONSUMPTION, Severity.LOW, BASE + timedelta(hours=2))
        medium = anomaly(AnomalyKind.VOLTAGE_OUT_OF_RANGE, Severity.MEDIUM, BASE)

        ranked = rank_anomalies([newest_low, old_high, medium, new_high])

        self.assertEqual(ranked, [new_high, old_high, medium, newest_low])

    def test_limit(self):
        many = [
            anomaly(AnomalyKind.HIGH_CONSUMPTION, Severity.LOW, BASE + timedelta(days=i))
            for i in range(60)
        ]
        ranked = rank_anomalies(many, 50)
        self.assertEqual(len(ranked), 50)
        self.assertEqual(ranked[0].detected_at, BASE + timedelta(days=59))

    def test_results_are_capped(self):
        readings = []
        for day in range(60):
            start = BASE + timedelta(days=day)
            readings += [reading(start + timedelta(minutes=i)) for i in range(20)]
            readings.append(reading(start + timedelta(minutes=30), voltage=180.0))

        self.assertEqual(len(detect(readings)), 50)

    def test_deduplicate_keeps_first(self):
        first = anomaly(AnomalyKind.HIGH_CONSUMPTION, Severity.LOW, BASE)
        second = anomaly(AnomalyKind.HIGH_CONSUMPTION, Severity.HIGH, BASE + timedelta(hours=2))
        other_kind = anomaly(AnomalyKind.LOW_CONSUMPTION, Severity.LOW, BASE)

        self.assertEqual(deduplicate([first, second, other_kind]), [first, other_kind])


class TestReporting(unittest.TestCase):

    def test_anomaly_stats(self):
        stats = anomaly_stats([
            anomaly(AnomalyKind.HIGH_CONSUMPTION, Severity.HIGH, BASE, "a"),
            anomaly(AnomalyKind.HIGH_CONSUMPTION, Severity.LOW, BASE, "b"),
            anomaly(AnomalyKind.SENSOR_FAILURE, Severity.HIGH, BASE, "a"),
        ])

        self.assertEqual(stats["total_anomalies"], 3)
        self.assertEqual(stats["devices_with_anomalies"], ["a", "b"])
        self.assertEqual(stats["anomalies_by_kind"], {"HighConsumption": 2, "SensorFailure": 1})
        self.assertEqual(stats["anomalies_by_severity"], {"High": 2, "Low": 1})

    def test_main_writes_csv(self):
        from anomaly_detection import main
        records = [
            {"device_id": "dev-1", "timestamp": (BASE + timedelta(minutes=i)).isoformat(),
             "current": 1.0, "voltage": 220.0, "power": 220.0, "energy": 0.1}
            for i in range(49)
        ]
        records.append({"device_id": "dev-1",
                        "timestamp": (BASE + timedelta(minutes=49)).isoformat(),
                        "current": 10.0, "voltage": 220.0, "power": 2200.0, "energy": 0.5})

        with tempfile.TemporaryDirectory() as tmp:
            input_json = os.path.join(tmp, "readings.json")
            output_csv = os.path.join(tmp, "out", "anomalies.csv")
            pd.DataFrame(records).to_json(input_json, orient="records")

            anomalies = main(input_json, output_csv)

            self.assertEqual(len(anomalies), 1)
            df = pd.read_csv(output_csv)
            self.assertEqual(df["kind"].tolist(), ["HighConsumption"])


if __name__ == "__main__":
    unittest.main()
