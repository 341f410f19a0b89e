import unittest
from datetime import datetime, timedelta, timezone

from config import with_overrides
from readings import Anomaly, AnomalyKind, Device, EfficiencyRating, Reading, Severity
from scoring import (
    device_efficiency_rating, device_ranking, efficiency_score, monthly_comparison,
    power_stability, voltage_stability
)

BASE = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)


def series(powers, voltage=220.0, energy=0.1, device_id="dev-1", start=BASE):
    return [
        Reading(device_id, start + timedelta(minutes=15 * i), power / voltage, voltage, power, energy)
        for i, power in enumerate(powers)
    ]


def alternating(low, high, n=200, **kwargs):
    return series([low if i % 2 == 0 else high for i in range(n)], **kwargs)


def unresolved(severity, resolved=False):
    return Anomaly("dev-1", AnomalyKind.HIGH_CONSUMPTION, 1.0, 1.0, 0.9, severity, BASE, "", resolved)


class TestStability(unittest.TestCase):

    def test_power_stability(self):
        self.assertEqual(power_stability(series([220.0] * 5)), 1.0)
        self.assertAlmostEqual(power_stability(alternating(100.0, 300.0)), 0.5)
        self.assertEqual(power_stability(series([220.0])), 0.0)
        self.assertEqual(power_stability(series([0.0, 0.0], voltage=220.0)), 0.0)

    def test_voltage_stability(self):
        self.assertAlmostEqual(voltage_stability(series([100.0] * 4, voltage=198.0)), 0.9)
        self.assertEqual(voltage_stability(series([100.0])), 0.0)


class TestEfficiencyScore(unittest.TestCase):

    def test_no_readings(self):
        self.assertEqual(efficiency_score([]), 0)

    def test_steady_load_is_clamped_to_100(self):
        self.assertEqual(efficiency_score(series([220.0] * 500)), 100)

    def test_score_falls_as_variance_grows(self):
        config = with_overrides({"scoring": {"base_score": 50}})
        scores = [
            efficiency_score(alternating(220.0 - d, 220.0 + d), config=config)
            for d in (0.0, 22.0, 66.0, 132.0, 200.0)
        ]

        self.assertEqual(scores[0], 82)
        for better, worse in zip(scores, scores[1:]):
            self.assertGreater(better, worse)

    def test_unresolved_anomalies_are_penalized(self):
        readings = series([220.0] * 500)
        anomalies = [
            unresolved(Severity.HIGH),
            unresolved(Severity.MEDIUM),
            unresolved(Severity.LOW),
            unresolved(Severity.HIGH, resolved=True),
        ]
        self.assertEqual(efficiency_score(readings, anomalies), 92)

    def test_score_never_negative(self):
        config = with_overrides({"scoring": {"base_score": 0}})
        anomalies = [unresolved(Severity.HIGH)] * 20
        self.assertEqual(efficiency_score(series([220.0] * 10), anomalies, config), 0)


class TestRating(unittest.TestCase):

    def test_thresholds(self):
        self.assertEqual(device_efficiency_rating(series([220.0] * 10)), EfficiencyRating.EXCELLENT)
        self.assertEqual(device_efficiency_rating(alternating(150.0, 250.0)), EfficiencyRating.GOOD)
        self.assertEqual(device_efficiency_rating(alternating(100.0, 300.0)), EfficiencyRating.REGULAR)
        self.assertEqual(device_efficiency_rating(alternating(0.0, 400.0)),
                         EfficiencyRating.NEEDS_IMPROVEMENT)

    def test_no_data(self):
        self.assertEqual(device_efficiency_rating([]), EfficiencyRating.NO_DATA)


class TestMonthlyComparison(unittest.TestCase):

    def test_doubling_is_plus_100_percent(self):
        previous = series([220.0] * 10, energy=0.1, start=BASE - timedelta(days=30))
        current = series([220.0] * 10, energy=0.2)
        self.assertEqual(monthly_comparison(current, previous), 100.0)

    def test_halving(self):
        previous = series([220.0] * 10, energy=0.4, start=BASE - timedelta(days=30))
        current = series([220.0] * 10, energy=0.2)
        self.assertEqual(monthly_comparison(current, previous), -50.0)

    def test_no_previous_readings(self):
        self.assertEqual(monthly_comparison(series([220.0] * 3), []), 0.0)

    def test_previous_below_noise_floor(self):
        previous = series([220.0] * 10, energy=0.05, start=BASE - timedelta(days=30))
        self.assertEqual(monthly_comparison(series([220.0] * 3, energy=0.5), previous), 100.0)
        self.assertEqual(monthly_comparison(series([220.0] * 3, energy=0.01), previous), 0.0)

    def test_rounded_to_one_decimal(self):
        previous = series([220.0] * 3, energy=0.3, start=BASE - timedelta(days=30))
        current = series([220.0] * 3, energy=0.4)
        self.assertEqual(monthly_comparison(current, previous), 33.3)


class TestDeviceRanking(unittest.TestCase):

    def test_sorted_by_total_consumption(self):
        readings = series([100.0] * 8, energy=0.1, device_id="lamp")
        readings += series([2000.0] * 4 + [0.0] * 4, energy=0.5, device_id="heater")
        devices = [Device("lamp", "Lamp", "Bedroom"), Device("heater", "Heater"), Device("tv", "TV")]

        ranking = device_ranking(devices, readings)

        self.assertEqual([d.device_id for d in ranking], ["heater", "lamp", "tv"])
        heater = ranking[0]
        self.assertAlmostEqual(heater.total_consumption, 4.0)
        self.assertAlmostEqual(heater.estimated_cost, 3.0)
        self.assertAlmostEqual(heater.average_power, 1000.0)
        self.assertEqual(heater.max_power, 2000.0)
        self.assertEqual(heater.min_power, 0.0)
        self.assertEqual(heater.operating_hours, 1.0)
        self.assertEqual(heater.location, "Unknown")
        self.assertEqual(heater.last_activity, BASE + timedelta(minutes=105))

        self.assertEqual(ranking[1].location, "Bedroom")
        self.assertEqual(ranking[1].efficiency_rating, EfficiencyRating.EXCELLENT)

        tv = ranking[2]
        self.assertEqual(tv.total_consumption, 0.0)
        self.assertEqual(tv.efficiency_rating, EfficiencyRating.NO_DATA)
        self.assertIsNone(tv.last_activity)


if __name__ == "__main__":
    unittest.main()
