from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from safetravel.core.risk_scorer import (
    RiskScorer, RiskSignals, RiskWeights, TimeOfDay,
    clamp_score, group_size_risk, risk_category, time_of_day_bucket
)
from safetravel.core.types import GeoPoint, RiskCategory, ZoneCategory
from tests.factories import DAY, circle


@pytest.fixture
def scorer():
    return RiskScorer(tz=timezone.utc)


def test_default_weights_sum_to_one():
    w = RiskWeights()
    assert w.location + w.weather + w.group_size + w.time_of_day + w.route_deviation == pytest.approx(1.0)


def test_weights_must_sum_to_one():
    with pytest.raises(ValueError):
        RiskWeights(location=0.5)
    with pytest.raises(ValueError):
        RiskWeights(location=0.6, weather=-0.1)


def test_target_for_solo_traveller_outside_zones(scorer):
    # only the solo group factor contributes: 0.20 risk
    assert scorer.target_score(RiskSignals()) == 80


def test_target_inside_highest_risk_zone(scorer):
    assert scorer.target_score(RiskSignals(zone_risk_level=5)) == 50


def test_worst_case_target_is_zero(scorer):
    signals = RiskSignals(
        zone_risk_level=5,
        weather_severity=5,
        time_of_day=TimeOfDay.NIGHT,
        group_size=1,
        route_deviation_meters=50000
    )
    assert scorer.weighted_risk(signals) == pytest.approx(1.0)
    assert scorer.target_score(signals) == 0


def test_update_moves_at_most_max_step(scorer):
    signals = RiskSignals(zone_risk_level=5)
    assert scorer.update_score(100, signals) == 90
    assert scorer.update_score(55, signals) == 50
    assert scorer.update_score(20, signals) == 30


def test_updates_converge_without_overshoot(scorer):
    signals = RiskSignals(zone_risk_level=3, time_of_day=TimeOfDay.EVENING)
    target = scorer.target_score(signals)
    score = 100
    for _ in range(20):
        new_score = scorer.update_score(score, signals)
        assert abs(new_score - score) <= 10
        assert new_score >= target
        score = new_score
    assert score == target


def test_out_of_range_scores_are_clamped(scorer):
    assert clamp_score(-5) == 0
    assert clamp_score(140) == 100
    assert scorer.update_score(140, RiskSignals()) == 90


def test_time_of_day_buckets():
    assert time_of_day_bucket(datetime(2026, 3, 1, 6, 0, tzinfo=timezone.utc)) == TimeOfDay.DAY
    assert time_of_day_bucket(datetime(2026, 3, 1, 17, 59, tzinfo=timezone.utc)) == TimeOfDay.DAY
    assert time_of_day_bucket(datetime(2026, 3, 1, 18, 0, tzinfo=timezone.utc)) == TimeOfDay.EVENING
    assert time_of_day_bucket(datetime(2026, 3, 1, 22, 0, tzinfo=timezone.utc)) == TimeOfDay.NIGHT
    assert time_of_day_bucket(datetime(2026, 3, 1, 3, 0, tzinfo=timezone.utc)) == TimeOfDay.NIGHT


def test_time_of_day_uses_local_timezone():
    # 14:00 UTC is 19:30 in India
    when = datetime(2026, 3, 1, 14, 0, tzinfo=timezone.utc)
    assert time_of_day_bucket(when, ZoneInfo("Asia/Kolkata")) == TimeOfDay.EVENING


def test_group_size_risk_decreases_with_group():
    risks = [group_size_risk(n) for n in (1, 2, 4, 8)]
    assert risks == sorted(risks, reverse=True)
    assert risks[0] == 1.0


@pytest.mark.parametrize("score,category", [
    (100, RiskCategory.LOW),
    (80, RiskCategory.LOW),
    (79, RiskCategory.MEDIUM),
    (60, RiskCategory.MEDIUM),
    (59, RiskCategory.HIGH),
    (40, RiskCategory.HIGH),
    (39, RiskCategory.CRITICAL),
    (0, RiskCategory.CRITICAL),
])
def test_risk_category_thresholds(score, category):
    assert risk_category(score) == category


def test_build_signals_from_memberships(scorer):
    zones = [
        circle("storm", 26.0, 91.0, risk_level=4, category=ZoneCategory.WEATHER),
        circle("market", 26.0, 91.0, risk_level=2),
    ]
    signals = scorer.build_signals(GeoPoint(26.0, 91.0), DAY, zones, group_size=3)

    assert signals.zone_risk_level == 4
    assert signals.weather_severity == 4
    assert signals.group_size == 3
    assert signals.time_of_day == TimeOfDay.DAY
    assert signals.route_deviation_meters == 0


def test_route_deviation_is_distance_to_nearest_waypoint(scorer):
    route = [GeoPoint(26.0, 91.0), GeoPoint(27.0, 91.0)]
    signals = scorer.build_signals(GeoPoint(26.1, 91.0), DAY, [], planned_route=route)
    assert signals.route_deviation_meters == pytest.approx(11120, rel=0.01)

    far_off = RiskSignals(route_deviation_meters=signals.route_deviation_meters)
    # deviation beyond the cap counts as full route risk
    assert scorer.target_score(far_off) == 65
