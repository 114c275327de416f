"""
Unit tests for TTL resolution.
"""

import pytest
from structlog.testing import capture_logs

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_cache.app.caching.ttl_policy import TTL, TTLPolicy, get_ttl_value, local_ttl


class TestTTLPolicy:
    """Test cases for TTLPolicy."""

    @pytest.mark.parametrize("category,expected", [
        ("bootstrap-static", 4 * 60 * 60),
        ("fixtures", 12 * 60 * 60),
        ("gameweek", 60 * 60),
        ("events", 60 * 60),
        ("live", 15 * 60),
        ("player-detail", 2 * 60 * 60),
    ])
    def test_known_categories(self, category, expected):
        assert get_ttl_value(category) == expected

    def test_numbers_pass_through(self):
        assert get_ttl_value(90) == 90
        assert get_ttl_value(2.5) == 3

    def test_sub_second_ttls_round_up_to_one(self):
        assert get_ttl_value(0.5) == 1
        assert get_ttl_value(0) == 1
        assert get_ttl_value(-30) == 1
        assert get_ttl_value("0.2") == 1

    @pytest.mark.parametrize("ttl", ["inf", "infinity", "-inf", "nan", "1e400", float("inf"), float("nan"), 10 ** 400])
    def test_non_finite_values_fall_back(self, ttl):
        with capture_logs() as logs:
            assert get_ttl_value(ttl) == TTL.BOOTSTRAP

        assert [entry["event"] for entry in logs] == ["Unknown TTL type, using default"]

    @pytest.mark.parametrize("ttl", [True, False, None])
    def test_non_durations_fall_back(self, ttl):
        with capture_logs() as logs:
            assert get_ttl_value(ttl) == TTL.BOOTSTRAP

        assert logs[0]["ttl_type"] is ttl

    def test_numeric_strings_are_seconds(self):
        assert get_ttl_value("120") == 120
        assert get_ttl_value(" 45 ") == 45

    def test_unknown_category_falls_back_with_warning(self):
        with capture_logs() as logs:
            ttl = get_ttl_value("season-history")

        assert ttl == TTL.BOOTSTRAP
        warnings = [entry for entry in logs if entry["log_level"] == "warning"]
        assert len(warnings) == 1
        assert warnings[0]["event"] == "Unknown TTL type, using default"
        assert warnings[0]["ttl_type"] == "season-history"

    def test_overrides_and_custom_default(self):
        policy = TTLPolicy({"live": 30, "dream-team": 600}, default_category="live")

        assert policy.resolve("live") == 30
        assert policy.resolve("dream-team") == 600
        assert policy.resolve("fixtures") == TTL.FIXTURES
        assert policy.resolve("nope") == 30

    def test_unknown_default_category_is_rejected(self):
        with pytest.raises(ValueError):
            TTLPolicy(default_category="nope")


class TestLocalTTL:
    """Test cases for local tier lifetime derivation."""

    def test_scaled_by_factor(self):
        assert local_ttl(100) == pytest.approx(80)
        assert local_ttl(100, factor=0.5) == pytest.approx(50)

    def test_capped(self):
        assert local_ttl(TTL.FIXTURES) == 1800
        assert local_ttl(TTL.LIVE) == pytest.approx(720)
        assert local_ttl(10_000, cap=60) == 60

    def test_never_below_one_second(self):
        assert local_ttl(1) == 1.0
        assert local_ttl(0) == 1.0

    def test_never_outlives_shared_ttl(self):
        for ttl in (2, 60, TTL.LIVE, TTL.GAMEWEEK, TTL.BOOTSTRAP):
            assert local_ttl(ttl) < ttl
