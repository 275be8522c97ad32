"""Tests for API health status mapping."""

from __future__ import annotations

import pytest

from bbbmetrics.health import map_health, online_value
from bbbmetrics.models import HealthCheck


class TestMapHealth:
    """Tests for map_health."""

    def test_success(self):
        assert map_health(HealthCheck(return_code="SUCCESS")) is True

    def test_failed(self):
        assert map_health(HealthCheck(return_code="FAILED")) is False

    def test_empty(self):
        assert map_health(HealthCheck(return_code="")) is False

    @pytest.mark.parametrize("code", ["success", "SUCCESS ", " SUCCESS", "OK"])
    def test_exact_match_only(self, code):
        assert map_health(HealthCheck(return_code=code)) is False

    def test_version_is_ignored(self):
        assert map_health(HealthCheck(return_code="SUCCESS", version="2.7")) is True


class TestOnlineValue:
    """Tests for online_value."""

    def test_online(self):
        assert online_value(HealthCheck(return_code="SUCCESS")) == 1

    def test_offline(self):
        assert online_value(HealthCheck(return_code="FAILED")) == 0
