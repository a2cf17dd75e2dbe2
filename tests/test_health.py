"""
Tests for health aggregation, the health monitor and derived insights.
"""

import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock

from app.domains.health import HealthReport, ProbeResult, aggregate_health
from app.domains.insights import (
    activity_score,
    allowed_actions,
    health_recommendations,
    overall_health,
    summarize,
    troubleshooting_steps,
    verification_status,
)
from app.domains.models import DomainMapping, STATUS_ACTIVE, STATUS_ERROR, STATUS_PENDING

INGRESS = "ingress.brandsplatform.app"


def _active(**kwargs):
    now = datetime.now(timezone.utc)
    defaults = dict(
        tenant_id="t",
        hostname="shop.brand.com",
        status=STATUS_ACTIVE,
        verified_at=now,
        verification_token=None,
        ssl_enabled=True,
        certificate_expiry=now + timedelta(days=80),
        dns_status="verified",
    )
    defaults.update(kwargs)
    return DomainMapping(**defaults)


class TestAggregateHealth:
    def test_expiring_soon_is_warning(self):
        assert aggregate_health("active", "ok", "expiring_soon", "ok", 200) == "warning"

    def test_dns_error_is_error(self):
        assert aggregate_health("active", "error", "active", "ok", 200) == "error"

    def test_slow_response_is_warning(self):
        assert aggregate_health("active", "ok", "active", "ok", 5001) == "warning"
        assert aggregate_health("active", "ok", "active", "ok", 5000) == "healthy"

    def test_inactive_is_error(self):
        assert aggregate_health("pending_verification", "ok", "active", "ok", 200) == "error"

    def test_expired_and_connectivity_errors(self):
        assert aggregate_health("active", "ok", "expired", "ok", 200) == "error"
        assert aggregate_health("active", "ok", "active", "error", None) == "error"

    def test_healthy(self):
        assert aggregate_health("active", "ok", "active", "ok", 200) == "healthy"


class TestHealthMonitor:
    @pytest.mark.asyncio
    async def test_healthy_domain(self, monitor, verifier, make_resolver):
        verifier._get_resolver.return_value = make_resolver(cname=INGRESS)
        report = await monitor.check_health(_active())
        assert report.overall == "healthy"
        assert report.dns == "ok"
        assert report.ssl == "active"
        assert report.connectivity == "ok"
        assert report.performance == "ok"
        assert not report.hard_failure

    @pytest.mark.asyncio
    async def test_expiring_certificate_warns(self, monitor, verifier, make_resolver):
        verifier._get_resolver.return_value = make_resolver(cname=INGRESS)
        mapping = _active(certificate_expiry=datetime.now(timezone.utc) + timedelta(days=10))
        report = await monitor.check_health(mapping)
        assert report.overall == "warning"
        assert report.ssl == "expiring_soon"

    @pytest.mark.asyncio
    async def test_cname_removed_is_hard_failure(self, monitor):
        report = await monitor.check_health(_active())
        assert report.overall == "error"
        assert report.dns == "error"
        assert report.hard_failure

    @pytest.mark.asyncio
    async def test_timeout_is_not_hard_failure(self, monitor, verifier):
        import dns.exception
        resolver = verifier._get_resolver.return_value
        resolver.resolve.side_effect = dns.exception.Timeout()
        report = await monitor.check_health(_active())
        assert report.dns == "error"
        assert not report.hard_failure

    @pytest.mark.asyncio
    async def test_slow_probe(self, monitor, verifier, make_resolver):
        verifier._get_resolver.return_value = make_resolver(cname=INGRESS)
        monitor.probe = AsyncMock(
            return_value=ProbeResult(ok=True, status_code=200, response_time_ms=7000.0)
        )
        report = await monitor.check_health(_active())
        assert report.overall == "warning"
        assert report.performance == "slow"

    @pytest.mark.asyncio
    async def test_check_does_not_modify_mapping(self, monitor):
        mapping = _active()
        before = mapping.to_dict()
        await monitor.check_health(mapping)
        assert mapping.to_dict() == before

    def test_record_health_rolling_metrics(self, monitor):
        mapping = _active()
        ok = HealthReport("healthy", "ok", "active", "ok", "ok", response_time_ms=100.0)
        slow = HealthReport("healthy", "ok", "active", "ok", "ok", response_time_ms=300.0)
        down = HealthReport("error", "ok", "active", "error", "unknown", issues=["down"])

        monitor.record_health(mapping, ok)
        monitor.record_health(mapping, slow)
        alerts = monitor.record_health(mapping, down)

        assert mapping.health_check_count == 3
        assert mapping.successful_checks == 2
        assert mapping.average_response_time == 200.0
        assert mapping.uptime_percentage == 66.67
        assert mapping.last_downtime == down.checked_at
        assert mapping.health_status == "error"
        assert mapping.issues == ["down"]
        assert alerts == ["health_alert"]

    def test_record_health_alerts_only_on_transition(self, monitor):
        mapping = _active()
        report = HealthReport("warning", "ok", "expiring_soon", "ok", "ok", response_time_ms=100.0)
        assert monitor.record_health(mapping, report) == ["ssl_expiring"]
        assert monitor.record_health(mapping, report) == []

    @pytest.mark.asyncio
    async def test_configuration_redirect_check(self, monitor, verifier, make_resolver):
        verifier._get_resolver.return_value = make_resolver(cname=INGRESS)

        async def probe(url, allow_redirects=True):
            if url.startswith("http://"):
                return ProbeResult(ok=True, status_code=301, location="https://shop.brand.com/")
            return ProbeResult(ok=True, status_code=200, response_time_ms=120.0)

        monitor.probe = probe
        result = await monitor.test_configuration(_active())
        assert result["overall"] == "healthy"
        assert result["redirects"] == "ok"
        assert result["recommendations"] == ["No action needed"]

    @pytest.mark.asyncio
    async def test_configuration_missing_redirect(self, monitor, verifier, make_resolver):
        verifier._get_resolver.return_value = make_resolver(cname=INGRESS)
        result = await monitor.test_configuration(_active())
        assert result["redirects"] == "warning"
        assert "HTTP requests are not redirected to HTTPS" in result["warnings"]


class TestInsights:
    def test_verification_status(self):
        assert verification_status(DomainMapping(tenant_id="t", hostname="a.brand.com")) == "pending"
        assert verification_status(_active()) == "verified"

    def test_overall_health(self):
        assert overall_health(DomainMapping(tenant_id="t", hostname="a.brand.com")) == "inactive"
        assert overall_health(_active(health_status="healthy", ssl_status="active")) == "healthy"
        assert overall_health(_active(health_status="healthy", ssl_status="expiring_soon")) == "warning"
        assert overall_health(_active(dns_status="error")) == "error"
        assert overall_health(_active()) == "unknown"

    def test_activity_score(self):
        now = datetime.now(timezone.utc)
        assert activity_score(_active(last_accessed_at=now), now) == "very_active"
        assert activity_score(_active(last_accessed_at=now - timedelta(days=20)), now) == "moderate"
        assert activity_score(_active(), now) == "inactive"

    def test_allowed_actions(self):
        actions = allowed_actions(DomainMapping(tenant_id="t", hostname="a.brand.com"))
        assert actions["can_verify"]
        assert not actions["can_renew_certificate"]

        actions = allowed_actions(_active(status=STATUS_ERROR))
        assert actions["can_retry"]

    def test_troubleshooting_pending(self):
        mapping = DomainMapping(tenant_id="t", hostname="a.brand.com", cname_target=INGRESS)
        steps = troubleshooting_steps(mapping)
        assert INGRESS in steps[0]

    def test_recommendations(self):
        recs = health_recommendations({"dns": "error", "ssl": "expiring_soon"})
        assert len(recs) == 2

    def test_summarize_includes_computed_fields(self):
        data = summarize(_active(status=STATUS_PENDING, verification_token="tok"))
        assert data["verification_status"] == "verified"
        assert data["overall_health"] == "inactive"
        assert data["ssl_days_until_expiry"] in (79, 80)
        assert data["verification_token"] == "tok"
