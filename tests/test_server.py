"""
Tests for configuration, collaborators and maintenance jobs.
"""

import os
import sys
import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


# Set test environment variables before importing app modules
os.environ["DOMAINS_DEBUG"] = "true"


class TestConfig:
    """Test configuration module."""

    def test_settings_loads(self):
        """Test settings load from environment."""
        from app.config import Settings

        settings = Settings()
        assert settings.host == "0.0.0.0"
        assert settings.port == 8000
        assert settings.cname_target == "ingress.brandsplatform.app"
        assert settings.verification_retry_after == 300
        assert settings.expiring_soon_days == 30
        assert settings.plan_domain_limits["growth"] == 1

    def test_settings_env_prefix(self):
        """Test settings use DOMAINS_ prefix."""
        from app.config import Settings

        with patch.dict(os.environ, {"DOMAINS_LOG_LEVEL": "DEBUG", "DOMAINS_SWEEP_CONCURRENCY": "8"}):
            settings = Settings()
        assert settings.log_level == "DEBUG"
        assert settings.sweep_concurrency == 8

    def test_validate_required(self):
        from app.config import Settings

        settings = Settings(acme_email="")
        with pytest.raises(ValueError, match="ACME_EMAIL"):
            settings.validate_required()

        settings = Settings(acme_email="ops@brand.com")
        assert settings.validate_required()


class TestPlanCatalog:
    def test_limits(self):
        from app.domains.collaborators import PlanCatalog

        plans = PlanCatalog({"foundation": 0, "growth": 1, "premium": 5, "enterprise": 25})
        assert not plans.limits_for("foundation").custom_domains
        assert plans.limits_for("growth").max_domains == 1
        assert not plans.limits_for("growth").custom_certificates
        assert plans.limits_for("Premium").custom_certificates
        assert plans.limits_for("enterprise").performance_analytics

    def test_unknown_plan_is_entry_tier(self):
        from app.domains.collaborators import PlanCatalog

        plans = PlanCatalog({"foundation": 0})
        assert plans.limits_for("platinum").plan == "foundation"
        assert plans.limits_for(None).max_domains == 0


class TestRoutingCache:
    @pytest.mark.asyncio
    async def test_set_get_invalidate(self, routing_cache):
        await routing_cache.set("Shop.Brand.com", "tenant-1")
        assert await routing_cache.get("shop.brand.com") == "tenant-1"

        await routing_cache.invalidate("shop.brand.com")
        assert await routing_cache.get("shop.brand.com") is None

    @pytest.mark.asyncio
    async def test_entries_expire(self):
        from app.domains.collaborators import RoutingCache

        cache = RoutingCache(ttl=0)
        cache._use_redis = False
        await cache.set("shop.brand.com", "tenant-1")
        assert await cache.get("shop.brand.com") is None


class TestWebhookNotifier:
    @pytest.mark.asyncio
    async def test_posts_payload(self):
        from app.domains.collaborators import WebhookNotifier

        resp = MagicMock()
        resp.raise_for_status = MagicMock()
        post_ctx = MagicMock()
        post_ctx.__aenter__ = AsyncMock(return_value=resp)
        post_ctx.__aexit__ = AsyncMock(return_value=False)
        session = MagicMock()
        session.post = MagicMock(return_value=post_ctx)
        session_ctx = MagicMock()
        session_ctx.__aenter__ = AsyncMock(return_value=session)
        session_ctx.__aexit__ = AsyncMock(return_value=False)

        notifier = WebhookNotifier("https://notify.internal/hook")
        with patch("app.domains.collaborators.aiohttp.ClientSession", return_value=session_ctx):
            await notifier.notify("tenant-1", "domain_verified", "Verified", "ok", domain="shop.brand.com")

        url = session.post.call_args[0][0]
        payload = session.post.call_args[1]["json"]
        assert url == "https://notify.internal/hook"
        assert payload["event"] == "domain_verified"
        assert payload["data"] == {"domain": "shop.brand.com"}
        resp.raise_for_status.assert_called_once()


class TestJobs:
    @pytest.mark.asyncio
    async def test_health_sweep(self, service, test_settings):
        from app.domains.models import DomainMapping, STATUS_ACTIVE
        from app.jobs import health_sweep

        for name in ("a.brand.com", "b.brand.com"):
            await service.repository.create(
                DomainMapping(tenant_id="t", hostname=name, status=STATUS_ACTIVE)
            )
        ok, failed = await health_sweep(service, test_settings)
        assert (ok, failed) == (2, 0)

        for mapping in await service.list_mappings("t"):
            assert mapping.health_check_count == 1

    @pytest.mark.asyncio
    async def test_renewal_sweep_skips_custom_and_disabled(self, service, test_settings, authority):
        from app.domains.models import DomainMapping, STATUS_ACTIVE
        from app.jobs import renewal_sweep

        expiry = datetime.now(timezone.utc) + timedelta(days=10)
        common = dict(tenant_id="t", status=STATUS_ACTIVE, ssl_enabled=True, certificate_expiry=expiry)
        await service.repository.create(DomainMapping(hostname="a.brand.com", **common))
        await service.repository.create(
            DomainMapping(hostname="b.brand.com", auto_renewal=False, **common)
        )
        await service.repository.create(
            DomainMapping(hostname="c.brand.com", certificate_type="custom", **common)
        )

        ok, failed = await renewal_sweep(service, test_settings, 30)
        assert (ok, failed) == (1, 0)
        authority.issue.assert_awaited_once_with("a.brand.com", renew=True)

    @pytest.mark.asyncio
    async def test_pool_counts_failures(self):
        from app.domains.errors import CertificateAuthorityError
        from app.domains.models import DomainMapping
        from app.jobs import _run_pool

        mappings = [DomainMapping(tenant_id="t", hostname=f"{i}.brand.com") for i in range(5)]

        async def worker(mapping):
            if mapping.hostname.startswith("0"):
                raise CertificateAuthorityError("CA unavailable")

        ok, failed = await _run_pool(mappings, worker, concurrency=2)
        assert (ok, failed) == (4, 1)

    @pytest.mark.asyncio
    async def test_cleanup(self, service, test_settings):
        from app.jobs import cleanup

        result = await cleanup(service, test_settings)
        assert result == {"expired_pending": 0, "stuck_deletions": 0}

    def test_cli_dispatch(self):
        from app import jobs

        with patch.object(jobs, "run", AsyncMock(return_value=0)) as run:
            assert jobs.main(["renew", "--days", "14"]) == 0
        assert run.call_args[0][:2] == ("renew", 14)

    def test_cli_rejects_unknown_command(self):
        from app import jobs

        with pytest.raises(SystemExit):
            jobs.main(["reboot"])
