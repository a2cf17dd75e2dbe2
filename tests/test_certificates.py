"""
Tests for SSL classification, custom certificate validation and the certbot client.
"""

import pytest
from datetime import datetime, timezone, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

from app.domains.certificates import (
    CertificateManager,
    CertificateRequest,
    classify_ssl_status,
    days_until_expiry,
)
from app.domains.errors import (
    CertificateAuthorityError,
    CertificateValidationError,
    InvalidTransitionError,
)
from app.domains.models import CustomCertificate, DomainMapping, STATUS_ACTIVE, STATUS_PENDING
from app.domains.ssl import CertbotClient, load_certificate_details


NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestSslClassification:
    def test_29_days_is_expiring_soon(self):
        assert classify_ssl_status(True, NOW + timedelta(days=29), NOW) == "expiring_soon"

    def test_30_days_is_expiring_soon(self):
        assert classify_ssl_status(True, NOW + timedelta(days=30), NOW) == "expiring_soon"

    def test_31_days_is_active(self):
        assert classify_ssl_status(True, NOW + timedelta(days=31), NOW) == "active"

    def test_just_over_30_days_is_still_expiring_soon(self):
        # Whole days remaining are rounded down
        expiry = NOW + timedelta(days=30, hours=23)
        assert days_until_expiry(expiry, NOW) == 30
        assert classify_ssl_status(True, expiry, NOW) == "expiring_soon"

    def test_past_is_expired(self):
        assert classify_ssl_status(True, NOW - timedelta(days=1), NOW) == "expired"
        assert classify_ssl_status(True, NOW, NOW) == "expired"

    def test_disabled_and_unknown(self):
        assert classify_ssl_status(False, NOW + timedelta(days=90), NOW) == "disabled"
        assert classify_ssl_status(True, None, NOW) == "unknown"

    def test_days_until_expiry(self):
        assert days_until_expiry(None) is None
        assert days_until_expiry(NOW - timedelta(hours=1), NOW) == -1


class TestCustomCertificateValidation:
    @pytest.fixture
    def manager(self, authority):
        return CertificateManager(authority)

    def test_valid_bundle(self, manager, make_certificate):
        cert, key = make_certificate("shop.brand.com")
        valid, issues = manager.validate_custom_certificate("shop.brand.com", cert, key)
        assert valid
        assert issues == []

    def test_missing_fields(self, manager):
        valid, issues = manager.validate_custom_certificate("shop.brand.com", "", None)
        assert not valid
        assert "Certificate is required" in issues
        assert "Private key is required" in issues

    def test_missing_pem_markers(self, manager):
        valid, issues = manager.validate_custom_certificate(
            "shop.brand.com", "not a cert", "not a key"
        )
        assert not valid
        assert len(issues) == 2

    def test_key_mismatch(self, manager, make_certificate):
        cert, _ = make_certificate("shop.brand.com")
        _, other_key = make_certificate("shop.brand.com")
        valid, issues = manager.validate_custom_certificate("shop.brand.com", cert, other_key)
        assert not valid
        assert "Private key does not match the certificate" in issues

    def test_expired_certificate(self, manager, make_certificate):
        cert, key = make_certificate("shop.brand.com", days=-1)
        valid, issues = manager.validate_custom_certificate("shop.brand.com", cert, key)
        assert not valid
        assert "Certificate has already expired" in issues

    def test_hostname_not_covered(self, manager, make_certificate):
        cert, key = make_certificate("other.brand.com")
        valid, issues = manager.validate_custom_certificate("shop.brand.com", cert, key)
        assert not valid
        assert "does not cover shop.brand.com" in issues[0]

    def test_wildcard_covers_single_level(self, manager, make_certificate):
        cert, key = make_certificate("*.brand.com")
        assert manager.validate_custom_certificate("shop.brand.com", cert, key)[0]
        assert not manager.validate_custom_certificate("a.shop.brand.com", cert, key)[0]


class TestCertificateManager:
    @pytest.mark.asyncio
    async def test_request_managed(self, certificates, authority):
        request = await certificates.request_certificate("shop.brand.com", "managed")
        assert request.requested
        assert request.certificate_id == "cert-shop.brand.com"
        authority.issue.assert_awaited_once_with("shop.brand.com")

    @pytest.mark.asyncio
    async def test_request_custom_reads_bundle(self, certificates, authority, make_certificate):
        cert, key = make_certificate("shop.brand.com", days=60)
        custom = CustomCertificate(certificate=cert, private_key=key)
        request = await certificates.request_certificate("shop.brand.com", "custom", custom)
        assert request.requested
        assert 59 <= days_until_expiry(request.expires_at) <= 60
        authority.issue.assert_not_called()

    @pytest.mark.asyncio
    async def test_request_custom_without_bundle(self, certificates):
        with pytest.raises(CertificateValidationError):
            await certificates.request_certificate("shop.brand.com", "custom")

    @pytest.mark.asyncio
    async def test_renew_requires_active(self, certificates, authority):
        mapping = DomainMapping(tenant_id="t", hostname="shop.brand.com", status=STATUS_PENDING)
        with pytest.raises(InvalidTransitionError) as exc:
            await certificates.renew_certificate(mapping)
        assert exc.value.code == "INVALID_STATUS_FOR_RENEWAL"
        authority.issue.assert_not_called()

    @pytest.mark.asyncio
    async def test_renew_active(self, certificates, authority):
        mapping = DomainMapping(tenant_id="t", hostname="shop.brand.com", status=STATUS_ACTIVE)
        request = await certificates.renew_certificate(mapping)
        assert request.expires_at > datetime.now(timezone.utc) + timedelta(days=89)
        authority.issue.assert_awaited_once_with("shop.brand.com", renew=True)

    @pytest.mark.asyncio
    async def test_revoke_never_raises(self, certificates, authority):
        authority.revoke.side_effect = RuntimeError("CA is down")
        assert await certificates.revoke_certificate("shop.brand.com") is False

    def test_record_certificate(self, certificates):
        mapping = DomainMapping(tenant_id="t", hostname="shop.brand.com", status=STATUS_ACTIVE)
        request = CertificateRequest(
            requested=True,
            certificate_id="abc",
            expires_at=NOW + timedelta(days=90),
            issuer="Let's Encrypt",
        )
        certificates.record_certificate(mapping, request, actor="user-1", now=NOW)
        assert mapping.ssl_enabled
        assert mapping.ssl_status == "active"
        assert mapping.certificate_id == "abc"
        assert mapping.certificate_info.issuer == "Let's Encrypt"
        assert mapping.renewed_by == "user-1"
        assert mapping.last_certificate_renewal == NOW

    def test_record_refuses_expired(self, certificates):
        mapping = DomainMapping(tenant_id="t", hostname="shop.brand.com")
        request = CertificateRequest(requested=True, expires_at=NOW - timedelta(days=1))
        with pytest.raises(CertificateValidationError):
            certificates.record_certificate(mapping, request, now=NOW)


class TestCertbotClient:
    @pytest.mark.asyncio
    async def test_issue_failure_raises(self):
        client = CertbotClient(retry_after=120)
        with patch.object(client, "_run", AsyncMock(return_value=(False, "rate limited"))):
            with pytest.raises(CertificateAuthorityError) as exc:
                await client.issue("shop.brand.com")
        assert exc.value.retry_after == 120
        assert exc.value.status_code == 503

    @pytest.mark.asyncio
    async def test_issue_without_readable_cert(self, tmp_path):
        client = CertbotClient(live_dir=str(tmp_path), dry_run=True, email="ops@brand.com")
        run = AsyncMock(return_value=(True, "ok"))
        with patch.object(client, "_run", run):
            issued = await client.issue("shop.brand.com", renew=True)

        cmd = run.call_args[0][0]
        assert "--force-renewal" in cmd
        assert "--dry-run" in cmd
        assert cmd[cmd.index("--email") + 1] == "ops@brand.com"
        assert 89 <= days_until_expiry(issued.expires_at) <= 90

    @pytest.mark.asyncio
    async def test_issue_reads_live_certificate(self, tmp_path, make_certificate):
        cert, _ = make_certificate("shop.brand.com", days=45)
        live = tmp_path / "shop.brand.com"
        live.mkdir()
        (live / "fullchain.pem").write_text(cert)

        client = CertbotClient(live_dir=str(tmp_path))
        with patch.object(client, "_run", AsyncMock(return_value=(True, "ok"))):
            issued = await client.issue("shop.brand.com")

        expected = load_certificate_details(cert.encode())
        assert issued.expires_at == expected.expires_at
        assert issued.certificate_id == expected.serial_number

    @pytest.mark.asyncio
    async def test_revoke_failure_reported(self):
        client = CertbotClient()
        with patch.object(client, "_run", AsyncMock(return_value=(False, "no such cert"))):
            ok, msg = await client.revoke("shop.brand.com")
        assert not ok
        assert "no such cert" in msg

    @pytest.mark.asyncio
    async def test_missing_binary(self):
        client = CertbotClient(certbot_bin="/nonexistent/certbot")
        ok, msg = await client._run([client.certbot_bin, "--version"])
        assert not ok
        assert "not found" in msg

    @pytest.mark.asyncio
    async def test_unexecutable_binary_is_authority_error(self):
        client = CertbotClient(certbot_bin="/opt/certbot", retry_after=90)
        spawn = AsyncMock(side_effect=PermissionError(13, "Permission denied"))
        with patch("app.domains.ssl.asyncio.create_subprocess_exec", spawn):
            ok, msg = await client._run([client.certbot_bin, "--version"])
            assert not ok
            assert "could not be started" in msg

            with pytest.raises(CertificateAuthorityError) as exc:
                await client.issue("shop.brand.com")
        assert exc.value.retry_after == 90


class TestLiveCertificateInspection:
    @pytest.mark.asyncio
    async def test_connection_closed_after_read(self):
        manager = CertificateManager(CertbotClient())
        writer = MagicMock()
        writer.get_extra_info = MagicMock(return_value={"notAfter": "Jan  1 12:00:00 2027 GMT"})
        writer.wait_closed = AsyncMock()

        with patch(
            "app.domains.certificates.asyncio.open_connection",
            AsyncMock(return_value=(MagicMock(), writer)),
        ):
            expiry = await manager.inspect_live_certificate("shop.brand.com")

        assert expiry == datetime(2027, 1, 1, 12, 0, tzinfo=timezone.utc)
        writer.close.assert_called_once()
        writer.wait_closed.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unclean_close_still_returns_expiry(self):
        manager = CertificateManager(CertbotClient())
        writer = MagicMock()
        writer.get_extra_info = MagicMock(return_value={"notAfter": "Jan  1 12:00:00 2027 GMT"})
        writer.wait_closed = AsyncMock(side_effect=ConnectionResetError())

        with patch(
            "app.domains.certificates.asyncio.open_connection",
            AsyncMock(return_value=(MagicMock(), writer)),
        ):
            expiry = await manager.inspect_live_certificate("shop.brand.com")

        assert expiry is not None
