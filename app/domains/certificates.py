"""
Certificate lifecycle: issuance, renewal, revocation and SSL status.
"""

import asyncio
import logging
import math
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import serialization

from .errors import (
    CertificateAuthorityError,
    CertificateValidationError,
    InvalidTransitionError,
)
from .models import (
    CERT_CUSTOM,
    CERT_MANAGED,
    STATUS_ACTIVE,
    CertificateInfo,
    CustomCertificate,
    DomainMapping,
    normalize_hostname,
    utcnow,
)
from .ssl import CertbotClient, IssuedCertificate, load_certificate_details

logger = logging.getLogger("domain_mapper.domains.certificates")

PEM_CERT_BEGIN = "-----BEGIN CERTIFICATE-----"
PEM_CERT_END = "-----END CERTIFICATE-----"


def days_until_expiry(expiry: Optional[datetime], now: Optional[datetime] = None) -> Optional[int]:
    """Whole days left on a certificate, rounded down. Negative once expired."""
    if expiry is None:
        return None
    now = now or utcnow()
    return math.floor((expiry - now).total_seconds() / 86400)


def classify_ssl_status(
    enabled: bool,
    expiry: Optional[datetime],
    now: Optional[datetime] = None,
    expiring_soon_days: int = 30,
) -> str:
    """
    Derive the SSL status from the recorded expiry.

    Exactly `expiring_soon_days` remaining counts as expiring soon.
    """
    if not enabled:
        return "disabled"
    if expiry is None:
        return "unknown"
    now = now or utcnow()
    if expiry <= now:
        return "expired"
    if days_until_expiry(expiry, now) <= expiring_soon_days:
        return "expiring_soon"
    return "active"


def _hostname_matches(hostname: str, pattern: str) -> bool:
    pattern = pattern.lower().rstrip(".")
    if pattern == hostname:
        return True
    if pattern.startswith("*."):
        head, _, rest = hostname.partition(".")
        return bool(head) and rest == pattern[2:]
    return False


def _certificate_names(cert: x509.Certificate) -> List[str]:
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
        names = san.value.get_values_for_type(x509.DNSName)
        if names:
            return names
    except x509.ExtensionNotFound:
        pass
    return [
        attr.value for attr in cert.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)
    ]


@dataclass
class CertificateRequest:
    """Outcome of a certificate request."""

    requested: bool
    certificate_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    issuer: Optional[str] = None
    valid_from: Optional[datetime] = None
    fingerprint: Optional[str] = None
    serial_number: Optional[str] = None

    @classmethod
    def from_issued(cls, issued: IssuedCertificate) -> "CertificateRequest":
        return cls(
            requested=True,
            certificate_id=issued.certificate_id,
            expires_at=issued.expires_at,
            issuer=issued.issuer,
            valid_from=issued.valid_from,
            fingerprint=issued.fingerprint,
            serial_number=issued.serial_number,
        )


class CertificateManager:
    """Drives the certificate authority and owns certificate fields on a mapping."""

    def __init__(
        self,
        authority: CertbotClient,
        expiring_soon_days: int = 30,
        live_check_timeout: float = 10.0,
    ):
        self.authority = authority
        self.expiring_soon_days = expiring_soon_days
        self.live_check_timeout = live_check_timeout

    def classify(self, mapping: DomainMapping, now: Optional[datetime] = None) -> str:
        return classify_ssl_status(
            mapping.ssl_enabled,
            mapping.certificate_expiry,
            now,
            self.expiring_soon_days,
        )

    def validate_custom_certificate(
        self,
        hostname: str,
        certificate: Optional[str],
        private_key: Optional[str],
        chain_certificate: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Tuple[bool, List[str]]:
        """
        Check an uploaded PEM bundle.

        Returns (valid, issues).
        """
        issues: List[str] = []
        hostname = normalize_hostname(hostname)

        if not certificate or not certificate.strip():
            issues.append("Certificate is required")
        elif PEM_CERT_BEGIN not in certificate or PEM_CERT_END not in certificate:
            issues.append("Certificate must be PEM encoded (BEGIN/END CERTIFICATE markers missing)")

        if not private_key or not private_key.strip():
            issues.append("Private key is required")
        elif "-----BEGIN" not in private_key or "PRIVATE KEY-----" not in private_key:
            issues.append("Private key must be PEM encoded (BEGIN/END PRIVATE KEY markers missing)")

        if chain_certificate and PEM_CERT_BEGIN not in chain_certificate:
            issues.append("Chain certificate must be PEM encoded")

        if issues:
            return False, issues

        try:
            cert = x509.load_pem_x509_certificate(certificate.encode())
        except ValueError as e:
            return False, [f"Certificate could not be parsed: {e}"]

        try:
            key = serialization.load_pem_private_key(private_key.encode(), password=None)
        except (ValueError, TypeError) as e:
            return False, [f"Private key could not be parsed: {e}"]

        spki = serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
        if cert.public_key().public_bytes(*spki) != key.public_key().public_bytes(*spki):
            issues.append("Private key does not match the certificate")

        now = now or utcnow()
        if cert.not_valid_after_utc <= now:
            issues.append("Certificate has already expired")
        elif cert.not_valid_before_utc > now:
            issues.append("Certificate is not yet valid")

        names = _certificate_names(cert)
        if not any(_hostname_matches(hostname, n) for n in names):
            issues.append(
                f"Certificate does not cover {hostname} (covers: {', '.join(names) or 'nothing'})"
            )

        return not issues, issues

    async def request_certificate(
        self,
        hostname: str,
        certificate_type: str,
        custom: Optional[CustomCertificate] = None,
    ) -> CertificateRequest:
        """
        Obtain a certificate for a hostname.

        Managed certificates come from the ACME authority; custom ones are
        read from the tenant's uploaded bundle.
        """
        hostname = normalize_hostname(hostname)
        if certificate_type == CERT_CUSTOM:
            if custom is None:
                raise CertificateValidationError(
                    "Custom certificate type requires an uploaded certificate",
                    issues=["No custom certificate on record"],
                )
            try:
                issued = load_certificate_details(custom.certificate.encode())
            except ValueError as e:
                raise CertificateValidationError(
                    "Custom certificate could not be parsed", issues=[str(e)]
                )
            if issued.expires_at <= utcnow():
                raise CertificateValidationError(
                    "Custom certificate has already expired",
                    issues=["Certificate has already expired"],
                )
            logger.info(f"Installed custom certificate for {hostname}")
            return CertificateRequest.from_issued(issued)

        issued = await self.authority.issue(hostname)
        if issued.expires_at <= utcnow():
            raise CertificateAuthorityError(
                f"Certificate authority returned an expired certificate for {hostname}",
                retry_after=self.authority.retry_after,
            )
        return CertificateRequest.from_issued(issued)

    async def renew_certificate(self, mapping: DomainMapping) -> CertificateRequest:
        """Renew a managed certificate. Only active mappings may renew."""
        if mapping.status != STATUS_ACTIVE:
            raise InvalidTransitionError(
                "Can only renew certificates for active domains",
                current_status=mapping.status,
                code="INVALID_STATUS_FOR_RENEWAL",
            )
        if mapping.certificate_type != CERT_MANAGED:
            raise InvalidTransitionError(
                "Custom certificates are renewed by uploading a new certificate",
                current_status=mapping.status,
            )

        issued = await self.authority.issue(mapping.hostname, renew=True)
        if issued.expires_at <= utcnow():
            raise CertificateAuthorityError(
                f"Certificate authority returned an expired certificate for {mapping.hostname}",
                retry_after=self.authority.retry_after,
            )
        return CertificateRequest.from_issued(issued)

    async def revoke_certificate(self, hostname: str) -> bool:
        """Best-effort revocation. Failures are logged, never raised."""
        try:
            ok, message = await self.authority.revoke(hostname)
        except Exception as e:
            logger.warning(f"Certificate revocation failed for {hostname}: {e}")
            return False
        if not ok:
            logger.warning(f"Certificate revocation failed for {hostname}: {message}")
        return ok

    def record_certificate(
        self,
        mapping: DomainMapping,
        request: CertificateRequest,
        actor: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DomainMapping:
        """Write an issued certificate onto the mapping."""
        now = now or utcnow()
        if request.expires_at is None or request.expires_at <= now:
            raise CertificateValidationError(
                "Refusing to record a certificate that is already expired",
                issues=["Certificate expiry must be in the future"],
            )

        mapping.ssl_enabled = True
        mapping.certificate_id = request.certificate_id
        mapping.certificate_expiry = request.expires_at
        mapping.certificate_info = CertificateInfo(
            issuer=request.issuer or "",
            valid_from=request.valid_from,
            valid_to=request.expires_at,
            fingerprint=request.fingerprint,
            serial_number=request.serial_number,
        )
        mapping.last_certificate_renewal = now
        mapping.renewed_by = actor
        mapping.ssl_status = self.classify(mapping, now)
        return mapping

    async def inspect_live_certificate(self, hostname: str, port: int = 443) -> Optional[datetime]:
        """Expiry of the certificate actually served for a hostname, if reachable."""
        hostname = normalize_hostname(hostname)
        context = ssl.create_default_context()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(hostname, port, ssl=context, server_hostname=hostname),
                timeout=self.live_check_timeout,
            )
        except (OSError, asyncio.TimeoutError, ssl.SSLError) as e:
            logger.debug(f"Live certificate inspection failed for {hostname}: {e}")
            return None

        try:
            peercert = writer.get_extra_info("peercert") or {}
            not_after = peercert.get("notAfter")
            if not not_after:
                return None
            return datetime.fromtimestamp(ssl.cert_time_to_seconds(not_after), tz=timezone.utc)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (OSError, ssl.SSLError) as e:
                logger.debug(f"TLS close for {hostname} was not clean: {e}")
