"""
Pytest configuration for domain mapping tests.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import dns.resolver
import pytest

# Add app directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set test environment variables
os.environ["DOMAINS_DEBUG"] = "true"
os.environ["DOMAINS_REDIS_URL"] = "redis://localhost:6379"
os.environ["DOMAINS_CNAME_TARGET"] = "ingress.brandsplatform.app"

INGRESS = "ingress.brandsplatform.app"


@pytest.fixture
def test_settings():
    """Provide test settings."""
    from app.config import Settings
    return Settings()


@pytest.fixture
def make_resolver():
    """
    Build a fake async resolver.

    cname=None answers NXDOMAIN for the CNAME; txt=None answers NoAnswer.
    """
    def factory(cname=None, txt=None):
        async def resolve(name, rdtype):
            if rdtype == "CNAME":
                if cname is None:
                    raise dns.resolver.NXDOMAIN()
                rdata = MagicMock()
                rdata.target = f"{cname}."
                return [rdata]
            if rdtype == "TXT":
                if not txt:
                    raise dns.resolver.NoAnswer()
                answers = []
                for value in txt:
                    rdata = MagicMock()
                    rdata.strings = [value.encode()]
                    answers.append(rdata)
                return answers
            raise dns.resolver.NoAnswer()

        resolver = MagicMock()
        resolver.resolve = AsyncMock(side_effect=resolve)
        return resolver

    return factory


@pytest.fixture
def make_certificate():
    """Self-signed PEM certificate and key for a hostname."""
    from cryptography import x509
    from cryptography.hazmat.primitives import hashes, serialization
    from cryptography.hazmat.primitives.asymmetric import ec
    from cryptography.x509.oid import NameOID

    def factory(hostname, days=90, key=None):
        key = key or ec.generate_private_key(ec.SECP256R1())
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)])
        now = datetime.now(timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=10) + timedelta(days=min(days, 0)))
            .not_valid_after(now + timedelta(days=days))
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(hostname)]),
                critical=False,
            )
            .sign(key, hashes.SHA256())
        )
        cert_pem = cert.public_bytes(serialization.Encoding.PEM).decode()
        key_pem = key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ).decode()
        return cert_pem, key_pem

    return factory


@pytest.fixture
def repository():
    """In-memory mapping repository (no Redis)."""
    from app.domains.repository import MappingRepository
    repo = MappingRepository()
    repo._use_redis = False
    return repo


@pytest.fixture
def verifier(make_resolver):
    """Verifier whose resolver answers NXDOMAIN until a test replaces it."""
    from app.domains.verification import DomainVerifier
    v = DomainVerifier(cname_target=INGRESS, retry_after=300)
    v._get_resolver = MagicMock(return_value=make_resolver())
    return v


@pytest.fixture
def authority():
    """Certificate authority client double."""
    from app.domains.ssl import IssuedCertificate

    def issued(domain, renew=False):
        now = datetime.now(timezone.utc)
        return IssuedCertificate(
            certificate_id=f"cert-{domain}",
            issuer="Let's Encrypt",
            valid_from=now,
            expires_at=now + timedelta(days=90),
        )

    client = MagicMock()
    client.retry_after = 300
    client.issue = AsyncMock(side_effect=issued)
    client.revoke = AsyncMock(return_value=(True, "revoked"))
    return client


@pytest.fixture
def certificates(authority):
    from app.domains.certificates import CertificateManager
    return CertificateManager(authority)


@pytest.fixture
def monitor(verifier, certificates):
    from app.domains.health import HealthMonitor, ProbeResult
    m = HealthMonitor(verifier, certificates, inspect_live_certificates=False)
    m.probe = AsyncMock(
        return_value=ProbeResult(ok=True, status_code=200, response_time_ms=200.0)
    )
    return m


@pytest.fixture
def notifier():
    n = MagicMock()
    n.notify = AsyncMock()
    return n


@pytest.fixture
def routing_cache():
    from app.domains.collaborators import RoutingCache
    cache = RoutingCache()
    cache._use_redis = False
    return cache


@pytest.fixture
def service(repository, verifier, certificates, monitor, notifier, routing_cache):
    """Fully wired service over in-memory storage and fake externals."""
    from app.domains.collaborators import PlanCatalog
    from app.domains.service import DomainMappingService
    from app.domains.validation import HostnameValidator

    validator = HostnameValidator(
        repository,
        verifier=verifier,
        reserved_domains=["localhost", "example.com", "test.com"],
        platform_domain="brandsplatform.app",
    )
    return DomainMappingService(
        repository=repository,
        validator=validator,
        verifier=verifier,
        certificates=certificates,
        monitor=monitor,
        plans=PlanCatalog({"foundation": 0, "growth": 1, "premium": 5, "enterprise": 25}),
        notifier=notifier,
        routing_cache=routing_cache,
    )
