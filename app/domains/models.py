"""
Domain mapping data model.
"""

import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

# Lifecycle status
STATUS_PENDING = "pending_verification"
STATUS_ACTIVE = "active"
STATUS_ERROR = "error"
STATUS_DELETING = "deleting"
MAPPING_STATUSES = (STATUS_PENDING, STATUS_ACTIVE, STATUS_ERROR, STATUS_DELETING)

CERT_MANAGED = "managed"
CERT_CUSTOM = "custom"
CERTIFICATE_TYPES = (CERT_MANAGED, CERT_CUSTOM)

VERIFICATION_METHODS = ("dns", "file", "email")

DNS_STATUSES = ("unknown", "verified", "error", "pending")
HEALTH_STATUSES = ("unknown", "healthy", "warning", "error")
SSL_STATUSES = ("unknown", "active", "expiring_soon", "expired", "disabled", "error")

PLAN_LEVELS = ("foundation", "growth", "premium", "enterprise")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_token() -> str:
    return secrets.token_hex(32)


def normalize_hostname(hostname: str) -> str:
    """Lowercase, trim whitespace and the trailing root dot."""
    return hostname.strip().lower().rstrip(".")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass
class DnsRecord:
    """A DNS record the tenant must publish."""

    type: str
    name: str
    value: str
    ttl: int = 300
    required: bool = True

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "name": self.name,
            "value": self.value,
            "ttl": self.ttl,
            "required": self.required,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DnsRecord":
        return cls(
            type=data["type"],
            name=data["name"],
            value=data["value"],
            ttl=data.get("ttl", 300),
            required=data.get("required", True),
        )


@dataclass
class CertificateInfo:
    issuer: str = ""
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    fingerprint: Optional[str] = None
    serial_number: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "issuer": self.issuer,
            "valid_from": _iso(self.valid_from),
            "valid_to": _iso(self.valid_to),
            "fingerprint": self.fingerprint,
            "serial_number": self.serial_number,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CertificateInfo":
        return cls(
            issuer=data.get("issuer", ""),
            valid_from=_parse(data.get("valid_from")),
            valid_to=_parse(data.get("valid_to")),
            fingerprint=data.get("fingerprint"),
            serial_number=data.get("serial_number"),
        )


@dataclass
class CustomCertificate:
    """Tenant-uploaded certificate bundle. Never serialized to clients."""

    certificate: str
    private_key: str
    chain_certificate: Optional[str] = None
    uploaded_at: datetime = field(default_factory=utcnow)
    uploaded_by: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "certificate": self.certificate,
            "private_key": self.private_key,
            "chain_certificate": self.chain_certificate,
            "uploaded_at": _iso(self.uploaded_at),
            "uploaded_by": self.uploaded_by,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CustomCertificate":
        return cls(
            certificate=data["certificate"],
            private_key=data["private_key"],
            chain_certificate=data.get("chain_certificate"),
            uploaded_at=_parse(data.get("uploaded_at")) or utcnow(),
            uploaded_by=data.get("uploaded_by"),
        )


@dataclass
class DomainMapping:
    """A tenant's claim on a custom hostname."""

    tenant_id: str
    hostname: str
    cname_target: str = ""
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: str = STATUS_PENDING

    # Configuration
    certificate_type: str = CERT_MANAGED
    force_https: bool = True
    auto_renewal: bool = True

    # Verification
    verification_method: str = "dns"
    verification_token: Optional[str] = field(default_factory=generate_token)
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    last_checked_at: Optional[datetime] = None

    # Certificate
    ssl_enabled: bool = False
    ssl_status: str = "unknown"
    certificate_id: Optional[str] = None
    certificate_expiry: Optional[datetime] = None
    certificate_info: Optional[CertificateInfo] = None
    last_certificate_renewal: Optional[datetime] = None
    renewed_by: Optional[str] = None
    custom_certificate: Optional[CustomCertificate] = None

    # DNS
    dns_records: List[DnsRecord] = field(default_factory=list)
    dns_status: str = "pending"

    # Health
    health_status: str = "unknown"
    last_health_check: Optional[datetime] = None
    average_response_time: float = 0.0
    uptime_percentage: float = 0.0
    last_downtime: Optional[datetime] = None
    health_check_count: int = 0
    successful_checks: int = 0
    issues: List[str] = field(default_factory=list)

    # Analytics
    request_count: int = 0
    last_accessed_at: Optional[datetime] = None

    # Audit
    plan_level: str = "foundation"
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    deleted_by: Optional[str] = None
    deletion_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.hostname = normalize_hostname(self.hostname)

    def to_dict(self) -> dict:
        """Convert to dictionary for persistence."""
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "hostname": self.hostname,
            "cname_target": self.cname_target,
            "status": self.status,
            "certificate_type": self.certificate_type,
            "force_https": self.force_https,
            "auto_renewal": self.auto_renewal,
            "verification_method": self.verification_method,
            "verification_token": self.verification_token,
            "verified_at": _iso(self.verified_at),
            "verified_by": self.verified_by,
            "last_checked_at": _iso(self.last_checked_at),
            "ssl_enabled": self.ssl_enabled,
            "ssl_status": self.ssl_status,
            "certificate_id": self.certificate_id,
            "certificate_expiry": _iso(self.certificate_expiry),
            "certificate_info": self.certificate_info.to_dict() if self.certificate_info else None,
            "last_certificate_renewal": _iso(self.last_certificate_renewal),
            "renewed_by": self.renewed_by,
            "custom_certificate": self.custom_certificate.to_dict() if self.custom_certificate else None,
            "dns_records": [r.to_dict() for r in self.dns_records],
            "dns_status": self.dns_status,
            "health_status": self.health_status,
            "last_health_check": _iso(self.last_health_check),
            "average_response_time": self.average_response_time,
            "uptime_percentage": self.uptime_percentage,
            "last_downtime": _iso(self.last_downtime),
            "health_check_count": self.health_check_count,
            "successful_checks": self.successful_checks,
            "issues": list(self.issues),
            "request_count": self.request_count,
            "last_accessed_at": _iso(self.last_accessed_at),
            "plan_level": self.plan_level,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "metadata": dict(self.metadata),
            "deleted_by": self.deleted_by,
            "deletion_reason": self.deletion_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DomainMapping":
        """Create from dictionary."""
        info = data.get("certificate_info")
        custom = data.get("custom_certificate")
        return cls(
            id=data["id"],
            tenant_id=data["tenant_id"],
            hostname=data["hostname"],
            cname_target=data.get("cname_target", ""),
            status=data.get("status", STATUS_PENDING),
            certificate_type=data.get("certificate_type", CERT_MANAGED),
            force_https=data.get("force_https", True),
            auto_renewal=data.get("auto_renewal", True),
            verification_method=data.get("verification_method", "dns"),
            verification_token=data.get("verification_token"),
            verified_at=_parse(data.get("verified_at")),
            verified_by=data.get("verified_by"),
            last_checked_at=_parse(data.get("last_checked_at")),
            ssl_enabled=data.get("ssl_enabled", False),
            ssl_status=data.get("ssl_status", "unknown"),
            certificate_id=data.get("certificate_id"),
            certificate_expiry=_parse(data.get("certificate_expiry")),
            certificate_info=CertificateInfo.from_dict(info) if info else None,
            last_certificate_renewal=_parse(data.get("last_certificate_renewal")),
            renewed_by=data.get("renewed_by"),
            custom_certificate=CustomCertificate.from_dict(custom) if custom else None,
            dns_records=[DnsRecord.from_dict(r) for r in data.get("dns_records", [])],
            dns_status=data.get("dns_status", "pending"),
            health_status=data.get("health_status", "unknown"),
            last_health_check=_parse(data.get("last_health_check")),
            average_response_time=data.get("average_response_time", 0.0),
            uptime_percentage=data.get("uptime_percentage", 0.0),
            last_downtime=_parse(data.get("last_downtime")),
            health_check_count=data.get("health_check_count", 0),
            successful_checks=data.get("successful_checks", 0),
            issues=list(data.get("issues", [])),
            request_count=data.get("request_count", 0),
            last_accessed_at=_parse(data.get("last_accessed_at")),
            plan_level=data.get("plan_level", "foundation"),
            created_by=data.get("created_by"),
            updated_by=data.get("updated_by"),
            metadata=dict(data.get("metadata") or {}),
            deleted_by=data.get("deleted_by"),
            deletion_reason=data.get("deletion_reason"),
            created_at=_parse(data.get("created_at")) or utcnow(),
            updated_at=_parse(data.get("updated_at")) or utcnow(),
        )

    def to_api_response(self) -> dict:
        """Convert to API response, hiding secrets and key material."""
        resp = {
            "id": self.id,
            "domain": self.hostname,
            "status": self.status,
            "certificate_type": self.certificate_type,
            "force_https": self.force_https,
            "auto_renewal": self.auto_renewal,
            "verification_method": self.verification_method,
            "verified_at": _iso(self.verified_at),
            "cname_target": self.cname_target,
            "dns_records": [r.to_dict() for r in self.dns_records],
            "dns_status": self.dns_status,
            "ssl_enabled": self.ssl_enabled,
            "ssl_status": self.ssl_status,
            "certificate_expiry": _iso(self.certificate_expiry),
            "certificate_info": self.certificate_info.to_dict() if self.certificate_info else None,
            "last_certificate_renewal": _iso(self.last_certificate_renewal),
            "health_status": self.health_status,
            "last_health_check": _iso(self.last_health_check),
            "average_response_time": self.average_response_time,
            "uptime_percentage": self.uptime_percentage,
            "issues": list(self.issues),
            "request_count": self.request_count,
            "last_accessed_at": _iso(self.last_accessed_at),
            "plan_level": self.plan_level,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if self.custom_certificate:
            resp["custom_certificate"] = {
                "uploaded_at": _iso(self.custom_certificate.uploaded_at),
                "uploaded_by": self.custom_certificate.uploaded_by,
            }
        if self.status == STATUS_PENDING and self.verification_token:
            resp["verification_token"] = self.verification_token
        return resp
