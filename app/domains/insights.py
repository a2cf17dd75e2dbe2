"""
Derived views over a stored mapping record.

Plain functions so the API and batch jobs compute the same summaries
without touching persistence.
"""

from datetime import datetime
from typing import List, Optional

from .certificates import days_until_expiry
from .models import (
    CERT_CUSTOM,
    STATUS_ACTIVE,
    STATUS_ERROR,
    STATUS_PENDING,
    DomainMapping,
    utcnow,
)


def verification_status(mapping: DomainMapping) -> str:
    if mapping.verified_at and mapping.dns_status == "verified":
        return "verified"
    if mapping.verification_token:
        return "pending"
    return "not_started"


def overall_health(mapping: DomainMapping) -> str:
    """Summary of the last recorded checks, without running new ones."""
    if mapping.status != STATUS_ACTIVE:
        return "inactive"
    if (
        mapping.health_status == "error"
        or mapping.ssl_status in ("expired", "error")
        or mapping.dns_status == "error"
    ):
        return "error"
    if mapping.health_status == "warning" or mapping.ssl_status == "expiring_soon":
        return "warning"
    if (
        mapping.health_status == "healthy"
        and mapping.ssl_status == "active"
        and mapping.dns_status == "verified"
    ):
        return "healthy"
    return "unknown"


def activity_score(mapping: DomainMapping, now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    if mapping.last_accessed_at:
        idle_days = (now - mapping.last_accessed_at).days
    else:
        idle_days = 365

    if idle_days <= 1:
        return "very_active"
    if idle_days <= 7:
        return "active"
    if idle_days <= 30:
        return "moderate"
    if idle_days <= 90:
        return "low"
    return "inactive"


def allowed_actions(mapping: DomainMapping, now: Optional[datetime] = None) -> dict:
    remaining = days_until_expiry(mapping.certificate_expiry, now)
    return {
        "can_verify": mapping.status == STATUS_PENDING,
        "can_retry": mapping.status == STATUS_ERROR,
        "can_renew_certificate": (
            mapping.status == STATUS_ACTIVE
            and mapping.certificate_type != CERT_CUSTOM
            and (remaining is None or remaining <= 30)
        ),
        "can_update_certificate": mapping.certificate_type == CERT_CUSTOM,
        "can_delete": mapping.status != "deleting",
    }


def summarize(mapping: DomainMapping, now: Optional[datetime] = None) -> dict:
    """API representation plus the computed fields."""
    data = mapping.to_api_response()
    data.update(
        {
            "verification_status": verification_status(mapping),
            "overall_health": overall_health(mapping),
            "ssl_days_until_expiry": days_until_expiry(mapping.certificate_expiry, now),
            "activity_score": activity_score(mapping, now),
            "health": {
                "dns_status": mapping.dns_status,
                "ssl_status": mapping.ssl_status,
                "overall_health": overall_health(mapping),
                "last_checked": data["last_health_check"],
            },
            "performance": {
                "response_time": mapping.average_response_time,
                "uptime": mapping.uptime_percentage,
                "certificate_expiry": data["certificate_expiry"],
            },
        }
    )
    return data


def next_steps(mapping: DomainMapping) -> List[str]:
    if mapping.status == STATUS_PENDING:
        return [
            "Add the provided DNS records to your domain provider",
            "Wait for DNS propagation (typically 5-60 minutes)",
            "Verify domain ownership using the verification endpoint",
            "An SSL certificate will be issued automatically once verified",
        ]
    if mapping.status == STATUS_ACTIVE:
        return [
            "Your domain is active",
            "Test your domain to make sure everything works",
        ]
    if mapping.status == STATUS_ERROR:
        return [
            "Review the reported issues",
            "Fix the DNS or certificate configuration",
            "Retry activation using the retry endpoint",
        ]
    return []


def troubleshooting_steps(mapping: DomainMapping) -> List[str]:
    steps: List[str] = []
    if mapping.status == STATUS_PENDING:
        steps.append(
            f"Confirm a CNAME record for {mapping.hostname} points to {mapping.cname_target}"
        )
        steps.append("Confirm the TXT verification record contains the exact token")
        steps.append("Allow up to an hour for DNS changes to propagate, then verify again")
    if mapping.dns_status == "error":
        steps.append(
            f"The CNAME for {mapping.hostname} no longer resolves to {mapping.cname_target}"
        )
    if mapping.ssl_status == "expired":
        steps.append("The SSL certificate has expired; renew it or upload a new certificate")
    elif mapping.ssl_status == "expiring_soon":
        steps.append("The SSL certificate expires soon; renew it to avoid downtime")
    if mapping.health_status == "error" and mapping.issues:
        steps.extend(f"Resolve: {issue}" for issue in mapping.issues)
    if mapping.status == STATUS_ERROR:
        steps.append("After fixing the issues, use retry to reactivate the domain")
    return steps


def health_recommendations(health: dict) -> List[str]:
    recs: List[str] = []
    if health.get("dns") == "error":
        recs.append("Check your DNS configuration and make sure the CNAME record is in place")
    if health.get("ssl") in ("expired", "error"):
        recs.append("Renew the SSL certificate immediately")
    elif health.get("ssl") == "expiring_soon":
        recs.append("Renew the SSL certificate before it expires")
    if health.get("connectivity") == "error":
        recs.append("Make sure the domain is reachable and your DNS provider is not proxying it")
    if health.get("performance") == "slow":
        recs.append("Investigate slow responses; consider enabling a CDN")
    if not recs:
        recs.append("No action needed")
    return recs


def performance_insights(mapping: DomainMapping, slow_response_ms: int = 5000) -> List[str]:
    insights: List[str] = []
    if mapping.health_check_count == 0:
        return ["No health checks recorded yet"]
    if mapping.average_response_time > slow_response_ms:
        insights.append(
            f"Average response time {mapping.average_response_time:.0f}ms is above "
            f"the {slow_response_ms}ms threshold"
        )
    else:
        insights.append(f"Average response time {mapping.average_response_time:.0f}ms")
    if mapping.uptime_percentage < 99:
        insights.append(f"Uptime {mapping.uptime_percentage:.1f}% is below 99%")
    else:
        insights.append(f"Uptime {mapping.uptime_percentage:.1f}%")
    return insights
