"""
Health and performance checks for custom domains.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import aiohttp

from .certificates import CertificateManager, classify_ssl_status
from .insights import health_recommendations
from .models import STATUS_ACTIVE, DomainMapping, utcnow
from .verification import CnameCheck, DomainVerifier

logger = logging.getLogger("domain_mapper.domains.health")


@dataclass
class ProbeResult:
    ok: bool
    status_code: Optional[int] = None
    response_time_ms: Optional[float] = None
    location: Optional[str] = None
    error: Optional[str] = None


@dataclass
class HealthReport:
    overall: str
    dns: str
    ssl: str
    connectivity: str
    performance: str
    issues: List[str] = field(default_factory=list)
    response_time_ms: Optional[float] = None
    status_code: Optional[int] = None
    checked_at: datetime = field(default_factory=utcnow)
    # The mapping can no longer serve traffic (expired cert, DNS moved away)
    hard_failure: bool = False

    def to_dict(self) -> dict:
        return {
            "overall": self.overall,
            "dns": self.dns,
            "ssl": self.ssl,
            "connectivity": self.connectivity,
            "performance": self.performance,
            "issues": list(self.issues),
            "response_time_ms": self.response_time_ms,
            "status_code": self.status_code,
            "checked_at": self.checked_at.isoformat(),
        }


def aggregate_health(
    status: str,
    dns: str,
    ssl: str,
    connectivity: str,
    response_time_ms: Optional[float],
    slow_response_ms: int = 5000,
) -> str:
    """Combine sub-check results into healthy / warning / error."""
    if status != STATUS_ACTIVE:
        return "error"
    if dns == "error" or connectivity == "error" or ssl in ("expired", "error"):
        return "error"
    if ssl == "expiring_soon":
        return "warning"
    if response_time_ms is not None and response_time_ms > slow_response_ms:
        return "warning"
    return "healthy"


class HealthMonitor:
    """Runs DNS, SSL, connectivity and response-time checks for a mapping."""

    def __init__(
        self,
        verifier: DomainVerifier,
        certificates: CertificateManager,
        timeout: float = 10.0,
        slow_response_ms: int = 5000,
        inspect_live_certificates: bool = True,
    ):
        self.verifier = verifier
        self.certificates = certificates
        self.timeout = timeout
        self.slow_response_ms = slow_response_ms
        self.inspect_live_certificates = inspect_live_certificates

    async def probe(self, url: str, allow_redirects: bool = True) -> ProbeResult:
        """Single HTTP request with a bounded wall-clock budget."""
        started = time.monotonic()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(
                    url,
                    allow_redirects=allow_redirects,
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                ) as resp:
                    elapsed = (time.monotonic() - started) * 1000
                    return ProbeResult(
                        ok=resp.status < 500,
                        status_code=resp.status,
                        response_time_ms=round(elapsed, 2),
                        location=resp.headers.get("Location"),
                    )
        except asyncio.TimeoutError:
            return ProbeResult(ok=False, error=f"Request timed out after {self.timeout}s")
        except aiohttp.ClientError as e:
            return ProbeResult(ok=False, error=f"Connection failed: {e}")

    async def _check_dns(self, hostname: str) -> CnameCheck:
        try:
            return await asyncio.wait_for(
                self.verifier.check_cname(hostname), timeout=self.timeout
            )
        except asyncio.TimeoutError:
            return CnameCheck(False, None, f"DNS check for {hostname} timed out")

    async def _check_ssl(self, mapping: DomainMapping, now: datetime) -> str:
        expiry = mapping.certificate_expiry
        if self.inspect_live_certificates and mapping.ssl_enabled:
            live = await self.certificates.inspect_live_certificate(mapping.hostname)
            if live is not None:
                expiry = live
        return classify_ssl_status(
            mapping.ssl_enabled, expiry, now, self.certificates.expiring_soon_days
        )

    async def check_health(self, mapping: DomainMapping) -> HealthReport:
        """Run all sub-checks. Does not modify the mapping."""
        now = utcnow()
        issues: List[str] = []

        cname = await self._check_dns(mapping.hostname)
        dns_state = "ok" if cname.ok else "error"
        if not cname.ok:
            issues.append(cname.message)

        ssl_state = await self._check_ssl(mapping, now)
        if ssl_state == "expired":
            issues.append("SSL certificate has expired")
        elif ssl_state == "expiring_soon":
            issues.append("SSL certificate expires soon")

        scheme = "https" if mapping.ssl_enabled else "http"
        probe = await self.probe(f"{scheme}://{mapping.hostname}/")
        connectivity = "ok" if probe.ok else "error"
        if not probe.ok:
            issues.append(probe.error or f"Domain returned HTTP {probe.status_code}")

        if probe.response_time_ms is None:
            performance = "unknown"
        elif probe.response_time_ms > self.slow_response_ms:
            performance = "slow"
            issues.append(
                f"Slow response: {probe.response_time_ms:.0f}ms "
                f"(threshold {self.slow_response_ms}ms)"
            )
        else:
            performance = "ok"

        if mapping.status != STATUS_ACTIVE:
            issues.insert(0, f"Domain is not active (status: {mapping.status})")

        overall = aggregate_health(
            mapping.status,
            dns_state,
            ssl_state,
            connectivity,
            probe.response_time_ms,
            self.slow_response_ms,
        )
        hard_failure = mapping.status == STATUS_ACTIVE and (
            ssl_state == "expired" or (not cname.ok and cname.definitive)
        )

        return HealthReport(
            overall=overall,
            dns=dns_state,
            ssl=ssl_state,
            connectivity=connectivity,
            performance=performance,
            issues=issues,
            response_time_ms=probe.response_time_ms,
            status_code=probe.status_code,
            checked_at=now,
            hard_failure=hard_failure,
        )

    def record_health(self, mapping: DomainMapping, report: HealthReport) -> List[str]:
        """
        Fold a report into the mapping's rolling metrics.

        Returns the alert events the change should trigger.
        """
        alerts = []
        if report.overall == "error" and mapping.health_status != "error":
            alerts.append("health_alert")
        if report.ssl == "expiring_soon" and mapping.ssl_status != "expiring_soon":
            alerts.append("ssl_expiring")

        mapping.health_status = report.overall
        mapping.last_health_check = report.checked_at
        mapping.health_check_count += 1
        if report.connectivity == "ok":
            mapping.successful_checks += 1
            if report.response_time_ms is not None:
                # Running mean over successful samples
                mapping.average_response_time = round(
                    mapping.average_response_time
                    + (report.response_time_ms - mapping.average_response_time)
                    / mapping.successful_checks,
                    2,
                )
        else:
            mapping.last_downtime = report.checked_at
        mapping.uptime_percentage = round(
            mapping.successful_checks / mapping.health_check_count * 100, 2
        )
        mapping.ssl_status = report.ssl
        if mapping.status == STATUS_ACTIVE:
            mapping.dns_status = "verified" if report.dns == "ok" else "error"
        mapping.issues = list(report.issues)
        return alerts

    async def test_configuration(self, mapping: DomainMapping) -> dict:
        """On-demand diagnostics, including the HTTP -> HTTPS redirect."""
        report = await self.check_health(mapping)
        warnings: List[str] = []

        redirects = "skipped"
        if mapping.force_https and mapping.ssl_enabled:
            probe = await self.probe(f"http://{mapping.hostname}/", allow_redirects=False)
            if (
                probe.status_code in (301, 302, 307, 308)
                and (probe.location or "").startswith("https://")
            ):
                redirects = "ok"
            else:
                redirects = "warning"
                warnings.append("HTTP requests are not redirected to HTTPS")

        if report.performance == "slow":
            warnings.append("Response time is above the slow threshold")

        return {
            "overall": report.overall,
            "dns": report.dns,
            "ssl": report.ssl,
            "http": report.connectivity,
            "performance": report.performance,
            "redirects": redirects,
            "response_time_ms": report.response_time_ms,
            "issues": report.issues,
            "warnings": warnings,
            "recommendations": health_recommendations(report.to_dict()),
            "timestamp": report.checked_at.isoformat(),
        }
