"""
Domain mapping lifecycle.

Every status transition goes through a status-guarded repository update,
so two requests racing on the same mapping cannot both apply side effects.
Losing a race re-reads the record instead of repeating the work.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import List, Optional

from .certificates import CertificateManager, CertificateRequest
from .collaborators import PlanCatalog, PlanLimits, RoutingCache
from .errors import (
    CertificateAuthorityError,
    CertificateValidationError,
    DomainConflictError,
    DomainValidationError,
    InvalidTransitionError,
    MappingNotFoundError,
    PlanLimitError,
    StaleMappingError,
)
from .health import HealthMonitor, HealthReport
from .insights import activity_score, performance_insights
from .models import (
    CERT_CUSTOM,
    CERT_MANAGED,
    CERTIFICATE_TYPES,
    STATUS_ACTIVE,
    STATUS_DELETING,
    STATUS_ERROR,
    STATUS_PENDING,
    VERIFICATION_METHODS,
    CustomCertificate,
    DomainMapping,
    generate_token,
    utcnow,
)
from .repository import MappingRepository
from .validation import HostnameValidator
from .verification import DomainVerifier

logger = logging.getLogger("domain_mapper.domains.service")

# Fields a tenant may change through update_mapping
UPDATABLE_FIELDS = ("force_https", "auto_renewal", "custom_certificate")


@dataclass
class VerificationOutcome:
    """What a verify request did to the mapping."""

    mapping: DomainMapping
    success: bool
    already_verified: bool = False
    errors: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    retry_after: Optional[int] = None
    certificate_requested: bool = False
    certificate_error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "already_verified": self.already_verified,
            "status": self.mapping.status,
            "dns_status": self.mapping.dns_status,
            "verified_at": self.mapping.verified_at.isoformat() if self.mapping.verified_at else None,
            "errors": list(self.errors),
            "suggestions": list(self.suggestions),
            "retry_after": self.retry_after,
            "certificate_requested": self.certificate_requested,
            "certificate_error": self.certificate_error,
        }


class DomainMappingService:
    """Owns mapping status. The only writer of status transitions."""

    def __init__(
        self,
        repository: MappingRepository,
        validator: HostnameValidator,
        verifier: DomainVerifier,
        certificates: CertificateManager,
        monitor: HealthMonitor,
        plans: PlanCatalog,
        notifier,
        routing_cache: Optional[RoutingCache] = None,
        slow_response_ms: int = 5000,
    ):
        self.repository = repository
        self.validator = validator
        self.verifier = verifier
        self.certificates = certificates
        self.monitor = monitor
        self.plans = plans
        self.notifier = notifier
        self.routing_cache = routing_cache
        self.slow_response_ms = slow_response_ms

    # ── Helpers ──────────────────────────────────────────────────────

    async def _notify(self, mapping: DomainMapping, event: str, subject: str, message: str, **data) -> None:
        """Best-effort delivery. Failures never affect the mapping."""
        try:
            await self.notifier.notify(
                mapping.tenant_id,
                event,
                subject,
                message,
                mapping_id=mapping.id,
                domain=mapping.hostname,
                **data,
            )
        except Exception as e:
            logger.warning(f"Notification {event} for {mapping.hostname} failed: {e}")

    async def _route(self, mapping: DomainMapping) -> None:
        if not self.routing_cache:
            return
        try:
            if mapping.status == STATUS_ACTIVE:
                await self.routing_cache.set(mapping.hostname, mapping.tenant_id)
            else:
                await self.routing_cache.invalidate(mapping.hostname)
        except Exception as e:
            logger.warning(f"Routing cache update for {mapping.hostname} failed: {e}")

    async def _require(self, tenant_id: str, mapping_id: str) -> DomainMapping:
        mapping = await self.repository.get_for_tenant(tenant_id, mapping_id)
        if not mapping:
            raise MappingNotFoundError("Domain mapping not found", mapping_id=mapping_id)
        return mapping

    async def _reread(self, mapping: DomainMapping) -> DomainMapping:
        current = await self.repository.get(mapping.id)
        if not current:
            raise MappingNotFoundError("Domain mapping not found", mapping_id=mapping.id)
        return current

    def _limits(self, plan: Optional[str]) -> PlanLimits:
        return self.plans.limits_for(plan)

    async def usage(self, tenant_id: str, plan: Optional[str]) -> dict:
        limits = self._limits(plan)
        return {
            "plan": limits.plan,
            "current": await self.repository.count_by_tenant(tenant_id),
            "limit": limits.max_domains,
        }

    def _build_custom_certificate(
        self,
        hostname: str,
        bundle: dict,
        actor: Optional[str],
        limits: PlanLimits,
    ) -> CustomCertificate:
        if not limits.custom_certificates:
            raise PlanLimitError(
                "Custom SSL certificates require a Premium plan or higher",
                current_plan=limits.plan,
                required_plan="premium",
            )
        valid, issues = self.certificates.validate_custom_certificate(
            hostname,
            bundle.get("certificate"),
            bundle.get("private_key"),
            bundle.get("chain_certificate"),
        )
        if not valid:
            raise CertificateValidationError(
                "Custom certificate validation failed",
                issues=issues,
                suggestions=["Upload a PEM certificate and matching private key that cover this domain"],
            )
        return CustomCertificate(
            certificate=bundle["certificate"],
            private_key=bundle["private_key"],
            chain_certificate=bundle.get("chain_certificate"),
            uploaded_by=actor,
        )

    def _audit(self, mapping: DomainMapping, actor: Optional[str], request_meta: Optional[dict], **extra) -> None:
        meta = dict(mapping.metadata)
        meta.update({k: v for k, v in (request_meta or {}).items() if v is not None})
        meta.update(extra)
        meta["timestamp"] = utcnow().isoformat()
        mapping.metadata = meta
        mapping.updated_by = actor

    # ── Create ───────────────────────────────────────────────────────

    async def create_mapping(
        self,
        tenant_id: str,
        hostname: str,
        plan: Optional[str] = None,
        certificate_type: str = CERT_MANAGED,
        force_https: bool = True,
        auto_renewal: bool = True,
        custom_certificate: Optional[dict] = None,
        actor: Optional[str] = None,
        request_meta: Optional[dict] = None,
    ) -> tuple[DomainMapping, List[str]]:
        """
        Claim a hostname for a tenant.

        Returns (mapping, warnings). All guards run before anything is
        written, so a rejected request leaves no partial state.
        """
        limits = self._limits(plan)
        if not limits.custom_domains:
            raise PlanLimitError(
                "Custom domains require a Growth plan or higher",
                current_plan=limits.plan,
                required_plan="growth",
            )

        if certificate_type not in CERTIFICATE_TYPES:
            raise DomainValidationError(
                f"Unknown certificate type '{certificate_type}'",
                issues=[f"Certificate type must be one of: {', '.join(CERTIFICATE_TYPES)}"],
            )
        if certificate_type == CERT_CUSTOM and not custom_certificate:
            raise DomainValidationError(
                "Custom certificate type requires certificate data",
                issues=["Provide certificate and private_key for a custom certificate"],
            )
        if certificate_type == CERT_CUSTOM and not limits.custom_certificates:
            raise PlanLimitError(
                "Custom SSL certificates require a Premium plan or higher",
                current_plan=limits.plan,
                required_plan="premium",
            )

        current = await self.repository.count_by_tenant(tenant_id)
        if current >= limits.max_domains:
            raise PlanLimitError(
                f"Your {limits.plan} plan allows {limits.max_domains} custom domain(s)",
                current_plan=limits.plan,
                current=current,
                limit=limits.max_domains,
            )

        result = await self.validator.validate(hostname, tenant_id)
        if result.conflict:
            raise DomainConflictError(
                result.issues[0],
                domain=result.hostname,
                suggestions=result.suggestions,
            )
        if not result.valid:
            raise DomainValidationError(
                "Domain validation failed",
                issues=result.issues,
                suggestions=result.suggestions,
            )

        custom = None
        if certificate_type == CERT_CUSTOM:
            custom = self._build_custom_certificate(result.hostname, custom_certificate, actor, limits)

        mapping = DomainMapping(
            tenant_id=tenant_id,
            hostname=result.hostname,
            cname_target=self.verifier.cname_target,
            certificate_type=certificate_type,
            force_https=force_https,
            auto_renewal=auto_renewal,
            custom_certificate=custom,
            plan_level=limits.plan,
            created_by=actor,
            updated_by=actor,
        )
        mapping.dns_records = self.verifier.required_records(
            mapping.hostname, mapping.verification_token
        )
        self._audit(mapping, actor, request_meta, source="api")

        await self.repository.create(mapping)
        logger.info(f"Tenant {tenant_id} created mapping {mapping.id} for {mapping.hostname}")

        await self._notify(
            mapping,
            "domain_setup",
            f"Set up {mapping.hostname}",
            "Add the DNS records below, then verify the domain.",
            dns_records=[r.to_dict() for r in mapping.dns_records],
        )
        return mapping, result.warnings

    # ── Verify ───────────────────────────────────────────────────────

    async def verify_mapping(
        self,
        tenant_id: str,
        mapping_id: str,
        method: str = "dns",
        actor: Optional[str] = None,
    ) -> VerificationOutcome:
        mapping = await self._require(tenant_id, mapping_id)

        method = (method or "dns").lower()
        if method not in VERIFICATION_METHODS:
            raise DomainValidationError(
                f"Unknown verification method '{method}'",
                issues=[f"Verification method must be one of: {', '.join(VERIFICATION_METHODS)}"],
            )
        if method != "dns":
            raise DomainValidationError(
                "Only DNS verification is currently supported",
                issues=[f"Verification method '{method}' is not available"],
                code="UNSUPPORTED_VERIFICATION_METHOD",
            )

        if mapping.status != STATUS_PENDING:
            raise InvalidTransitionError(
                "Domain is not pending verification",
                current_status=mapping.status,
            )

        result = await self.verifier.verify_ownership(mapping)
        mapping.last_checked_at = result.checked_at

        if not result.success:
            mapping.dns_status = "pending"
            mapping.issues = list(result.errors)
            try:
                await self.repository.update(mapping, expected_status=STATUS_PENDING)
            except StaleMappingError:
                mapping = await self._reread(mapping)
                if mapping.status == STATUS_ACTIVE:
                    return VerificationOutcome(mapping=mapping, success=True, already_verified=True)
                raise
            return VerificationOutcome(
                mapping=mapping,
                success=False,
                errors=result.errors,
                suggestions=result.suggestions,
                retry_after=result.retry_after,
            )

        mapping.status = STATUS_ACTIVE
        mapping.verification_token = None
        mapping.verified_at = result.checked_at
        mapping.verified_by = actor
        mapping.dns_status = "verified"
        mapping.issues = []
        try:
            await self.repository.update(mapping, expected_status=STATUS_PENDING)
        except StaleMappingError:
            # Another request won the transition and owns the certificate request
            mapping = await self._reread(mapping)
            if mapping.status == STATUS_ACTIVE:
                return VerificationOutcome(mapping=mapping, success=True, already_verified=True)
            raise

        logger.info(f"Mapping {mapping.id} ({mapping.hostname}) verified")
        await self._notify(
            mapping,
            "domain_verified",
            f"{mapping.hostname} verified",
            "Your domain has been verified. SSL will be enabled shortly.",
            propagation_seconds=result.propagation_seconds,
        )

        outcome = VerificationOutcome(mapping=mapping, success=True)
        try:
            mapping = await self._install_certificate(mapping, actor, STATUS_ACTIVE)
            outcome.certificate_requested = True
        except (CertificateAuthorityError, CertificateValidationError) as e:
            mapping = await self.mark_error(
                mapping, [e.message], expected_status=STATUS_ACTIVE, ssl_status="error"
            )
            outcome.certificate_error = e.message
            outcome.retry_after = getattr(e, "retry_after", None)

        await self._route(mapping)
        outcome.mapping = mapping
        return outcome

    async def _install_certificate(
        self,
        mapping: DomainMapping,
        actor: Optional[str],
        expected_status: str,
    ) -> DomainMapping:
        """Request a certificate and record it. Leaves the mapping active."""
        request: CertificateRequest = await self.certificates.request_certificate(
            mapping.hostname, mapping.certificate_type, mapping.custom_certificate
        )
        self.certificates.record_certificate(mapping, request, actor)
        mapping.status = STATUS_ACTIVE
        await self.repository.update(mapping, expected_status=expected_status)
        logger.info(
            f"Certificate {request.certificate_id} installed for {mapping.hostname}, "
            f"expires {mapping.certificate_expiry.isoformat()}"
        )
        return mapping

    # ── Error handling and retry ─────────────────────────────────────

    async def mark_error(
        self,
        mapping: DomainMapping,
        issues: List[str],
        expected_status: Optional[str] = None,
        ssl_status: Optional[str] = None,
    ) -> DomainMapping:
        """Move a mapping to error, recording why."""
        mapping.status = STATUS_ERROR
        mapping.health_status = "error"
        mapping.issues = list(issues)
        if ssl_status:
            mapping.ssl_status = ssl_status
        try:
            await self.repository.update(mapping, expected_status=expected_status)
        except StaleMappingError:
            logger.info(f"Mapping {mapping.id} changed before it could be marked as error")
            return await self._reread(mapping)

        logger.warning(f"Mapping {mapping.id} ({mapping.hostname}) moved to error: {issues}")
        await self._route(mapping)
        await self._notify(
            mapping,
            "domain_error",
            f"Problem with {mapping.hostname}",
            "; ".join(issues),
            issues=list(issues),
        )
        return mapping

    async def retry_mapping(
        self,
        tenant_id: str,
        mapping_id: str,
        actor: Optional[str] = None,
    ) -> DomainMapping:
        """
        Re-attempt activation of a mapping in error.

        With DNS already verified only the certificate is retried; otherwise
        verification starts over with a fresh token.
        """
        mapping = await self._require(tenant_id, mapping_id)
        if mapping.status != STATUS_ERROR:
            raise InvalidTransitionError(
                "Only domains in error can be retried",
                current_status=mapping.status,
            )

        if mapping.verified_at and mapping.dns_status == "verified":
            health = mapping.health_status
            mapping.issues = []
            mapping.health_status = "unknown"
            try:
                mapping = await self._install_certificate(mapping, actor, STATUS_ERROR)
            except (CertificateAuthorityError, CertificateValidationError) as e:
                mapping.issues = [e.message]
                mapping.health_status = health
                mapping.ssl_status = "error"
                await self.repository.update(mapping, expected_status=STATUS_ERROR)
                raise
            await self._route(mapping)
            logger.info(f"Mapping {mapping.id} ({mapping.hostname}) reactivated")
            return mapping

        # verified_at keeps the earlier activation; dns_status marks the new cycle
        mapping.status = STATUS_PENDING
        mapping.verification_token = generate_token()
        mapping.dns_records = self.verifier.required_records(
            mapping.hostname, mapping.verification_token
        )
        mapping.dns_status = "pending"
        mapping.health_status = "unknown"
        mapping.issues = []
        mapping.updated_by = actor
        await self.repository.update(mapping, expected_status=STATUS_ERROR)
        logger.info(f"Mapping {mapping.id} ({mapping.hostname}) reopened for verification")
        await self._notify(
            mapping,
            "domain_setup",
            f"Verify {mapping.hostname} again",
            "Add the DNS records below, then verify the domain.",
            dns_records=[r.to_dict() for r in mapping.dns_records],
        )
        return mapping

    # ── Update ───────────────────────────────────────────────────────

    async def update_mapping(
        self,
        tenant_id: str,
        mapping_id: str,
        changes: dict,
        plan: Optional[str] = None,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
        request_meta: Optional[dict] = None,
    ) -> DomainMapping:
        mapping = await self._require(tenant_id, mapping_id)
        if mapping.status == STATUS_DELETING:
            raise InvalidTransitionError(
                "Cannot update a domain that is being deleted",
                current_status=mapping.status,
            )

        unknown = [k for k in changes if k not in UPDATABLE_FIELDS]
        if unknown:
            raise DomainValidationError(
                "Unsupported update fields",
                issues=[f"Field '{k}' cannot be updated" for k in unknown],
            )

        changed = []
        for name in ("force_https", "auto_renewal"):
            if name in changes and changes[name] is not None:
                setattr(mapping, name, bool(changes[name]))
                changed.append(name)

        bundle = changes.get("custom_certificate")
        if bundle:
            custom = self._build_custom_certificate(
                mapping.hostname, bundle, actor, self._limits(plan)
            )
            mapping.custom_certificate = custom
            mapping.certificate_type = CERT_CUSTOM
            changed.append("custom_certificate")
            if mapping.status == STATUS_ACTIVE:
                request = await self.certificates.request_certificate(
                    mapping.hostname, CERT_CUSTOM, custom
                )
                self.certificates.record_certificate(mapping, request, actor)

        self._audit(mapping, actor, request_meta, changed_fields=changed, update_reason=reason)
        await self.repository.update(mapping, expected_status=mapping.status)
        logger.info(f"Mapping {mapping.id} ({mapping.hostname}) updated: {changed}")
        return mapping

    # ── Certificates ─────────────────────────────────────────────────

    async def renew_certificate(
        self,
        tenant_id: str,
        mapping_id: str,
        actor: Optional[str] = None,
    ) -> DomainMapping:
        mapping = await self._require(tenant_id, mapping_id)
        return await self.renew(mapping, actor)

    async def renew(self, mapping: DomainMapping, actor: Optional[str] = None) -> DomainMapping:
        """
        Renew a managed certificate.

        A CA failure while the current certificate is still valid keeps the
        mapping active; once it has expired the mapping moves to error.
        """
        try:
            request = await self.certificates.renew_certificate(mapping)
        except CertificateAuthorityError as e:
            now = utcnow()
            if mapping.certificate_expiry is None or mapping.certificate_expiry <= now:
                await self.mark_error(
                    mapping,
                    [f"Certificate renewal failed: {e.message}"],
                    expected_status=STATUS_ACTIVE,
                    ssl_status=self.certificates.classify(mapping, now),
                )
            else:
                mapping.issues = [f"Certificate renewal failed: {e.message}"]
                try:
                    await self.repository.update(mapping, expected_status=STATUS_ACTIVE)
                except StaleMappingError:
                    logger.info(f"Mapping {mapping.id} changed during renewal")
            raise

        self.certificates.record_certificate(mapping, request, actor)
        mapping.issues = []
        await self.repository.update(mapping, expected_status=STATUS_ACTIVE)
        logger.info(
            f"Certificate renewed for {mapping.hostname}, "
            f"expires {mapping.certificate_expiry.isoformat()}"
        )
        await self._notify(
            mapping,
            "certificate_renewed",
            f"SSL certificate renewed for {mapping.hostname}",
            f"New expiry: {mapping.certificate_expiry.isoformat()}",
        )
        return mapping

    # ── Delete ───────────────────────────────────────────────────────

    async def delete_mapping(
        self,
        tenant_id: str,
        mapping_id: str,
        actor: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> dict:
        """
        Remove a mapping.

        Cleanup of certificates and caches is best effort; the record is
        removed even when those fail.
        """
        mapping = await self._require(tenant_id, mapping_id)
        if mapping.status == STATUS_DELETING:
            raise InvalidTransitionError(
                "Domain is already being deleted",
                current_status=mapping.status,
            )

        previous = mapping.status
        mapping.status = STATUS_DELETING
        mapping.deleted_by = actor
        mapping.deletion_reason = reason
        await self.repository.update(mapping, expected_status=previous)
        logger.info(f"Mapping {mapping.id} ({mapping.hostname}) marked for deletion")

        return await self._finalize_deletion(mapping)

    async def _finalize_deletion(self, mapping: DomainMapping) -> dict:
        report = {
            "deleted": False,
            "mapping_id": mapping.id,
            "domain": mapping.hostname,
            "certificate_revoked": False,
            "cache_cleared": False,
            "warnings": [],
        }

        if mapping.ssl_enabled and mapping.certificate_type == CERT_MANAGED:
            report["certificate_revoked"] = await self.certificates.revoke_certificate(mapping.hostname)
            if not report["certificate_revoked"]:
                report["warnings"].append("Certificate could not be revoked")

        if self.routing_cache:
            try:
                await self.routing_cache.invalidate(mapping.hostname)
                report["cache_cleared"] = True
            except Exception as e:
                logger.warning(f"Routing cache invalidation for {mapping.hostname} failed: {e}")
                report["warnings"].append("Routing cache could not be cleared")

        await self._notify(
            mapping,
            "domain_removed",
            f"{mapping.hostname} removed",
            "The custom domain has been removed from your account.",
        )

        report["deleted"] = await self.repository.delete(mapping.id)
        logger.info(f"Mapping {mapping.id} ({mapping.hostname}) deleted")
        return report

    async def purge_stuck_deletions(self, older_than_minutes: int = 10) -> int:
        """Finish deletions interrupted after the record was marked."""
        cutoff = utcnow() - timedelta(minutes=older_than_minutes)
        purged = 0
        for mapping in await self.repository.find_by_status(STATUS_DELETING):
            if mapping.updated_at > cutoff:
                continue
            await self._finalize_deletion(mapping)
            purged += 1
        if purged:
            logger.info(f"Purged {purged} stuck deletion(s)")
        return purged

    async def cleanup_expired_pending(self, hours: int = 72) -> int:
        """Remove mappings left unverified for longer than `hours`."""
        cutoff = utcnow() - timedelta(hours=hours)
        removed = 0
        for mapping in await self.repository.find_by_status(STATUS_PENDING):
            if mapping.created_at > cutoff:
                continue
            mapping.status = STATUS_DELETING
            mapping.deletion_reason = "verification_expired"
            try:
                await self.repository.update(mapping, expected_status=STATUS_PENDING)
            except StaleMappingError:
                continue
            await self._finalize_deletion(mapping)
            removed += 1
        if removed:
            logger.info(f"Removed {removed} expired pending mapping(s)")
        return removed

    # ── Health ───────────────────────────────────────────────────────

    async def record_health_check(self, mapping: DomainMapping) -> HealthReport:
        """Run a health check, persist the metrics and apply hard failures."""
        report = await self.monitor.check_health(mapping)
        previous = mapping.status
        alerts = self.monitor.record_health(mapping, report)
        if report.hard_failure:
            mapping.status = STATUS_ERROR
            mapping.health_status = "error"

        try:
            await self.repository.update(mapping, expected_status=previous)
        except StaleMappingError:
            logger.info(f"Mapping {mapping.id} changed during health check, result dropped")
            return report

        if report.hard_failure:
            logger.warning(
                f"Mapping {mapping.id} ({mapping.hostname}) moved to error: {report.issues}"
            )
            await self._route(mapping)
            await self._notify(
                mapping,
                "domain_error",
                f"{mapping.hostname} is no longer serving",
                "; ".join(report.issues),
                issues=list(report.issues),
            )
        for alert in alerts:
            await self._notify(
                mapping,
                alert,
                f"Health alert for {mapping.hostname}",
                "; ".join(report.issues) or f"Health is {report.overall}",
                health=report.to_dict(),
            )
        return report

    async def run_health_check(self, tenant_id: str, mapping_id: str) -> HealthReport:
        mapping = await self._require(tenant_id, mapping_id)
        return await self.record_health_check(mapping)

    async def test_configuration(self, tenant_id: str, mapping_id: str) -> dict:
        mapping = await self._require(tenant_id, mapping_id)
        return await self.monitor.test_configuration(mapping)

    # ── Reads ────────────────────────────────────────────────────────

    async def get_mapping(self, tenant_id: str, mapping_id: str) -> DomainMapping:
        return await self._require(tenant_id, mapping_id)

    async def resolve_hostname(self, hostname: str) -> DomainMapping:
        """
        Routing lookup for the edge router.

        Only active, verified mappings resolve. Each hit is counted for analytics.
        """
        mapping = await self.repository.find_by_hostname(hostname)
        if not mapping:
            raise MappingNotFoundError("No active mapping for this hostname", domain=hostname)
        counted = await self.repository.record_access(mapping.hostname)
        await self._route(mapping)
        return counted or mapping

    async def list_mappings(self, tenant_id: str) -> List[DomainMapping]:
        return await self.repository.find_by_tenant(tenant_id)

    async def stats(self, tenant_id: str) -> dict:
        return await self.repository.tenant_stats(tenant_id)

    async def analytics(self, tenant_id: str, mapping_id: str, plan: Optional[str] = None) -> dict:
        limits = self._limits(plan)
        if not limits.performance_analytics:
            raise PlanLimitError(
                "Performance analytics require an Enterprise plan",
                current_plan=limits.plan,
                required_plan="enterprise",
            )
        mapping = await self._require(tenant_id, mapping_id)
        return {
            "domain": mapping.hostname,
            "request_count": mapping.request_count,
            "last_accessed_at": mapping.last_accessed_at.isoformat() if mapping.last_accessed_at else None,
            "activity_score": activity_score(mapping),
            "average_response_time": mapping.average_response_time,
            "uptime_percentage": mapping.uptime_percentage,
            "health_check_count": mapping.health_check_count,
            "successful_checks": mapping.successful_checks,
            "last_downtime": mapping.last_downtime.isoformat() if mapping.last_downtime else None,
            "insights": performance_insights(mapping, self.slow_response_ms),
        }

