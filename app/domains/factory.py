"""
Builds the domain mapping components from settings.
"""

from ..config import Settings
from .certificates import CertificateManager
from .collaborators import LoggingNotifier, PlanCatalog, RoutingCache, WebhookNotifier
from .health import HealthMonitor
from .repository import MappingRepository
from .service import DomainMappingService
from .ssl import CertbotClient
from .validation import HostnameValidator
from .verification import DomainVerifier


def build_service(settings: Settings) -> DomainMappingService:
    repository = MappingRepository(
        redis_url=settings.redis_url,
        key_prefix=settings.key_prefix,
    )
    verifier = DomainVerifier(
        cname_target=settings.cname_target,
        challenge_prefix=settings.challenge_prefix,
        timeout=settings.dns_timeout,
        retry_after=settings.verification_retry_after,
    )
    authority = CertbotClient(
        webroot=settings.acme_webroot,
        certbot_bin=settings.certbot_bin,
        email=settings.acme_email or None,
        dry_run=settings.acme_dry_run,
        timeout=settings.ca_timeout,
        default_validity_days=settings.certificate_validity_days,
        retry_after=settings.verification_retry_after,
    )
    certificates = CertificateManager(
        authority,
        expiring_soon_days=settings.expiring_soon_days,
        live_check_timeout=settings.health_check_timeout,
    )
    monitor = HealthMonitor(
        verifier,
        certificates,
        timeout=settings.health_check_timeout,
        slow_response_ms=settings.slow_response_ms,
        inspect_live_certificates=settings.inspect_live_certificates,
    )
    validator = HostnameValidator(
        repository,
        verifier=verifier,
        reserved_domains=settings.reserved_domains,
        platform_domain=settings.platform_domain,
    )
    if settings.notification_webhook_url:
        notifier = WebhookNotifier(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout,
        )
    else:
        notifier = LoggingNotifier()

    return DomainMappingService(
        repository=repository,
        validator=validator,
        verifier=verifier,
        certificates=certificates,
        monitor=monitor,
        plans=PlanCatalog(settings.plan_domain_limits),
        notifier=notifier,
        routing_cache=RoutingCache(
            redis_url=settings.redis_url,
            key_prefix=settings.key_prefix,
            ttl=settings.routing_cache_ttl,
        ),
        slow_response_ms=settings.slow_response_ms,
    )


async def close_service(service: DomainMappingService) -> None:
    await service.repository.close()
    if service.routing_cache:
        await service.routing_cache.close()
