"""
Configuration management for the domain mapping service.
"""

import logging
from functools import lru_cache
from typing import Dict, List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Network
    host: str = "0.0.0.0"
    port: int = 8000

    # Redis
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "domain_mapper:"

    # DNS
    platform_domain: str = "brandsplatform.app"
    cname_target: str = "ingress.brandsplatform.app"
    challenge_prefix: str = "_acme-challenge"
    reserved_domains: List[str] = [
        "localhost",
        "example.com",
        "example.org",
        "example.net",
        "test.com",
        "temp.com",
        "invalid",
    ]
    dns_timeout: float = 5.0  # seconds per lookup
    verification_retry_after: int = 300  # seconds

    # Certificate authority
    ca_timeout: int = 120  # seconds
    certbot_bin: str = "certbot"
    acme_webroot: str = "/var/www/acme"
    acme_email: str = ""
    acme_dry_run: bool = False
    certificate_validity_days: int = 90
    expiring_soon_days: int = 30

    # Health monitoring
    health_check_timeout: float = 10.0  # seconds per sub-check
    slow_response_ms: int = 5000
    health_check_interval_minutes: int = 60
    sweep_concurrency: int = 4
    inspect_live_certificates: bool = True

    # Housekeeping
    pending_expiry_hours: int = 72
    routing_cache_ttl: int = 300  # seconds

    # Notifications
    notification_webhook_url: str = ""
    notification_timeout: float = 10.0

    # Plans: max mappings per plan level
    plan_domain_limits: Dict[str, int] = {
        "foundation": 0,
        "growth": 1,
        "premium": 5,
        "enterprise": 25,
    }

    # Logging
    log_level: str = "INFO"

    # Debug mode
    debug: bool = False

    model_config = {
        "env_prefix": "DOMAINS_",
        "env_file": ".env",
        "extra": "ignore"
    }

    def validate_required(self) -> bool:
        """Validate settings that must be present in production."""
        if not self.cname_target or "." not in self.cname_target:
            raise ValueError(
                "DOMAINS_CNAME_TARGET must be the platform's ingress hostname"
            )
        if not self.acme_email:
            raise ValueError(
                "DOMAINS_ACME_EMAIL is required for certificate issuance "
                "outside debug mode"
            )
        return True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    settings = Settings()
    # In production, validate required fields
    if not settings.debug:
        try:
            settings.validate_required()
        except ValueError as e:
            logging.warning(f"Configuration warning: {e}")
    return settings
