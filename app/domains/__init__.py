"""Tenant custom domain mapping and SSL certificate lifecycle."""

from .certificates import CertificateManager
from .health import HealthMonitor
from .models import DomainMapping
from .repository import MappingRepository
from .service import DomainMappingService
from .validation import HostnameValidator
from .verification import DomainVerifier

__all__ = [
    "CertificateManager",
    "DomainMapping",
    "DomainMappingService",
    "DomainVerifier",
    "HealthMonitor",
    "HostnameValidator",
    "MappingRepository",
]
