"""
Hostname validation for new domain mappings.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from .models import STATUS_DELETING, normalize_hostname
from .repository import MappingRepository
from .verification import DomainVerifier

logger = logging.getLogger("domain_mapper.domains.validation")

# RFC 1123 labels, at least one dot, alphabetic TLD
_LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
_TLD_RE = re.compile(r"^[a-z]{2,63}$")
_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)

MAX_HOSTNAME_LENGTH = 253


@dataclass
class ValidationResult:
    valid: bool
    hostname: str
    issues: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    # Set when the hostname is already claimed by another tenant
    conflict: bool = False


def strip_to_hostname(raw: str) -> str:
    """Best guess at the bare hostname inside a URL-ish string."""
    value = _SCHEME_RE.sub("", raw.strip())
    value = value.split("/", 1)[0].split("?", 1)[0]
    value = value.rsplit("@", 1)[-1].split(":", 1)[0]
    return normalize_hostname(value)


def format_issues(hostname: str) -> List[str]:
    """Syntax problems with an already-normalized hostname."""
    if not hostname:
        return ["Domain is required"]
    if "://" in hostname:
        return ["Domain should not include a protocol (http/https)"]
    if "/" in hostname:
        return ["Domain should not include paths"]
    if ":" in hostname:
        return ["Domain should not include a port"]
    if len(hostname) < 3:
        return ["Domain must be at least 3 characters long"]
    if len(hostname) > MAX_HOSTNAME_LENGTH:
        return [f"Domain cannot exceed {MAX_HOSTNAME_LENGTH} characters"]

    labels = hostname.split(".")
    if len(labels) < 2:
        return ["Domain must include a top-level domain (e.g. .com, .org)"]

    issues = []
    for label in labels:
        if not _LABEL_RE.match(label):
            issues.append(
                f"Invalid label '{label}': use letters, numbers and hyphens, "
                f"1-63 characters, not starting or ending with a hyphen"
            )
            break
    if "--" in hostname and not any(l.startswith("xn--") for l in labels):
        issues.append("Domain cannot contain consecutive hyphens")
    if not _TLD_RE.match(labels[-1]):
        issues.append("Invalid top-level domain")
    return issues


class HostnameValidator:
    """Format, reservation and uniqueness checks. Read-only."""

    def __init__(
        self,
        repository: MappingRepository,
        verifier: Optional[DomainVerifier] = None,
        reserved_domains: Iterable[str] = (),
        platform_domain: Optional[str] = None,
    ):
        self.repository = repository
        self.verifier = verifier
        self.reserved_domains = {normalize_hostname(d) for d in reserved_domains}
        self.platform_domain = normalize_hostname(platform_domain) if platform_domain else None

    def is_reserved(self, hostname: str) -> bool:
        if hostname in self.reserved_domains:
            return True
        if self.platform_domain:
            # The platform's own domain and anything under it
            return hostname == self.platform_domain or hostname.endswith(f".{self.platform_domain}")
        return False

    async def validate(
        self,
        hostname: str,
        tenant_id: str,
        live_check: bool = True,
    ) -> ValidationResult:
        raw = hostname or ""
        normalized = normalize_hostname(raw)
        result = ValidationResult(valid=False, hostname=normalized)

        issues = format_issues(normalized)
        if issues:
            result.issues = issues
            cleaned = strip_to_hostname(raw)
            if cleaned and cleaned != normalized and not format_issues(cleaned):
                result.suggestions.append(f"Use {cleaned} instead of {raw.strip()}")
            else:
                result.suggestions.append("Enter a hostname such as shop.yourbrand.com")
            return result

        if self.is_reserved(normalized):
            result.issues = [f"{normalized} is a reserved domain and cannot be mapped"]
            result.suggestions = ["Use a domain you own, for example shop.yourbrand.com"]
            return result

        existing = await self.repository.get_by_hostname(normalized)
        if existing and existing.status != STATUS_DELETING and existing.tenant_id != tenant_id:
            result.issues = ["Domain is already mapped to another account"]
            result.suggestions = ["Choose a different hostname or contact support to dispute ownership"]
            result.conflict = True
            return result

        if live_check and self.verifier:
            target = await self.verifier.lookup_cname(normalized)
            if target and target != self.verifier.cname_target:
                result.warnings.append(
                    f"{normalized} currently points to {target} (configured elsewhere)"
                )
                result.suggestions.append(
                    f"Update the CNAME record to {self.verifier.cname_target} before verifying"
                )

        result.valid = True
        return result
