"""
DNS verification for custom domain mappings.

Ownership is proven by two records:
1. CNAME: <hostname> -> platform ingress target (routes traffic)
2. TXT:   <challenge_prefix>.<hostname> = <verification token>
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import dns.asyncresolver
import dns.exception
import dns.resolver

from .models import DnsRecord, DomainMapping, normalize_hostname, utcnow

logger = logging.getLogger("domain_mapper.domains.verification")


@dataclass
class VerificationResult:
    """Verdict of an ownership check. Applied to the mapping by the caller."""

    success: bool
    errors: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)
    retry_after: Optional[int] = None
    propagation_seconds: Optional[int] = None
    cname_target: Optional[str] = None
    checked_at: datetime = field(default_factory=utcnow)


@dataclass
class CnameCheck:
    """Read-only CNAME check used by health monitoring."""

    ok: bool
    target: Optional[str]
    message: str
    # True when the answer proves misconfiguration rather than a lookup hiccup
    definitive: bool = False


def _txt_value(rdata) -> str:
    # TXT records may be split into multiple strings
    return "".join(
        s.decode() if isinstance(s, bytes) else s
        for s in rdata.strings
    )


class DomainVerifier:
    """Verifies domain ownership via DNS records."""

    def __init__(
        self,
        cname_target: str = "ingress.brandsplatform.app",
        challenge_prefix: str = "_acme-challenge",
        timeout: float = 5.0,
        retry_after: int = 300,
    ):
        self.cname_target = normalize_hostname(cname_target)
        self.challenge_prefix = challenge_prefix.strip(".")
        self.timeout = timeout
        self.retry_after = retry_after

    def _get_resolver(self) -> dns.asyncresolver.Resolver:
        resolver = dns.asyncresolver.Resolver()
        resolver.timeout = self.timeout
        resolver.lifetime = self.timeout
        return resolver

    def challenge_name(self, hostname: str) -> str:
        return f"{self.challenge_prefix}.{normalize_hostname(hostname)}"

    def required_records(self, hostname: str, token: str) -> List[DnsRecord]:
        """The two records a tenant must publish for a hostname."""
        hostname = normalize_hostname(hostname)
        return [
            DnsRecord(type="CNAME", name=hostname, value=self.cname_target),
            DnsRecord(type="TXT", name=self.challenge_name(hostname), value=token),
        ]

    async def _resolve_cname(self, hostname: str) -> List[str]:
        answers = await self._get_resolver().resolve(hostname, "CNAME")
        return [str(rdata.target).rstrip(".").lower() for rdata in answers]

    async def lookup_cname(self, hostname: str) -> Optional[str]:
        """Best-effort CNAME lookup. Returns None on any failure."""
        try:
            targets = await self._resolve_cname(normalize_hostname(hostname))
        except Exception as e:
            logger.debug(f"CNAME lookup failed for {hostname}: {e}")
            return None
        return targets[0] if targets else None

    async def check_cname(self, hostname: str) -> CnameCheck:
        """Check that the hostname still points at the ingress target."""
        hostname = normalize_hostname(hostname)
        try:
            targets = await self._resolve_cname(hostname)
        except dns.resolver.NXDOMAIN:
            return CnameCheck(False, None, f"Domain {hostname} does not exist (NXDOMAIN)", True)
        except dns.resolver.NoAnswer:
            return CnameCheck(False, None, f"No CNAME record found for {hostname}", True)
        except dns.exception.Timeout:
            return CnameCheck(False, None, f"DNS lookup for {hostname} timed out")
        except Exception as e:
            return CnameCheck(False, None, f"DNS lookup for {hostname} failed: {e}")

        if self.cname_target in targets:
            return CnameCheck(True, self.cname_target, f"CNAME verified: {hostname} -> {self.cname_target}")
        return CnameCheck(
            False,
            targets[0] if targets else None,
            f"CNAME for {hostname} points to {', '.join(targets)}, expected {self.cname_target}",
            True,
        )

    async def verify_cname(self, hostname: str) -> tuple[bool, str]:
        """
        Verify that hostname has a CNAME pointing to the ingress target.

        Returns (success, message).
        """
        hostname = normalize_hostname(hostname)
        try:
            targets = await self._resolve_cname(hostname)
        except dns.resolver.NoAnswer:
            return False, f"No CNAME record found for {hostname}"
        except dns.resolver.NXDOMAIN:
            return False, f"Domain {hostname} does not exist (NXDOMAIN)"
        except dns.exception.Timeout:
            return False, f"DNS lookup for {hostname} timed out"
        except Exception as e:
            return False, f"CNAME verification failed: {e}"

        if self.cname_target in targets:
            return True, f"CNAME verified: {hostname} -> {self.cname_target}"
        # CNAME exists but points elsewhere
        return False, (
            f"CNAME exists but points to {', '.join(targets)}, "
            f"expected {self.cname_target}"
        )

    async def verify_txt(self, hostname: str, token: str) -> tuple[bool, str]:
        """
        Verify the TXT record at <challenge_prefix>.<hostname>.

        The record value must equal the token exactly.
        """
        txt_name = self.challenge_name(hostname)
        try:
            answers = await self._get_resolver().resolve(txt_name, "TXT")
        except dns.resolver.NoAnswer:
            return False, f"No TXT records found at {txt_name}"
        except dns.resolver.NXDOMAIN:
            return False, f"{txt_name} does not exist (NXDOMAIN)"
        except dns.exception.Timeout:
            return False, f"DNS lookup for {txt_name} timed out"
        except Exception as e:
            return False, f"TXT verification failed: {e}"

        found = [_txt_value(rdata) for rdata in answers]
        if token in found:
            return True, f"TXT record verified at {txt_name}"
        # Records exist but none match
        return False, (
            f"TXT records found at {txt_name} but none match the "
            f"verification token"
        )

    async def verify_ownership(self, mapping: DomainMapping) -> VerificationResult:
        """
        Run the full DNS ownership check for a mapping.

        DNS propagation delay is expected, so failures come back as a
        retryable verdict rather than an exception.
        """
        if not mapping.verification_token:
            return VerificationResult(
                success=False,
                errors=["No verification token is outstanding for this domain"],
                suggestions=["Request a new verification token before verifying again"],
            )

        (cname_ok, cname_msg), (txt_ok, txt_msg) = await asyncio.gather(
            self.verify_cname(mapping.hostname),
            self.verify_txt(mapping.hostname, mapping.verification_token),
        )

        if cname_ok and txt_ok:
            elapsed = (utcnow() - mapping.created_at).total_seconds()
            logger.info(f"DNS ownership verified for {mapping.hostname}")
            return VerificationResult(
                success=True,
                propagation_seconds=max(0, int(elapsed)),
                cname_target=self.cname_target,
            )

        errors = []
        suggestions = []
        if not cname_ok:
            errors.append(cname_msg)
            suggestions.append(
                f"Add a CNAME record for {mapping.hostname} pointing to {self.cname_target}"
            )
        if not txt_ok:
            errors.append(txt_msg)
            suggestions.append(
                f"Add a TXT record at {self.challenge_name(mapping.hostname)} "
                f"containing the verification token"
            )
        suggestions.append("DNS changes can take 5-60 minutes to propagate")

        logger.info(f"DNS ownership not yet verified for {mapping.hostname}: {errors}")
        return VerificationResult(
            success=False,
            errors=errors,
            suggestions=suggestions,
            retry_after=self.retry_after,
        )

    def get_verification_instructions(self, mapping: DomainMapping) -> dict:
        """Return human-readable DNS instructions for domain verification."""
        records = mapping.dns_records or (
            self.required_records(mapping.hostname, mapping.verification_token)
            if mapping.verification_token else []
        )
        steps = [
            "Add the DNS records below at your domain provider",
            "Wait for DNS propagation (usually 5-60 minutes)",
            "Click verify to complete the setup process",
            "An SSL certificate will be issued automatically",
        ]
        return {
            "method": mapping.verification_method,
            "cname_target": self.cname_target,
            "records": [r.to_dict() for r in records],
            "instructions": [
                f"Add a CNAME record for {mapping.hostname} pointing to {self.cname_target}",
                f"Add a TXT record at {self.challenge_name(mapping.hostname)} "
                f"with the verification token as its value",
            ],
            "steps": steps,
        }
