"""
ACME certificate issuance via certbot for custom domains.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes

from .errors import CertificateAuthorityError
from .models import normalize_hostname, utcnow

logger = logging.getLogger("domain_mapper.domains.ssl")


@dataclass
class IssuedCertificate:
    """What the CA handed back for a hostname."""

    certificate_id: str
    issuer: str
    valid_from: datetime
    expires_at: datetime
    fingerprint: Optional[str] = None
    serial_number: Optional[str] = None


def load_certificate_details(pem: bytes) -> IssuedCertificate:
    """Parse the leaf certificate of a PEM bundle."""
    cert = x509.load_pem_x509_certificate(pem)
    serial = format(cert.serial_number, "x")
    return IssuedCertificate(
        certificate_id=serial,
        issuer=cert.issuer.rfc4514_string(),
        valid_from=cert.not_valid_before_utc,
        expires_at=cert.not_valid_after_utc,
        fingerprint=cert.fingerprint(hashes.SHA256()).hex(),
        serial_number=serial,
    )


class CertbotClient:
    """Issues and revokes certificates through certbot (HTTP-01 webroot)."""

    def __init__(
        self,
        webroot: str = "/var/www/acme",
        certbot_bin: str = "certbot",
        email: Optional[str] = None,
        dry_run: bool = False,
        timeout: int = 120,
        live_dir: str = "/etc/letsencrypt/live",
        default_validity_days: int = 90,
        retry_after: int = 300,
    ):
        self.webroot = webroot
        self.certbot_bin = certbot_bin
        self.email = email
        self.dry_run = dry_run
        self.timeout = timeout
        self.live_dir = live_dir
        self.default_validity_days = default_validity_days
        self.retry_after = retry_after

    def cert_path(self, domain: str) -> str:
        return os.path.join(self.live_dir, normalize_hostname(domain), "fullchain.pem")

    async def _run(self, cmd: list) -> tuple[bool, str]:
        """Run certbot, returning (success, output)."""
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                stdout, stderr = await asyncio.wait_for(
                    process.communicate(), timeout=self.timeout
                )
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                return False, f"Certbot timed out after {self.timeout}s"
        except FileNotFoundError:
            return False, f"Certbot not found at {self.certbot_bin}"
        except OSError as e:
            return False, f"Certbot could not be started: {e}"

        if process.returncode == 0:
            return True, stdout.decode().strip()
        return False, stderr.decode().strip() or stdout.decode().strip()

    async def issue(self, domain: str, renew: bool = False) -> IssuedCertificate:
        """
        Obtain (or renew) a certificate for a domain.

        Raises CertificateAuthorityError when certbot fails.
        """
        domain = normalize_hostname(domain)
        cmd = [
            self.certbot_bin,
            "certonly",
            "--webroot",
            "-w", self.webroot,
            "-d", domain,
            "--cert-name", domain,
            "--non-interactive",
            "--agree-tos",
        ]

        if self.email:
            cmd.extend(["--email", self.email])
        else:
            cmd.append("--register-unsafely-without-email")

        if renew:
            cmd.append("--force-renewal")

        if self.dry_run:
            cmd.append("--dry-run")

        logger.info(f"{'Renewing' if renew else 'Requesting'} certificate for {domain}")
        ok, output = await self._run(cmd)
        if not ok:
            logger.error(f"Certbot failed for {domain}: {output}")
            raise CertificateAuthorityError(
                f"Certificate authority request failed: {output}",
                retry_after=self.retry_after,
                domain=domain,
            )

        details = await self.read_certificate(domain)
        if details is None:
            # Dry runs and some CA setups leave no readable cert on disk
            now = utcnow()
            details = IssuedCertificate(
                certificate_id=f"{domain}-{int(now.timestamp())}",
                issuer="Let's Encrypt",
                valid_from=now,
                expires_at=now + timedelta(days=self.default_validity_days),
            )

        logger.info(f"Certificate issued for {domain}, expires {details.expires_at.isoformat()}")
        return details

    async def revoke(self, domain: str) -> tuple[bool, str]:
        """
        Revoke and delete the certificate for a domain.

        Returns (success, message).
        """
        domain = normalize_hostname(domain)
        cmd = [
            self.certbot_bin,
            "revoke",
            "--cert-name", domain,
            "--delete-after-revoke",
            "--non-interactive",
        ]

        ok, output = await self._run(cmd)
        if ok:
            logger.info(f"SSL cert revoked for {domain}")
            return True, f"Certificate revoked for {domain}"

        logger.warning(f"Certbot revoke failed for {domain}: {output}")
        return False, f"Certbot revoke failed: {output}"

    async def read_certificate(self, domain: str) -> Optional[IssuedCertificate]:
        """Read the issued certificate from certbot's live directory."""
        path = self.cert_path(domain)
        if not os.path.exists(path):
            return None

        try:
            with open(path, "rb") as f:
                return load_certificate_details(f.read())
        except (OSError, ValueError) as e:
            logger.debug(f"Failed to read certificate for {domain}: {e}")
            return None
