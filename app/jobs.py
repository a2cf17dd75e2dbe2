#!/usr/bin/env python3
"""
Scheduled maintenance for custom domain mappings.

Run from cron or a worker:
    domain-maintenance health            # check stale active mappings
    domain-maintenance renew --days 30   # renew expiring managed certificates
    domain-maintenance cleanup           # expire pending, finish stuck deletions
"""

import argparse
import asyncio
import logging
import sys
from typing import Awaitable, Callable, List

from .config import Settings, get_settings
from .domains.errors import DomainMappingError
from .domains.factory import build_service, close_service
from .domains.models import CERT_MANAGED, DomainMapping
from .domains.service import DomainMappingService

logger = logging.getLogger("domain_mapper.jobs")


async def _run_pool(
    mappings: List[DomainMapping],
    worker: Callable[[DomainMapping], Awaitable[None]],
    concurrency: int,
) -> tuple[int, int]:
    """Run worker over mappings with at most `concurrency` in flight."""
    semaphore = asyncio.Semaphore(max(1, concurrency))
    results = {"ok": 0, "failed": 0}

    async def run(mapping: DomainMapping):
        async with semaphore:
            try:
                await worker(mapping)
                results["ok"] += 1
            except DomainMappingError as e:
                results["failed"] += 1
                logger.warning(f"{mapping.hostname}: {e.message}")
            except Exception as e:
                results["failed"] += 1
                logger.error(f"{mapping.hostname}: unexpected failure: {e}")

    await asyncio.gather(*(run(m) for m in mappings))
    return results["ok"], results["failed"]


async def health_sweep(service: DomainMappingService, settings: Settings) -> tuple[int, int]:
    mappings = await service.repository.find_needing_health_check(
        settings.health_check_interval_minutes
    )
    logger.info(f"Health sweep: {len(mappings)} mapping(s) due")

    async def check(mapping: DomainMapping):
        await service.record_health_check(mapping)

    ok, failed = await _run_pool(mappings, check, settings.sweep_concurrency)
    logger.info(f"Health sweep done: {ok} checked, {failed} failed")
    return ok, failed


async def renewal_sweep(
    service: DomainMappingService, settings: Settings, days: int
) -> tuple[int, int]:
    mappings = [
        m for m in await service.repository.find_expiring_within(days)
        if m.auto_renewal and m.certificate_type == CERT_MANAGED
    ]
    logger.info(f"Renewal sweep: {len(mappings)} certificate(s) expiring within {days} days")

    async def renew(mapping: DomainMapping):
        await service.renew(mapping, actor="system")

    ok, failed = await _run_pool(mappings, renew, settings.sweep_concurrency)
    logger.info(f"Renewal sweep done: {ok} renewed, {failed} failed")
    return ok, failed


async def cleanup(service: DomainMappingService, settings: Settings) -> dict:
    expired = await service.cleanup_expired_pending(settings.pending_expiry_hours)
    purged = await service.purge_stuck_deletions()
    return {"expired_pending": expired, "stuck_deletions": purged}


async def run(command: str, days: int, settings: Settings) -> int:
    service = build_service(settings)
    try:
        if command == "health":
            _, failed = await health_sweep(service, settings)
        elif command == "renew":
            _, failed = await renewal_sweep(service, settings, days)
        else:
            result = await cleanup(service, settings)
            logger.info(f"Cleanup done: {result}")
            failed = 0
    finally:
        await close_service(service)
    return 1 if failed else 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="domain-maintenance",
        description="Custom domain maintenance jobs",
    )
    parser.add_argument(
        "command",
        choices=["health", "renew", "cleanup"],
        help="Job to run",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Renewal window in days (default: DOMAINS_EXPIRING_SOON_DAYS)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override DOMAINS_LOG_LEVEL",
    )
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, (args.log_level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    days = args.days if args.days is not None else settings.expiring_soon_days
    return asyncio.run(run(args.command, days, settings))


if __name__ == "__main__":
    sys.exit(main())
