"""
REST API for tenant custom domain mappings.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel

from ..domains.errors import CertificateAuthorityError, DomainMappingError
from ..domains.insights import (
    allowed_actions,
    health_recommendations,
    next_steps,
    summarize,
    troubleshooting_steps,
)
from ..domains.models import STATUS_PENDING
from ..domains.service import DomainMappingService

logger = logging.getLogger("domain_mapper.api.domain_mappings")

router = APIRouter(prefix="/api/domain-mappings", tags=["domain-mappings"])


# ── Tenant dependency ────────────────────────────────────────────────

@dataclass
class TenantContext:
    tenant_id: str
    plan: str
    actor: str


async def get_tenant(
    x_tenant_id: Optional[str] = Header(None),
    x_tenant_plan: Optional[str] = Header(None),
    x_actor_id: Optional[str] = Header(None),
) -> TenantContext:
    """Tenant identity set by the authenticating gateway."""
    if not x_tenant_id:
        raise HTTPException(status_code=401, detail="Missing tenant context")
    return TenantContext(
        tenant_id=x_tenant_id,
        plan=(x_tenant_plan or "foundation").lower(),
        actor=x_actor_id or x_tenant_id,
    )


def _service(request: Request) -> DomainMappingService:
    return request.app.state.domain_service


def _http_error(exc: DomainMappingError) -> HTTPException:
    headers = None
    if isinstance(exc, CertificateAuthorityError):
        headers = {"Retry-After": str(exc.retry_after)}
    return HTTPException(status_code=exc.status_code, detail=exc.to_dict(), headers=headers)


def _request_meta(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


# ── Request models ───────────────────────────────────────────────────

class CustomCertificateBody(BaseModel):
    certificate: str
    private_key: str
    chain_certificate: Optional[str] = None


class MappingCreateRequest(BaseModel):
    domain: str
    certificate_type: str = "managed"
    force_https: bool = True
    auto_renewal: bool = True
    custom_certificate: Optional[CustomCertificateBody] = None


class VerifyRequest(BaseModel):
    verification_method: str = "dns"


class MappingUpdateRequest(BaseModel):
    force_https: Optional[bool] = None
    auto_renewal: Optional[bool] = None
    custom_certificate: Optional[CustomCertificateBody] = None
    reason: Optional[str] = None


# ── Routes ───────────────────────────────────────────────────────────

@router.post("", status_code=201)
async def create_mapping(
    body: MappingCreateRequest,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
):
    """Claim a custom domain for the tenant."""
    service = _service(request)
    try:
        mapping, warnings = await service.create_mapping(
            tenant.tenant_id,
            body.domain,
            plan=tenant.plan,
            certificate_type=body.certificate_type,
            force_https=body.force_https,
            auto_renewal=body.auto_renewal,
            custom_certificate=body.custom_certificate.model_dump() if body.custom_certificate else None,
            actor=tenant.actor,
            request_meta=_request_meta(request),
        )
    except DomainMappingError as e:
        raise _http_error(e)

    return {
        "mapping": summarize(mapping),
        "dns_instructions": service.verifier.get_verification_instructions(mapping),
        "next_steps": next_steps(mapping),
        "warnings": warnings,
    }


@router.get("")
async def list_mappings(
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
):
    """List the tenant's mappings with plan usage."""
    service = _service(request)
    mappings = await service.list_mappings(tenant.tenant_id)
    return {
        "count": len(mappings),
        "mappings": [summarize(m) for m in mappings],
        "usage": await service.usage(tenant.tenant_id, tenant.plan),
        "limits": service.plans.limits_for(tenant.plan).to_dict(),
    }


@router.get("/stats")
async def mapping_stats(
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
):
    """Counts by status, verification and SSL state."""
    return await _service(request).stats(tenant.tenant_id)


@router.get("/resolve/{hostname}")
async def resolve_hostname(hostname: str, request: Request):
    """Hostname to tenant lookup for the edge router. Counts the request."""
    try:
        mapping = await _service(request).resolve_hostname(hostname)
    except DomainMappingError as e:
        raise _http_error(e)

    return {
        "domain": mapping.hostname,
        "tenant_id": mapping.tenant_id,
        "mapping_id": mapping.id,
        "force_https": mapping.force_https,
        "request_count": mapping.request_count,
    }


@router.get("/{mapping_id}")
async def get_mapping(
    mapping_id: str,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
):
    """Mapping details with troubleshooting hints."""
    service = _service(request)
    try:
        mapping = await service.get_mapping(tenant.tenant_id, mapping_id)
    except DomainMappingError as e:
        raise _http_error(e)

    data = summarize(mapping)
    data["troubleshooting"] = troubleshooting_steps(mapping)
    data["actions"] = allowed_actions(mapping)
    data["next_steps"] = next_steps(mapping)
    if mapping.status == STATUS_PENDING:
        data["dns_instructions"] = service.verifier.get_verification_instructions(mapping)
    return data


@router.post("/{mapping_id}/verify")
async def verify_mapping(
    mapping_id: str,
    request: Request,
    body: Optional[VerifyRequest] = None,
    tenant: TenantContext = Depends(get_tenant),
):
    """Check the DNS records and activate the domain."""
    method = body.verification_method if body else "dns"
    try:
        outcome = await _service(request).verify_mapping(
            tenant.tenant_id, mapping_id, method=method, actor=tenant.actor
        )
    except DomainMappingError as e:
        raise _http_error(e)

    return {**outcome.to_dict(), "mapping": summarize(outcome.mapping)}


@router.put("/{mapping_id}")
async def update_mapping(
    mapping_id: str,
    body: MappingUpdateRequest,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
):
    """Change configuration or swap the custom certificate."""
    changes = body.model_dump(exclude_none=True, exclude={"reason"})
    try:
        mapping = await _service(request).update_mapping(
            tenant.tenant_id,
            mapping_id,
            changes,
            plan=tenant.plan,
            actor=tenant.actor,
            reason=body.reason,
            request_meta=_request_meta(request),
        )
    except DomainMappingError as e:
        raise _http_error(e)
    return summarize(mapping)


@router.delete("/{mapping_id}")
async def delete_mapping(
    mapping_id: str,
    request: Request,
    reason: Optional[str] = None,
    tenant: TenantContext = Depends(get_tenant),
):
    """Remove a custom domain."""
    try:
        report = await _service(request).delete_mapping(
            tenant.tenant_id, mapping_id, actor=tenant.actor, reason=reason
        )
    except DomainMappingError as e:
        raise _http_error(e)
    return {"success": True, **report}


@router.post("/{mapping_id}/renew-certificate")
async def renew_certificate(
    mapping_id: str,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
):
    """Renew the managed SSL certificate now."""
    try:
        mapping = await _service(request).renew_certificate(
            tenant.tenant_id, mapping_id, actor=tenant.actor
        )
    except DomainMappingError as e:
        raise _http_error(e)

    return {
        "success": True,
        "certificate_id": mapping.certificate_id,
        "certificate_expiry": mapping.certificate_expiry.isoformat(),
        "issuer": mapping.certificate_info.issuer if mapping.certificate_info else None,
        "mapping": summarize(mapping),
    }


@router.post("/{mapping_id}/retry")
async def retry_mapping(
    mapping_id: str,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
):
    """Re-attempt activation of a domain in error."""
    service = _service(request)
    try:
        mapping = await service.retry_mapping(tenant.tenant_id, mapping_id, actor=tenant.actor)
    except DomainMappingError as e:
        raise _http_error(e)

    data = {"mapping": summarize(mapping), "next_steps": next_steps(mapping)}
    if mapping.status == STATUS_PENDING:
        data["dns_instructions"] = service.verifier.get_verification_instructions(mapping)
    return data


@router.get("/{mapping_id}/health")
async def mapping_health(
    mapping_id: str,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
):
    """Run a health check and record the result."""
    service = _service(request)
    try:
        report = await service.run_health_check(tenant.tenant_id, mapping_id)
        mapping = await service.get_mapping(tenant.tenant_id, mapping_id)
    except DomainMappingError as e:
        raise _http_error(e)

    health = report.to_dict()
    return {
        "health": health,
        "recommendations": health_recommendations(health),
        "mapping": summarize(mapping),
    }


@router.get("/{mapping_id}/analytics")
async def mapping_analytics(
    mapping_id: str,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
):
    """Traffic and performance figures (Enterprise plans)."""
    try:
        return await _service(request).analytics(tenant.tenant_id, mapping_id, plan=tenant.plan)
    except DomainMappingError as e:
        raise _http_error(e)


@router.post("/{mapping_id}/test")
async def test_mapping(
    mapping_id: str,
    request: Request,
    tenant: TenantContext = Depends(get_tenant),
):
    """Diagnose the domain's configuration without recording anything."""
    try:
        return await _service(request).test_configuration(tenant.tenant_id, mapping_id)
    except DomainMappingError as e:
        raise _http_error(e)
