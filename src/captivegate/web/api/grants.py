"""Operator API for active grants."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from captivegate.errors import RuleInstallError
from captivegate.gateway import Gateway
from captivegate.session.models import Grant
from captivegate.web.api.portal import get_gateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["grants"])


class ExtendRequest(BaseModel):
    ttl: float | None = Field(default=None, gt=0)


def _grant_dict(grant: Grant, now: float) -> dict:
    return {
        "client": grant.client,
        "granted_at": grant.granted_at,
        "expires_at": grant.expires_at,
        "remaining": round(grant.remaining(now), 1),
    }


@router.get("/grants")
async def list_grants(gateway: Gateway = Depends(get_gateway)):
    now = gateway.store.now()
    return [_grant_dict(g, now) for g in gateway.store.grants()]


@router.get("/grants/{client}")
async def get_grant(client: str, gateway: Gateway = Depends(get_gateway)):
    grant = gateway.store.get(client)
    if grant is None:
        return JSONResponse(status_code=404, content={"detail": "Grant not found"})
    return _grant_dict(grant, gateway.store.now())


@router.delete("/grants/{client}")
async def revoke_grant(client: str, gateway: Gateway = Depends(get_gateway)):
    try:
        existed = gateway.store.revoke(client)
    except RuleInstallError as e:
        # The grant is gone; the sync loop keeps retrying the rule removal
        logger.error("Revoked %s but rule removal failed: %s", client, e)
        return {"status": "revoked", "client": client, "rules_synced": False}
    if not existed:
        return JSONResponse(status_code=404, content={"detail": "Grant not found"})
    return {"status": "revoked", "client": client, "rules_synced": True}


@router.post("/grants/{client}/extend")
async def extend_grant(
    client: str,
    body: ExtendRequest | None = None,
    gateway: Gateway = Depends(get_gateway),
):
    ttl = body.ttl if body is not None and body.ttl is not None else gateway.policy.session_ttl
    try:
        grant = gateway.store.extend(client, ttl)
    except RuleInstallError as e:
        return JSONResponse(status_code=503, content={"detail": str(e)})
    if grant is None:
        return JSONResponse(status_code=404, content={"detail": "Grant not found"})
    return _grant_dict(grant, gateway.store.now())
