"""Operator API for gateway health and submission history."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from captivegate import __version__
from captivegate.errors import RuleInstallError
from captivegate.gateway import Gateway
from captivegate.storage.repos import SubmissionRepo
from captivegate.web.api.portal import get_gateway

router = APIRouter(tags=["status"])


@router.get("/status")
async def status(gateway: Gateway = Depends(get_gateway)):
    info = gateway.synchronizer.status()
    info.update(
        {
            "version": __version__,
            "policy": gateway.policy.name,
            "gateway_ip": gateway.policy.gateway_ip,
            "lan_interface": gateway.policy.lan_interface,
            "active_grants": len(gateway.store),
            "dry_run": gateway.dry_run,
        }
    )
    return info


@router.post("/sync")
async def resync(gateway: Gateway = Depends(get_gateway)):
    try:
        await run_in_threadpool(gateway.synchronizer.sync)
    except RuleInstallError as e:
        return JSONResponse(status_code=503, content={"detail": str(e)})
    return gateway.synchronizer.status()


@router.get("/submissions")
async def list_submissions(
    request: Request,
    limit: int = 50,
    offset: int = 0,
    client: str | None = None,
):
    repo = SubmissionRepo(request.app.state.db)
    return await repo.list_all(limit=limit, offset=offset, client=client)


@router.get("/submissions/summary")
async def submission_summary(request: Request):
    repo = SubmissionRepo(request.app.state.db)
    return await repo.count_by_outcome()
