"""Client-facing portal: sign-in form, submission endpoint, probe redirects."""

from __future__ import annotations

import logging

import aiosqlite
from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from captivegate.errors import AdmissionUnavailable
from captivegate.gateway import Gateway
from captivegate.session.models import SubmissionRecord
from captivegate.storage.repos import SubmissionRepo
from captivegate.web import pages

logger = logging.getLogger(__name__)

router = APIRouter(tags=["portal"])

# Paths client operating systems fetch to detect a captive portal
PROBE_PATHS = (
    "/hotspot-detect.html",
    "/library/test/success.html",
    "/generate_204",
    "/gen_204",
    "/connecttest.txt",
    "/ncsi.txt",
    "/redirect",
    "/success.txt",
    "/canonical.html",
)


def get_gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def get_client_ip(request: Request) -> str:
    """Client identity, taken from the TCP peer address only."""
    if request.client is None:
        return ""
    return request.client.host


def portal_url(gateway: Gateway) -> str:
    port = gateway.policy.portal_port
    host = gateway.policy.gateway_ip
    if ":" in host:
        host = f"[{host}]"
    return f"http://{host}/" if port == 80 else f"http://{host}:{port}/"


@router.get("/", response_class=HTMLResponse)
async def index(gateway: Gateway = Depends(get_gateway)):
    return pages.login_page(gateway.policy.name)


@router.post("/login")
async def login(
    request: Request,
    gateway: Gateway = Depends(get_gateway),
    client: str = Depends(get_client_ip),
):
    form = await request.form()
    credentials = {k: v for k, v in form.items() if isinstance(v, str)}

    try:
        result = await run_in_threadpool(gateway.admission.submit, client, credentials)
    except AdmissionUnavailable as e:
        await _store_record(request, e.record)
        return HTMLResponse(pages.unavailable_page(gateway.policy.name), status_code=503)

    await _store_record(request, result.record)
    if not result.accepted:
        return HTMLResponse(
            pages.login_page(gateway.policy.name, error=result.record.reason),
            status_code=401,
        )
    return RedirectResponse("/success", status_code=303)


@router.get("/success", response_class=HTMLResponse)
async def success(gateway: Gateway = Depends(get_gateway)):
    return pages.success_page(gateway.policy.name, gateway.admission.ttl)


def _probe_redirect(gateway: Gateway = Depends(get_gateway)):
    return RedirectResponse(portal_url(gateway), status_code=302)


for _path in PROBE_PATHS:
    router.add_api_route(_path, _probe_redirect, methods=["GET"], include_in_schema=False)


@router.get("/{path:path}", include_in_schema=False)
async def catch_all(path: str, gateway: Gateway = Depends(get_gateway)):
    return RedirectResponse(portal_url(gateway), status_code=302)


async def _store_record(request: Request, record: SubmissionRecord | None) -> None:
    db = getattr(request.app.state, "db", None)
    if db is None or record is None:
        return
    try:
        await SubmissionRepo(db).create(record)
    except aiosqlite.Error as e:
        logger.error("Could not store submission %s: %s", record.id, e)
