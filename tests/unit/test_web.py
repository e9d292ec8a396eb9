"""Tests for the portal and operator web apps."""

from __future__ import annotations

import hashlib

import pytest
from fastapi.testclient import TestClient

from captivegate.config import GatewayConfig
from captivegate.gateway import Gateway
from captivegate.link import StaticLinkProbe
from captivegate.policy.models import RedirectPolicy, ValidatorKind, ValidatorSpec
from captivegate.rules.backend import MemoryBackend
from captivegate.rules.models import Rule
from captivegate.web.api.portal import get_client_ip, portal_url
from captivegate.web.app import create_admin_app, create_portal_app
from captivegate.web.pages import format_duration

GOOD = {"auth_user": "guest", "auth_pass": "password"}


@pytest.fixture
def gateway(tmp_path, clock):
    policy = RedirectPolicy(
        name="cafe",
        validator=ValidatorSpec(
            kind=ValidatorKind.STATIC,
            users=(("guest", hashlib.sha256(b"password").hexdigest()),),
        ),
    )
    config = GatewayConfig(data_dir=tmp_path, config_dir=tmp_path, rule_backoff=0)
    gw = Gateway(
        policy,
        config,
        backend=MemoryBackend(),
        probe=StaticLinkProbe(up=True),
        clock=clock,
    )
    gw.synchronizer.sync()
    yield gw
    gw.stop()


@pytest.fixture
def portal(gateway):
    app = create_portal_app(gateway)
    app.dependency_overrides[get_client_ip] = lambda: "10.0.0.10"
    with TestClient(app) as client:
        yield client


@pytest.fixture
def admin(gateway):
    with TestClient(create_admin_app(gateway)) as client:
        yield client


class TestPortal:
    def test_index_shows_form(self, portal):
        resp = portal.get("/")
        assert resp.status_code == 200
        assert 'name="auth_user"' in resp.text
        assert 'name="auth_pass"' in resp.text
        assert 'action="/login"' in resp.text

    @pytest.mark.parametrize(
        "path", ["/hotspot-detect.html", "/generate_204", "/connecttest.txt", "/some/page"]
    )
    def test_probe_paths_redirect_to_portal(self, portal, path):
        resp = portal.get(path, follow_redirects=False)
        assert resp.status_code == 302
        assert resp.headers["location"] == "http://10.0.0.1/"

    def test_login_success_redirects_and_admits(self, portal, gateway):
        resp = portal.post("/login", data=GOOD, follow_redirects=False)
        assert resp.status_code == 303
        assert resp.headers["location"] == "/success"
        assert gateway.store.is_admitted("10.0.0.10")
        assert Rule.allow("10.0.0.10") in gateway.backend.list_active()

    def test_client_identity_ignores_form_fields(self, portal, gateway):
        resp = portal.post(
            "/login", data={**GOOD, "client": "10.0.0.99"}, follow_redirects=False
        )
        assert resp.status_code == 303
        assert gateway.store.is_admitted("10.0.0.10")
        assert not gateway.store.is_admitted("10.0.0.99")

    def test_login_failure(self, portal, gateway):
        resp = portal.post("/login", data={"auth_user": "guest", "auth_pass": "nope"})
        assert resp.status_code == 401
        assert "invalid credentials" in resp.text
        assert not gateway.store.is_admitted("10.0.0.10")

    def test_login_unavailable_when_degraded(self, portal, gateway):
        gateway.backend.fail_installs = 10
        resp = portal.post("/login", data=GOOD)
        assert resp.status_code == 503
        assert not gateway.store.is_admitted("10.0.0.10")

    def test_success_page_shows_actual_ttl(self, portal):
        resp = portal.get("/success")
        assert resp.status_code == 200
        assert "5 minutes" in resp.text


class TestAdmin:
    def test_status(self, admin):
        body = admin.get("/api/status").json()
        assert body["policy"] == "cafe"
        assert body["uplink_up"] is True
        assert body["degraded"] is False
        assert "drop-lan" in body["rules"]
        assert body["active_grants"] == 0

    def test_grants_lifecycle(self, admin, gateway, clock):
        gateway.store.admit("10.0.0.10", 300)

        grants = admin.get("/api/grants").json()
        assert [g["client"] for g in grants] == ["10.0.0.10"]
        assert grants[0]["remaining"] == 300

        resp = admin.post("/api/grants/10.0.0.10/extend", json={"ttl": 600})
        assert resp.status_code == 200
        assert resp.json()["expires_at"] == clock.now + 600

        resp = admin.post("/api/grants/10.0.0.10/extend")
        assert resp.json()["expires_at"] == clock.now + 3600

        resp = admin.delete("/api/grants/10.0.0.10")
        assert resp.status_code == 200
        assert resp.json()["rules_synced"] is True
        assert not gateway.store.is_admitted("10.0.0.10")
        assert Rule.allow("10.0.0.10") not in gateway.backend.list_active()

    def test_unknown_grant(self, admin):
        assert admin.get("/api/grants/10.0.0.50").status_code == 404
        assert admin.delete("/api/grants/10.0.0.50").status_code == 404
        assert admin.post("/api/grants/10.0.0.50/extend").status_code == 404

    def test_extend_rejects_bad_ttl(self, admin, gateway):
        gateway.store.admit("10.0.0.10", 300)
        assert admin.post("/api/grants/10.0.0.10/extend", json={"ttl": -1}).status_code == 422

    def test_sync_endpoint_repairs_table(self, admin, gateway):
        gateway.backend.install(Rule.allow("10.0.0.66"))
        resp = admin.post("/api/sync")
        assert resp.status_code == 200
        assert "allow:10.0.0.66" not in resp.json()["rules"]

    def test_submissions_history(self, portal, admin):
        portal.post("/login", data={"auth_user": "guest", "auth_pass": "nope"})
        portal.post("/login", data=GOOD, follow_redirects=False)

        rows = admin.get("/api/submissions").json()
        assert [r["outcome"] for r in rows] == ["SUCCESS", "FAILURE"]
        assert all(r["client"] == "10.0.0.10" for r in rows)
        assert admin.get("/api/submissions/summary").json() == {"SUCCESS": 1, "FAILURE": 1}


def test_portal_url_non_default_port(gateway):
    assert portal_url(gateway) == "http://10.0.0.1/"
    gateway.policy = RedirectPolicy(portal_port=8080)
    assert portal_url(gateway) == "http://10.0.0.1:8080/"


def test_format_duration():
    assert format_duration(300) == "5 minutes"
    assert format_duration(90) == "1 minute 30 seconds"
    assert format_duration(3600) == "1 hour"
