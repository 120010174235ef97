"""Admin API endpoint tests."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from httpx import AsyncClient

from tests.helpers.mock_factories import (
    make_admin,
    make_audit_entry,
    make_broken_entry,
    make_mock_admin_email,
    make_mock_audit_row,
    make_subject,
)

ADMIN_ENDPOINTS = [
    ("get", "/api/v1/admin/policies"),
    ("get", "/api/v1/admin/policies/diagnostics"),
    ("post", "/api/v1/admin/policies/reload"),
    ("get", "/api/v1/admin/audit"),
    ("post", "/api/v1/admin/audit/flush"),
    ("get", "/api/v1/admin/admin-emails"),
]


@pytest.fixture(autouse=True)
def _as_admin(auth):
    auth.subject = make_admin(id="admin-1")


@pytest.mark.asyncio
@pytest.mark.parametrize("method,path", ADMIN_ENDPOINTS)
async def test_non_admin_access(api_client: AsyncClient, auth, method, path):
    """Every admin endpoint returns 403 for non-admins."""
    auth.subject = make_subject()
    resp = await getattr(api_client, method)(path)
    assert resp.status_code == 403


# ─────────────────────────────────────────────────────────────────────────────
# Policies
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_policy_overview(api_client: AsyncClient, master_store):
    """GET /api/v1/admin/policies returns version and per-table coverage."""
    resp = await api_client.get("/api/v1/admin/policies")
    assert resp.status_code == 200
    data = resp.json()
    assert data["version"] == master_store.version
    assert data["rule_count"] == master_store.snapshot().rule_count()
    assert {row["status"] for row in data["coverage"]} == {"COMPLETE"}


@pytest.mark.asyncio
async def test_policy_diagnostics_clean(api_client: AsyncClient):
    resp = await api_client.get("/api/v1/admin/policies/diagnostics")
    assert resp.status_code == 200
    assert resp.json() == {"has_errors": False, "findings": []}


@pytest.mark.asyncio
async def test_describe_policy(api_client: AsyncClient):
    resp = await api_client.get("/api/v1/admin/policies/contact_leads")
    assert resp.status_code == 200
    data = resp.json()
    assert data["default_deny"] is True
    assert [rule["name"] for rule in data["operations"]["create"]] == ["contact_insert_public"]


@pytest.mark.asyncio
async def test_describe_unknown_policy(api_client: AsyncClient):
    resp = await api_client.get("/api/v1/admin/policies/invoices")
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_reload_without_body_reloads_configured_policy(api_client: AsyncClient, master_store):
    version = master_store.version
    resp = await api_client.post("/api/v1/admin/policies/reload")
    assert resp.status_code == 200
    data = resp.json()
    assert data["version"] == version + 1
    assert data["findings"] == []


@pytest.mark.asyncio
async def test_reload_merge_document(api_client: AsyncClient, master_store):
    document = {
        "rules": [
            {
                "resourceType": "contact_leads",
                "operation": "read",
                "name": "contact_select_admin",
                "ruleKind": "adminOnly",
            }
        ]
    }
    resp = await api_client.post(
        "/api/v1/admin/policies/reload", json={"document": document, "merge": True}
    )
    assert resp.status_code == 200
    codes = {finding["code"] for finding in resp.json()["findings"]}
    assert codes == {"missing_operation_coverage"}
    assert master_store.snapshot().rule_count("providers") > 0


@pytest.mark.asyncio
async def test_reload_rejected_keeps_live_registry(api_client: AsyncClient, master_store):
    before = master_store.snapshot()
    document = [
        {
            "resourceType": "contact_leads",
            "operation": "truncate",
            "name": "bad",
            "ruleKind": "adminOnly",
        }
    ]
    resp = await api_client.post("/api/v1/admin/policies/reload", json={"document": document})
    assert resp.status_code == 400
    assert "Policy registry rejected" in resp.json()["detail"]
    assert master_store.snapshot() is before


# ─────────────────────────────────────────────────────────────────────────────
# Audit
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_pending_audit(api_client: AsyncClient, sink):
    sink.record(make_audit_entry())
    sink.record(make_broken_entry())

    resp = await api_client.get("/api/v1/admin/audit", params={"broken_only": True})
    assert resp.status_code == 200
    data = resp.json()
    assert data["stats"]["pending_broken_rules"] == 1
    assert [entry["broken_rules"] for entry in data["entries"]] == [["broken"]]


@pytest.mark.asyncio
async def test_flush_audit(api_client: AsyncClient, sink, writer):
    sink.record(make_audit_entry())
    resp = await api_client.post("/api/v1/admin/audit/flush")
    assert resp.status_code == 200
    assert resp.json() == {"flushed": 1, "pending": 0}
    assert len(writer.entries) == 1


@pytest.mark.asyncio
async def test_audit_log(api_client: AsyncClient, db_session):
    rows = [make_mock_audit_row(outcome="deny", reason="rule error: broken", broken_rules=["broken"])]
    with patch(
        "rowguard.api.v1.admin.audit_log_ops.list_recent",
        new_callable=AsyncMock,
        return_value=rows,
    ) as mock_list:
        resp = await api_client.get(
            "/api/v1/admin/audit/log", params={"resource_type": "providers", "outcome": "deny"}
        )

    assert resp.status_code == 200
    [entry] = resp.json()
    assert entry["broken_rules"] == ["broken"]
    mock_list.assert_awaited_once_with(
        db_session, resource_type="providers", outcome="deny", skip=0, limit=100
    )


@pytest.mark.asyncio
async def test_audit_log_broken_only(api_client: AsyncClient, db_session):
    with patch(
        "rowguard.api.v1.admin.audit_log_ops.list_broken_rules",
        new_callable=AsyncMock,
        return_value=[],
    ) as mock_list:
        resp = await api_client.get("/api/v1/admin/audit/log", params={"broken_only": True})

    assert resp.status_code == 200
    mock_list.assert_awaited_once_with(db_session, limit=100)


# ─────────────────────────────────────────────────────────────────────────────
# Admin allow-list
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_list_admin_emails(api_client: AsyncClient):
    with patch(
        "rowguard.api.v1.admin.admin_email_ops.list_all",
        new_callable=AsyncMock,
        return_value=[make_mock_admin_email(email="a@example.com", note="founder")],
    ):
        resp = await api_client.get("/api/v1/admin/admin-emails")

    assert resp.status_code == 200
    assert resp.json()["database"] == [{"email": "a@example.com", "note": "founder"}]


@pytest.mark.asyncio
async def test_add_admin_email(api_client: AsyncClient, db_session):
    with patch(
        "rowguard.api.v1.admin.admin_email_ops.add",
        new_callable=AsyncMock,
        return_value=make_mock_admin_email(email="new@example.com"),
    ) as mock_add:
        resp = await api_client.post(
            "/api/v1/admin/admin-emails", json={"email": "New@Example.com"}
        )

    assert resp.status_code == 201
    mock_add.assert_awaited_once_with(db_session, "new@example.com", note=None)


@pytest.mark.asyncio
async def test_add_invalid_admin_email(api_client: AsyncClient):
    resp = await api_client.post("/api/v1/admin/admin-emails", json={"email": "nobody"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_remove_admin_email(api_client: AsyncClient):
    with patch(
        "rowguard.api.v1.admin.admin_email_ops.remove",
        new_callable=AsyncMock,
        return_value=True,
    ):
        resp = await api_client.delete("/api/v1/admin/admin-emails/a@example.com")
    assert resp.status_code == 204


@pytest.mark.asyncio
async def test_remove_unknown_admin_email(api_client: AsyncClient):
    with patch(
        "rowguard.api.v1.admin.admin_email_ops.remove",
        new_callable=AsyncMock,
        return_value=False,
    ):
        resp = await api_client.delete("/api/v1/admin/admin-emails/a@example.com")
    assert resp.status_code == 404
