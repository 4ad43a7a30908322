"""
Tests for Admin API endpoints.

Tests cover:
- Admin authentication (login)
- Admin token validation
- Withdrawal listing, approval and rejection
"""
import os
from decimal import Decimal

import pytest
from httpx import AsyncClient

from affiliate_backend.app.models.affiliate import Affiliate
from affiliate_backend.app.services.withdrawals import WithdrawalService

ADMIN_LOGIN = os.getenv("ADMIN_LOGIN", "admin")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "admin")
ADMIN_SECRET = os.getenv("ADMIN_SECRET", "test_admin_secret")


def admin_headers() -> dict:
    return {"X-Admin-Token": ADMIN_SECRET}


@pytest.fixture
async def pending_withdrawal(test_session, test_affiliate: Affiliate):
    test_affiliate.total_earned = Decimal("150")
    test_affiliate.acc_balance = Decimal("150")
    await test_session.commit()
    return await WithdrawalService(test_session).request_withdrawal(test_affiliate.id, Decimal("100"), "acct")


# ============================================
# ADMIN AUTH (admin_auth.py)
# ============================================

@pytest.mark.asyncio
async def test_admin_login_success(client: AsyncClient):
    response = await client.post("/api/admin/login", json={
        "login": ADMIN_LOGIN,
        "password": ADMIN_PASSWORD,
    })
    assert response.status_code == 200
    assert response.json()["token"] == ADMIN_SECRET


@pytest.mark.asyncio
async def test_admin_login_wrong_password(client: AsyncClient):
    response = await client.post("/api/admin/login", json={
        "login": ADMIN_LOGIN,
        "password": "wrong_password",
    })
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_admin_login_empty_body(client: AsyncClient):
    response = await client.post("/api/admin/login", json={})
    assert response.status_code == 422


# ============================================
# WITHDRAWALS (admin.py)
# ============================================

@pytest.mark.asyncio
async def test_withdrawals_require_token(client: AsyncClient):
    assert (await client.get("/api/admin/withdrawals")).status_code == 401
    response = await client.get("/api/admin/withdrawals", headers={"X-Admin-Token": "nope"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_list_withdrawals(client: AsyncClient, pending_withdrawal, test_affiliate):
    response = await client.get("/api/admin/withdrawals", headers=admin_headers())
    assert response.status_code == 200
    rows = response.json()["data"]
    assert len(rows) == 1
    assert rows[0]["id"] == pending_withdrawal.id
    assert rows[0]["email"] == test_affiliate.email


@pytest.mark.asyncio
async def test_approve_withdrawal(client: AsyncClient, test_session, pending_withdrawal, test_affiliate):
    response = await client.patch(
        f"/api/admin/withdrawals/{pending_withdrawal.id}/approve", headers=admin_headers()
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "approved"

    await test_session.refresh(test_affiliate)
    assert test_affiliate.acc_balance == Decimal("50")

    response = await client.patch(
        f"/api/admin/withdrawals/{pending_withdrawal.id}/approve", headers=admin_headers()
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_reject_withdrawal(client: AsyncClient, test_session, pending_withdrawal, test_affiliate):
    response = await client.patch(
        f"/api/admin/withdrawals/{pending_withdrawal.id}/reject", headers=admin_headers()
    )
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "rejected"
    await test_session.refresh(test_affiliate)
    assert test_affiliate.acc_balance == Decimal("150")


@pytest.mark.asyncio
async def test_process_unknown_withdrawal(client: AsyncClient):
    response = await client.patch("/api/admin/withdrawals/999/approve", headers=admin_headers())
    assert response.status_code == 404
