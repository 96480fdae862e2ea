import pytest
from httpx import ASGITransport, AsyncClient

from smartpick_api.core.settings import settings
from smartpick_api.models.penalty import ForgivenessRequest, ForgivenessStatus
from smartpick_api.models.points import AccountOwnerType
from smartpick_api.observability.engine import get_engine_store
from smartpick_api.services.forgiveness import ForgivenessService
from smartpick_api.services.penalties import PenaltyService


def _client(app) -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


def _as(user) -> dict[str, str]:
    return {"X-Session-User": str(user.id)}


@pytest.mark.asyncio
async def test_reservation_pickup_and_claim_flow(app_with_db, seed) -> None:
    app, _ = app_with_db
    await seed.catalog()
    customer = await seed.customer(points=20)
    partner_user, partner = await seed.partner()
    offer = await seed.offer(partner, points_cost=5)

    async with _client(app) as client:
        created = await client.post(
            "/api/v1/reservations",
            json={"offerId": str(offer.id), "quantity": 1},
            headers=_as(customer),
        )
        assert created.status_code == 201, created.text
        reservation = created.json()
        assert reservation["status"] == "ACTIVE"
        assert reservation["pointsSpent"] == 5

        balance = await client.get("/api/v1/points/balance", headers=_as(customer))
        assert balance.json()["balance"] == 15

        active = await client.get("/api/v1/reservations/active", headers=_as(customer))
        assert [row["id"] for row in active.json()] == [reservation["id"]]

        pickup = await client.post(
            "/api/v1/reservations/confirm-pickup",
            json={"qrCode": reservation["qrCode"]},
            headers=_as(partner_user),
        )
        assert pickup.status_code == 200, pickup.text
        assert pickup.json()["alreadyProcessed"] is False
        assert pickup.json()["unlockedAchievements"] == ["first_pick"]

        repeat = await client.post(
            "/api/v1/reservations/confirm-pickup",
            json={"qrCode": reservation["qrCode"]},
            headers=_as(partner_user),
        )
        assert repeat.status_code == 200
        assert repeat.json()["alreadyProcessed"] is True

        partner_balance = await client.get("/api/v1/points/balance", headers=_as(partner_user))
        assert partner_balance.json() == {
            "accountId": partner_balance.json()["accountId"],
            "ownerType": "partner",
            "balance": 5,
        }

        claim = await client.post("/api/v1/achievements/first_pick/claim", headers=_as(customer))
        assert claim.status_code == 200, claim.text
        assert claim.json()["rewardPoints"] == 10
        assert claim.json()["balance"] == 25

        again = await client.post("/api/v1/achievements/first_pick/claim", headers=_as(customer))
        assert again.json()["alreadyClaimed"] is True
        assert again.json()["balance"] == 25

        history = await client.get("/api/v1/points/transactions", params={"limit": 2}, headers=_as(customer))
        payload = history.json()
        assert [row["reason"] for row in payload["transactions"]] == ["achievement-reward", "reservation-payment"]
        assert payload["nextCursor"] is not None

    assert await seed.balance(partner.id, owner_type=AccountOwnerType.PARTNER) == 5


@pytest.mark.asyncio
async def test_insufficient_balance_maps_to_localized_error(app_with_db, seed) -> None:
    app, _ = app_with_db
    customer = await seed.customer(points=2)
    _, partner = await seed.partner()
    offer = await seed.offer(partner, points_cost=5)

    async with _client(app) as client:
        english = await client.post(
            "/api/v1/reservations",
            json={"offerId": str(offer.id), "quantity": 1},
            headers=_as(customer),
        )
        georgian = await client.post(
            "/api/v1/reservations",
            json={"offerId": str(offer.id), "quantity": 1},
            headers={**_as(customer), "Accept-Language": "ka-GE,ka;q=0.9"},
        )

    assert english.status_code == 402
    body = english.json()
    assert body["success"] is False
    assert body["error"] == "insufficient_balance"
    assert body["code"] == "insufficient_balance"
    assert "3 more points" in body["message"]
    assert body["details"]["shortfall"] == "3"
    assert georgian.status_code == 402
    assert georgian.json()["message"] != body["message"]
    assert await seed.balance(customer.id) == 2


@pytest.mark.asyncio
async def test_session_and_role_guards(app_with_db, seed) -> None:
    app, _ = app_with_db
    customer = await seed.customer()

    async with _client(app) as client:
        missing = await client.get("/api/v1/points/balance")
        malformed = await client.get("/api/v1/points/balance", headers={"X-Session-User": "not-a-uuid"})
        partner_only = await client.post(
            "/api/v1/reservations/confirm-pickup",
            json={"qrCode": "SP-ABC-123"},
            headers=_as(customer),
        )
        admin_only = await client.post(
            "/api/v1/points/adjustments",
            json={"ownerId": str(customer.id), "delta": 10},
            headers=_as(customer),
        )

    assert missing.status_code == 401
    assert malformed.status_code == 400
    assert partner_only.status_code == 403
    assert admin_only.status_code == 403


@pytest.mark.asyncio
async def test_admin_adjustment_and_reconciliation(app_with_db, seed) -> None:
    app, _ = app_with_db
    admin = await seed.admin()
    customer = await seed.customer()

    async with _client(app) as client:
        credited = await client.post(
            "/api/v1/points/adjustments",
            json={"ownerId": str(customer.id), "delta": 40, "note": "support goodwill"},
            headers=_as(admin),
        )
        overdraw = await client.post(
            "/api/v1/points/adjustments",
            json={"ownerId": str(customer.id), "delta": -41},
            headers=_as(admin),
        )
        account_id = credited.json()["accountId"]
        report = await client.get(f"/api/v1/points/accounts/{account_id}/reconciliation")

    assert credited.status_code == 201, credited.text
    assert credited.json()["balance"] == 40
    assert overdraw.status_code == 402
    assert report.status_code == 200
    assert report.json()["drift"] == 0
    assert report.json()["ledgerSum"] == 40


@pytest.mark.asyncio
async def test_cooldown_and_penalty_status_endpoints(app_with_db, seed) -> None:
    app, _ = app_with_db
    customer = await seed.customer(points=150)

    async with _client(app) as client:
        cooldown = await client.get("/api/v1/cooldown", headers=_as(customer))
        lift = await client.post("/api/v1/cooldown/lift", headers=_as(customer))
        penalty = await client.get("/api/v1/penalties/me", headers=_as(customer))
        penalty_lift = await client.post("/api/v1/penalties/lift", headers=_as(customer))

    assert cooldown.status_code == 200
    assert cooldown.json()["inCooldown"] is False
    assert cooldown.json()["threshold"] == 3
    assert lift.json()["success"] is False
    assert lift.json()["pointsSpent"] == 0
    assert penalty.json()["noShowCount"] == 0
    assert penalty.json()["isSuspended"] is False
    assert penalty_lift.status_code == 400
    assert await seed.balance(customer.id) == 150


@pytest.mark.asyncio
async def test_system_sweeps_require_internal_key(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "internal_api_key", "sweep-secret")

    async with _client(app) as client:
        rejected = await client.post("/api/v1/system/sweeps/expired-reservations")
        expired = await client.post(
            "/api/v1/system/sweeps/expired-reservations",
            headers={"X-API-Key": "sweep-secret"},
        )
        forgiveness = await client.post(
            "/api/v1/system/sweeps/forgiveness",
            headers={"X-API-Key": "sweep-secret"},
        )
        snapshot = await client.get("/api/v1/observability/engine", headers={"X-API-Key": "sweep-secret"})

    assert rejected.status_code == 401
    assert expired.status_code == 200
    assert expired.json() == {"expired": 0, "no_shows_recorded": 0, "points_released": 0}
    assert forgiveness.json() == {"auto_denied": 0, "request_ids": []}
    assert snapshot.status_code == 200
    assert set(snapshot.json()) == {"engine", "scheduler"}


@pytest.mark.asyncio
async def test_readiness_reports_database_and_scheduler(app_with_db) -> None:
    app, _ = app_with_db

    async with _client(app) as client:
        response = await client.get("/api/v1/readyz")
        health = await client.get("/healthz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    assert payload["components"]["database"]["status"] == "ready"
    assert payload["components"]["sweep_scheduler"]["status"] == "disabled"
    assert health.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_no_show_forgiveness_round_trip(app_with_db, seed) -> None:
    app, _ = app_with_db
    customer = await seed.customer(points=20)
    partner_user, partner = await seed.partner()
    offer = await seed.offer(partner)

    async with _client(app) as client:
        reservation = (
            await client.post(
                "/api/v1/reservations",
                json={"offerId": str(offer.id), "quantity": 1},
                headers=_as(customer),
            )
        ).json()
        no_show = await client.post(f"/api/v1/reservations/{reservation['id']}/no-show", headers=_as(partner_user))
        assert no_show.status_code == 200, no_show.text
        assert no_show.json()["reservation"]["status"] == "FAILED_PICKUP"
        assert no_show.json()["pointsReleased"] == 5

        status = (await client.get("/api/v1/penalties/me", headers=_as(customer))).json()
        assert status["noShowCount"] == 1
        assert status["tier"] == "warning"

        requested = await client.post(
            f"/api/v1/penalties/{status['penaltyId']}/forgiveness",
            json={"message": "Had a family emergency"},
            headers=_as(customer),
        )
        assert requested.status_code == 201, requested.text
        assert requested.json()["status"] == "PENDING"

        pending = await client.get("/api/v1/forgiveness/pending", headers=_as(partner_user))
        assert [row["id"] for row in pending.json()] == [requested.json()["requestId"]]

        resolved = await client.post(
            f"/api/v1/forgiveness/{requested.json()['requestId']}/resolve",
            json={"granted": True, "message": "No worries"},
            headers=_as(partner_user),
        )
        assert resolved.status_code == 200, resolved.text
        assert resolved.json()["granted"] is True
        assert resolved.json()["noShowCount"] == 0

        customer_resolve = await client.post(
            f"/api/v1/forgiveness/{requested.json()['requestId']}/resolve",
            json={"granted": True},
            headers=_as(customer),
        )
        assert customer_resolve.status_code == 403

    assert await seed.balance(customer.id) == 20


@pytest.mark.asyncio
async def test_slot_purchase_and_referral_endpoints(app_with_db, seed) -> None:
    app, _ = app_with_db
    referrer = await seed.customer(points=150)
    newcomer = await seed.customer()

    async with _client(app) as client:
        slots = await client.get("/api/v1/slots", headers=_as(referrer))
        purchase = await client.post("/api/v1/slots/purchase", headers=_as(referrer))
        broke = await client.post("/api/v1/slots/purchase", headers=_as(referrer))
        code = (await client.get("/api/v1/referrals/code", headers=_as(referrer))).json()["code"]
        applied = await client.post("/api/v1/referrals/apply", json={"code": code}, headers=_as(newcomer))
        reapplied = await client.post("/api/v1/referrals/apply", json={"code": code}, headers=_as(newcomer))

    assert slots.json() == {"currentLimit": 3, "maxLimit": 10, "nextCost": 100}
    assert purchase.json()["newLimit"] == 4
    assert purchase.json()["balance"] == 50
    assert broke.status_code == 402
    assert applied.status_code == 200, applied.text
    assert applied.json()["bonusPoints"] == 50
    assert reapplied.status_code == 409
    assert await seed.balance(referrer.id) == 100


@pytest.mark.asyncio
async def test_prometheus_export_lists_engine_counters(app_with_db) -> None:
    app, _ = app_with_db
    store = get_engine_store()
    store.record_ledger_transaction("refund", 5)
    store.record_transition("CANCELLED")

    async with _client(app) as client:
        response = await client.get("/api/v1/observability/prometheus")

    assert response.status_code == 200
    body = response.text
    assert 'smartpick_ledger_transactions_total{reason="refund"} 1' in body
    assert 'smartpick_ledger_points_total{reason="refund"} 5' in body
    assert 'smartpick_reservation_transitions_total{status="CANCELLED"} 1' in body


@pytest.mark.asyncio
async def test_late_resolve_keeps_expired_status(app_with_db, seed, clock) -> None:
    app, session_factory = app_with_db
    customer = await seed.customer()
    partner_user, partner = await seed.partner()
    # Seeded on the frozen clock, so the deadline is long past by wall-clock time.
    async with session_factory() as session:
        offense = (await PenaltyService(session, clock=clock).record_no_show(customer.id, partner_id=partner.id)).value
        request = (
            await ForgivenessService(session, clock=clock).request_forgiveness(
                offense.penalty_id, customer.id, "Missed the bus"
            )
        ).value
        await session.commit()

    async with _client(app) as client:
        response = await client.post(
            f"/api/v1/forgiveness/{request.id}/resolve",
            json={"granted": True},
            headers=_as(partner_user),
        )

    assert response.status_code == 409
    assert response.json()["code"] == "invalid_state_transition"
    async with session_factory() as session:
        stored = await session.get(ForgivenessRequest, request.id)
        status = await PenaltyService(session, clock=clock).get_penalty_status(customer.id)
    assert stored.status == ForgivenessStatus.EXPIRED
    assert status.no_show_count == 1
