"""
test_raffle_api.py - REST endpoint tests against a fully wired server.

Covers the catalog, current round, entry, history, user, status and admin
endpoints, including how core errors map onto HTTP status codes.
"""

import pytest

pytestmark = pytest.mark.asyncio

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
BROKE = "0x" + "d4" * 20


def _enter(client, raffle_id, wallet, tickets=1):
    return client.post(f"/api/raffles/{raffle_id}/enter",
                       json={"wallet": wallet, "ticket_count": tickets})


class TestOverview:

    async def test_root(self, client):
        resp = client.get("/")
        assert resp.status_code == 200
        data = resp.json()
        assert data["service"] == "Raffle Platform"
        assert data["payment_backend"] == "simulated"
        assert data["raffles"] == 4

    async def test_status(self, client):
        _enter(client, "1", ALICE)
        data = client.get("/api/status").json()
        assert data["rounds"]["active"] == 1
        assert data["pending_entries"] == 0
        assert data["winners"] == 0
        assert data["parked_rounds"] == {}
        assert data["auto_draw"] is True


class TestCatalog:

    async def test_list_raffles(self, client):
        raffles = client.get("/api/raffles").json()
        assert [r["id"] for r in raffles] == ["1", "2", "3", "4"]
        assert raffles[0]["ticket_price"] == 0.0023
        assert raffles[0]["capacity"] == 80
        assert raffles[3]["is_free"] is True

    async def test_get_raffle_before_any_round(self, client):
        data = client.get("/api/raffles/2").json()
        assert data["name"] == "0.0777 BNB"
        assert data["current_round"] is None

    async def test_unknown_raffle(self, client):
        resp = client.get("/api/raffles/99")
        assert resp.status_code == 404
        assert resp.json()["detail"]["error"] == "raffle_not_found"

    async def test_current_round_is_created_and_committed(self, client):
        rnd = client.get("/api/raffles/1/round").json()
        assert rnd["round_number"] == 1
        assert rnd["status"] == "active"
        assert rnd["tickets_sold"] == 0
        assert rnd["capacity"] == 80
        assert len(rnd["commit_hash"]) == 64

        again = client.get("/api/raffles/1/round").json()
        assert again["id"] == rnd["id"]
        assert client.get("/api/raffles/1").json()["current_round"]["id"] == rnd["id"]

        commitment = client.get(f"/api/rounds/{rnd['id']}/commitment").json()
        assert commitment["commit_hash"] == rnd["commit_hash"]
        assert commitment["revealed"] is False
        assert "reveal" not in commitment


class TestEnter:

    async def test_paid_entry(self, client):
        resp = _enter(client, "1", ALICE, 5)
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["entry"]["status"] == "confirmed"
        assert body["entry"]["amount"] == pytest.approx(0.0115)

        rnd = client.get(f"/api/rounds/{body['entry']['round_id']}").json()
        assert rnd["tickets_sold"] == 5
        assert rnd["prize_pool"] == pytest.approx(0.0115)

    async def test_free_entry_once_per_wallet(self, client):
        assert _enter(client, "4", ALICE).status_code == 200
        resp = _enter(client, "4", ALICE)
        assert resp.status_code == 409
        assert resp.json()["error"] == "already_entered"

        entered = client.get("/api/raffles/4/entered", params={"wallet": ALICE}).json()
        assert entered["entered"] is True
        other = client.get("/api/raffles/4/entered", params={"wallet": BOB}).json()
        assert other["entered"] is False

    async def test_entered_without_round(self, client):
        resp = client.get("/api/raffles/3/entered", params={"wallet": ALICE})
        assert resp.status_code == 404

    @pytest.mark.parametrize("raffle_id,wallet,tickets,status,error", [
        ("1", ALICE, 0, 400, "invalid_ticket_count"),
        ("1", ALICE, 81, 400, "invalid_ticket_count"),
        ("1", "", 1, 400, "invalid_wallet"),
        ("99", ALICE, 1, 404, "raffle_not_found"),
        ("1", BROKE, 1, 402, "payment_rejected"),
    ])
    async def test_entry_errors(self, client, raffle_id, wallet, tickets, status, error):
        resp = _enter(client, raffle_id, wallet, tickets)
        assert resp.status_code == status
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == error
        assert body["message"]

    async def test_missing_wallet_field(self, client):
        resp = client.post("/api/raffles/1/enter", json={"ticket_count": 1})
        assert resp.status_code == 422

    async def test_sold_out_round(self, client):
        assert _enter(client, "3", ALICE, 20).status_code == 200
        resp = _enter(client, "3", BOB, 1)
        assert resp.status_code == 409
        assert resp.json()["error"] == "round_closed"

    async def test_payment_reaches_treasury(self, client, server):
        from raffle_platform import config
        before = server.chain.get_balance(config.TREASURY_ADDRESS)
        _enter(client, "2", ALICE, 2)
        balance = client.get(f"/chain/balance/{config.TREASURY_ADDRESS}").json()["balance"]
        assert balance == pytest.approx(before + 0.0156)


class TestHistoryAndUsers:

    async def test_round_history(self, client, server, clock):
        _enter(client, "1", ALICE)
        clock.advance(server.lifecycle.duration_sec)
        _enter(client, "1", ALICE)
        history = client.get("/api/raffles/1/rounds").json()
        assert [r["round_number"] for r in history] == [2, 1]
        assert history[1]["status"] == "ended"

    async def test_unknown_round(self, client):
        assert client.get("/api/rounds/round-missing").status_code == 404
        assert client.get("/api/rounds/round-missing/commitment").status_code == 404
        assert client.get("/api/rounds/round-missing/winner").status_code == 404

    async def test_user_stats_and_entries(self, client):
        _enter(client, "1", ALICE, 2)
        _enter(client, "2", ALICE, 1)
        _enter(client, "4", ALICE)
        stats = client.get(f"/api/users/{ALICE}/stats").json()
        assert stats["tickets_purchased"] == 4
        assert stats["total_spent"] == pytest.approx(0.0124)
        assert stats["raffles_entered"] == 3
        assert stats["raffles_won"] == 0

        entries = client.get(f"/api/users/{ALICE}/entries", params={"limit": 2}).json()
        assert len(entries) == 2
        assert entries[0]["raffle_id"] == "4"

    async def test_leaderboard_periods(self, client):
        assert client.get("/api/leaderboard").json() == []
        assert client.get("/api/leaderboard", params={"period": "week"}).status_code == 200
        assert client.get("/api/leaderboard", params={"period": "forever"}).status_code == 400

    async def test_winners_empty(self, client):
        assert client.get("/api/winners").json() == []


class TestAdmin:

    async def test_draw_requires_key(self, client):
        rnd = client.get("/api/raffles/1/round").json()
        assert client.post(f"/api/admin/rounds/{rnd['id']}/draw").status_code == 403
        resp = client.post(f"/api/admin/rounds/{rnd['id']}/draw", headers={"X-API-Key": "nope"})
        assert resp.status_code == 403

    async def test_draw_active_round_conflicts(self, client, admin_headers):
        rnd = client.get("/api/raffles/1/round").json()
        resp = client.post(f"/api/admin/rounds/{rnd['id']}/draw", headers=admin_headers)
        assert resp.status_code == 409
        assert resp.json()["detail"]["error"] == "round_not_ended"

    async def test_draw_unknown_round(self, client, admin_headers):
        resp = client.post("/api/admin/rounds/round-missing/draw", headers=admin_headers)
        assert resp.status_code == 404

    async def test_reconcile(self, client, admin_headers):
        _enter(client, "1", ALICE, 2)
        assert client.post("/api/admin/reconcile").status_code == 403
        resp = client.post("/api/admin/reconcile", headers=admin_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["rounds_checked"] == 1
        assert data["rounds_corrected"] == 0
        assert data["settled"] == {"confirmed": 0, "failed": 0, "pending": 0}
