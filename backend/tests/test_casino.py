from decimal import Decimal

import pytest
from sqlalchemy import select

from core.blackjack import Card
from core.casino import ROUNDS_TOTAL
from core.ledger import settings as ledger_settings
from core.roulette import POCKETS
from core.slots import SYMBOLS
from models import CasinoBet, Transaction


def sym(name):
    return next(s for s in SYMBOLS if s.name == name)


def shoe(*ranks):
    return lambda _rng: [Card(rank, "♥") for rank in ranks]


async def balance_of(client, headers, currency):
    res = await client.get("/wallet/balances", headers=headers)
    for b in res.json():
        if b["currency"] == currency:
            return b["amount"]
    return 0.0


async def transactions_of(session, user_id):
    res = await session.execute(
        select(Transaction).where(Transaction.user_id == user_id).order_by(Transaction.id)
    )
    return list(res.scalars().all())


@pytest.mark.asyncio
async def test_slots_win_credits_payout(client, session, user, auth_headers, monkeypatch):
    monkeypatch.setattr("core.casino.spin_reels", lambda _rng: [sym("Cherry")] * 3)
    wins_before = ROUNDS_TOTAL.labels(game="slots", outcome="win")._value.get()

    res = await client.post("/games/slots", json={"stake": "0.001", "currency": "BTC"}, headers=auth_headers)

    assert res.status_code == 200, res.text
    data = res.json()
    assert data["outcome"]["multiplier"] == 6
    assert data["round"]["outcome"] == "win"
    assert data["round"]["payout"] == pytest.approx(0.006)
    assert data["new_balance"]["amount"] == pytest.approx(0.015)
    assert data["transaction"]["type"] == "win"
    assert data["transaction"]["amount"] == pytest.approx(0.006)
    assert data["transaction"]["game_type"] == "slots"
    assert ROUNDS_TOTAL.labels(game="slots", outcome="win")._value.get() == wins_before + 1


@pytest.mark.asyncio
async def test_slots_loss_records_negative_stake(client, user, auth_headers, monkeypatch):
    monkeypatch.setattr(
        "core.casino.spin_reels", lambda _rng: [sym("Cherry"), sym("Lemon"), sym("Bell")]
    )

    res = await client.post("/games/slots", json={"stake": "0.001", "currency": "BTC"}, headers=auth_headers)

    data = res.json()
    assert data["round"]["outcome"] == "lose"
    assert data["new_balance"]["amount"] == pytest.approx(0.009)
    assert data["transaction"]["type"] == "bet"
    assert data["transaction"]["amount"] == pytest.approx(-0.001)


@pytest.mark.asyncio
async def test_stake_above_balance_is_rejected_without_side_effects(client, session, user, auth_headers):
    res = await client.post("/games/blackjack", json={"stake": "0.02", "currency": "BTC"}, headers=auth_headers)

    assert res.status_code == 400
    assert res.json()["detail"] == "insufficient balance"
    assert await balance_of(client, auth_headers, "BTC") == pytest.approx(0.01)
    assert await transactions_of(session, user["user"]["id"]) == []
    rounds = await session.execute(select(CasinoBet))
    assert rounds.scalars().all() == []


@pytest.mark.asyncio
async def test_stake_validation(client, auth_headers):
    zero = await client.post("/games/slots", json={"stake": "0", "currency": "BTC"}, headers=auth_headers)
    assert zero.status_code == 422

    too_big = await client.post("/games/slots", json={"stake": "1000", "currency": "BTC"}, headers=auth_headers)
    assert too_big.status_code == 400

    unknown = await client.post("/games/slots", json={"stake": "0.001", "currency": "XRP"}, headers=auth_headers)
    assert unknown.status_code == 400


@pytest.mark.asyncio
async def test_roulette_red_and_even_on_red_odd_pocket(client, session, user, auth_headers, monkeypatch):
    monkeypatch.setattr("core.casino.spin_wheel", lambda _rng: POCKETS[19])

    res = await client.post(
        "/games/roulette",
        json={
            "currency": "ETH",
            "bets": [
                {"type": "red", "amount": "0.01"},
                {"type": "even", "amount": "0.01"},
            ],
        },
        headers=auth_headers,
    )

    assert res.status_code == 200, res.text
    data = res.json()
    assert data["outcome"]["pocket"] == {"number": 19, "color": "red"}
    assert [b["won"] for b in data["outcome"]["bets"]] == [True, False]
    assert data["round"]["stake"] == pytest.approx(0.02)
    assert data["round"]["payout"] == pytest.approx(0.02)
    assert data["transaction"]["type"] == "win"
    assert data["transaction"]["amount"] == pytest.approx(0.02)
    assert data["new_balance"]["amount"] == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_roulette_losing_straight(client, auth_headers, monkeypatch):
    monkeypatch.setattr("core.casino.spin_wheel", lambda _rng: POCKETS[0])

    res = await client.post(
        "/games/roulette",
        json={"currency": "ETH", "bets": [{"type": "straight", "amount": "0.01", "selection": 7}]},
        headers=auth_headers,
    )

    assert res.json()["new_balance"]["amount"] == pytest.approx(0.09)
    assert res.json()["transaction"]["amount"] == pytest.approx(-0.01)


@pytest.mark.asyncio
async def test_unified_bet_endpoint(client, auth_headers, monkeypatch):
    monkeypatch.setattr("core.casino.spin_reels", lambda _rng: [sym("Bell"), sym("Diamond"), sym("Bell")])

    res = await client.post(
        "/games/bet",
        json={"stake": "0.001", "currency": "BTC", "game_type": "slots"},
        headers=auth_headers,
    )

    assert res.status_code == 200
    assert res.json()["round"]["game"] == "slots"
    assert res.json()["new_balance"]["amount"] == pytest.approx(0.019)

    mismatch = await client.post(
        "/games/bet",
        json={
            "stake": "0.05",
            "currency": "ETH",
            "game_type": "roulette",
            "bets": [{"type": "red", "amount": "0.01"}],
        },
        headers=auth_headers,
    )
    assert mismatch.status_code == 400

    missing_stake = await client.post(
        "/games/bet", json={"currency": "BTC", "game_type": "slots"}, headers=auth_headers
    )
    assert missing_stake.status_code == 422


@pytest.mark.asyncio
async def test_idempotency_key_replays_round(client, session, user, auth_headers, monkeypatch):
    monkeypatch.setattr(
        "core.casino.spin_reels", lambda _rng: [sym("Cherry"), sym("Lemon"), sym("Bell")]
    )
    headers = {**auth_headers, "Idempotency-Key": "spin-1"}

    first = await client.post("/games/slots", json={"stake": "0.001", "currency": "BTC"}, headers=headers)
    second = await client.post("/games/slots", json={"stake": "0.001", "currency": "BTC"}, headers=headers)

    assert first.status_code == 200 and second.status_code == 200
    assert not first.json()["replayed"]
    assert second.json()["replayed"]
    assert second.json()["round"]["id"] == first.json()["round"]["id"]
    assert second.json()["new_balance"]["amount"] == pytest.approx(0.009)
    assert len(await transactions_of(session, user["user"]["id"])) == 1


@pytest.mark.asyncio
async def test_blackjack_stand_win(client, session, user, auth_headers, monkeypatch):
    monkeypatch.setattr("core.casino.new_shoe", shoe("10", "6", "8", "10", "K"))

    deal = await client.post("/games/blackjack", json={"stake": "0.001", "currency": "BTC"}, headers=auth_headers)
    assert deal.status_code == 200
    data = deal.json()
    assert data["round"]["status"] == "in_progress"
    assert data["outcome"]["dealer_cards"] == ["6♥"]
    assert data["outcome"]["dealer_hidden"] == 1
    assert data["new_balance"]["amount"] == pytest.approx(0.009)

    round_id = data["round"]["id"]
    stand = await client.post(f"/games/blackjack/{round_id}/stand", headers=auth_headers)

    assert stand.status_code == 200
    result = stand.json()
    assert result["outcome"]["result"] == "win"
    assert result["round"]["status"] == "completed"
    assert len(result["outcome"]["dealer_cards"]) == 3
    assert result["new_balance"]["amount"] == pytest.approx(0.011)

    txs = await transactions_of(session, user["user"]["id"])
    assert [(t.type, float(t.amount)) for t in txs] == [
        ("bet", pytest.approx(-0.001)),
        ("win", pytest.approx(0.002)),
    ]

    again = await client.post(f"/games/blackjack/{round_id}/hit", headers=auth_headers)
    assert again.status_code == 400


@pytest.mark.asyncio
async def test_blackjack_hit_bust(client, auth_headers, monkeypatch):
    monkeypatch.setattr("core.casino.new_shoe", shoe("10", "9", "6", "8", "K"))

    deal = await client.post("/games/blackjack", json={"stake": "0.001", "currency": "BTC"}, headers=auth_headers)
    round_id = deal.json()["round"]["id"]
    hit = await client.post(f"/games/blackjack/{round_id}/hit", headers=auth_headers)

    assert hit.json()["outcome"]["result"] == "lose"
    assert hit.json()["round"]["payout"] == 0
    assert hit.json()["new_balance"]["amount"] == pytest.approx(0.009)


@pytest.mark.asyncio
async def test_blackjack_double(client, session, user, auth_headers, monkeypatch):
    monkeypatch.setattr("core.casino.new_shoe", shoe("5", "10", "6", "7", "10"))

    deal = await client.post("/games/blackjack", json={"stake": "0.001", "currency": "BTC"}, headers=auth_headers)
    round_id = deal.json()["round"]["id"]
    double = await client.post(f"/games/blackjack/{round_id}/double", headers=auth_headers)

    assert double.status_code == 200
    data = double.json()
    assert data["outcome"]["doubled"]
    assert data["round"]["stake"] == pytest.approx(0.002)
    assert data["outcome"]["result"] == "win"
    assert data["new_balance"]["amount"] == pytest.approx(0.012)
    assert [t["type"] for t in data["transactions"]] == ["bet", "win"]


@pytest.mark.asyncio
async def test_blackjack_double_respects_max_stake(client, session, user, auth_headers, monkeypatch):
    monkeypatch.setattr(ledger_settings, "max_stake", Decimal("0.001"))
    monkeypatch.setattr("core.casino.new_shoe", shoe("5", "10", "6", "7", "10"))

    deal = await client.post("/games/blackjack", json={"stake": "0.001", "currency": "BTC"}, headers=auth_headers)
    assert deal.status_code == 200
    round_id = deal.json()["round"]["id"]

    double = await client.post(f"/games/blackjack/{round_id}/double", headers=auth_headers)

    assert double.status_code == 400
    assert double.json()["detail"] == "maximum stake is 0.001"
    assert await balance_of(client, auth_headers, "BTC") == pytest.approx(0.009)
    assert len(await transactions_of(session, user["user"]["id"])) == 1

    stand = await client.post(f"/games/blackjack/{round_id}/stand", headers=auth_headers)
    assert stand.status_code == 200
    assert stand.json()["round"]["stake"] == pytest.approx(0.001)


@pytest.mark.asyncio
async def test_blackjack_natural_settles_on_deal(client, auth_headers, monkeypatch):
    monkeypatch.setattr("core.casino.new_shoe", shoe("A", "9", "K", "7"))

    deal = await client.post("/games/blackjack", json={"stake": "0.002", "currency": "BTC"}, headers=auth_headers)

    data = deal.json()
    assert data["round"]["status"] == "completed"
    assert data["outcome"]["natural"]
    assert data["round"]["payout"] == pytest.approx(0.005)
    assert data["new_balance"]["amount"] == pytest.approx(0.013)


@pytest.mark.asyncio
async def test_blackjack_push_refunds_stake(client, auth_headers, monkeypatch):
    monkeypatch.setattr("core.casino.new_shoe", shoe("10", "10", "8", "8"))

    deal = await client.post("/games/blackjack", json={"stake": "0.001", "currency": "BTC"}, headers=auth_headers)
    stand = await client.post(f"/games/blackjack/{deal.json()['round']['id']}/stand", headers=auth_headers)

    data = stand.json()
    assert data["outcome"]["result"] == "push"
    assert data["transaction"]["type"] == "refund"
    assert data["new_balance"]["amount"] == pytest.approx(0.01)


@pytest.mark.asyncio
async def test_blackjack_unknown_round_and_action(client, auth_headers, monkeypatch):
    missing = await client.post("/games/blackjack/999/hit", headers=auth_headers)
    assert missing.status_code == 404

    monkeypatch.setattr("core.casino.new_shoe", shoe("2", "3", "4", "5", "6", "7"))
    deal = await client.post("/games/blackjack", json={"stake": "0.001", "currency": "BTC"}, headers=auth_headers)
    bad = await client.post(f"/games/blackjack/{deal.json()['round']['id']}/split", headers=auth_headers)
    assert bad.status_code == 400


@pytest.mark.asyncio
async def test_rounds_belong_to_their_owner(client, auth_headers, monkeypatch):
    from conftest import bearer, signup

    monkeypatch.setattr("core.casino.new_shoe", shoe("2", "3", "4", "5", "6", "7"))
    deal = await client.post("/games/blackjack", json={"stake": "0.001", "currency": "BTC"}, headers=auth_headers)

    other = await signup(client, username="mallory")
    res = await client.post(
        f"/games/blackjack/{deal.json()['round']['id']}/hit", headers=bearer(other["token"])
    )
    assert res.status_code == 404


@pytest.mark.asyncio
async def test_list_recent_rounds(client, auth_headers, monkeypatch):
    monkeypatch.setattr("core.casino.spin_reels", lambda _rng: [sym("Cherry"), sym("Lemon"), sym("Bell")])
    for _ in range(3):
        await client.post("/games/slots", json={"stake": "0.001", "currency": "BTC"}, headers=auth_headers)

    res = await client.get("/games/bets", params={"limit": 2}, headers=auth_headers)

    assert res.status_code == 200
    rounds = res.json()
    assert len(rounds) == 2
    assert rounds[0]["id"] > rounds[1]["id"]


@pytest.mark.asyncio
async def test_games_require_auth(client):
    res = await client.post("/games/slots", json={"stake": "0.001", "currency": "BTC"})
    assert res.status_code == 401
