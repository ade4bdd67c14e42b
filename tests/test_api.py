"""
HTTP and WebSocket tests for the battle router.
"""

import random
from datetime import date

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from conftest import make_pool

import main
from app.apis.deps import get_daily_challenges, get_room_store, get_today, get_vocabulary
from app.modules.battle.daily import DailyChallengeService
from app.modules.battle.errors import StoreError
from app.modules.battle.rooms import RoomStore
from app.modules.battle.store import InMemoryDocumentStore
from app.modules.battle.vocabulary import StaticVocabularySource


BASE = "/v1/battle"


@pytest.fixture
def client(fast_config):
    store = InMemoryDocumentStore()
    rooms = RoomStore(store, config=fast_config, rng=random.Random(3))
    vocabulary = StaticVocabularySource(make_pool(20))
    daily = DailyChallengeService(store, vocabulary)
    overrides = {
        get_room_store: lambda: rooms,
        get_vocabulary: lambda: vocabulary,
        get_daily_challenges: lambda: daily,
        get_today: lambda: date(2026, 10, 19),
    }
    main.app.dependency_overrides.update(overrides)
    try:
        with TestClient(main.app) as c:
            yield c
    finally:
        main.app.dependency_overrides.clear()


def _create(client, host_id="host-1"):
    res = client.post(f"{BASE}/rooms", json={"host_id": host_id, "host_name": "Hana"})
    assert res.status_code == 200
    return res.json()


def _join(client, code, guest_id="guest-1"):
    return client.post(
        f"{BASE}/rooms/{code}/join", json={"guest_id": guest_id, "guest_name": "Gil"}
    )


class TestRooms:
    def test_create_room(self, client):
        body = _create(client)
        room = body["room"]
        assert len(body["room_code"]) == 6
        assert room["status"] == "waiting"
        assert len(room["questions"]) == 10
        assert body["ws_url"] == f"{BASE}/ws/{body['room_code']}?participant_id=host-1"

    def test_join_then_read(self, client):
        code = _create(client)["room_code"]
        res = _join(client, code.lower())
        assert res.status_code == 200
        assert res.json()["room"]["status"] == "ready"

        room = client.get(f"{BASE}/rooms/{code}").json()["room"]
        assert room["guest_name"] == "Gil"

    def test_unknown_room_is_404(self, client):
        assert client.get(f"{BASE}/rooms/NOPE00").status_code == 404
        assert _join(client, "NOPE00").status_code == 404

    def test_second_guest_is_409(self, client):
        code = _create(client)["room_code"]
        _join(client, code)
        assert _join(client, code, guest_id="late").status_code == 409

    def test_guest_cannot_advance(self, client):
        code = _create(client)["room_code"]
        _join(client, code)
        res = client.post(
            f"{BASE}/rooms/{code}/advance", json={"participant_id": "guest-1", "from_index": 0}
        )
        assert res.status_code == 403

    def test_stranger_cannot_answer(self, client):
        code = _create(client)["room_code"]
        res = client.post(
            f"{BASE}/rooms/{code}/answer",
            json={"participant_id": "stranger", "index": 0, "answer": "x"},
        )
        assert res.status_code == 403

    def test_answer_and_advance(self, client):
        body = _create(client)
        code = body["room_code"]
        question = body["room"]["questions"][0]
        _join(client, code)
        started = client.post(f"{BASE}/rooms/{code}/start", json={"participant_id": "host-1"})
        assert started.json()["applied"] is True

        answer = {"participant_id": "guest-1", "index": 0, "answer": question["correct_option"]}
        first = client.post(f"{BASE}/rooms/{code}/answer", json=answer).json()
        second = client.post(f"{BASE}/rooms/{code}/answer", json=answer).json()
        assert first["applied"] and not second["applied"]
        assert second["room"]["guest_score"] == 1

        advanced = client.post(
            f"{BASE}/rooms/{code}/advance", json={"participant_id": "host-1", "from_index": 0}
        ).json()
        assert advanced["room"]["current_index"] == 1
        assert advanced["room"]["guest_answer"] is None

    def test_delete_room(self, client):
        code = _create(client)["room_code"]
        assert client.delete(f"{BASE}/rooms/{code}").status_code == 204
        assert client.get(f"{BASE}/rooms/{code}").status_code == 404


class TestDaily:
    def test_daily_flow(self, client):
        first = client.get(f"{BASE}/daily/u1").json()
        assert first["completed"] is False
        assert len(first["questions"]) == 5

        record = client.post(f"{BASE}/daily/u1/complete", json={"score": 4}).json()
        assert record["streak"] == 1
        assert record["last_completed"] == "2026-10-19"

        again = client.get(f"{BASE}/daily/u1").json()
        assert again["completed"] is True
        assert again["questions"] == []

    def test_negative_score_rejected(self, client):
        assert client.post(f"{BASE}/daily/u1/complete", json={"score": -1}).status_code == 422


class TestWebSocket:
    def test_pushes_room_state_and_accepts_answers(self, client):
        body = _create(client)
        code = body["room_code"]
        question = body["room"]["questions"][0]
        _join(client, code)

        with client.websocket_connect(f"{BASE}/ws/{code}?participant_id=guest-1") as ws:
            first = ws.receive_json()
            assert first["type"] == "room_state"
            assert first["data"]["status"] == "ready"

            ws.send_json({"type": "answer", "index": 0, "answer": question["correct_option"]})
            update = ws.receive_json()
            assert update["data"]["guest_answer"] == question["correct_option"]
            assert update["data"]["guest_score"] == 1

    def test_guest_advance_reports_error(self, client):
        code = _create(client)["room_code"]
        _join(client, code)
        with client.websocket_connect(f"{BASE}/ws/{code}?participant_id=guest-1") as ws:
            ws.receive_json()
            ws.send_json({"type": "advance", "from_index": 0})
            assert ws.receive_json()["type"] == "error"

    def test_room_deletion_is_pushed(self, client):
        code = _create(client)["room_code"]
        with client.websocket_connect(f"{BASE}/ws/{code}?participant_id=host-1") as ws:
            ws.receive_json()
            client.delete(f"{BASE}/rooms/{code}")
            assert ws.receive_json()["type"] == "room_deleted"

    @pytest.mark.parametrize(
        "query,code",
        [("", 4401), ("?participant_id=stranger", 4403)],
    )
    def test_rejected_connections(self, client, query, code):
        room_code = _create(client)["room_code"]
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(f"{BASE}/ws/{room_code}{query}"):
                pass
        assert exc.value.code == code

    def test_unknown_room_connection(self, client):
        with pytest.raises(WebSocketDisconnect) as exc:
            with client.websocket_connect(f"{BASE}/ws/NOPE00?participant_id=x"):
                pass
        assert exc.value.code == 4404


class UnavailableStore(InMemoryDocumentStore):
    async def get(self, key):
        raise StoreError("connection refused")


class TestDailyTransport:
    def test_completion_date_is_decided_by_server(self, client):
        res = client.post(f"{BASE}/daily/u1/complete", json={"score": 2, "day": "2026-10-18"})
        assert res.status_code == 200
        assert res.json()["last_completed"] == "2026-10-19"
        assert res.json()["streak"] == 1

    def test_store_outage_is_503(self, client):
        daily = DailyChallengeService(UnavailableStore(), StaticVocabularySource(make_pool(20)))
        main.app.dependency_overrides[get_daily_challenges] = lambda: daily
        assert client.get(f"{BASE}/daily/u1").status_code == 503
        assert client.post(f"{BASE}/daily/u1/complete", json={"score": 1}).status_code == 503


def test_ws_url_quotes_participant_id(client):
    body = _create(client, host_id="a b&c")
    assert body["ws_url"].endswith("?participant_id=a%20b%26c")
