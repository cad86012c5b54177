from datetime import datetime, timedelta, timezone

import anyio
import pytest
from starlette.websockets import WebSocketDisconnect

from carmarket.services.realtime import (
    ChangeEvent,
    DealershipFeed,
    INSERT,
    UPDATE,
    DELETE,
    feed,
    live_rows,
    publish_change,
    reduce,
    reduce_all,
)

from .utils import SUBMISSION, auth, make_dealership, make_user


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _row(id, minutes=0, version=1, **extra):
    row = {
        "id": id,
        "business_name": f"Dealer {id}",
        "status": "pending",
        "created_at": T0.isoformat(),
        "updated_at": (T0 + timedelta(minutes=minutes)).isoformat(),
        "version": version,
    }
    row.update(extra)
    return row


def test_reduce_applies_newer_and_leaves_input_alone():
    state = {1: _row(1, minutes=0)}
    newer = _row(1, minutes=5, version=2, status="approved")
    out = reduce(state, ChangeEvent(UPDATE, newer))
    assert out[1]["status"] == "approved"
    assert state[1]["status"] == "pending"


def test_reduce_discards_older_row():
    state = {1: _row(1, minutes=5, version=2, status="approved")}
    out = reduce(state, ChangeEvent(UPDATE, _row(1, minutes=0)))
    assert out is state


def test_reduce_breaks_timestamp_ties_on_version():
    state = {1: _row(1, minutes=5, version=3, status="rejected")}
    assert reduce(state, ChangeEvent(UPDATE, _row(1, minutes=5, version=2))) is state
    out = reduce(state, ChangeEvent(UPDATE, _row(1, minutes=5, version=3, status="approved")))
    assert out[1]["status"] == "approved"


def test_reduce_delete_and_unknown_type():
    state = {1: _row(1), 2: _row(2)}
    out = reduce(state, ChangeEvent(DELETE, {"id": 1}))
    assert set(live_rows(out)) == {2}
    assert set(state) == {1, 2}
    with pytest.raises(ValueError):
        reduce(state, ChangeEvent("TRUNCATE", _row(1)))


def test_reduce_late_update_cannot_revive_deleted_row():
    state = reduce({}, ChangeEvent(UPDATE, _row(1, minutes=0)))
    state = reduce(state, ChangeEvent(DELETE, _row(1, minutes=10, version=2)))
    out = reduce(state, ChangeEvent(UPDATE, _row(1, minutes=5, version=2, status="approved")))
    assert out is state
    assert live_rows(out) == {}
    # Same stamp as the delete is still stale
    assert reduce(state, ChangeEvent(INSERT, _row(1, minutes=10, version=2))) is state


def test_reduce_delete_without_stamp_covers_cached_row():
    state = {1: _row(1, minutes=5, version=2)}
    state = reduce(state, ChangeEvent(DELETE, {"id": 1}))
    assert reduce(state, ChangeEvent(UPDATE, _row(1, minutes=5, version=2))) is state
    revived = reduce(state, ChangeEvent(UPDATE, _row(1, minutes=6, version=3, status="approved")))
    assert live_rows(revived)[1]["status"] == "approved"


def test_reduce_delete_arriving_before_insert():
    state = reduce({}, ChangeEvent(DELETE, _row(4, minutes=3, version=2)))
    assert reduce(state, ChangeEvent(INSERT, _row(4, minutes=0))) is state
    assert live_rows(state) == {}


def test_reduce_all_is_order_independent_for_stale_reads():
    events = [
        ChangeEvent(INSERT, _row(1, minutes=0)),
        ChangeEvent(UPDATE, _row(1, minutes=10, version=3, status="approved")),
        ChangeEvent(UPDATE, _row(1, minutes=5, version=2)),
    ]
    assert reduce_all({}, events)[1]["status"] == "approved"
    assert reduce_all({}, reversed(events))[1]["status"] == "approved"


def test_prime_never_overwrites_pushed_state():
    hub = DealershipFeed()
    hub.apply(ChangeEvent(UPDATE, _row(1, minutes=10, version=2, status="approved")))
    hub.prime([_row(1, minutes=0), _row(2, minutes=0)])
    rows = {r["id"]: r for r in hub.snapshot()}
    assert rows[1]["status"] == "approved"
    assert set(rows) == {1, 2}


def test_prime_does_not_resurrect_deleted_dealership():
    hub = DealershipFeed()
    hub.apply(ChangeEvent(INSERT, _row(1, minutes=0)))
    hub.apply(ChangeEvent(DELETE, _row(1, minutes=10, version=2)))
    hub.prime([_row(1, minutes=5, version=2, status="approved")])
    assert hub.snapshot() == []


class FakeSocket:
    def __init__(self, broken=False):
        self.sent = []
        self.broken = broken

    async def send_json(self, data):
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(data)


def test_publish_fans_out_and_survives_dead_sockets():
    good, dead = FakeSocket(), FakeSocket(broken=True)

    async def scenario():
        hub = DealershipFeed()
        await hub.subscribe(good)
        await hub.subscribe(dead)
        await hub.publish(ChangeEvent(INSERT, _row(7)))
        await hub.unsubscribe(good)
        await hub.publish(ChangeEvent(DELETE, {"id": 7}))
        return hub.snapshot()

    snapshot = anyio.run(scenario)
    assert snapshot == []
    assert good.sent == [{"event": "dealership_change", "data": {"type": INSERT, "record": _row(7)}}]


def test_publish_change_outside_worker_thread_updates_snapshot():
    publish_change(INSERT, _row(3))
    assert [r["id"] for r in feed.snapshot()] == [3]


def test_http_writes_reach_the_feed(client, db, seller, admin):
    created = client.post("/dealerships", headers=auth(seller), json=SUBMISSION).json()
    assert [(r["id"], r["status"]) for r in feed.snapshot()] == [(created["id"], "pending")]

    client.post(f"/admin/dealerships/{created['id']}/approve", headers=auth(admin), json={})
    assert [(r["id"], r["status"]) for r in feed.snapshot()] == [(created["id"], "approved")]


def test_websocket_sends_snapshot_and_answers_ping(client, db, seller, admin):
    d = make_dealership(db, seller)
    with client.websocket_connect(f"/ws/admin/dealerships?token={auth(admin)['Authorization'].split()[1]}") as ws:
        msg = ws.receive_json()
        assert msg["event"] == "snapshot"
        assert [r["id"] for r in msg["data"]] == [d.id]
        ws.send_text("ping")
        assert ws.receive_text() == "pong"


def test_websocket_rejects_missing_token_and_non_admins(client, db, seller):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/admin/dealerships"):
            pass
    assert exc.value.code == 4401

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect("/ws/admin/dealerships?token=garbage"):
            pass
    assert exc.value.code == 4401

    token = auth(seller)["Authorization"].split()[1]
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/ws/admin/dealerships?token={token}"):
            pass
    assert exc.value.code == 4403


def test_websocket_rejects_inactive_admin(client, db):
    ghost = make_user(db, "ghost@example.com", role="admin", is_active=False)
    token = auth(ghost)["Authorization"].split()[1]
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/ws/admin/dealerships?token={token}"):
            pass
    assert exc.value.code == 4401
