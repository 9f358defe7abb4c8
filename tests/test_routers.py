from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from clinic_availability import main
from clinic_availability.database import get_db
from clinic_availability.models.generated import BookingContinuations
from clinic_availability.routers.slots import get_engine
from conftest import MONDAY, NOW, at


@pytest.fixture
def client(session_factory, engine):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    main.app.dependency_overrides[get_db] = override_db
    main.app.dependency_overrides[get_engine] = lambda: engine
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


@pytest.fixture
def morning(build, clinic):
    build.shift(
        clinic["staff"].id, clinic["location"].id, at(MONDAY, "09:00"), at(MONDAY, "10:00"),
        service_ids=[clinic["service"].id],
    )
    next_week = MONDAY + timedelta(weeks=1)
    build.shift(
        clinic["staff"].id, clinic["location"].id, at(next_week, "09:00"), at(next_week, "10:00"),
        service_ids=[clinic["service"].id],
    )
    return clinic


def day_params(clinic, **extra):
    return {
        "service_id": clinic["service"].id,
        "location_id": clinic["location"].id,
        "date": MONDAY.isoformat(),
        **extra,
    }


def test_get_day_slots(client, morning):
    response = client.get("/slots/day", params=day_params(morning))

    assert response.status_code == 200
    body = response.json()
    assert body["date"] == MONDAY.isoformat()
    assert [s["start_time"] for s in body["slots"]] == [
        "2030-01-07T09:00:00", "2030-01-07T09:15:00", "2030-01-07T09:30:00",
    ]
    assert body["slots"][0]["staff_id"] == morning["staff"].id


def test_day_errors_map_to_status(client, morning):
    assert client.get("/slots/day", params=day_params(morning, date="2030-01-01")).status_code == 400
    assert client.get("/slots/day", params=day_params(morning, service_id=999)).status_code == 404


def test_heatmap(client, morning):
    response = client.get("/slots/heatmap", params={
        "service_id": morning["service"].id,
        "location_id": morning["location"].id,
        "start": MONDAY.isoformat(),
        "end": (MONDAY + timedelta(days=2)).isoformat(),
    })

    assert response.status_code == 200
    body = response.json()
    assert body["complete"] is True
    assert [d["available_slots"] for d in body["days"]] == [3, 0, 0]

    bad = client.get("/slots/heatmap", params={
        "service_id": morning["service"].id,
        "location_id": morning["location"].id,
        "start": MONDAY.isoformat(),
        "end": (MONDAY - timedelta(days=1)).isoformat(),
    })
    assert bad.status_code == 400


def test_holds_round_trip(client, morning):
    hold = {
        "staff_id": morning["staff"].id,
        "start_time": "2030-01-07T09:00:00",
        "end_time": "2030-01-07T09:30:00",
        "session_token": "checkout-a",
    }
    created = client.post("/slots/holds", json=hold)
    assert created.status_code == 201
    assert created.json()["expires_at"] == (NOW + timedelta(minutes=30)).isoformat()

    clash = client.post("/slots/holds", json={**hold, "session_token": "checkout-b"})
    assert clash.status_code == 409

    hidden = client.get("/slots/day", params=day_params(morning, session_token="checkout-b"))
    assert len(hidden.json()["slots"]) == 1

    released = client.delete("/slots/holds", params={"session_token": "checkout-a"})
    assert released.json() == {"released": 1}


def test_cache_clear(client, morning):
    client.get("/slots/day", params=day_params(morning))
    response = client.post("/slots/cache/clear")
    assert response.status_code == 200
    assert response.json()["cleared"] >= 1


def test_continuation_flow(client, build, morning):
    repeat = build.repeat_type(morning["service"].id, duration_minutes=20, visit_count=2)
    origin = build.booking(
        morning["staff"].id, morning["location"].id, morning["service"].id, at(MONDAY, "09:00"),
        repeat_type_id=repeat.id,
    )

    issued = client.post("/continuations", json={
        "origin_booking_id": origin.id,
        "repeat_type_id": repeat.id,
    })
    assert issued.status_code == 201
    token = issued.json()["token"]
    assert issued.json()["remaining_visits"] == 1

    details = client.get(f"/continuations/{token}")
    assert details.status_code == 200
    assert details.json()["repeat_type"]["duration_minutes"] == 20
    assert "token" not in details.json()["continuation"]

    next_week = MONDAY + timedelta(weeks=1)
    slots = client.get("/slots/day", params=day_params(
        morning, date=next_week.isoformat(), continuation_token=token,
    ))
    assert slots.status_code == 200
    assert slots.json()["repeat_type_id"] == repeat.id
    assert [s["end_time"][11:16] for s in slots.json()["slots"]][:2] == ["09:20", "09:35"]

    booked = client.post(f"/continuations/{token}/book", json={
        "staff_id": morning["staff"].id,
        "start_time": at(next_week, "09:15").isoformat(),
    })
    assert booked.status_code == 201
    assert booked.json()["booking"]["parent_booking_id"] == origin.id
    assert booked.json()["next_continuation"] is None

    assert client.post(f"/continuations/{token}/redeem").status_code == 409
    assert client.get(f"/continuations/{token}").status_code == 409


def test_continuation_error_statuses(client, session_factory, build, morning):
    repeat = build.repeat_type(morning["service"].id)
    origin = build.booking(morning["staff"].id, morning["location"].id, morning["service"].id, at(MONDAY, "09:00"))
    with session_factory() as db:
        db.add(BookingContinuations(
            token="expired-token",
            origin_booking_id=origin.id,
            repeat_type_id=repeat.id,
            remaining_visits=1,
            expires_at=NOW - timedelta(days=1),
        ))
        db.commit()

    assert client.get("/continuations/unknown").status_code == 404
    assert client.get("/continuations/expired-token").status_code == 410
    assert client.post("/continuations/expired-token/redeem").status_code == 410


def test_health(client, session_factory, fake_redis, monkeypatch):
    monkeypatch.setattr(main, "engine", session_factory.kw["bind"])
    monkeypatch.setattr(main, "redis_client", fake_redis)

    assert client.get("/health").json() == {"database": True, "redis": True}


def test_redeemed_token_drives_slots_then_books(client, engine, build, morning):
    repeat = build.repeat_type(morning["service"].id, duration_minutes=20, visit_count=2)
    origin = build.booking(
        morning["staff"].id, morning["location"].id, morning["service"].id, at(MONDAY, "09:00"),
        repeat_type_id=repeat.id,
    )
    token = client.post("/continuations", json={
        "origin_booking_id": origin.id,
        "repeat_type_id": repeat.id,
    }).json()["token"]
    next_week = MONDAY + timedelta(weeks=1)

    assert client.post(f"/continuations/{token}/redeem").status_code == 200
    slots = client.get("/slots/day", params=day_params(
        morning, date=next_week.isoformat(), continuation_token=token,
    ))
    assert slots.status_code == 200
    cached = len(engine.day_cache)

    booked = client.post(f"/continuations/{token}/book", json={
        "staff_id": morning["staff"].id,
        "start_time": slots.json()["slots"][0]["start_time"],
    })
    assert booked.status_code == 201
    # Cached days expire on their own
    assert len(engine.day_cache) == cached

    assert client.post(f"/continuations/{token}/redeem").status_code == 409
    assert client.post(f"/continuations/{token}/book", json={
        "staff_id": morning["staff"].id,
        "start_time": at(next_week, "09:30").isoformat(),
    }).status_code == 409


def test_follow_up_outside_offered_slots_is_conflict(client, build, morning):
    repeat = build.repeat_type(morning["service"].id, duration_minutes=20, visit_count=2)
    origin = build.booking(morning["staff"].id, morning["location"].id, morning["service"].id, at(MONDAY, "09:00"))
    token = client.post("/continuations", json={
        "origin_booking_id": origin.id,
        "repeat_type_id": repeat.id,
    }).json()["token"]

    response = client.post(f"/continuations/{token}/book", json={
        "staff_id": morning["staff"].id,
        "start_time": at(MONDAY + timedelta(weeks=1), "13:00").isoformat(),
    })
    assert response.status_code == 409
    assert client.get(f"/continuations/{token}").status_code == 200


def test_heatmap_unknown_service_or_location_is_not_found(client, morning):
    params = {
        "service_id": morning["service"].id,
        "location_id": morning["location"].id,
        "start": MONDAY.isoformat(),
        "end": (MONDAY + timedelta(days=2)).isoformat(),
    }
    assert client.get("/slots/heatmap", params={**params, "service_id": 999}).status_code == 404
    assert client.get("/slots/heatmap", params={**params, "location_id": 999}).status_code == 404
