"""
Tests for the session, seat chart and checkout endpoints.
"""

import pytest
from httpx import AsyncClient

from conftest import RECEIPT


def error_code(response) -> str:
    return response.json()["error"]["code"]


async def hold(client: AsyncClient, headers: dict, *seat_ids: str):
    return await client.post("/api/v1/checkout", json={"seat_ids": list(seat_ids)}, headers=headers)


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["store"] == "memory"
    assert data["relay"] == "disabled"


@pytest.mark.asyncio
async def test_create_session(client: AsyncClient):
    response = await client.post("/api/v1/sessions")
    assert response.status_code == 201
    data = response.json()
    assert len(data["session_token"]) >= 8
    assert data["lock_duration_seconds"] == 300


# ----------------------------------------------------------------------
# Seat chart
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_seats(client: AsyncClient):
    response = await client.get("/api/v1/seats")
    assert response.status_code == 200
    seats = response.json()["seats"]
    assert len(seats) == 84
    assert seats[0]["id"] == "t1-s1"
    assert seats[0]["status"] == "AVAILABLE"
    assert seats[0]["tier"] == "GOLD"
    assert seats[-1]["price"] == "8.88"


@pytest.mark.asyncio
async def test_chart_hides_holder_but_flags_own_seats(client, session_headers, other_session_headers):
    await hold(client, session_headers, "t1-s1")

    mine = await client.get("/api/v1/seats/t1-s1", headers=session_headers)
    theirs = await client.get("/api/v1/seats/t1-s1", headers=other_session_headers)
    anonymous = await client.get("/api/v1/seats/t1-s1")

    assert mine.json()["status"] == "CHECKOUT"
    assert mine.json()["is_mine"] is True
    assert theirs.json()["is_mine"] is False
    assert anonymous.json()["is_mine"] is False
    assert "locked_by" not in mine.json()


@pytest.mark.asyncio
async def test_unknown_seat_is_404(client: AsyncClient):
    response = await client.get("/api/v1/seats/t99-s1")
    assert response.status_code == 404
    assert error_code(response) == "SEAT_NOT_FOUND"


@pytest.mark.asyncio
async def test_storage_outage_is_503(client: AsyncClient, store):
    store.fail_reads = True
    response = await client.get("/api/v1/seats")
    assert response.status_code == 503
    assert error_code(response) == "STORAGE_UNAVAILABLE"


# ----------------------------------------------------------------------
# Checkout
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_checkout(client, session_headers, clock):
    response = await hold(client, session_headers, "t1-s1", "t1-s2")
    assert response.status_code == 200

    data = response.json()
    assert [seat["id"] for seat in data["seats"]] == ["t1-s1", "t1-s2"]
    assert all(seat["is_mine"] for seat in data["seats"])
    assert data["locked_at"] == clock.now
    assert data["expires_at"] == clock.now + 300_000
    assert data["remaining_seconds"] == 300


@pytest.mark.asyncio
async def test_checkout_requires_session(client: AsyncClient):
    response = await client.post("/api/v1/checkout", json={"seat_ids": ["t1-s1"]})
    assert response.status_code == 401

    response = await client.post(
        "/api/v1/checkout",
        json={"seat_ids": ["t1-s1"]},
        headers={"X-Session-Token": "bad token!"},
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_checkout_conflict(client, session_headers, other_session_headers):
    """The loser of a seat is told which seats it lost and holds nothing."""
    await hold(client, other_session_headers, "t3-s2")

    response = await hold(client, session_headers, "t3-s1", "t3-s2")
    assert response.status_code == 409
    assert error_code(response) == "CONFLICT_LOST"
    assert response.json()["error"]["details"]["seat_ids"] == ["t3-s2"]

    seat = await client.get("/api/v1/seats/t3-s1")
    assert seat.json()["status"] == "AVAILABLE"


@pytest.mark.asyncio
async def test_checkout_empty_and_unknown(client, session_headers):
    response = await hold(client, session_headers)
    assert response.status_code == 422
    assert error_code(response) == "VALIDATION_FAILED"

    response = await hold(client, session_headers, "t0-s1")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_expired_hold_can_be_taken(client, session_headers, other_session_headers, clock):
    await hold(client, session_headers, "t4-s1")
    clock.advance(300)

    response = await hold(client, other_session_headers, "t4-s1")
    assert response.status_code == 200

    mine = await client.get("/api/v1/seats/t4-s1", headers=session_headers)
    assert mine.json()["is_mine"] is False


# ----------------------------------------------------------------------
# Selection and session state
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_selection_then_checkout(client, session_headers):
    response = await client.post("/api/v1/sessions/me/selection/t2-s1", headers=session_headers)
    assert response.json()["selection"] == ["t2-s1"]
    await client.post("/api/v1/sessions/me/selection/t2-s2", headers=session_headers)
    response = await client.delete("/api/v1/sessions/me/selection/t2-s2", headers=session_headers)
    assert response.json()["selection"] == ["t2-s1"]

    response = await client.post("/api/v1/checkout", json={}, headers=session_headers)
    assert response.status_code == 200
    assert [seat["id"] for seat in response.json()["seats"]] == ["t2-s1"]


@pytest.mark.asyncio
async def test_selecting_taken_seat_is_409(client, session_headers, other_session_headers):
    await hold(client, other_session_headers, "t2-s3")
    response = await client.post("/api/v1/sessions/me/selection/t2-s3", headers=session_headers)
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_session_state(client, session_headers, clock):
    await hold(client, session_headers, "t1-s1")
    await client.post("/api/v1/sessions/me/selection/t12-s1", headers=session_headers)
    clock.advance(60)

    response = await client.get("/api/v1/sessions/me", headers=session_headers)
    assert response.status_code == 200
    data = response.json()
    assert [seat["id"] for seat in data["held"]] == ["t1-s1"]
    assert data["selection"] == ["t12-s1"]
    assert data["pending"] == []
    assert data["remaining_seconds"] == 240
    assert data["cart_total"] == "19.76"


@pytest.mark.asyncio
async def test_session_state_releases_expired_holds(client, session_headers, clock):
    """Scenario: a session reconnects after its hold ran out."""
    await hold(client, session_headers, "t1-s1")
    clock.advance(301)

    response = await client.get("/api/v1/sessions/me", headers=session_headers)
    assert response.json()["held"] == []
    assert response.json()["remaining_seconds"] == 0

    seat = await client.get("/api/v1/seats/t1-s1")
    assert seat.json()["status"] == "AVAILABLE"


# ----------------------------------------------------------------------
# Cancel
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_cancel_all(client, session_headers, watchdog, session_token):
    await hold(client, session_headers, "t1-s1", "t1-s2")
    assert watchdog.is_armed(session_token)

    response = await client.post("/api/v1/checkout/cancel", headers=session_headers)
    assert response.status_code == 200
    assert sorted(response.json()["released"]) == ["t1-s1", "t1-s2"]
    assert not watchdog.is_armed(session_token)


@pytest.mark.asyncio
async def test_cancel_some(client, session_headers, watchdog, session_token):
    await hold(client, session_headers, "t1-s1", "t1-s2")

    response = await client.post("/api/v1/checkout/cancel", json={"seat_ids": ["t1-s2"]}, headers=session_headers)
    assert response.json()["released"] == ["t1-s2"]
    assert watchdog.is_armed(session_token)


@pytest.mark.asyncio
async def test_cancel_leaves_other_sessions_alone(client, session_headers, other_session_headers):
    await hold(client, other_session_headers, "t1-s3")
    response = await client.post("/api/v1/checkout/cancel", json={"seat_ids": ["t1-s3"]}, headers=session_headers)
    assert response.json()["released"] == []

    seat = await client.get("/api/v1/seats/t1-s3", headers=other_session_headers)
    assert seat.json()["is_mine"] is True


# ----------------------------------------------------------------------
# Registration
# ----------------------------------------------------------------------

@pytest.mark.asyncio
async def test_registration(client, session_headers, watchdog, session_token, student):
    await hold(client, session_headers, "t1-s1")

    response = await client.post(
        "/api/v1/checkout/registration",
        json={"details": {"t1-s1": student(is_member=True)}, "ref_no": "ref-123", "receipt": RECEIPT},
        headers=session_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["seats"][0]["status"] == "PENDING"
    assert data["total"] == "9.88"
    assert not watchdog.is_armed(session_token)

    state = await client.get("/api/v1/sessions/me", headers=session_headers)
    assert [seat["id"] for seat in state.json()["pending"]] == ["t1-s1"]


@pytest.mark.asyncio
async def test_registration_invalid_details(client, session_headers, student):
    await hold(client, session_headers, "t1-s1")

    response = await client.post(
        "/api/v1/checkout/registration",
        json={"details": {"t1-s1": student(name="Al")}, "ref_no": "ref-123", "receipt": RECEIPT},
        headers=session_headers,
    )
    assert response.status_code == 422
    errors = response.json()["error"]["details"]["errors"]
    assert errors[0]["seat_id"] == "t1-s1"


@pytest.mark.asyncio
async def test_registration_for_someone_elses_seat(client, session_headers, other_session_headers, student):
    await hold(client, other_session_headers, "t1-s1")

    response = await client.post(
        "/api/v1/checkout/registration",
        json={"details": {"t1-s1": student()}, "ref_no": "ref-123", "receipt": RECEIPT},
        headers=session_headers,
    )
    assert response.status_code == 403
    assert error_code(response) == "NOT_HOLDER"


@pytest.mark.asyncio
async def test_registration_after_expiry(client, session_headers, clock, student):
    await hold(client, session_headers, "t1-s1")
    clock.advance(300)

    response = await client.post(
        "/api/v1/checkout/registration",
        json={"details": {"t1-s1": student()}, "ref_no": "ref-123", "receipt": RECEIPT},
        headers=session_headers,
    )
    assert response.status_code == 410
    assert error_code(response) == "LOCK_EXPIRED"
