"""
Tests for booking endpoints: reservation, guest changes, cancellation.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient

from settlement.models import Booking
from settlement.models.enums import BookingStatus

from conftest import auth_headers_for, make_booking, make_session, reload


@pytest.mark.asyncio
async def test_reserve_seats(client: AsyncClient, explorer_headers, experience, session):
    """A reservation holds seats as a PENDING booking priced per guest."""
    response = await client.post(
        "/api/v1/bookings/",
        json={"experience_id": experience.id, "session_id": session.id, "guests": 3},
        headers=explorer_headers,
    )
    assert response.status_code == 201
    data = response.json()
    assert data["session_id"] == session.id
    assert data["guests"] == 3
    assert data["status"] == "PENDING"
    assert Decimal(data["total_price"]) == Decimal("150.00")
    assert data["expires_at"] is not None


@pytest.mark.asyncio
async def test_reserve_uses_session_price_override(client: AsyncClient, db_session, explorer_headers, experience):
    discounted = await make_session(db_session, experience, capacity=5, price_override=Decimal("35.50"))
    response = await client.post(
        "/api/v1/bookings/",
        json={"experience_id": experience.id, "session_id": discounted.id, "guests": 2},
        headers=explorer_headers,
    )
    assert response.status_code == 201
    assert Decimal(response.json()["total_price"]) == Decimal("71.00")


@pytest.mark.asyncio
async def test_reserve_unauthenticated(client: AsyncClient, experience, session):
    response = await client.post(
        "/api/v1/bookings/",
        json={"experience_id": experience.id, "session_id": session.id, "guests": 1},
    )
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_reserve_over_remaining_capacity(
    client: AsyncClient, db_session, explorer_headers, second_explorer, experience, session
):
    """8 of 10 seats taken: asking for 3 is rejected, asking for 2 fills the session."""
    await make_booking(db_session, second_explorer, session, guests=8)
    # the rejected request rolls back the shared session and expires fixtures
    experience_id, session_id = experience.id, session.id

    rejected = await client.post(
        "/api/v1/bookings/",
        json={"experience_id": experience_id, "session_id": session_id, "guests": 3},
        headers=explorer_headers,
    )
    assert rejected.status_code == 409
    assert rejected.json()["detail"] == "Not enough spots left for this session."

    accepted = await client.post(
        "/api/v1/bookings/",
        json={"experience_id": experience_id, "session_id": session_id, "guests": 2},
        headers=explorer_headers,
    )
    assert accepted.status_code == 201


@pytest.mark.asyncio
async def test_cancelled_bookings_do_not_hold_seats(
    client: AsyncClient, db_session, explorer_headers, second_explorer, experience, session
):
    await make_booking(db_session, second_explorer, session, guests=6, status=BookingStatus.CANCELLED)
    await make_booking(db_session, second_explorer, session, guests=4, status=BookingStatus.EXPIRED)

    response = await client.post(
        "/api/v1/bookings/",
        json={"experience_id": experience.id, "session_id": session.id, "guests": 10},
        headers=explorer_headers,
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_guests_above_capacity(client: AsyncClient, explorer_headers, experience, session):
    response = await client.post(
        "/api/v1/bookings/",
        json={"experience_id": experience.id, "session_id": session.id, "guests": 11},
        headers=explorer_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_session_of_another_experience(client: AsyncClient, explorer_headers, session):
    response = await client.post(
        "/api/v1/bookings/",
        json={"experience_id": 99999, "session_id": session.id, "guests": 1},
        headers=explorer_headers,
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_second_pending_reservation_rejected(client: AsyncClient, explorer_headers, experience, session):
    payload = {"experience_id": experience.id, "session_id": session.id, "guests": 1}
    first = await client.post("/api/v1/bookings/", json=payload, headers=explorer_headers)
    assert first.status_code == 201

    second = await client.post("/api/v1/bookings/", json=payload, headers=explorer_headers)
    assert second.status_code == 409


@pytest.mark.asyncio
async def test_update_guests_excludes_own_seats(
    client: AsyncClient, db_session, explorer, explorer_headers, second_explorer, session
):
    """Growing from 2 to 4 guests fits when 6 seats are taken by others (own 2 not double counted)."""
    await make_booking(db_session, second_explorer, session, guests=6)
    booking = await make_booking(db_session, explorer, session, guests=2)

    response = await client.patch(
        f"/api/v1/bookings/{booking.id}",
        json={"guests": 4},
        headers=explorer_headers,
    )
    assert response.status_code == 200
    assert response.json()["guests"] == 4
    assert Decimal(response.json()["total_price"]) == Decimal("200.00")

    too_many = await client.patch(
        f"/api/v1/bookings/{booking.id}",
        json={"guests": 5},
        headers=explorer_headers,
    )
    assert too_many.status_code == 409


@pytest.mark.asyncio
async def test_update_guests_of_confirmed_booking(client: AsyncClient, db_session, explorer, explorer_headers, session):
    booking = await make_booking(db_session, explorer, session, guests=2, status=BookingStatus.CONFIRMED)
    response = await client.patch(
        f"/api/v1/bookings/{booking.id}",
        json={"guests": 3},
        headers=explorer_headers,
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_cancel_booking(client: AsyncClient, db_session, explorer_headers, pending_booking):
    """Cancellation releases the seats."""
    response = await client.delete(f"/api/v1/bookings/{pending_booking.id}", headers=explorer_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "CANCELLED"

    booking = await reload(db_session, Booking, pending_booking.id)
    assert booking.status == BookingStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_cancel_twice(client: AsyncClient, explorer_headers, pending_booking):
    await client.delete(f"/api/v1/bookings/{pending_booking.id}", headers=explorer_headers)

    response = await client.delete(f"/api/v1/bookings/{pending_booking.id}", headers=explorer_headers)
    assert response.status_code == 409
    assert response.json()["detail"] == "This booking can no longer be cancelled."


@pytest.mark.asyncio
async def test_cancel_someone_elses_booking(client: AsyncClient, second_explorer, pending_booking):
    response = await client.delete(
        f"/api/v1/bookings/{pending_booking.id}",
        headers=auth_headers_for(second_explorer),
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_list_user_bookings(client: AsyncClient, explorer_headers, pending_booking):
    response = await client.get("/api/v1/bookings/", headers=explorer_headers)
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["id"] == pending_booking.id
