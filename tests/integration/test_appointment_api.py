from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from httpx import AsyncClient

from app.models.service import Service
from app.models.service_addon import ServiceAddon
from app.models.staff import Staff

BASE = "/api/v1/appointments"


@pytest.fixture
def booking_day():
    """A weekday-agnostic date comfortably inside the booking window."""
    return date.today() + timedelta(days=3)


@pytest.fixture
async def test_staff(db):
    """Create a bookable staff member."""
    staff = Staff(
        uuid=uuid4(),
        name="Jane Stylist",
        email="jane@testsalon.com",
        is_active=True,
        is_bookable=True,
    )
    db.add(staff)
    await db.flush()
    await db.refresh(staff)
    return staff


@pytest.fixture
async def test_service(db):
    """Create a 30 minute service with one add-on."""
    service = Service(
        uuid=uuid4(),
        name="Haircut",
        duration_minutes=30,
        price=Decimal("50.00"),
        consumes_inventory=True,
        service_addons=[
            ServiceAddon(
                uuid=uuid4(),
                name="Scalp Massage",
                extra_duration_minutes=15,
                price=Decimal("12.50"),
                max_quantity=2,
            )
        ],
    )
    db.add(service)
    await db.flush()
    return service


@pytest.fixture
async def test_availability(client: AsyncClient, test_staff, booking_day):
    """Open the staff member 09:00-17:00 with a lunch break on the booking day."""
    response = await client.put(
        f"/api/v1/scheduling/resources/{test_staff.uuid}/availability/{booking_day}",
        json={
            "working_hours": {"start": "09:00", "end": "17:00"},
            "break_time": {"start": "13:00", "end": "14:00"},
        },
    )
    assert response.status_code == 200
    return response.json()


def booking_payload(staff, service, day, time="10:00", addons=None):
    return {
        "customer_id": "customer-1",
        "service_lines": [
            {
                "service_id": str(service.uuid),
                "resource_id": str(staff.uuid),
                "addons": addons or [],
            }
        ],
        "date": day.isoformat(),
        "time": time,
    }


class TestAppointmentAPICreate:
    """Test appointment creation API endpoints."""

    async def test_create_appointment_success(
        self, client: AsyncClient, test_staff, test_service, test_availability, booking_day
    ):
        addon_id = str(test_service.service_addons[0].uuid)
        response = await client.post(
            f"{BASE}/",
            json=booking_payload(
                test_staff,
                test_service,
                booking_day,
                addons=[{"addon_id": addon_id, "quantity": 1}],
            ),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "scheduled"
        assert data["requested_time"] == "10:00"
        assert data["end_time"] == "10:45"
        assert data["total_duration"] == 45
        assert Decimal(data["subtotal"]) == Decimal("62.50")
        assert data["resource_ids"] == [str(test_staff.uuid)]
        assert data["service_lines"][0]["addons"][0]["name"] == "Scalp Massage"

    async def test_create_appointment_conflict(
        self, client: AsyncClient, test_staff, test_service, test_availability, booking_day
    ):
        first = await client.post(f"{BASE}/", json=booking_payload(test_staff, test_service, booking_day))
        assert first.status_code == 201

        response = await client.post(
            f"{BASE}/", json=booking_payload(test_staff, test_service, booking_day, time="10:15")
        )

        assert response.status_code == 409
        body = response.json()
        assert body["kind"] == "scheduling_conflict"
        assert body["details"]["conflicting_appointment_ids"] == [first.json()["id"]]

    async def test_create_appointment_during_break(
        self, client: AsyncClient, test_staff, test_service, test_availability, booking_day
    ):
        response = await client.post(
            f"{BASE}/", json=booking_payload(test_staff, test_service, booking_day, time="13:00")
        )
        assert response.status_code == 409
        assert response.json()["details"]["reason"] == "break"

    async def test_create_appointment_without_availability(
        self, client: AsyncClient, test_staff, test_service, booking_day
    ):
        response = await client.post(
            f"{BASE}/", json=booking_payload(test_staff, test_service, booking_day)
        )
        assert response.status_code == 409
        assert response.json()["details"]["reason"] == "no_availability_record"

    async def test_create_appointment_too_far_ahead(
        self, client: AsyncClient, test_staff, test_service
    ):
        far = date.today() + timedelta(days=60)
        response = await client.post(f"{BASE}/", json=booking_payload(test_staff, test_service, far))

        assert response.status_code == 403
        assert response.json()["details"]["rule"] == "max_advance"

    async def test_create_appointment_unknown_staff(self, client: AsyncClient, test_service, booking_day):
        payload = booking_payload(unsaved_staff(), test_service, booking_day)
        response = await client.post(f"{BASE}/", json=payload)

        assert response.status_code == 404
        assert response.json()["details"]["entity"] == "Resource"

    async def test_create_appointment_invalid_time(
        self, client: AsyncClient, test_staff, test_service, booking_day
    ):
        response = await client.post(
            f"{BASE}/", json=booking_payload(test_staff, test_service, booking_day, time="25:00")
        )
        assert response.status_code == 422

    async def test_create_appointment_requires_service_lines(self, client: AsyncClient, booking_day):
        response = await client.post(
            f"{BASE}/",
            json={"service_lines": [], "date": booking_day.isoformat(), "time": "10:00"},
        )
        assert response.status_code == 422


def unsaved_staff():
    """Stand-in for a staff member that was never saved."""
    return Staff(uuid=uuid4(), name="Ghost")


class TestAppointmentAPILifecycle:
    """Test moving an appointment through its lifecycle over HTTP."""

    @pytest.fixture
    async def booked(self, client: AsyncClient, test_staff, test_service, test_availability, booking_day):
        response = await client.post(f"{BASE}/", json=booking_payload(test_staff, test_service, booking_day))
        assert response.status_code == 201
        return response.json()

    async def test_get_appointment(self, client: AsyncClient, booked):
        response = await client.get(f"{BASE}/{booked['id']}")
        assert response.status_code == 200
        assert response.json()["id"] == booked["id"]

    async def test_get_appointment_not_found(self, client: AsyncClient):
        response = await client.get(f"{BASE}/{uuid4()}")
        assert response.status_code == 404
        assert response.json()["kind"] == "not_found"

    async def test_reschedule(self, client: AsyncClient, booked, booking_day):
        response = await client.post(
            f"{BASE}/{booked['id']}/reschedule",
            json={"new_date": booking_day.isoformat(), "new_time": "15:00", "reason": "Later"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == booked["id"]
        assert data["requested_time"] == "15:00"
        assert data["status"] == "scheduled"
        assert data["reschedule_count"] == 1
        assert data["reschedule_history"][0]["original_time"] == "10:00"
        assert data["reschedule_history"][0]["reason"] == "Later"

    async def test_reschedule_into_break(self, client: AsyncClient, booked, booking_day):
        response = await client.post(
            f"{BASE}/{booked['id']}/reschedule",
            json={"new_date": booking_day.isoformat(), "new_time": "12:45"},
        )
        assert response.status_code == 409

        unchanged = await client.get(f"{BASE}/{booked['id']}")
        assert unchanged.json()["requested_time"] == "10:00"
        assert unchanged.json()["reschedule_history"] == []

    async def test_cancel(self, client: AsyncClient, booked):
        response = await client.post(
            f"{BASE}/{booked['id']}/cancel",
            json={"reason": "Sick", "cancelled_by": "customer"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "cancelled"
        assert data["cancelled_by"] == "customer"
        assert data["cancellation_reason"] == "Sick"

    async def test_cancelled_is_terminal(self, client: AsyncClient, booked):
        await client.post(f"{BASE}/{booked['id']}/cancel", json={})
        response = await client.post(
            f"{BASE}/{booked['id']}/transition", json={"target_status": "confirmed"}
        )
        assert response.status_code == 409
        assert response.json()["kind"] == "invalid_transition"

    async def test_full_workflow(self, client: AsyncClient, booked):
        for target in ("confirmed", "checked_in", "in_progress", "completed"):
            response = await client.post(
                f"{BASE}/{booked['id']}/transition",
                json={"target_status": target, "actor": "desk"},
            )
            assert response.status_code == 200, response.text
            assert response.json()["status"] == target

        assert response.json()["previous_status"] == "in_progress"

    async def test_transition_to_rescheduled_rejected(self, client: AsyncClient, booked):
        response = await client.post(
            f"{BASE}/{booked['id']}/transition", json={"target_status": "rescheduled"}
        )
        assert response.status_code == 409

    async def test_add_note(self, client: AsyncClient, booked):
        response = await client.post(
            f"{BASE}/{booked['id']}/notes", json={"note": "Prefers quiet", "actor": "desk"}
        )
        assert response.status_code == 200
        assert "desk: Prefers quiet" in response.json()["internal_notes"]


class TestPricePreviewAPI:
    async def test_price_preview(self, client: AsyncClient, test_staff, test_service):
        addon_id = str(test_service.service_addons[0].uuid)
        response = await client.post(
            f"{BASE}/price-preview",
            json={
                "service_lines": [
                    {
                        "service_id": str(test_service.uuid),
                        "resource_id": str(test_staff.uuid),
                        "addons": [{"addon_id": addon_id, "quantity": 2}],
                    }
                ],
                "discount": {"flat_amount": "15"},
                "tax_rate": "0.1",
            },
        )

        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["subtotal"]) == Decimal("75.00")
        assert Decimal(data["discount_amount"]) == Decimal("15")
        assert Decimal(data["tax"]) == Decimal("6.0")
        assert Decimal(data["total"]) == Decimal("66.0")
        assert data["total_duration"] == 60

    async def test_price_preview_unknown_service(self, client: AsyncClient, test_staff):
        response = await client.post(
            f"{BASE}/price-preview",
            json={
                "service_lines": [
                    {"service_id": str(uuid4()), "resource_id": str(test_staff.uuid)}
                ]
            },
        )
        assert response.status_code == 404


class TestRecurringAppointmentAPI:
    """Test booking a weekly series over HTTP."""

    async def test_create_series(
        self, client: AsyncClient, test_staff, test_service, test_availability, booking_day
    ):
        next_week = booking_day + timedelta(days=7)
        response = await client.put(
            f"/api/v1/scheduling/resources/{test_staff.uuid}/availability/{next_week}",
            json={"working_hours": {"start": "09:00", "end": "17:00"}},
        )
        assert response.status_code == 200

        response = await client.post(
            f"{BASE}/recurring",
            json={
                **booking_payload(test_staff, test_service, booking_day),
                "frequency": "weekly",
                "end_date": (booking_day + timedelta(days=14)).isoformat(),
            },
        )

        assert response.status_code == 201, response.text
        data = response.json()
        assert [a["date"] for a in data["created"]] == [
            booking_day.isoformat(),
            next_week.isoformat(),
        ]
        assert data["created"][0]["id"] == data["series_id"]
        assert all(a["series_id"] == data["series_id"] for a in data["created"])
        assert data["skipped"] == [
            {
                "date": (booking_day + timedelta(days=14)).isoformat(),
                "kind": "scheduling_conflict",
                "reason": "no_availability_record",
                "message": data["skipped"][0]["message"],
            }
        ]

        response = await client.get(f"{BASE}/{data['created'][1]['id']}")
        assert response.json()["series_id"] == data["series_id"]

    async def test_series_end_before_start_rejected(
        self, client: AsyncClient, test_staff, test_service, booking_day
    ):
        response = await client.post(
            f"{BASE}/recurring",
            json={
                **booking_payload(test_staff, test_service, booking_day),
                "end_date": (booking_day - timedelta(days=1)).isoformat(),
            },
        )
        assert response.status_code == 422

    async def test_series_needs_bookable_first_occurrence(
        self, client: AsyncClient, test_staff, test_service, booking_day
    ):
        response = await client.post(
            f"{BASE}/recurring",
            json={
                **booking_payload(test_staff, test_service, booking_day),
                "frequency": "daily",
                "max_occurrences": 3,
            },
        )
        assert response.status_code == 409
        assert response.json()["details"]["reason"] == "no_availability_record"
