"""
Integration tests for the booking API.

These exercise the HTTP surface: the response envelope, the error
codes clients branch on, ownership checks and the slot workflow from
availability through booking, rescheduling and cancellation.
"""
import warnings
from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.core.cache.backends.base import CacheKeyWarning
from django.db import DatabaseError
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from ..models import Appointment, Doctor, User
from ..services.slots import canonical_grid
from ..views.doctors import doctor_cache_key


class BookingAPITests(APITestCase):
    def setUp(self) -> None:
        self.patient = User.objects.create_user(username="patient1", password="patientpass", role="patient")
        self.other = User.objects.create_user(username="patient2", password="patientpass", role="patient")
        self.staff = User.objects.create_user(username="staff1", password="staffpass", role="staff")
        self.doctor = Doctor.objects.create(
            name="Le Minh Chau", specialty="Pediatrics", location="Ho Chi Minh City",
            rating=Decimal("4.9"), consultation_fee=Decimal("300000.00"),
        )
        self.dermatologist = Doctor.objects.create(
            name="Tran Thi Binh", specialty="Dermatology", location="Ha Noi",
            rating=Decimal("4.2"), consultation_fee=Decimal("350000.00"),
        )
        self.day = (timezone.localdate() + timedelta(days=7)).isoformat()

    def authenticate(self, user: User) -> APIClient:
        """Return an authenticated APIClient for the given user."""
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    def book(self, client: APIClient, time: str = "09:00 AM", doctor: Doctor = None):
        return client.post(
            "/api/appointments",
            {"doctorId": (doctor or self.doctor).id, "date": self.day, "time": time},
            format="json",
        )

    def slots(self, client: APIClient) -> list:
        r = client.get("/api/availability", {"doctorId": self.doctor.id, "date": self.day})
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        return r.data["slots"]

    def test_availability_lists_full_grid(self):
        client = self.authenticate(self.patient)
        r = client.get("/api/availability", {"doctorId": self.doctor.id, "date": self.day})
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertIs(r.data["ok"], True)
        self.assertEqual(r.data["slots"], canonical_grid())
        self.assertEqual(r.data["doctorId"], self.doctor.id)

    def test_availability_errors(self):
        client = self.authenticate(self.patient)
        r = client.get("/api/availability", {"date": self.day})
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIs(r.data["ok"], False)
        self.assertEqual(r.data["error"]["code"], "invalid")

        r = client.get("/api/availability", {"doctorId": 999, "date": self.day})
        self.assertEqual(r.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(r.data["error"]["code"], "doctor_not_found")

        r = client.get("/api/availability", {"doctorId": self.doctor.id, "date": "2020-01-01"})
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(r.data["error"]["code"], "past_date")

    def test_anonymous_requests_are_rejected(self):
        r = APIClient().get("/api/availability", {"doctorId": self.doctor.id, "date": self.day})
        self.assertEqual(r.status_code, status.HTTP_401_UNAUTHORIZED)
        self.assertIs(r.data["ok"], False)
        self.assertEqual(r.data["error"]["code"], "not_authenticated")

    def test_book_then_conflict_then_cancel_frees_slot(self):
        client = self.authenticate(self.patient)
        r = self.book(client)
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        appt = r.data["appointment"]
        self.assertEqual(appt["status"], "pending")
        self.assertEqual(appt["time"], "09:00 AM")
        self.assertNotIn("09:00 AM", self.slots(client))

        r = self.book(self.authenticate(self.other))
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(r.data["error"]["code"], "slot_unavailable")
        self.assertIs(r.data["error"]["refetch"], True)
        self.assertEqual(r.data["error"]["time"], "09:00 AM")

        r = client.patch(f"/api/appointments/{appt['id']}/cancel", {"reason": "conflict"}, format="json")
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data["appointment"]["status"], "cancelled")
        self.assertIn("09:00 AM", self.slots(client))

        # cancelling again changes nothing
        r = client.patch(f"/api/appointments/{appt['id']}/cancel", {}, format="json")
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(Appointment.objects.get(id=appt["id"]).transitions.count(), 2)

    def test_booking_validation_errors(self):
        client = self.authenticate(self.patient)
        r = client.post("/api/appointments", {"doctorId": self.doctor.id, "date": "01-06-2030", "time": "09:00 AM"},
                        format="json")
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("date", r.data["error"]["message"])

        r = self.book(client, time="12:30 PM")
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(r.data["error"]["code"], "invalid_time")

    def test_list_and_detail_are_scoped_to_owner(self):
        client = self.authenticate(self.patient)
        appt_id = self.book(client).data["appointment"]["id"]
        self.book(self.authenticate(self.other), time="10:00 AM")

        r = client.get("/api/appointments", {"filter": "upcoming"})
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual([a["id"] for a in r.data["data"]], [appt_id])

        r = client.get(f"/api/appointments/{appt_id}")
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data["appointment"]["transitions"][0]["to"], "pending")

        r = self.authenticate(self.other).get(f"/api/appointments/{appt_id}")
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(r.data["error"]["code"], "forbidden")

        r = self.authenticate(self.staff).get(f"/api/appointments/{appt_id}")
        self.assertEqual(r.status_code, status.HTTP_200_OK)

        r = client.get("/api/appointments", {"filter": "soon"})
        self.assertEqual(r.status_code, status.HTTP_400_BAD_REQUEST)

    def test_other_patient_cannot_modify(self):
        appt_id = self.book(self.authenticate(self.patient)).data["appointment"]["id"]
        intruder = self.authenticate(self.other)
        for action in ("cancel", "confirm"):
            r = intruder.patch(f"/api/appointments/{appt_id}/{action}", {}, format="json")
            self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)
        r = intruder.patch(f"/api/appointments/{appt_id}/reschedule",
                           {"date": self.day, "time": "10:00 AM"}, format="json")
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)
        self.assertEqual(Appointment.objects.get(id=appt_id).status, "pending")

    def test_reschedule(self):
        client = self.authenticate(self.patient)
        appt_id = self.book(client).data["appointment"]["id"]
        r = client.patch(f"/api/appointments/{appt_id}/reschedule",
                         {"date": self.day, "time": "03:30 PM"}, format="json")
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data["previousId"], appt_id)
        self.assertEqual(r.data["appointment"]["time"], "03:30 PM")
        slots = self.slots(client)
        self.assertIn("09:00 AM", slots)
        self.assertNotIn("03:30 PM", slots)
        self.assertEqual(Appointment.objects.get(id=appt_id).rescheduled_to_id, r.data["appointment"]["id"])

    def test_confirm_and_invalid_transition(self):
        client = self.authenticate(self.patient)
        appt_id = self.book(client).data["appointment"]["id"]
        r = client.patch(f"/api/appointments/{appt_id}/confirm", {}, format="json")
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data["appointment"]["status"], "confirmed")

        r = client.put(f"/api/appointments/{appt_id}/confirm", {}, format="json")
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(r.data["error"]["code"], "invalid_transition")
        self.assertEqual(r.data["error"]["currentStatus"], "confirmed")

    def test_complete_is_staff_only_and_after_start(self):
        yesterday = timezone.localdate() - timedelta(days=1)
        past = Appointment.objects.create(user=self.patient, doctor=self.doctor, date=yesterday,
                                          time="09:00 AM", status="confirmed")
        r = self.authenticate(self.patient).patch(f"/api/appointments/{past.id}/complete", {}, format="json")
        self.assertEqual(r.status_code, status.HTTP_403_FORBIDDEN)

        staff = self.authenticate(self.staff)
        r = staff.patch(f"/api/appointments/{past.id}/complete", {}, format="json")
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual(r.data["appointment"]["status"], "completed")

        upcoming_id = self.book(self.authenticate(self.patient)).data["appointment"]["id"]
        staff.patch(f"/api/appointments/{upcoming_id}/confirm", {}, format="json")
        r = staff.patch(f"/api/appointments/{upcoming_id}/complete", {}, format="json")
        self.assertEqual(r.status_code, status.HTTP_409_CONFLICT)

    def test_missing_appointment(self):
        r = self.authenticate(self.patient).patch("/api/appointments/4040/cancel", {}, format="json")
        self.assertEqual(r.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(r.data["error"]["code"], "appointment_not_found")

    def test_doctor_search_and_cache(self):
        client = self.authenticate(self.patient)
        r = client.get("/api/doctors", {"specialty": "pediatrics"})
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual([d["id"] for d in r.data["data"]], [self.doctor.id])

        r = client.get("/api/doctors", {"rating": 4.5})
        self.assertEqual([d["id"] for d in r.data["data"]], [self.doctor.id])

        r = client.get("/api/doctors", {"location": "ha noi"})
        self.assertEqual([d["id"] for d in r.data["data"]], [self.dermatologist.id])

        # served from cache until it expires
        Doctor.objects.create(name="Nguyen Pediatric", specialty="Pediatrics", rating=Decimal("5.0"))
        r = client.get("/api/doctors", {"specialty": "pediatrics"})
        self.assertEqual(len(r.data["data"]), 1)

        r = client.get(f"/api/doctors/{self.doctor.id}")
        self.assertEqual(r.data["doctor"]["consultationFee"], "300000.00")
        r = client.get("/api/doctors/999")
        self.assertEqual(r.status_code, status.HTTP_404_NOT_FOUND)

    def test_payment_endpoint_never_echoes_card(self):
        client = self.authenticate(self.patient)
        appt_id = self.book(client).data["appointment"]["id"]
        r = client.post("/api/payments", {
            "appointmentId": appt_id,
            "cardNumber": "4242424242424242",
            "cardHolder": "Le Van C",
            "expiry": "12/99",
            "cvv": "123",
        }, format="json")
        self.assertEqual(r.status_code, status.HTTP_201_CREATED)
        self.assertEqual(r.data["payment"]["cardLast4"], "4242")
        self.assertEqual(r.data["payment"]["amount"], "300000.00")
        self.assertEqual(r.data["appointment"]["status"], "confirmed")
        self.assertNotIn("4242424242424242", str(r.data))
        self.assertNotIn("cvv", r.data["payment"])

    def test_healthz(self):
        r = APIClient().get("/healthz")
        self.assertEqual(r.status_code, 200)
        self.assertIs(r.json()["ok"], True)

    def test_healthz_hides_database_errors(self):
        class BrokenConnection:
            def cursor(self):
                raise DatabaseError("password authentication failed for user clinic_admin")

        with mock.patch("appointments.views.health.connections", {"default": BrokenConnection()}):
            r = APIClient().get("/healthz")
        self.assertEqual(r.status_code, 503)
        self.assertEqual(r.json(), {"ok": False, "db": False})
        self.assertNotIn("clinic_admin", r.content.decode())

    def test_single_pagination_param_pages_with_defaults(self):
        client = self.authenticate(self.patient)
        for time in ("09:00 AM", "10:00 AM", "11:00 AM"):
            self.book(client, time=time)

        r = client.get("/api/appointments", {"pageSize": 1})
        self.assertEqual(len(r.data["data"]), 1)
        self.assertEqual(r.data["pagination"], {"total": 3, "page": 1, "pageSize": 1})

        r = client.get("/api/appointments", {"page": 1})
        self.assertEqual(len(r.data["data"]), 3)
        self.assertEqual(r.data["pagination"], {"total": 3, "page": 1, "pageSize": 20})

        r = client.get("/api/appointments", {"page": 2})
        self.assertEqual(r.data["data"], [])
        self.assertEqual(r.data["pagination"]["pageSize"], 20)

        r = client.get("/api/doctors", {"pageSize": 1})
        self.assertEqual(len(r.data["data"]), 1)
        self.assertEqual(r.data["pagination"], {"total": 2, "page": 1, "pageSize": 1})

        r = client.get("/api/feedback", {"page": 1})
        self.assertEqual(r.data["pagination"], {"total": 0, "page": 1, "pageSize": 20})

    def test_doctor_cache_key_is_safe_for_any_backend(self):
        client = self.authenticate(self.patient)
        with warnings.catch_warnings():
            warnings.simplefilter("error", CacheKeyWarning)
            r = client.get("/api/doctors", {"location": "Ho Chi Minh", "q": "Le Minh"})
        self.assertEqual(r.status_code, status.HTTP_200_OK)
        self.assertEqual([d["id"] for d in r.data["data"]], [self.doctor.id])

        key = doctor_cache_key("Pediatrics", "x" * 255, None, "y" * 100, None, None)
        self.assertNotRegex(key, r"\s")
        self.assertLess(len(key), 250)
        self.assertEqual(key, doctor_cache_key("pediatrics", "X" * 255, None, "y" * 100, None, None))
        self.assertNotEqual(key, doctor_cache_key("Pediatrics", "x" * 255, None, "y" * 100, 1, 20))
