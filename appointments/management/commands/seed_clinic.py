"""
Management command to populate the database with demo doctors and accounts.
"""
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction

from appointments.models import Doctor, User

DOCTORS = [
    ("Nguyen Van An", "Cardiology", "Ho Chi Minh City", "4.8", "500000", "15 years"),
    ("Tran Thi Binh", "Dermatology", "Ha Noi", "4.6", "350000", "9 years"),
    ("Le Minh Chau", "Pediatrics", "Ho Chi Minh City", "4.9", "300000", "12 years"),
    ("Pham Quoc Dung", "Neurology", "Da Nang", "4.5", "600000", "20 years"),
    ("Hoang Thu Ha", "Dentistry", "Ha Noi", "4.3", "250000", "6 years"),
    ("Vo Thanh Long", "Orthopedics", "Can Tho", "4.7", "450000", "11 years"),
]

ACCOUNTS = [
    ("staff1", "staff1@clinic.local", User.ROLE_STAFF),
    ("patient1", "patient1@clinic.local", User.ROLE_PATIENT),
    ("patient2", "patient2@clinic.local", User.ROLE_PATIENT),
]


class Command(BaseCommand):
    help = "Create demo doctors and accounts (idempotent)."

    def add_arguments(self, parser):
        parser.add_argument("--password", default="clinic-demo-123",
                            help="Password set on the demo accounts.")

    @transaction.atomic
    def handle(self, *args, **options):
        for name, specialty, location, rating, fee, experience in DOCTORS:
            _, created = Doctor.objects.update_or_create(
                name=name,
                defaults={
                    "specialty": specialty,
                    "location": location,
                    "rating": Decimal(rating),
                    "consultation_fee": Decimal(fee),
                    "experience": experience,
                },
            )
            self.stdout.write(f"{'created' if created else 'updated'}: Dr. {name} ({specialty})")

        for username, email, role in ACCOUNTS:
            user, _ = User.objects.get_or_create(username=username, defaults={"email": email, "role": role})
            user.email = email
            user.role = role
            user.is_active = True
            user.set_password(options["password"])
            user.save()
            self.stdout.write(f"ok: {username} ({role})")

        self.stdout.write(self.style.SUCCESS(
            f"Seeded {len(DOCTORS)} doctors and {len(ACCOUNTS)} accounts."
        ))
