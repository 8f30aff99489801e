from __future__ import annotations

import random
import time

from .schemas import (
    BookAppointmentInput,
    BookAppointmentOutput,
    FindProfessionalsInput,
    MentalHealthProfessional,
    SetReminderInput,
    SetReminderOutput,
)


def _stamp() -> int:
    return int(time.time() * 1000)


class AppointmentScheduler:
    """Stand-in for a booking system; fails at ``failure_rate`` like a busy clinic line would."""

    def __init__(self, *, failure_rate: float = 0.2, rng: random.Random | None = None) -> None:
        self.failure_rate = failure_rate
        self.rng = rng or random.Random()

    def book(self, request: BookAppointmentInput) -> BookAppointmentOutput:
        if self.rng.random() < self.failure_rate:
            return BookAppointmentOutput(
                success=False,
                confirmation_message=(
                    f'We encountered an issue trying to book the appointment for "{request.appointment_details}". '
                    "Please try again or contact the clinic directly."
                ),
            )
        booking_id = f"BK-{_stamp()}"
        return BookAppointmentOutput(
            success=True,
            confirmation_message=(
                f'Appointment for "{request.appointment_details}" has been successfully requested. '
                f"Confirmation ID: {booking_id}."
            ),
            booking_id=booking_id,
            booked_clinic_name=request.clinic_name or "The Clinic (from details)",
            booked_doctor_name=request.doctor_name,
            booked_reason=request.reason_for_visit or "Checkup (from details)",
            booked_date_time_string=request.date_time_string or "Next available (from details)",
        )


class ReminderService:
    def set(self, request: SetReminderInput) -> SetReminderOutput:
        reminder_id = f"REM-{_stamp()}"
        return SetReminderOutput(
            confirmation_message=(
                f'Reminder set for "{request.reminder_details}" around {request.remind_at_description}. '
                f"Reminder ID: {reminder_id}."
            ),
            reminder_id=reminder_id,
        )


class ProfessionalDirectory:
    """Simulated mental-health professional search."""

    MAX_RESULTS = 3

    def find(self, request: FindProfessionalsInput) -> list[MentalHealthProfessional]:
        location = (request.location or "").strip()

        def at(street: str) -> str:
            return f"{street}, {location}" if location else f"{street}, Anytown, USA"

        focus = f" (focusing on {request.specialization_keyword})" if request.specialization_keyword else ""
        professionals = [
            MentalHealthProfessional(
                name="Dr. Emily Carter, PhD",
                specialty="Cognitive Behavioral Therapy (CBT), Anxiety Specialist",
                address=at("123 Main St"),
                contact_info="Search online for 'Dr. Emily Carter Anytown'",
                source="Simulated Local Directory",
            ),
            MentalHealthProfessional(
                name="The Serene Path Counseling Center",
                specialty="General Counseling, Relationship Issues",
                address=at("456 Oak Ave"),
                contact_info="Search online for 'The Serene Path Anytown'",
                source="Simulated Local Directory",
            ),
            MentalHealthProfessional(
                name="Dr. Raj Patel, MD (Psychiatrist)",
                specialty="Medication Management, Mood Disorders",
                address=at("789 Pine Rd"),
                contact_info="Search online for 'Dr. Raj Patel Psychiatrist Anytown'",
                source="Simulated Health Network",
            ),
            MentalHealthProfessional(
                name="Mindful Growth Therapy Group",
                specialty=f"Mindfulness-Based Stress Reduction, Trauma-Informed Care{focus}",
                address=at("101 Wellness Way"),
                contact_info="Search online for 'Mindful Growth Therapy Anytown'",
                source="Simulated Wellness Portal",
            ),
        ]
        keyword = (request.specialization_keyword or "").strip().lower()
        if keyword:
            professionals.sort(key=lambda item: keyword not in item.specialty.lower())
        return professionals[: self.MAX_RESULTS]
