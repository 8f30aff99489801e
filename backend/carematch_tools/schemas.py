from __future__ import annotations

from pydantic import BaseModel, Field


class HealthcareCentre(BaseModel):
    id: str
    name: str
    address: str
    website: str | None = None
    services: list[str] = Field(default_factory=list)
    accepts_walk_in: bool = False
    category: str = ""


class Clinic(BaseModel):
    id: str
    name: str
    address: str
    services: list[str] = Field(default_factory=list)
    accepts_walk_in: bool = False
    distance_km: float | None = None


class HealthTopic(BaseModel):
    id: str
    title: str
    accessible_version: str | None = None
    categories: str | None = None


class HealthfinderItem(BaseModel):
    id: str
    title: str
    accessible_version: str | None = None


class HealthListItem(BaseModel):
    id: str
    title: str


class MentalHealthProfessional(BaseModel):
    name: str = Field(description="The name of the mental health professional or clinic.")
    specialty: str = Field(description="The professional's specialty or type of service offered.")
    address: str | None = Field(default=None, description="The address of the professional's office (simulated).")
    contact_info: str = Field(description="How to find contact information.")
    source: str = Field(description="The source of this information (e.g. 'Simulated Local Directory').")


class BookAppointmentInput(BaseModel):
    appointment_details: str = Field(
        min_length=1,
        description=(
            "A descriptive string of the appointment to book, including doctor/clinic, purpose, date, and time, "
            'e.g. "Dr. Jane Doe, Annual Checkup, July 28th at 3 PM".'
        ),
    )
    clinic_name: str | None = Field(default=None, description="The name of the clinic or hospital.")
    doctor_name: str | None = Field(default=None, description="The name of the doctor.")
    reason_for_visit: str | None = Field(default=None, description="The reason for the visit.")
    date_time_string: str | None = Field(
        default=None,
        description="The date and time of the appointment exactly as the user described it (e.g. 'Next Tuesday morning').",
    )


class BookAppointmentOutput(BaseModel):
    success: bool
    confirmation_message: str
    booking_id: str | None = None
    booked_clinic_name: str | None = None
    booked_doctor_name: str | None = None
    booked_reason: str | None = None
    booked_date_time_string: str | None = None


class SetReminderInput(BaseModel):
    reminder_details: str = Field(
        min_length=1,
        description='What the reminder is about, e.g. "Appointment with Dr. Smith for checkup".',
    )
    remind_at_description: str = Field(
        min_length=1,
        description='When the reminder should fire, e.g. "1 hour before the appointment on July 28th at 3 PM".',
    )


class SetReminderOutput(BaseModel):
    confirmation_message: str
    reminder_id: str


class SearchCentresInput(BaseModel):
    query: str = Field(description="Free text matched against centre names, addresses and categories.")


class NearbyClinicsInput(BaseModel):
    location_query: str | None = Field(
        default=None,
        description="The location mentioned by the user (city, state or area). A default list is used if missing.",
    )


class TopicSearchInput(BaseModel):
    keyword: str = Field(min_length=1, description='The keyword or phrase to search for (e.g. "flu symptoms").')


class MyHealthfinderInput(BaseModel):
    age: int | None = Field(default=None, ge=0, le=130, description="The age of the user.")
    sex: str | None = Field(default=None, description='The sex of the user (e.g. "male", "female").')


class HealthItemsInput(BaseModel):
    category: str | None = Field(default=None, description='Category filter (e.g. "nutrition", "mental health").')
    language: str | None = Field(default=None, description="The language for the health items.")


class ReadWebPageInput(BaseModel):
    url: str = Field(min_length=8, description="The full URL of the public web page to read.")


class FindProfessionalsInput(BaseModel):
    location: str | None = Field(default=None, description="The city, state, or zip code to search within.")
    specialization_keyword: str | None = Field(
        default=None,
        description="Optional keyword for specialization (e.g. 'anxiety', 'grief counseling').",
    )
