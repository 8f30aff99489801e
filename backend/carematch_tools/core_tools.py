from __future__ import annotations

import random
from typing import Any

from carematch_flow_core.models import ExecutionContext
from carematch_flow_core.registry import ToolRegistry, ToolSpec
from carematch_flow_core.settings import FlowSettings

from .directory import HealthcareDirectory, as_clinic
from .health_gov import HealthGovClient
from .schemas import (
    BookAppointmentInput,
    BookAppointmentOutput,
    Clinic,
    FindProfessionalsInput,
    HealthcareCentre,
    HealthfinderItem,
    HealthItemsInput,
    HealthListItem,
    HealthTopic,
    MentalHealthProfessional,
    MyHealthfinderInput,
    NearbyClinicsInput,
    ReadWebPageInput,
    SearchCentresInput,
    SetReminderInput,
    SetReminderOutput,
    TopicSearchInput,
)
from .simulated import AppointmentScheduler, ProfessionalDirectory, ReminderService
from .web_reader import WebPageReader

NEARBY_CLINIC_CATEGORY = "Federal Medical Centre"
NEARBY_CLINIC_LIMIT = 5


def _ok(data: Any) -> dict[str, Any]:
    return {"status": "succeeded", "data": data, "errors": []}


class CareMatchToolset:
    def __init__(
        self,
        *,
        directory: HealthcareDirectory | None = None,
        scheduler: AppointmentScheduler | None = None,
        reminders: ReminderService | None = None,
        health_gov: HealthGovClient | None = None,
        web_reader: WebPageReader | None = None,
        professionals: ProfessionalDirectory | None = None,
    ) -> None:
        self.directory = directory or HealthcareDirectory()
        self.scheduler = scheduler or AppointmentScheduler()
        self.reminders = reminders or ReminderService()
        self.health_gov = health_gov or HealthGovClient()
        self.web_reader = web_reader or WebPageReader()
        self.professionals = professionals or ProfessionalDirectory()

    @classmethod
    def from_settings(cls, settings: FlowSettings, *, rng: random.Random | None = None) -> "CareMatchToolset":
        return cls(
            scheduler=AppointmentScheduler(failure_rate=settings.booking_failure_rate, rng=rng),
            health_gov=HealthGovClient(
                timeout=settings.web_timeout_seconds,
                disable_external=settings.disable_external_web,
            ),
            web_reader=WebPageReader(
                timeout=settings.web_timeout_seconds,
                disable_external=settings.disable_external_web,
            ),
        )

    def book_appointment(self, ctx: ExecutionContext, payload: BookAppointmentInput) -> dict[str, Any]:
        outcome = self.scheduler.book(payload)
        if not outcome.success:
            return {
                "status": "failed",
                "data": outcome,
                "errors": [{"code": "booking_unavailable", "message": outcome.confirmation_message}],
            }
        return _ok(outcome)

    def set_reminder(self, ctx: ExecutionContext, payload: SetReminderInput) -> dict[str, Any]:
        return _ok(self.reminders.set(payload))

    def search_healthcare_centres(self, ctx: ExecutionContext, payload: SearchCentresInput) -> dict[str, Any]:
        return _ok(self.directory.search(payload.query))

    def get_nearby_clinics(self, ctx: ExecutionContext, payload: NearbyClinicsInput) -> dict[str, Any]:
        """Federal centres near the requested place; the whole category when nothing matches."""
        centres = self.directory.by_category(NEARBY_CLINIC_CATEGORY)
        place = (payload.location_query or "").strip().lower()
        if place:
            located = [centre for centre in centres if place in centre.address.lower()]
            centres = located or centres
        return _ok([as_clinic(centre) for centre in centres[:NEARBY_CLINIC_LIMIT]])

    def search_health_topics(self, ctx: ExecutionContext, payload: TopicSearchInput) -> dict[str, Any]:
        return _ok(self.health_gov.search_topics(payload.keyword))

    def get_myhealthfinder_data(self, ctx: ExecutionContext, payload: MyHealthfinderInput) -> dict[str, Any]:
        return _ok(self.health_gov.myhealthfinder(age=payload.age, sex=payload.sex))

    def get_health_items_list(self, ctx: ExecutionContext, payload: HealthItemsInput) -> dict[str, Any]:
        return _ok(self.health_gov.item_list(category=payload.category, language=payload.language))

    def read_web_page(self, ctx: ExecutionContext, payload: ReadWebPageInput) -> dict[str, Any]:
        text = self.web_reader.read(payload.url)
        if text.startswith("Failed to process the web page"):
            return {"status": "failed", "data": text, "errors": [{"code": "page_unreadable", "message": text}]}
        return _ok(text)

    def find_mental_health_professionals(self, ctx: ExecutionContext, payload: FindProfessionalsInput) -> dict[str, Any]:
        return _ok(self.professionals.find(payload))


def build_assistant_tools(toolset: CareMatchToolset) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(
        ToolSpec(
            "book_appointment",
            "Books a medical appointment once the user has clearly asked to book and given the details "
            "(doctor or clinic, reason, date and time). Returns a confirmation or a failure message.",
            BookAppointmentInput,
            BookAppointmentOutput,
            toolset.book_appointment,
            transactional=True,
        )
    )
    registry.register(
        ToolSpec(
            "set_reminder",
            "Sets a reminder, typically for an appointment, when the user asks for one.",
            SetReminderInput,
            SetReminderOutput,
            toolset.set_reminder,
        )
    )
    registry.register(
        ToolSpec(
            "search_healthcare_centres",
            "Looks up healthcare centres in the local directory by name, address or category.",
            SearchCentresInput,
            list[HealthcareCentre],
            toolset.search_healthcare_centres,
        )
    )
    registry.add_alias("bookAppointmentTool", "book_appointment")
    registry.add_alias("setReminderTool", "set_reminder")
    registry.add_alias("searchHealthcareCentresTool", "search_healthcare_centres")
    return registry


def build_care_navigation_tools(toolset: CareMatchToolset) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(
        ToolSpec(
            "read_web_page",
            "Reads the main text of a public web page the user shared so it can be summarized.",
            ReadWebPageInput,
            str,
            toolset.read_web_page,
        )
    )
    registry.register(
        ToolSpec(
            "get_nearby_clinics",
            "Finds clinics near a location the user mentioned.",
            NearbyClinicsInput,
            list[Clinic],
            toolset.get_nearby_clinics,
        )
    )
    registry.register(
        ToolSpec(
            "search_health_topics",
            "Searches Health.gov for health topics matching a keyword.",
            TopicSearchInput,
            list[HealthTopic],
            toolset.search_health_topics,
        )
    )
    registry.register(
        ToolSpec(
            "get_myhealthfinder_data",
            "Gets personalized preventive-care recommendations from Health.gov for an age and sex.",
            MyHealthfinderInput,
            list[HealthfinderItem],
            toolset.get_myhealthfinder_data,
        )
    )
    registry.register(
        ToolSpec(
            "get_health_items_list",
            "Lists general Health.gov items, optionally filtered by category and language.",
            HealthItemsInput,
            list[HealthListItem],
            toolset.get_health_items_list,
        )
    )
    registry.add_alias("readWebPageTool", "read_web_page")
    registry.add_alias("getNearbyClinicsTool", "get_nearby_clinics")
    registry.add_alias("searchHealthTopicsTool", "search_health_topics")
    registry.add_alias("getMyHealthfinderDataTool", "get_myhealthfinder_data")
    registry.add_alias("getHealthItemsListTool", "get_health_items_list")
    return registry


def build_mental_health_tools(toolset: CareMatchToolset) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(
        ToolSpec(
            "find_mental_health_professionals",
            "Finds mental health professionals or services near a location. Only use when the user asks "
            "for professional help or their messages show sustained distress.",
            FindProfessionalsInput,
            list[MentalHealthProfessional],
            toolset.find_mental_health_professionals,
        )
    )
    registry.add_alias("findMentalHealthProfessionalsTool", "find_mental_health_professionals")
    return registry
