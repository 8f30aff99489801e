from .core_tools import (
    CareMatchToolset,
    build_assistant_tools,
    build_care_navigation_tools,
    build_mental_health_tools,
)
from .directory import HealthcareDirectory, is_direct_centre_request, matched_specialty

__all__ = [
    "CareMatchToolset",
    "HealthcareDirectory",
    "build_assistant_tools",
    "build_care_navigation_tools",
    "build_mental_health_tools",
    "is_direct_centre_request",
    "matched_specialty",
]
