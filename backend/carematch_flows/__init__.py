from .assistant import AssistantFlow, AssistantOutput, AssistantRequest
from .care_navigation import CareNavigationFlow, CareNavigationOutput, CareNavigationRequest
from .coach import CoachFlow, CoachOutput, CoachRequest
from .document import DocumentFlow, DocumentOutput, DocumentRequest
from .insights import InsightsFlow, InsightsOutput, InsightsRequest
from .mental_health import MentalHealthFlow, MentalHealthOutput, MentalHealthRequest

__all__ = [
    "AssistantFlow",
    "AssistantOutput",
    "AssistantRequest",
    "CareNavigationFlow",
    "CareNavigationOutput",
    "CareNavigationRequest",
    "CoachFlow",
    "CoachOutput",
    "CoachRequest",
    "DocumentFlow",
    "DocumentOutput",
    "DocumentRequest",
    "InsightsFlow",
    "InsightsOutput",
    "InsightsRequest",
    "MentalHealthFlow",
    "MentalHealthOutput",
    "MentalHealthRequest",
]
