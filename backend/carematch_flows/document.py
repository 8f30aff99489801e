from __future__ import annotations

from pydantic import BaseModel, Field

from carematch_flow_core.composer import ContextComposer
from carematch_flow_core.contracts import APOLOGY_TEXT, OutputContract
from carematch_flow_core.enforcer import DoctorConsultation, RequiredText
from carematch_flow_core.flow import Flow
from carematch_flow_core.models import FlowRequest

DATA_URI_PATTERN = r"^data:[\w.+-]+/[\w.+-]+(;[\w=.+-]+)*;base64,.+"


class DocumentOutput(BaseModel):
    extracted_information: str = Field(
        default="",
        description="Key information from the document (values, findings, medication details, insurance numbers, copays).",
    )
    plain_language_explanation: str = Field(
        description=(
            "A plain language explanation of the extracted information. For lab or radiology results explain what "
            "findings generally mean without diagnosing; for insurance explain terms like copay or deductible."
        ),
    )
    document_type_guess: str | None = Field(
        default=None,
        description="Best guess of the document type, e.g. 'Insurance Card', 'Prescription', 'Lab Report - Blood Work'.",
    )
    next_step_suggestion: str | None = Field(
        default=None,
        description="A brief next step, always emphasizing a doctor consultation for medical results.",
    )


class DocumentRequest(FlowRequest):
    query: str = Field(default="Please interpret the attached document.", min_length=1)
    image_data_uri: str = Field(pattern=DATA_URI_PATTERN, description="Photo or PDF as a base64 data URI.")


DOCUMENT_CONTRACT: OutputContract[DocumentOutput] = OutputContract(
    name="document",
    model=DocumentOutput,
    primary_field="plain_language_explanation",
    rules=(
        RequiredText("plain_language_explanation", APOLOGY_TEXT),
        DoctorConsultation(
            type_field="document_type_guess",
            explanation_field="plain_language_explanation",
            next_step_field="next_step_suggestion",
        ),
    ),
)

DOCUMENT_PREAMBLE = f"""You extract information from health-related documents and explain it in plain language for someone with limited healthcare knowledge.
1. Identify the document type (e.g. 'Insurance Card', 'Prescription', 'Lab Report - Blood Work', 'Radiology Report Summary - X-ray', 'Discharge Summary') and store it in document_type_guess.
2. Extract the key information into extracted_information:
   - Insurance cards: member ID, group number, payer, plan, contact numbers, copays per service, deductible and out-of-pocket maximum when visible.
   - Prescriptions: medication, dosage, frequency, quantity, prescriber, date.
   - Lab reports: tests, values, units, reference ranges and flagged abnormalities.
   - Radiology summaries: the findings and impressions stated in the text. Do not interpret raw images.
3. Explain the information simply in plain_language_explanation, including what high, low or abnormal lab values might generally indicate, without diagnosing.
4. Give a brief next_step_suggestion. For lab or radiology results it must say: "{DoctorConsultation.ADVICE}\""""


class DocumentFlow(Flow[DocumentRequest, DocumentOutput]):
    name = "document"
    contract = DOCUMENT_CONTRACT
    composer = ContextComposer(
        preamble=DOCUMENT_PREAMBLE,
        query_label="User's request",
        image_directive="Analyze the document provided in the attached file.",
        resource_links=False,
    )
