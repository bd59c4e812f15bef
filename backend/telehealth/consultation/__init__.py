"""Online consultation module.

Consultation lifecycle (start, join, end), clinical notes, chat history,
e-prescriptions and AI summaries.

Classes:
    ConsultationService: consultation operations
    ConsultationSummarizer: LLM based clinical summary

Config:
    consultation_settings: OpenAI and consultation defaults
"""

from .config import ConsultationSettings, consultation_settings, get_consultation_settings
from .summarizer import ConsultationSummarizer, format_prescriptions, format_transcript
from .service import (
    ConsultationService,
    get_consultation_service,
    generate_room_id,
    ConsultationError,
    ConsultationNotFound,
    InvalidConsultationRequest,
    ConsultationStateError,
    ConsultationStorageError,
)

__all__ = [
    "ConsultationSettings",
    "consultation_settings",
    "get_consultation_settings",
    "ConsultationSummarizer",
    "format_transcript",
    "format_prescriptions",
    "ConsultationService",
    "get_consultation_service",
    "generate_room_id",
    "ConsultationError",
    "ConsultationNotFound",
    "InvalidConsultationRequest",
    "ConsultationStateError",
    "ConsultationStorageError",
]
