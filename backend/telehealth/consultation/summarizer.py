"""AI consultation summary.

Formats the consultation chat as a Doctor/Patient transcript, appends the
issued e-prescriptions as JSON and asks an OpenAI chat model (LangChain
structured output) for a clinical summary.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from telehealth.shared import ConsultationSummary

from .config import ConsultationSettings, consultation_settings

logger = logging.getLogger(__name__)

SUMMARY_SYSTEM_PROMPT = (
    "You are a medical AI assistant. Generate a concise clinical consultation summary "
    "including: chief complaint, key symptoms discussed, diagnosis, treatment plan, and "
    "follow-up recommendations. Keep it professional and structured. Leave a field empty "
    "when the conversation does not cover it."
)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(message: Dict[str, Any]) -> datetime:
    created_at = message.get("created_at")
    if isinstance(created_at, str):
        created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
    if not isinstance(created_at, datetime):
        return _EPOCH
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at


def format_transcript(messages: Iterable[Dict[str, Any]]) -> str:
    """Text chat messages in time order, one ``Doctor: ...`` / ``Patient: ...`` line each.

    File messages are skipped.
    """
    text_messages = [m for m in messages if m.get("message_type", "text") == "text"]
    text_messages.sort(key=_sort_key)
    return "\n".join(
        f"{'Doctor' if m.get('sender_type') == 'doctor' else 'Patient'}: {m.get('content', '')}"
        for m in text_messages
    )


def format_prescriptions(prescriptions: Optional[Iterable[Dict[str, Any]]]) -> str:
    """Medications, diagnosis and instructions of each prescription as a JSON array."""
    return json.dumps(
        [
            {
                "medications": p.get("medications") or [],
                "diagnosis": p.get("diagnosis"),
                "instructions": p.get("instructions"),
            }
            for p in prescriptions or []
        ],
        default=str,
    )


class ConsultationSummarizer:
    """Structured consultation summaries with an OpenAI chat model.

    Examples:
        >>> summarizer = ConsultationSummarizer()
        >>> summary = await summarizer.summarize("Doctor: What brings you in?\\nPatient: Headache")
        >>> summary.chief_complaint
        'Headache'
    """

    def __init__(self, llm: Optional[BaseChatModel] = None, settings: Optional[ConsultationSettings] = None):
        self.settings = settings or consultation_settings
        self._llm = llm

    @property
    def available(self) -> bool:
        return self._llm is not None or self.settings.summary_enabled

    def _get_llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = ChatOpenAI(
                model=self.settings.SUMMARY_MODEL,
                api_key=self.settings.OPENAI_API_KEY,
                temperature=0,
                timeout=self.settings.SUMMARY_TIMEOUT,
            )
        return self._llm

    async def summarize(
        self, transcript: str, prescriptions: Optional[List[Dict[str, Any]]] = None
    ) -> Optional[ConsultationSummary]:
        """Summarize a formatted transcript and the consultation's prescriptions.

        Returns:
            ConsultationSummary, or None when no model is configured or the
            transcript is empty

        Raises:
            Exception: errors from the model call are propagated
        """
        if not self.available:
            logger.warning("[Summary] OPENAI_API_KEY not set, summary skipped")
            return None
        if not transcript.strip():
            logger.info("[Summary] no chat messages, summary skipped")
            return None

        structured_llm = self._get_llm().with_structured_output(ConsultationSummary)
        messages = [
            SystemMessage(content=SUMMARY_SYSTEM_PROMPT),
            HumanMessage(
                content=f"Generate a consultation summary based on this conversation:\n\n{transcript}"
                        f"\n\nPrescriptions: {format_prescriptions(prescriptions)}"
            ),
        ]

        logger.info(f"[Summary] requesting summary ({len(transcript)} chars)")
        result = await structured_llm.ainvoke(messages)
        return result if isinstance(result, ConsultationSummary) else ConsultationSummary.model_validate(result)
