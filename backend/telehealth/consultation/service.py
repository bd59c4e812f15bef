"""Online consultation lifecycle.

A consultation binds a doctor and a patient to one call room:

    start (active) ──> join ──> end (completed) ──> AI summary
    scheduled/waiting ──join──> active

Clinical notes written during the call are stored as EMR notes and mirrored
into the consultation's session metadata; chat messages relayed during the
call are stored as consultation messages. E-prescriptions issued by the
doctor are stored per consultation and fed into the AI summary.
"""

import logging
import secrets
import string
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

from telehealth.database import (
    ConsultationMessageRepository,
    ConsultationRepository,
    EMRNoteRepository,
    PrescriptionRepository,
)
from telehealth.shared import ConsultationSummary

from .config import consultation_settings
from .summarizer import ConsultationSummarizer, format_transcript

logger = logging.getLogger(__name__)

CONSULTATION_TYPES = ("video", "audio", "chat")
CONSULTATION_STATUSES = ("scheduled", "waiting", "active", "completed", "cancelled")
JOINABLE_STATUSES = ("scheduled", "waiting")
CLOSED_STATUSES = ("completed", "cancelled")
SENDER_TYPES = ("doctor", "patient")
MESSAGE_TYPES = ("text", "file")

NOTE_TYPE = "subjective"
NOTE_TAGS = ["online-consultation"]

MEDICATION_FIELDS = ("name", "dosage", "frequency", "duration", "instructions")
DEFAULT_PRESCRIPTION_VALIDITY_DAYS = 30

_ROOM_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


class ConsultationError(Exception):
    """Base class for consultation errors."""


class ConsultationNotFound(ConsultationError):
    """No consultation with the given id."""


class InvalidConsultationRequest(ConsultationError):
    """Request values failed validation."""


class ConsultationStateError(ConsultationError):
    """Operation not allowed in the consultation's current status."""


class ConsultationStorageError(ConsultationError):
    """Database unavailable or write failed."""


def generate_room_id() -> str:
    """``room-<epoch ms>-<random>`` call room id."""
    suffix = "".join(secrets.choice(_ROOM_SUFFIX_ALPHABET) for _ in range(6))
    return f"room-{int(time.time() * 1000)}-{suffix}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ConsultationService:
    """Consultation operations on top of the repositories.

    Attributes:
        consultations (ConsultationRepository)
        messages (ConsultationMessageRepository)
        notes (EMRNoteRepository)
        prescriptions (PrescriptionRepository)
        summarizer (ConsultationSummarizer)
    """

    def __init__(
        self,
        consultations: Optional[ConsultationRepository] = None,
        messages: Optional[ConsultationMessageRepository] = None,
        notes: Optional[EMRNoteRepository] = None,
        summarizer: Optional[ConsultationSummarizer] = None,
        prescriptions: Optional[PrescriptionRepository] = None,
    ):
        self.consultations = consultations or ConsultationRepository()
        self.messages = messages or ConsultationMessageRepository()
        self.notes = notes or EMRNoteRepository()
        self.prescriptions = prescriptions or PrescriptionRepository()
        self.summarizer = summarizer or ConsultationSummarizer()

    def _ensure_database(self) -> None:
        if not self.consultations.db.is_initialized:
            raise ConsultationStorageError("Database unavailable")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start_consultation(
        self,
        patient_id: str,
        doctor_id: str,
        consultation_type: str = "video",
        duration_minutes: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Create an active consultation with a fresh call room.

        Raises:
            InvalidConsultationRequest: unknown type, non-positive duration or missing ids
            ConsultationStorageError: database unavailable
        """
        if not patient_id or not doctor_id:
            raise InvalidConsultationRequest("patient_id and doctor_id are required")
        if consultation_type not in CONSULTATION_TYPES:
            raise InvalidConsultationRequest(f"consultation_type must be one of {CONSULTATION_TYPES}")
        if duration_minutes is None:
            duration_minutes = consultation_settings.DEFAULT_DURATION_MINUTES
        if duration_minutes <= 0:
            raise InvalidConsultationRequest("duration_minutes must be positive")

        self._ensure_database()

        now = _now()
        room_id = generate_room_id()
        consultation = await self.consultations.create(
            patient_id=patient_id,
            doctor_id=doctor_id,
            consultation_type=consultation_type,
            room_id=room_id,
            scheduled_start=now,
            scheduled_end=now + timedelta(minutes=duration_minutes),
            status="active",
            actual_start=now,
        )
        if consultation is None:
            raise ConsultationStorageError("Failed to create consultation")

        logger.info(f"[Consultation] started {consultation['id']} room={room_id} "
                    f"type={consultation_type} duration={duration_minutes}m")
        return consultation

    async def load_consultation(self, consultation_id: UUID) -> Dict[str, Any]:
        """Raises ConsultationNotFound / ConsultationStorageError."""
        self._ensure_database()
        consultation = await self.consultations.get(consultation_id)
        if consultation is None:
            raise ConsultationNotFound(f"Consultation {consultation_id} not found")
        return consultation

    async def list_consultations(
        self,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        if status is not None and status not in CONSULTATION_STATUSES:
            raise InvalidConsultationRequest(f"status must be one of {CONSULTATION_STATUSES}")
        self._ensure_database()
        return await self.consultations.list_consultations(doctor_id, patient_id, status, limit)

    async def join_consultation(self, consultation_id: UUID) -> Dict[str, Any]:
        """Mark a scheduled/waiting consultation active.

        Active consultations are returned unchanged.

        Raises:
            ConsultationStateError: the consultation is completed or cancelled
        """
        consultation = await self.load_consultation(consultation_id)
        status = consultation["status"]

        if status in CLOSED_STATUSES:
            raise ConsultationStateError(f"Consultation is {status}")
        if status not in JOINABLE_STATUSES:
            return consultation

        updated = await self.consultations.update_status(consultation_id, "active", actual_start=_now())
        if updated is None:
            raise ConsultationStorageError("Failed to update consultation")
        logger.info(f"[Consultation] {consultation_id} joined ({status} -> active)")
        return updated

    async def end_consultation(self, consultation_id: UUID) -> Dict[str, Any]:
        """Complete the consultation, then try to generate the AI summary.

        Summary failures are logged and never fail the end of the call.
        Ending a completed consultation returns it unchanged.
        """
        consultation = await self.load_consultation(consultation_id)
        if consultation["status"] == "completed":
            return consultation
        if consultation["status"] == "cancelled":
            raise ConsultationStateError("Consultation is cancelled")

        updated = await self.consultations.update_status(consultation_id, "completed", actual_end=_now())
        if updated is None:
            raise ConsultationStorageError("Failed to update consultation")
        logger.info(f"[Consultation] {consultation_id} completed")

        try:
            summary = await self.generate_summary(consultation_id)
            if summary is not None:
                updated["ai_summary"] = summary.to_text()
        except Exception as e:
            logger.error(f"[Consultation] summary generation failed for {consultation_id}: {e}", exc_info=True)

        return updated

    # ------------------------------------------------------------------
    # Notes & messages
    # ------------------------------------------------------------------

    async def save_notes(self, consultation_id: UUID, author_id: str, notes: str) -> UUID:
        """Store clinical notes as an EMR note and in session metadata.

        Returns:
            UUID: the EMR note id
        """
        if not notes or not notes.strip():
            raise InvalidConsultationRequest("Notes must not be empty")
        if not author_id:
            raise InvalidConsultationRequest("author_id is required")

        consultation = await self.load_consultation(consultation_id)

        note_id = await self.notes.add_note(
            patient_id=consultation["patient_id"],
            author_id=author_id,
            content=notes,
            note_type=NOTE_TYPE,
            tags=list(NOTE_TAGS),
        )
        if note_id is None:
            raise ConsultationStorageError("Failed to save notes")

        if not await self.consultations.merge_metadata(consultation_id, {"clinical_notes": notes}):
            logger.warning(f"[Consultation] note {note_id} saved but session metadata not updated")

        logger.info(f"[Consultation] notes saved for {consultation_id} (note: {note_id})")
        return note_id

    async def send_message(
        self,
        consultation_id: UUID,
        sender_id: str,
        content: str,
        sender_type: Optional[str] = None,
        message_type: str = "text",
        file_url: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Store a chat message.

        ``sender_type`` defaults to "doctor" when the sender is the
        consultation's doctor and "patient" otherwise.
        """
        if message_type not in MESSAGE_TYPES:
            raise InvalidConsultationRequest(f"message_type must be one of {MESSAGE_TYPES}")
        if message_type == "text" and (not content or not content.strip()):
            raise InvalidConsultationRequest("Message must not be empty")
        if message_type == "file" and not file_url:
            raise InvalidConsultationRequest("file_url is required for file messages")
        if sender_type is not None and sender_type not in SENDER_TYPES:
            raise InvalidConsultationRequest(f"sender_type must be one of {SENDER_TYPES}")

        consultation = await self.load_consultation(consultation_id)
        if sender_type is None:
            sender_type = "doctor" if sender_id == consultation["doctor_id"] else "patient"

        message = await self.messages.add_message(
            consultation_id=consultation_id,
            sender_id=sender_id,
            sender_type=sender_type,
            content=content or "",
            message_type=message_type,
            file_url=file_url,
            file_name=file_name,
        )
        if message is None:
            raise ConsultationStorageError("Failed to save message")
        return message

    async def record_chat(
        self, room_id: str, sender_id: str, content: str, role: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Store a chat message relayed in a call room.

        Returns:
            the stored message, or None when the room has no consultation or
            the database is unavailable
        """
        if not self.consultations.db.is_initialized or not content or not content.strip():
            return None
        consultation = await self.consultations.get_by_room(room_id)
        if consultation is None:
            logger.debug(f"[Consultation] room '{room_id}' has no consultation, chat not stored")
            return None

        sender_type = role if role in SENDER_TYPES else None
        try:
            return await self.send_message(consultation["id"], sender_id, content, sender_type=sender_type)
        except ConsultationError as e:
            logger.warning(f"[Consultation] chat from '{sender_id}' not stored: {e}")
            return None

    async def list_messages(self, consultation_id: UUID) -> List[Dict[str, Any]]:
        await self.load_consultation(consultation_id)
        return await self.messages.get_messages(consultation_id)

    # ------------------------------------------------------------------
    # Prescriptions
    # ------------------------------------------------------------------

    async def save_prescription(
        self,
        consultation_id: UUID,
        prescribed_by: str,
        medications: List[Dict[str, Any]],
        diagnosis: str = "",
        instructions: str = "",
        validity_days: int = DEFAULT_PRESCRIPTION_VALIDITY_DAYS,
    ) -> Dict[str, Any]:
        """Issue an active e-prescription for the consultation's patient.

        Medication rows without both a name and a dosage are left out; at
        least one complete row is required. The prescription is valid until
        today (UTC) plus ``validity_days``.

        Returns:
            the stored prescription

        Raises:
            InvalidConsultationRequest: no complete medication, bad validity or missing prescriber
            ConsultationStateError: the consultation was cancelled
        """
        if not prescribed_by:
            raise InvalidConsultationRequest("prescribed_by is required")
        if validity_days <= 0:
            raise InvalidConsultationRequest("validity_days must be positive")

        complete = [
            {field: str(m.get(field) or "").strip() for field in MEDICATION_FIELDS}
            for m in medications
        ]
        complete = [m for m in complete if m["name"] and m["dosage"]]
        if not complete:
            raise InvalidConsultationRequest("Please add at least one medication with name and dosage")

        consultation = await self.load_consultation(consultation_id)
        if consultation["status"] == "cancelled":
            raise ConsultationStateError("Consultation is cancelled")

        prescription = await self.prescriptions.add_prescription(
            consultation_id=consultation_id,
            patient_id=consultation["patient_id"],
            prescribed_by=prescribed_by,
            medications=complete,
            valid_until=_now().date() + timedelta(days=validity_days),
            diagnosis=diagnosis or "",
            instructions=instructions or "",
        )
        if prescription is None:
            raise ConsultationStorageError("Failed to save prescription")

        logger.info(f"[Consultation] prescription {prescription['id']} issued for {consultation_id} "
                    f"({len(complete)} medications)")
        return prescription

    async def list_prescriptions(self, consultation_id: UUID) -> List[Dict[str, Any]]:
        await self.load_consultation(consultation_id)
        return await self.prescriptions.get_prescriptions(consultation_id)

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    async def generate_summary(self, consultation_id: UUID) -> Optional[ConsultationSummary]:
        """Summarize the consultation chat and prescriptions into ``ai_summary``.

        Returns:
            the summary, or None when there is nothing to summarize or no
            model is configured

        Raises:
            ConsultationNotFound: unknown consultation
            Exception: model errors are propagated
        """
        await self.load_consultation(consultation_id)
        messages = await self.messages.get_messages(consultation_id)
        transcript = format_transcript(messages)
        prescriptions = await self.prescriptions.get_prescriptions(consultation_id)

        summary = await self.summarizer.summarize(transcript, prescriptions)
        if summary is None:
            return None

        if not await self.consultations.save_summary(consultation_id, summary.to_text()):
            raise ConsultationStorageError("Failed to save summary")
        logger.info(f"[Consultation] AI summary generated for {consultation_id}")
        return summary


_service: Optional[ConsultationService] = None


def get_consultation_service() -> ConsultationService:
    """Return the ConsultationService singleton."""
    global _service
    if _service is None:
        _service = ConsultationService()
    return _service
