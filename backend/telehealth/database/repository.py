"""Database repositories.

CRUD operations for the telehealth tables. Every method checks that the pool
is initialized and returns None/False/[] (with a log line) instead of raising
when the database is unavailable or a statement fails.

Classes:
    ConsultationRepository: online consultation sessions
    ConsultationMessageRepository: in-call chat history
    EMRNoteRepository: clinical notes written during a consultation
    PrescriptionRepository: e-prescriptions issued during a consultation
    SystemLogRepository: application logs stored by DatabaseLogHandler
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from .connection import get_db_manager

logger = logging.getLogger(__name__)


class ConsultationRepository:
    """online_consultations table."""

    def __init__(self):
        self.db = get_db_manager()

    async def create(
        self,
        patient_id: str,
        doctor_id: str,
        consultation_type: str,
        room_id: str,
        scheduled_start: datetime,
        scheduled_end: datetime,
        status: str = "active",
        actual_start: Optional[datetime] = None,
        session_metadata: Optional[dict] = None,
    ) -> Optional[Dict[str, Any]]:
        """Insert a consultation.

        Returns:
            the created row or None
        """
        if not self.db.is_initialized:
            logger.warning("[DB] not initialized, consultation not created")
            return None

        try:
            row = await self.db.fetchrow(
                """
                INSERT INTO online_consultations
                (patient_id, doctor_id, consultation_type, status, room_id,
                 scheduled_start, scheduled_end, actual_start, session_metadata)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9::jsonb)
                RETURNING *
                """,
                patient_id, doctor_id, consultation_type, status, room_id,
                scheduled_start, scheduled_end, actual_start, session_metadata or {}
            )
            logger.info(f"[DB] consultation created: {row['id']} (room: {room_id})")
            return dict(row)
        except Exception as e:
            logger.error(f"[DB] consultation create failed (room: {room_id}): {e}", exc_info=True)
            return None

    async def get(self, consultation_id: UUID) -> Optional[Dict[str, Any]]:
        if not self.db.is_initialized:
            return None

        try:
            row = await self.db.fetchrow(
                "SELECT * FROM online_consultations WHERE id = $1",
                consultation_id
            )
            return dict(row) if row else None
        except Exception as e:
            logger.error(f"[DB] consultation lookup failed {consultation_id}: {e}")
            return None

    async def get_by_room(self, room_id: str) -> Optional[Dict[str, Any]]:
        """Consultation bound to a call room."""
        if not self.db.is_initialized:
            return None

        try:
            row = await self.db.fetchrow(
                "SELECT * FROM online_consultations WHERE room_id = $1",
                room_id
            )
            return dict(row) if row else None
        except Exception as e:
            logger.error(f"[DB] consultation lookup by room failed '{room_id}': {e}")
            return None

    async def list_consultations(
        self,
        doctor_id: Optional[str] = None,
        patient_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50
    ) -> List[Dict[str, Any]]:
        """Most recent consultations, optionally filtered."""
        if not self.db.is_initialized:
            return []

        try:
            conditions = []
            params = []
            param_idx = 1

            if doctor_id:
                conditions.append(f"doctor_id = ${param_idx}")
                params.append(doctor_id)
                param_idx += 1

            if patient_id:
                conditions.append(f"patient_id = ${param_idx}")
                params.append(patient_id)
                param_idx += 1

            if status:
                conditions.append(f"status = ${param_idx}")
                params.append(status)
                param_idx += 1

            where_clause = " AND ".join(conditions) if conditions else "1=1"
            params.append(limit)

            rows = await self.db.fetch(
                f"""
                SELECT * FROM online_consultations
                WHERE {where_clause}
                ORDER BY created_at DESC
                LIMIT ${param_idx}
                """,
                *params
            )
            return [dict(row) for row in rows]
        except Exception as e:
            logger.error(f"[DB] consultation list failed: {e}")
            return []

    async def update_status(
        self,
        consultation_id: UUID,
        status: str,
        actual_start: Optional[datetime] = None,
        actual_end: Optional[datetime] = None
    ) -> Optional[Dict[str, Any]]:
        """Change the status; timestamps are only overwritten when given.

        Returns:
            the updated row or None
        """
        if not self.db.is_initialized:
            return None

        try:
            row = await self.db.fetchrow(
                """
                UPDATE online_consultations
                SET status = $2,
                    actual_start = COALESCE($3, actual_start),
                    actual_end = COALESCE($4, actual_end)
                WHERE id = $1
                RETURNING *
                """,
                consultation_id, status, actual_start, actual_end
            )
            if row:
                logger.info(f"[DB] consultation {consultation_id} -> {status}")
            return dict(row) if row else None
        except Exception as e:
            logger.error(f"[DB] consultation status update failed {consultation_id}: {e}")
            return None

    async def merge_metadata(self, consultation_id: UUID, metadata: dict) -> bool:
        """Merge keys into session_metadata (JSONB ``||``)."""
        if not self.db.is_initialized:
            return False

        try:
            await self.db.execute(
                """
                UPDATE online_consultations
                SET session_metadata = COALESCE(session_metadata, '{}'::jsonb) || $2::jsonb
                WHERE id = $1
                """,
                consultation_id, metadata
            )
            return True
        except Exception as e:
            logger.error(f"[DB] session metadata update failed {consultation_id}: {e}")
            return False

    async def save_summary(self, consultation_id: UUID, summary: str) -> bool:
        if not self.db.is_initialized:
            return False

        try:
            await self.db.execute(
                "UPDATE online_consultations SET ai_summary = $2 WHERE id = $1",
                consultation_id, summary
            )
            logger.info(f"[DB] AI summary saved: {consultation_id}")
            return True
        except Exception as e:
            logger.error(f"[DB] AI summary save failed {consultation_id}: {e}")
            return False


class ConsultationMessageRepository:
    """consultation_messages table."""

    def __init__(self):
        self.db = get_db_manager()

    async def add_message(
        self,
        consultation_id: UUID,
        sender_id: str,
        sender_type: str,
        content: str,
        message_type: str = "text",
        file_url: Optional[str] = None,
        file_name: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        """Store one chat message.

        Args:
            consultation_id: consultation UUID
            sender_id: user id of the sender
            sender_type: "doctor" or "patient"
            content: message text
            message_type: "text" or "file"
            file_url: attachment URL for file messages
            file_name: attachment name for file messages

        Returns:
            the stored row or None
        """
        if not self.db.is_initialized:
            return None

        try:
            row = await self.db.fetchrow(
                """
                INSERT INTO consultation_messages
                (consultation_id, sender_id, sender_type, message_type, content, file_url, file_name)
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING *
                """,
                consultation_id, sender_id, sender_type, message_type, content, file_url, file_name
            )
            return dict(row) if row else None
        except Exception as e:
            logger.error(f"[DB] message save failed (consultation: {consultation_id}): {e}")
            return None

    async def get_messages(self, consultation_id: UUID, limit: int = 500) -> List[Dict[str, Any]]:
        """Chat history in chronological order."""
        if not self.db.is_initialized:
            return []

        try:
            rows = await self.db.fetch(
                """
                SELECT * FROM consultation_messages
                WHERE consultation_id = $1
                ORDER BY created_at ASC
                LIMIT $2
                """,
                consultation_id, limit
            )
            return [dict(row) for row in rows]
        except Exception as e:
            logger.error(f"[DB] message history failed (consultation: {consultation_id}): {e}")
            return []


class EMRNoteRepository:
    """emr_notes table."""

    def __init__(self):
        self.db = get_db_manager()

    async def add_note(
        self,
        patient_id: str,
        author_id: str,
        content: str,
        note_type: str = "subjective",
        tags: Optional[List[str]] = None
    ) -> Optional[UUID]:
        """Insert a clinical note.

        Returns:
            the note UUID or None
        """
        if not self.db.is_initialized:
            return None

        try:
            note_id = await self.db.fetchval(
                """
                INSERT INTO emr_notes (patient_id, author_id, note_type, content, tags)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id
                """,
                patient_id, author_id, note_type, content, tags or []
            )
            logger.info(f"[DB] EMR note saved: {note_id} (patient: {patient_id})")
            return note_id
        except Exception as e:
            logger.error(f"[DB] EMR note save failed (patient: {patient_id}): {e}")
            return None


class PrescriptionRepository:
    """consultation_prescriptions table."""

    def __init__(self):
        self.db = get_db_manager()

    async def add_prescription(
        self,
        consultation_id: UUID,
        patient_id: str,
        prescribed_by: str,
        medications: List[Dict[str, str]],
        valid_until: date,
        diagnosis: str = "",
        instructions: str = "",
        status: str = "active"
    ) -> Optional[Dict[str, Any]]:
        """Insert an e-prescription.

        Args:
            consultation_id: consultation UUID
            patient_id: patient the prescription is for
            prescribed_by: prescribing doctor
            medications: name/dosage/frequency/duration/instructions per item (JSONB)
            valid_until: last valid day
            diagnosis: diagnosis text
            instructions: general instructions
            status: prescription status

        Returns:
            the stored row or None
        """
        if not self.db.is_initialized:
            return None

        try:
            row = await self.db.fetchrow(
                """
                INSERT INTO consultation_prescriptions
                (consultation_id, patient_id, prescribed_by, medications, diagnosis, instructions,
                 valid_until, status)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                RETURNING *
                """,
                consultation_id, patient_id, prescribed_by, medications, diagnosis, instructions,
                valid_until, status
            )
            if row:
                logger.info(f"[DB] prescription saved: {row['id']} (consultation: {consultation_id})")
            return dict(row) if row else None
        except Exception as e:
            logger.error(f"[DB] prescription save failed (consultation: {consultation_id}): {e}")
            return None

    async def get_prescriptions(self, consultation_id: UUID) -> List[Dict[str, Any]]:
        if not self.db.is_initialized:
            return []

        try:
            rows = await self.db.fetch(
                """
                SELECT * FROM consultation_prescriptions
                WHERE consultation_id = $1
                ORDER BY created_at ASC
                """,
                consultation_id
            )
            return [dict(row) for row in rows]
        except Exception as e:
            logger.error(f"[DB] prescription lookup failed (consultation: {consultation_id}): {e}")
            return []


class SystemLogRepository:
    """system_logs table."""

    def __init__(self):
        self.db = get_db_manager()

    async def add_log(
        self,
        level: str,
        message: str,
        logger_name: str = None,
        module: str = None,
        func_name: str = None,
        line_no: int = None,
        exception: str = None,
        extra: dict = None
    ) -> bool:
        """Store one log record.

        Args:
            level: DEBUG, INFO, WARNING, ERROR or CRITICAL
            message: formatted log message
            logger_name: logger name
            module: module name
            func_name: function name
            line_no: line number
            exception: formatted traceback
            extra: additional data

        Returns:
            bool: success
        """
        if not self.db.is_initialized:
            return False

        try:
            await self.db.execute(
                """
                INSERT INTO system_logs
                (level, message, logger_name, module, func_name, line_no, exception, extra)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb)
                """,
                level, message, logger_name, module, func_name, line_no, exception, extra or {}
            )
            return True
        except Exception as e:
            # stdout only: logging here would feed back into the handler
            print(f"Failed to save system log: {e}")
            return False

    async def cleanup_old_logs(self, days_to_keep: int = 30) -> int:
        """Delete log rows older than ``days_to_keep`` days.

        Returns:
            int: number of deleted rows
        """
        if not self.db.is_initialized:
            return 0

        try:
            result = await self.db.execute(
                "DELETE FROM system_logs WHERE created_at < NOW() - make_interval(days => $1)",
                days_to_keep
            )
            deleted = int(result.split()[-1]) if result else 0
            logger.info(f"[DB] cleaned up {deleted} old log entries")
            return deleted
        except Exception as e:
            logger.error(f"[DB] log cleanup failed: {e}")
            return 0
