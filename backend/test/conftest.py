"""Shared pytest fixtures.

Async tests run under pytest-asyncio (``asyncio_mode = "auto"``).
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from telehealth.consultation import ConsultationService


class FakeWebSocket:
    """Records JSON sent by RoomManager; optionally fails every send."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, message: dict):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(message)


# In-memory stand-ins for the asyncpg repositories

class InMemoryConsultations:
    def __init__(self, db):
        self.db = db
        self.rows = {}

    async def create(self, **fields):
        row = {"id": uuid4(), "session_metadata": {}, "ai_summary": None, "actual_end": None, **fields}
        self.rows[row["id"]] = row
        return dict(row)

    async def get(self, consultation_id):
        row = self.rows.get(consultation_id)
        return dict(row) if row else None

    async def get_by_room(self, room_id):
        for row in self.rows.values():
            if row["room_id"] == room_id:
                return dict(row)
        return None

    async def list_consultations(self, doctor_id=None, patient_id=None, status=None, limit=50):
        rows = [r for r in self.rows.values()
                if (not doctor_id or r["doctor_id"] == doctor_id)
                and (not patient_id or r["patient_id"] == patient_id)
                and (not status or r["status"] == status)]
        return [dict(r) for r in rows[:limit]]

    async def update_status(self, consultation_id, status, actual_start=None, actual_end=None):
        row = self.rows[consultation_id]
        row["status"] = status
        if actual_start:
            row["actual_start"] = actual_start
        if actual_end:
            row["actual_end"] = actual_end
        return dict(row)

    async def merge_metadata(self, consultation_id, metadata):
        self.rows[consultation_id]["session_metadata"].update(metadata)
        return True

    async def save_summary(self, consultation_id, summary):
        self.rows[consultation_id]["ai_summary"] = summary
        return True


class InMemoryMessages:
    def __init__(self):
        self.rows = []

    async def add_message(self, **fields):
        row = {"id": uuid4(), "created_at": datetime.now(timezone.utc), **fields}
        self.rows.append(row)
        return dict(row)

    async def get_messages(self, consultation_id, limit=500):
        return [dict(r) for r in self.rows if r["consultation_id"] == consultation_id][:limit]


class InMemoryNotes:
    def __init__(self):
        self.notes = []

    async def add_note(self, patient_id, author_id, content, note_type="subjective", tags=None):
        note_id = uuid4()
        self.notes.append({"id": note_id, "patient_id": patient_id, "author_id": author_id,
                           "content": content, "note_type": note_type, "tags": tags})
        return note_id


class InMemoryPrescriptions:
    def __init__(self):
        self.rows = []

    async def add_prescription(self, **fields):
        row = {"id": uuid4(), "status": "active", "created_at": datetime.now(timezone.utc), **fields}
        self.rows.append(row)
        return dict(row)

    async def get_prescriptions(self, consultation_id):
        return [dict(r) for r in self.rows if r["consultation_id"] == consultation_id]


@pytest.fixture
def make_websocket():
    def factory(fail: bool = False) -> FakeWebSocket:
        return FakeWebSocket(fail=fail)
    return factory


@pytest.fixture
def open_access(monkeypatch):
    """Disable the shared ACCESS_PASSWORD for the duration of a test."""
    from routes import deps
    monkeypatch.setattr(deps, "ACCESS_PASSWORD", "")


@pytest.fixture
def fake_db():
    return SimpleNamespace(is_initialized=True)


@pytest.fixture
def fake_summarizer():
    return SimpleNamespace(available=False, summarize=AsyncMock(return_value=None))


@pytest.fixture
def service(fake_db, fake_summarizer):
    return ConsultationService(
        consultations=InMemoryConsultations(fake_db),
        messages=InMemoryMessages(),
        notes=InMemoryNotes(),
        summarizer=fake_summarizer,
        prescriptions=InMemoryPrescriptions(),
    )


@pytest.fixture
async def consultation(service):
    return await service.start_consultation("patient-1", "doctor-1", "video", 30)
