"""Online consultation API router.

Start, join and end consultations, clinical notes, chat history,
e-prescriptions and AI summaries.
"""

import logging
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from telehealth.consultation import (
    ConsultationError,
    ConsultationNotFound,
    ConsultationService,
    ConsultationStateError,
    ConsultationStorageError,
    InvalidConsultationRequest,
    get_consultation_service,
)
from .deps import verify_auth_header

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/consultations", tags=["consultations"])


class StartConsultationRequest(BaseModel):
    patient_id: str = Field(..., min_length=1)
    doctor_id: str = Field(..., min_length=1)
    consultation_type: Literal["video", "audio", "chat"] = "video"
    duration_minutes: Optional[int] = Field(default=None, gt=0)


class SaveNotesRequest(BaseModel):
    author_id: str = Field(..., min_length=1)
    notes: str


class SendMessageRequest(BaseModel):
    sender_id: str = Field(..., min_length=1)
    content: str = ""
    sender_type: Optional[Literal["doctor", "patient"]] = None
    message_type: Literal["text", "file"] = "text"
    file_url: Optional[str] = None
    file_name: Optional[str] = None


class MedicationItem(BaseModel):
    name: str = ""
    dosage: str = ""
    frequency: str = ""
    duration: str = ""
    instructions: str = ""


class SavePrescriptionRequest(BaseModel):
    prescribed_by: str = Field(..., min_length=1)
    medications: List[MedicationItem] = Field(..., min_length=1)
    diagnosis: str = ""
    instructions: str = ""
    validity_days: int = Field(default=30, gt=0)


def _parse_id(consultation_id: str) -> UUID:
    try:
        return UUID(consultation_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid consultation ID format")


def _http_error(e: ConsultationError) -> HTTPException:
    """Map service errors to HTTP status codes."""
    if isinstance(e, ConsultationNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidConsultationRequest):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, ConsultationStateError):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, ConsultationStorageError):
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


@router.post("", status_code=201)
async def start_consultation(
    request: StartConsultationRequest,
    service: ConsultationService = Depends(get_consultation_service),
    _: bool = Depends(verify_auth_header)
):
    """Start a consultation with a new call room.

    Returns:
        dict: the created consultation (``room_id`` is the signaling room)
    """
    try:
        return await service.start_consultation(
            request.patient_id,
            request.doctor_id,
            request.consultation_type,
            request.duration_minutes,
        )
    except ConsultationError as e:
        raise _http_error(e)


@router.get("")
async def list_consultations(
    doctor_id: Optional[str] = None,
    patient_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=200),
    service: ConsultationService = Depends(get_consultation_service),
    _: bool = Depends(verify_auth_header)
):
    try:
        consultations = await service.list_consultations(doctor_id, patient_id, status, limit)
    except ConsultationError as e:
        raise _http_error(e)
    return {"consultations": consultations, "count": len(consultations)}


@router.get("/{consultation_id}")
async def get_consultation(
    consultation_id: str,
    service: ConsultationService = Depends(get_consultation_service),
    _: bool = Depends(verify_auth_header)
):
    try:
        return await service.load_consultation(_parse_id(consultation_id))
    except ConsultationError as e:
        raise _http_error(e)


@router.post("/{consultation_id}/join")
async def join_consultation(
    consultation_id: str,
    service: ConsultationService = Depends(get_consultation_service),
    _: bool = Depends(verify_auth_header)
):
    """Join the call; scheduled or waiting consultations become active."""
    try:
        return await service.join_consultation(_parse_id(consultation_id))
    except ConsultationError as e:
        raise _http_error(e)


@router.post("/{consultation_id}/end")
async def end_consultation(
    consultation_id: str,
    service: ConsultationService = Depends(get_consultation_service),
    _: bool = Depends(verify_auth_header)
):
    """Complete the consultation and generate the AI summary when possible."""
    try:
        return await service.end_consultation(_parse_id(consultation_id))
    except ConsultationError as e:
        raise _http_error(e)


@router.post("/{consultation_id}/notes", status_code=201)
async def save_notes(
    consultation_id: str,
    request: SaveNotesRequest,
    service: ConsultationService = Depends(get_consultation_service),
    _: bool = Depends(verify_auth_header)
):
    """Save clinical notes as an EMR note."""
    try:
        note_id = await service.save_notes(_parse_id(consultation_id), request.author_id, request.notes)
    except ConsultationError as e:
        raise _http_error(e)
    return {"note_id": note_id}


@router.get("/{consultation_id}/messages")
async def list_messages(
    consultation_id: str,
    service: ConsultationService = Depends(get_consultation_service),
    _: bool = Depends(verify_auth_header)
):
    try:
        chat = await service.list_messages(_parse_id(consultation_id))
    except ConsultationError as e:
        raise _http_error(e)
    return {"messages": chat, "count": len(chat)}


@router.post("/{consultation_id}/messages", status_code=201)
async def send_message(
    consultation_id: str,
    request: SendMessageRequest,
    service: ConsultationService = Depends(get_consultation_service),
    _: bool = Depends(verify_auth_header)
):
    try:
        return await service.send_message(
            _parse_id(consultation_id),
            request.sender_id,
            request.content,
            sender_type=request.sender_type,
            message_type=request.message_type,
            file_url=request.file_url,
            file_name=request.file_name,
        )
    except ConsultationError as e:
        raise _http_error(e)


@router.get("/{consultation_id}/prescriptions")
async def list_prescriptions(
    consultation_id: str,
    service: ConsultationService = Depends(get_consultation_service),
    _: bool = Depends(verify_auth_header)
):
    try:
        prescriptions = await service.list_prescriptions(_parse_id(consultation_id))
    except ConsultationError as e:
        raise _http_error(e)
    return {"prescriptions": prescriptions, "count": len(prescriptions)}


@router.post("/{consultation_id}/prescriptions", status_code=201)
async def save_prescription(
    consultation_id: str,
    request: SavePrescriptionRequest,
    service: ConsultationService = Depends(get_consultation_service),
    _: bool = Depends(verify_auth_header)
):
    """Issue an e-prescription.

    Rows without name and dosage are ignored; 400 when none is complete.
    """
    try:
        return await service.save_prescription(
            _parse_id(consultation_id),
            request.prescribed_by,
            [m.model_dump() for m in request.medications],
            diagnosis=request.diagnosis,
            instructions=request.instructions,
            validity_days=request.validity_days,
        )
    except ConsultationError as e:
        raise _http_error(e)


@router.post("/{consultation_id}/summary")
async def generate_summary(
    consultation_id: str,
    service: ConsultationService = Depends(get_consultation_service),
    _: bool = Depends(verify_auth_header)
):
    """Generate and store the AI summary.

    Returns:
        dict: ``summary`` (structured, or null when nothing was generated)
        and ``ai_summary`` (stored text)

    Raises:
        HTTPException: 503 when no model is configured, 502 on model errors
    """
    consultation_uuid = _parse_id(consultation_id)
    if not service.summarizer.available:
        raise HTTPException(status_code=503, detail="Summary service not configured")

    try:
        summary = await service.generate_summary(consultation_uuid)
    except ConsultationError as e:
        raise _http_error(e)
    except Exception as e:
        logger.error(f"[Consultation] summary generation failed for {consultation_id}: {e}", exc_info=True)
        raise HTTPException(status_code=502, detail="Summary generation failed")

    if summary is None:
        return {"summary": None, "ai_summary": None}
    return {"summary": summary.model_dump(), "ai_summary": summary.to_text()}
