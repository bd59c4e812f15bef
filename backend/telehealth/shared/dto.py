"""Lightweight shared DTOs for cross-service communication."""

from typing import List

from pydantic import BaseModel, Field


class ConsultationSummary(BaseModel):
    """Structured clinical summary of an online consultation."""

    chief_complaint: str = Field(default="", description="Main reason for the consultation, one sentence")
    key_symptoms: List[str] = Field(default_factory=list, description="Symptoms discussed")
    diagnosis: str = Field(default="", description="Working diagnosis, empty if none was given")
    treatment_plan: str = Field(default="", description="Treatment and medication plan")
    follow_up: str = Field(default="", description="Follow-up recommendations")

    def to_text(self) -> str:
        """Plain text rendering stored in ``online_consultations.ai_summary``."""
        symptoms = ", ".join(self.key_symptoms) if self.key_symptoms else "-"
        return (
            f"Chief complaint: {self.chief_complaint or '-'}\n"
            f"Key symptoms: {symptoms}\n"
            f"Diagnosis: {self.diagnosis or '-'}\n"
            f"Treatment plan: {self.treatment_plan or '-'}\n"
            f"Follow-up: {self.follow_up or '-'}"
        )
