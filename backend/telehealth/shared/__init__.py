"""Shared DTOs and type definitions used across services.

Only lightweight, common data models should live here. Do not place
service-specific logic or heavy dependencies (e.g., aiortc, LangChain)
in this package.
"""

from .dto import ConsultationSummary

__all__ = [
    "ConsultationSummary",
]
