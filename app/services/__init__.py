# Services package - business logic and external integrations
from app.services.credits import AdmissionControl, AdmissionDenied, CreditLedger
from app.services.content_assembler import ContentAssembler
from app.services.gemini_image import GeminiImageService
from app.services.storage import StorageService

__all__ = [
    "AdmissionControl",
    "AdmissionDenied",
    "CreditLedger",
    "ContentAssembler",
    "GeminiImageService",
    "StorageService",
]
