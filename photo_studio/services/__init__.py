"""Remote AI services consumed by the session core."""
from .base import ASPECT_RATIOS, SUGGESTION_COUNT, RemoteEditService
from .gemini_service import GeminiEditService

__all__ = ['ASPECT_RATIOS', 'SUGGESTION_COUNT', 'GeminiEditService', 'RemoteEditService']
