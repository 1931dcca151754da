"""AI photo studio: edit history and suggestion engine around Gemini."""
from .errors import InvalidRequest, RemoteError, StudioError
from .session.edit_session import EditSession
from .session.history import EditHistory
from .session.models import ImageState
from .session.suggestions import SuggestionCache

__all__ = [
    'EditHistory',
    'EditSession',
    'ImageState',
    'InvalidRequest',
    'RemoteError',
    'StudioError',
    'SuggestionCache',
]
