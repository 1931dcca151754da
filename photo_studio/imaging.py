"""Turn uploaded bytes into an ImageState."""
import io
import mimetypes
import os
from typing import Optional

import PIL.Image

from .errors import InvalidRequest
from .session.models import ImageState

MIME_MAP = {
    '.png': 'image/png',
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.webp': 'image/webp',
    '.gif': 'image/gif',
}


def guess_mime_type(filename: Optional[str]) -> str:
    """Guess a MIME type from a file name, defaulting to PNG."""
    if not filename:
        return 'image/png'
    mime_type, _ = mimetypes.guess_type(filename)
    if mime_type and mime_type.startswith('image/'):
        return mime_type
    ext = os.path.splitext(filename)[1].lower()
    return MIME_MAP.get(ext, 'image/png')


def load_image_state(raw: bytes, filename: Optional[str] = None, content_type: Optional[str] = None) -> ImageState:
    """
    Validate an uploaded image and wrap it as the initial ImageState.

    Args:
        raw: Uploaded file content
        filename: Optional original file name, used as a MIME fallback
        content_type: Optional MIME type declared by the uploader

    Returns:
        ImageState with the original bytes and the decoded MIME type

    Raises:
        InvalidRequest: if the payload is empty or not a readable image
    """
    if not raw:
        raise InvalidRequest("Image payload is empty.")
    try:
        with PIL.Image.open(io.BytesIO(raw)) as image:
            fmt = image.format
            image.verify()
    except Exception as e:
        raise InvalidRequest(f"Could not read image: {e}") from e

    mime_type = PIL.Image.MIME.get(fmt) if fmt else None
    if not mime_type:
        if content_type and content_type.startswith('image/'):
            mime_type = content_type
        else:
            mime_type = guess_mime_type(filename)
    return ImageState(data=raw, mime_type=mime_type)
