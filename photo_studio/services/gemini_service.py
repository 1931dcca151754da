"""Gemini / Imagen implementation of the remote edit service."""
import base64
import logging
from typing import Any, List, Optional, Sequence, Tuple

from google import genai
from google.genai import types
from pydantic import BaseModel, Field, ValidationError

from ..config import Settings, get_settings
from ..errors import InvalidRequest, RemoteError
from ..session.models import ImageState
from .base import ASPECT_RATIOS, SUGGESTION_COUNT

logger = logging.getLogger(__name__)


class SuggestionsPayload(BaseModel):
    suggestions: List[str] = Field(..., description="Short phrases that can be appended to the prompt.")


class AnalysisPayload(BaseModel):
    analysis: str = Field(..., description="Brief analysis of the image content and quality.")
    suggestions: List[str] = Field(..., description="Actionable technical and creative edit suggestions.")


RANDOM_PROMPT_INSTRUCTION = (
    "Write one highly detailed, creative prompt for an AI image generator. "
    "The prompt must be photorealistic, imaginative and specific. "
    "Return only the prompt text, without labels or extra words."
)

ANALYZE_INSTRUCTION = (
    "Describe this image in detail. What is happening, what are the main objects, "
    "and what is the overall mood or theme?"
)


def _quote_list(items: Sequence[str]) -> str:
    return '"' + '", "'.join(items) + '"'


class GeminiEditService:
    """Remote edit service backed by the google-genai async client.

    The credential is injected through the constructor; ``from_settings``
    builds an instance from the environment configuration.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        client: Optional[Any] = None,
        text_model: str = "gemini-2.5-flash",
        edit_model: str = "gemini-2.5-flash-image",
        image_model: str = "imagen-4.0-generate-001",
        suggestion_count: int = SUGGESTION_COUNT,
    ):
        if client is None:
            if not api_key:
                raise ValueError("GOOGLE_API_KEY or GEMINI_API_KEY environment variable must be set")
            client = genai.Client(api_key=api_key)
        self._client = client
        self.text_model = text_model
        self.edit_model = edit_model
        self.image_model = image_model
        self.suggestion_count = suggestion_count

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "GeminiEditService":
        settings = settings or get_settings()
        return cls(
            api_key=settings.api_key,
            text_model=settings.text_model,
            edit_model=settings.edit_model,
            image_model=settings.image_model,
            suggestion_count=settings.suggestion_count,
        )

    @property
    def _models(self):
        return self._client.aio.models

    # ------------------------------------------------------------------
    # Image operations
    # ------------------------------------------------------------------
    async def generate_from_text(self, prompt: str, aspect_ratio: str) -> ImageState:
        """Generate a single PNG from ``prompt`` with Imagen."""
        if aspect_ratio not in ASPECT_RATIOS:
            raise InvalidRequest(f"Unsupported aspect ratio: {aspect_ratio}")
        try:
            response = await self._models.generate_images(
                model=self.image_model,
                prompt=prompt,
                config=types.GenerateImagesConfig(
                    number_of_images=1,
                    output_mime_type="image/png",
                    aspect_ratio=aspect_ratio,
                ),
            )
        except Exception as e:
            logger.error(f"Error generating image: {e}")
            raise RemoteError("Failed to generate image.", "generate_from_text", e) from e

        generated = getattr(response, "generated_images", None) or []
        for item in generated:
            image = getattr(item, "image", None)
            image_bytes = getattr(image, "image_bytes", None) if image else None
            if image_bytes:
                return ImageState(data=_as_bytes(image_bytes), mime_type="image/png")
        raise RemoteError("No image was generated.", "generate_from_text")

    async def edit_image(self, base: ImageState, instruction: str) -> ImageState:
        """Apply ``instruction`` to ``base`` and return the edited image."""
        try:
            response = await self._models.generate_content(
                model=self.edit_model,
                contents=[
                    types.Part.from_bytes(data=base.data, mime_type=base.mime_type),
                    instruction,
                ],
                config=types.GenerateContentConfig(response_modalities=["IMAGE"]),
            )
        except Exception as e:
            logger.error(f"Error editing image: {e}")
            raise RemoteError("Failed to edit image.", "edit_image", e) from e

        if hasattr(response, 'candidates') and response.candidates:
            candidate = response.candidates[0]
            if hasattr(candidate, 'content') and candidate.content:
                for part in candidate.content.parts or []:
                    if hasattr(part, 'inline_data') and part.inline_data and part.inline_data.data:
                        mime_type = part.inline_data.mime_type or "image/png"
                        return ImageState(data=_as_bytes(part.inline_data.data), mime_type=mime_type)
        raise RemoteError("No edited image was returned.", "edit_image")

    async def analyze_image(self, image: ImageState) -> str:
        try:
            response = await self._models.generate_content(
                model=self.text_model,
                contents=[
                    types.Part.from_bytes(data=image.data, mime_type=image.mime_type),
                    ANALYZE_INSTRUCTION,
                ],
            )
        except Exception as e:
            logger.error(f"Error analyzing image: {e}")
            raise RemoteError("Failed to analyze image.", "analyze_image", e) from e
        return _require_text(response, "analyze_image")

    async def analyze_and_suggest(self, image: ImageState, exclude: Sequence[str]) -> Tuple[str, List[str]]:
        """Analyze ``image`` and propose exactly ``suggestion_count`` improvements."""
        exclusion = ""
        if exclude:
            exclusion = f"Avoid suggestions similar to these: {_quote_list(exclude)}."
        prompt = (
            "Analyze the uploaded image comprehensively.\n\n"
            "1. Context analysis: give a short, objective description of the content, "
            "technical quality and composition of the image.\n\n"
            f"2. Improvement suggestions: based on the analysis, list EXACTLY {self.suggestion_count} "
            "diverse, actionable suggestions to improve the image aesthetically. Mix technical fixes "
            "(e.g. 'Remove scratches from the old photo', 'Sharpen details on the main subject') with "
            "creative ideas (e.g. 'Try a low camera angle for a dramatic effect', 'Replace the background "
            "with a city skyline at night').\n\n"
            f"{exclusion}\n\n"
            "Return a valid JSON object with two keys: 'analysis' (string) and 'suggestions' "
            f"(array of {self.suggestion_count} strings)."
        )
        try:
            response = await self._models.generate_content(
                model=self.text_model,
                contents=[types.Part.from_bytes(data=image.data, mime_type=image.mime_type), prompt],
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=AnalysisPayload,
                ),
            )
        except Exception as e:
            logger.error(f"Error analyzing image for suggestions: {e}")
            raise RemoteError("Failed to get AI suggestions.", "analyze_and_suggest", e) from e

        payload = _parse(AnalysisPayload, response, "analyze_and_suggest")
        if not payload.analysis.strip():
            raise RemoteError("Analysis response was empty.", "analyze_and_suggest")
        return payload.analysis, self._check_count(payload.suggestions, "analyze_and_suggest")

    # ------------------------------------------------------------------
    # Prompt operations
    # ------------------------------------------------------------------
    async def suggest_many(self, prompt: str) -> List[str]:
        instruction = (
            f'Based on the following image generation prompt: "{prompt}". '
            f"Produce a list of exactly {self.suggestion_count} diverse, creative suggestions that add "
            "detail to or modify the prompt. Each suggestion must be a short phrase or clause that can be "
            "appended. Return a valid JSON object with a single key 'suggestions' holding an array of "
            f"{self.suggestion_count} strings."
        )
        try:
            response = await self._models.generate_content(
                model=self.text_model,
                contents=instruction,
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=SuggestionsPayload,
                ),
            )
        except Exception as e:
            logger.error(f"Error getting prompt suggestions: {e}")
            raise RemoteError("Failed to get AI suggestions.", "suggest_many", e) from e

        payload = _parse(SuggestionsPayload, response, "suggest_many")
        return self._check_count(payload.suggestions, "suggest_many")

    async def suggest_one(self, prompt: str, exclude: Sequence[str]) -> str:
        instruction = (
            f'Based on the following image generation prompt: "{prompt}". '
            "Produce one unique, creative suggestion that adds detail to or modifies the prompt, "
            "as a short phrase or clause that can be appended. "
        )
        if exclude:
            instruction += f"Do not repeat any of these suggestions: {_quote_list(exclude)}. "
        instruction += "Return only the new suggestion text, without labels or quotes."
        try:
            response = await self._models.generate_content(model=self.text_model, contents=instruction)
        except Exception as e:
            logger.error(f"Error getting single prompt suggestion: {e}")
            raise RemoteError("Failed to get a new suggestion.", "suggest_one", e) from e
        return _require_text(response, "suggest_one").strip().strip('"')

    async def random_prompt(self) -> str:
        try:
            response = await self._models.generate_content(
                model=self.text_model,
                contents=RANDOM_PROMPT_INSTRUCTION,
                config=types.GenerateContentConfig(temperature=1.0, top_p=0.95),
            )
        except Exception as e:
            logger.error(f"Error getting random prompt: {e}")
            raise RemoteError("Failed to get a random idea. Please try again.", "random_prompt", e) from e
        return _require_text(response, "random_prompt").strip()

    def _check_count(self, suggestions: List[str], operation: str) -> List[str]:
        if len(suggestions) != self.suggestion_count:
            raise RemoteError(
                f"Expected {self.suggestion_count} suggestions, got {len(suggestions)}.", operation
            )
        return suggestions


def _as_bytes(data: Any) -> bytes:
    if isinstance(data, str):
        return base64.b64decode(data)
    return bytes(data)


def _require_text(response: Any, operation: str) -> str:
    text = getattr(response, "text", None)
    if not text or not text.strip():
        raise RemoteError("The model returned an empty response.", operation)
    return text


def _parse(model: type, response: Any, operation: str):
    text = _require_text(response, operation)
    try:
        return model.model_validate_json(text)
    except ValidationError as e:
        logger.error(f"Invalid response format from {operation}: {e}")
        raise RemoteError("Invalid response format from the suggestion API.", operation, e) from e
