"""Contract of the remote AI service the session core depends on."""
from typing import List, Protocol, Sequence, Tuple

from ..session.models import ImageState

ASPECT_RATIOS = ("1:1", "16:9", "9:16", "4:3", "3:4")
SUGGESTION_COUNT = 16


class RemoteEditService(Protocol):
    """Request/response AI operations. Remote failures raise ``RemoteError``; bad arguments raise ``InvalidRequest``."""

    async def generate_from_text(self, prompt: str, aspect_ratio: str) -> ImageState:
        ...

    async def edit_image(self, base: ImageState, instruction: str) -> ImageState:
        ...

    async def analyze_image(self, image: ImageState) -> str:
        ...

    async def analyze_and_suggest(self, image: ImageState, exclude: Sequence[str]) -> Tuple[str, List[str]]:
        ...

    async def suggest_many(self, prompt: str) -> List[str]:
        ...

    async def suggest_one(self, prompt: str, exclude: Sequence[str]) -> str:
        ...

    async def random_prompt(self) -> str:
        ...
