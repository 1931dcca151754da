import asyncio
import io
import sys
from collections import defaultdict, deque
from pathlib import Path
from typing import Any, Deque, Dict, List

import PIL.Image
import pytest

# Ensure project root is on sys.path so 'photo_studio' is importable during tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from photo_studio.session.models import ImageState


class Gate:
    """A response the test releases by hand, to control completion order."""

    def __init__(self):
        self._event = asyncio.Event()
        self._value: Any = None

    def resolve(self, value: Any):
        self._value = value
        self._event.set()

    def fail(self, error: BaseException):
        self.resolve(error)

    async def wait(self) -> Any:
        await self._event.wait()
        return self._value


class FakeEditService:
    """Scriptable stand-in for the remote service.

    Queue a value, an exception or a Gate per operation with ``queue``;
    without anything queued each operation returns a sensible default.
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self._queued: Dict[str, Deque[Any]] = defaultdict(deque)
        self._edits = 0

    def queue(self, operation: str, *items: Any):
        self._queued[operation].extend(items)

    def calls_for(self, operation: str) -> List[tuple]:
        return [args for op, args in self.calls if op == operation]

    async def _respond(self, operation: str, default: Any, *args: Any) -> Any:
        self.calls.append((operation, args))
        queued = self._queued[operation]
        item = queued.popleft() if queued else default
        if isinstance(item, Gate):
            item = await item.wait()
        if isinstance(item, BaseException):
            raise item
        return item

    async def generate_from_text(self, prompt, aspect_ratio):
        return await self._respond("generate_from_text", ImageState(b"generated"), prompt, aspect_ratio)

    async def edit_image(self, base, instruction):
        self._edits += 1
        default = ImageState(b"edited-%d" % self._edits)
        return await self._respond("edit_image", default, base, instruction)

    async def analyze_image(self, image):
        return await self._respond("analyze_image", "A quiet harbor at dawn", image)

    async def analyze_and_suggest(self, image, exclude):
        default = ("Harbor photo, slightly underexposed", default_suggestions())
        return await self._respond("analyze_and_suggest", default, image, list(exclude))

    async def suggest_many(self, prompt):
        return await self._respond("suggest_many", [f"{prompt} idea {i}" for i in range(16)], prompt)

    async def suggest_one(self, prompt, exclude):
        return await self._respond("suggest_one", "add a rainbow", prompt, list(exclude))

    async def random_prompt(self):
        return await self._respond("random_prompt", "a lighthouse in a storm, cinematic")


def default_suggestions() -> List[str]:
    return [f"suggestion {i}" for i in range(16)]


async def settle(rounds: int = 10):
    """Let every ready task run until it blocks again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture()
def service() -> FakeEditService:
    return FakeEditService()


@pytest.fixture()
def png_bytes() -> bytes:
    buf = io.BytesIO()
    PIL.Image.new("RGB", (4, 4), (200, 10, 10)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture()
def jpeg_bytes() -> bytes:
    buf = io.BytesIO()
    PIL.Image.new("RGB", (4, 4), (10, 200, 10)).save(buf, format="JPEG")
    return buf.getvalue()
