"""Shared fakes: an in-memory backend and a store that counts writes."""
import io
import os
import sys
from typing import Any, Dict, List, Optional

import pytest
from PIL import Image

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from ecomatrix.genai import ResponsePart  # noqa: E402
from ecomatrix.models import StoryParts  # noqa: E402
from ecomatrix.persistence import PersistenceManager  # noqa: E402
from ecomatrix.session import ComicSession  # noqa: E402
from ecomatrix.storage import MemoryStore  # noqa: E402


def make_png(color=(255, 0, 0), size=(8, 6)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class FakeBackend:
    """
    Scripted stand-in for GAIC. Each queue holds results or exceptions,
    consumed in call order; an empty queue yields a fresh image/text.
    """

    def __init__(self):
        self.calls: List[tuple] = []
        self.images: List[Any] = []
        self.edits: List[Any] = []
        self.stories: List[Any] = []
        self.texts: List[Any] = []
        self.descriptions: List[Any] = []

    @staticmethod
    def _next(queue: List[Any], default: Any) -> Any:
        result = queue.pop(0) if queue else default
        if isinstance(result, BaseException):
            raise result
        return result

    async def generate_image(self, prompt: str, aspect_ratio: str) -> bytes:
        self.calls.append(("generate_image", prompt, aspect_ratio))
        return self._next(self.images, make_png((0, 128, 0)))

    async def edit_image(self, image: bytes, mime_type: str, instruction: str) -> List[ResponsePart]:
        self.calls.append(("edit_image", instruction, mime_type))
        return self._next(self.edits, [ResponsePart(text="done"),
                                       ResponsePart(data=make_png((0, 0, 255)), mime_type="image/png")])

    async def generate_structured(self, prompt: str, response_schema):
        self.calls.append(("generate_structured", prompt))
        return self._next(self.stories, StoryParts(page1="One", page2="Two", page3="Three"))

    async def generate_text(self, prompt: str) -> str:
        self.calls.append(("generate_text", prompt))
        return self._next(self.texts, '"Kids plant a forest on the school roof."')

    async def describe_image(self, image: bytes, mime_type: str, prompt: str) -> str:
        self.calls.append(("describe_image", mime_type))
        return self._next(self.descriptions, "Curly red hair and round glasses.")

    def count(self, name: str) -> int:
        return sum(1 for c in self.calls if c[0] == name)


class CountingStore(MemoryStore):
    def __init__(self, quota_bytes: int = 5 * 1024 * 1024, initial: Optional[Dict[str, str]] = None):
        super().__init__(quota_bytes, initial)
        self.writes: List[str] = []
        self.removals: List[str] = []

    def set(self, key: str, value: str) -> None:
        super().set(key, value)
        self.writes.append(key)

    def remove(self, key: str) -> None:
        super().remove(key)
        self.removals.append(key)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def store() -> CountingStore:
    return CountingStore()


@pytest.fixture
def session(store) -> ComicSession:
    return ComicSession(PersistenceManager(store, debounce_ms=20))
