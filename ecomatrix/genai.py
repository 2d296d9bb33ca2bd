import asyncio
import base64
import io
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol, Type, TypeVar

# Google AI SDK (story text, face analysis, image editing)
from google import genai
from google.genai import types

# Fal AI SDK for image generation
import fal_client
import requests
from PIL import Image
from pydantic import BaseModel

from .config import (GEMINI_API_KEY, LLM_MODEL, NANO_EDIT_MODEL, NANO_IMAGE_MODEL,
                     OUTPUT_FORMAT, require_api_keys)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


@dataclass
class ResponsePart:
    """One part of an image-edit response: text, inline image, or both empty."""
    text: Optional[str] = None
    data: Optional[bytes] = None
    mime_type: Optional[str] = None


def find_image_part(parts: List[ResponsePart]) -> Optional[ResponsePart]:
    return next((p for p in parts if p.data), None)


class ComicBackend(Protocol):
    """What the engine needs from the generative services."""

    async def generate_image(self, prompt: str, aspect_ratio: str) -> bytes: ...

    async def edit_image(self, image: bytes, mime_type: str,
                         instruction: str) -> List[ResponsePart]: ...

    async def generate_structured(self, prompt: str, response_schema: Type[M]) -> M: ...

    async def generate_text(self, prompt: str) -> str: ...

    async def describe_image(self, image: bytes, mime_type: str, prompt: str) -> str: ...


# ------------------ GENAI WRAPPER ----------------


class GAIC:
    def __init__(self, api_key: str = GEMINI_API_KEY):
        require_api_keys()
        self.client = genai.Client(api_key=api_key)

    # Text planning (Gemini 2.5)
    async def generate_text(self, prompt: str, model: str = LLM_MODEL) -> str:
        resp = await self.client.aio.models.generate_content(
            model=model, contents=prompt)
        if getattr(resp, "text", ""):
            return resp.text
        out = []
        for c in getattr(resp, "candidates", []) or []:
            for p in getattr(c, "content", {}).parts or []:
                if getattr(p, "text", None):
                    out.append(p.text)
        return "\n".join(out).strip()

    # Structured output generation
    async def generate_structured(self, prompt: str, response_schema: Type[M],
                                  model: str = LLM_MODEL) -> M:
        resp = await self.client.aio.models.generate_content(
            model=model,
            contents=prompt,
            config={
                "response_mime_type": "application/json",
                "response_schema": response_schema,
            }
        )
        if isinstance(resp.parsed, response_schema):
            return resp.parsed
        # pydantic raises if the text does not fit the schema
        return response_schema.model_validate_json(resp.text or "")

    async def describe_image(self, image: bytes, mime_type: str, prompt: str,
                             model: str = LLM_MODEL) -> str:
        resp = await self.client.aio.models.generate_content(
            model=model,
            contents=[types.Part.from_bytes(data=image, mime_type=mime_type), prompt],
        )
        return (resp.text or "").strip()

    async def generate_image(self, prompt: str, aspect_ratio: str,
                             model: str = NANO_IMAGE_MODEL) -> bytes:
        """
        Generate one image from scratch using the Fal AI nano banana model.
        Returns PNG bytes.
        """
        try:
            result = await fal_client.subscribe_async(
                model,
                arguments={
                    "prompt": prompt,
                    "num_images": 1,
                    "output_format": OUTPUT_FORMAT,
                    "aspect_ratio": aspect_ratio,
                },
                with_logs=True,
            )
        except Exception as e:
            logger.error("Fal API call failed: %s", e)
            raise RuntimeError(f"Fal image generation failed: {e}") from e

        if not result.get('images'):
            raise RuntimeError("Fal API returned no images")

        image_url = result['images'][0]['url']
        response = await asyncio.to_thread(requests.get, image_url, timeout=60)
        if response.status_code != 200:
            raise RuntimeError(
                f"Failed to download image from Fal: {response.status_code}")
        # Validate that it's actually image data
        test_img = Image.open(io.BytesIO(response.content))
        logger.debug("Fal image generated: %s, %s", test_img.size, test_img.mode)
        return response.content

    async def edit_image(self, image: bytes, mime_type: str, instruction: str,
                         model: str = NANO_EDIT_MODEL) -> List[ResponsePart]:
        """
        Edit an image with the Gemini image model.
        Returns every response part; callers look for the image one.
        """
        resp = await self.client.aio.models.generate_content(
            model=model,
            contents=[
                types.Part.from_bytes(data=image, mime_type=mime_type),
                instruction,
            ],
            config=types.GenerateContentConfig(
                response_modalities=["IMAGE", "TEXT"]),
        )
        parts: List[ResponsePart] = []
        candidates = getattr(resp, "candidates", None) or []
        if not candidates or candidates[0].content is None:
            return parts
        for p in candidates[0].content.parts or []:
            inline = getattr(p, "inline_data", None)
            data = inline.data if inline is not None else None
            if isinstance(data, str):
                data = base64.b64decode(data)
            parts.append(ResponsePart(
                text=getattr(p, "text", None),
                data=data,
                mime_type=inline.mime_type if inline is not None else None,
            ))
        return parts
