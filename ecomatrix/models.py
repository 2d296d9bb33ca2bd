import base64
import binascii
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

# ------------------ DATA MODELS -------------------

CharacterType = Literal["Hero", "Villain", "Sidekick"]


class CharacterDraft(BaseModel):
    """The character form before it is added to the registry."""
    name: str = ""
    type: CharacterType = "Hero"
    appearance: str = ""
    personality: str = ""
    powers: str = ""
    # data URL of an uploaded face photo
    faceImage: Optional[str] = None
    # AI-derived visual description of faceImage
    faceDescription: Optional[str] = None


class Character(CharacterDraft):
    id: str


def to_data_url(image: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(image).decode('utf-8')}"


def split_data_url(url: str) -> tuple:
    """Return (mime, bytes) for a base64 data URL."""
    if not url.startswith("data:") or "," not in url:
        raise ValueError("Not a data URL")
    header, data = url.split(",", 1)
    mime = header[len("data:"):].split(";")[0] or "image/png"
    try:
        return mime, base64.b64decode(data, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Could not extract image data: {e}")


class Page(BaseModel):
    index: int
    imageUrl: str

    @classmethod
    def from_bytes(cls, index: int, image: bytes, mime: str = "image/png") -> "Page":
        return cls(index=index, imageUrl=to_data_url(image, mime))

    @property
    def mime_type(self) -> str:
        return split_data_url(self.imageUrl)[0]

    @property
    def image_bytes(self) -> bytes:
        return split_data_url(self.imageUrl)[1]


class Comic(BaseModel):
    pages: List[Page]
    # per-page story text, story mode only
    narration: Optional[List[str]] = None

    @model_validator(mode="after")
    def _check_shape(self) -> "Comic":
        if not self.pages:
            raise ValueError("A comic needs at least one page")
        for i, p in enumerate(self.pages):
            if p.index != i:
                raise ValueError(f"Page {p.index} is stored at position {i}")
        if self.narration is not None and len(self.narration) != len(self.pages):
            raise ValueError("Narration must have one entry per page")
        return self

    @classmethod
    def from_images(cls, images: List[bytes], narration: Optional[List[str]] = None) -> "Comic":
        return cls(pages=[Page.from_bytes(i, b) for i, b in enumerate(images)],
                   narration=narration)

    @classmethod
    def from_urls(cls, urls: List[str], narration: Optional[List[str]] = None) -> "Comic":
        return cls(pages=[Page(index=i, imageUrl=u) for i, u in enumerate(urls)],
                   narration=narration)

    @property
    def image_urls(self) -> List[str]:
        return [p.imageUrl for p in self.pages]

    def replace_page(self, index: int, image: bytes, mime: str = "image/png") -> "Comic":
        """Copy-on-write: a new Comic where only pages[index] differs."""
        pages = list(self.pages)
        pages[index] = Page.from_bytes(index, image, mime)
        narration = list(self.narration) if self.narration is not None else None
        return Comic(pages=pages, narration=narration)


class StyleOptions(BaseModel):
    applyStyle: bool = True
    artStyle: str = "Western Comics"
    lineThickness: str = "Medium"
    shadingTechnique: str = "Halftone Dots"


class StoryParts(BaseModel):
    """Structured response schema for story mode."""
    page1: str = Field(description="The story for the first page.")
    page2: str = Field(description="The story for the second page.")
    page3: str = Field(description="The story for the third page.")

    def as_list(self) -> List[str]:
        return [self.page1, self.page2, self.page3]


class DraftSnapshot(BaseModel):
    prompt: str = ""
    comicImageUrls: Optional[List[str]] = None
    storyParts: Optional[List[str]] = None
    characters: List[Character] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.prompt.strip() and not self.characters and not self.comicImageUrls

    def to_comic(self) -> Optional[Comic]:
        if not self.comicImageUrls:
            return None
        narration = self.storyParts
        if narration is not None and len(narration) != len(self.comicImageUrls):
            narration = None
        return Comic.from_urls(self.comicImageUrls, narration)
