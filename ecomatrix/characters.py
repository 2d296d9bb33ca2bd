import logging
import uuid
from typing import Callable, List, Optional

from .errors import BackendFailure, ValidationError, classify_backend_error
from .genai import ComicBackend
from .models import Character, CharacterDraft, split_data_url
from .utils import fill, load_prompt

logger = logging.getLogger(__name__)

CHARACTER_PREAMBLE_TPL = load_prompt("character_preamble")
FACE_ANALYSIS_PROMPT = load_prompt("face_analysis")


def format_character(c: CharacterDraft) -> str:
    # Prioritize AI-generated face description for appearance
    appearance = c.faceDescription or c.appearance or "not specified"
    return (f"- {c.name} ({c.type}): Appearance: {appearance}. "
            f"Personality: {c.personality or 'not specified'}. "
            f"Powers: {c.powers or 'not specified'}.")


def format_characters(characters: List[Character]) -> str:
    """Prompt fragment describing the cast; empty when there is none."""
    if not characters:
        return ""
    descriptions = "\n".join(format_character(c) for c in characters)
    return fill(CHARACTER_PREAMBLE_TPL, characters=descriptions) + "\n\n---\n\n"


class CharacterRegistry:
    """
    The cast list plus the character form being filled in.
    `on_change` fires after every mutation of the cast list.
    """

    def __init__(self, characters: Optional[List[Character]] = None,
                 notify: Optional[Callable[[str], None]] = None,
                 on_change: Optional[Callable[[], None]] = None):
        self.characters: List[Character] = list(characters or [])
        self.draft = CharacterDraft()
        self.analyzing_face = False
        self.notify = notify or (lambda message: None)
        self.on_change = on_change or (lambda: None)

    def add(self, draft: Optional[CharacterDraft] = None) -> Optional[Character]:
        draft = draft if draft is not None else self.draft
        if not draft.name.strip():
            error = ValidationError("Character name is required.")
            self.notify(error.message)
            return None
        character = Character(id=uuid.uuid4().hex, **draft.model_dump(exclude={"id"}))
        self.characters = self.characters + [character]
        self.draft = CharacterDraft()
        self.notify(f'Character "{character.name}" added!')
        self.on_change()
        return character

    def remove(self, character_id: str) -> None:
        remaining = [c for c in self.characters if c.id != character_id]
        if len(remaining) != len(self.characters):
            self.characters = remaining
            self.on_change()

    def replace_all(self, characters: List[Character]) -> None:
        self.characters = list(characters)
        self.on_change()

    def update_draft(self, **fields) -> CharacterDraft:
        self.draft = self.draft.model_copy(update=fields)
        return self.draft

    def set_face_image(self, image_url: str, description: Optional[str] = "") -> CharacterDraft:
        update = {"faceImage": image_url, "faceDescription": description}
        if description:
            # The user can still edit appearance afterwards
            update["appearance"] = description
        return self.update_draft(**update)

    def clear_face_image(self) -> CharacterDraft:
        # Also clear appearance if it was auto-filled
        return self.update_draft(faceImage=None, faceDescription=None, appearance="")

    async def analyze_face(self, backend: ComicBackend, image_url: str) -> Optional[BackendFailure]:
        """
        Attach a face photo to the draft and ask the text backend to describe
        it. On failure the face pair is cleared and the error returned.
        """
        self.set_face_image(image_url)
        self.analyzing_face = True
        self.notify("Analyzing image to create character description...")
        try:
            mime, data = split_data_url(image_url)
            description = await backend.describe_image(data, mime, FACE_ANALYSIS_PROMPT)
            if not description.strip():
                raise RuntimeError("Empty face description")
        except Exception as e:
            logger.error("Error analyzing face: %s", e)
            self.update_draft(faceImage=None, faceDescription=None)
            return classify_backend_error(e, "face")
        finally:
            self.analyzing_face = False
        self.set_face_image(image_url, description.strip())
        self.notify("AI description generated and added to Appearance!")
        return None
