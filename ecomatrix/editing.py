import logging
from typing import Optional

from .errors import Outcome, ValidationError, classify_backend_error
from .genai import ComicBackend, find_image_part
from .session import ComicSession
from .utils import PromptLogger

logger = logging.getLogger(__name__)

AMBIANCE_PRESETS = {
    "day": "Change the lighting to a bright, clear daytime scene.",
    "night": "Transform this scene to take place at night. Add stars, a moon, and adjust the lighting accordingly.",
    "rainy": "Change the weather to be rainy. Add rain streaks, puddles, and adjust the lighting to be overcast.",
    "sunny": "Make the scene look bright and sunny, as if it is golden hour. Add lens flare and warm tones.",
}

EDIT_SUCCESS_NOTICE = "Edit applied successfully!"


class EditPipeline:
    """Touch-up edits that replace exactly one page of the current Comic."""

    def __init__(self, backend: ComicBackend, session: ComicSession,
                 prompt_log: Optional[PromptLogger] = None):
        self.backend = backend
        self.session = session
        self.log = prompt_log or PromptLogger()

    async def edit(self, instruction: Optional[str] = None,
                   page_index: Optional[int] = None) -> Outcome:
        """Free-text edit; defaults to the staged instruction and the current page."""
        instruction = self.session.edit_prompt if instruction is None else instruction
        if not instruction.strip():
            error = ValidationError("Please describe the edit you want to make.")
            self.session.report(error)
            return Outcome.rejected(error)
        return await self._perform(instruction, page_index)

    async def apply_preset(self, preset: str, page_index: Optional[int] = None) -> Outcome:
        instruction = AMBIANCE_PRESETS.get(preset)
        if instruction is None:
            return Outcome.rejected()
        return await self._perform(instruction, page_index, f"Applying {preset} effect...")

    async def _perform(self, instruction: str, page_index: Optional[int],
                       loading_text: str = "Applying your edit...") -> Outcome:
        session = self.session
        if session.busy:
            return Outcome.busy()
        comic = session.comic
        index = session.current_page if page_index is None else page_index
        if comic is None or not 0 <= index < len(comic.pages):
            error = ValidationError("There is no comic page to edit.")
            session.report(error)
            return Outcome.rejected(error)

        session.edit.try_acquire()
        session.error = None
        session.set_loading(loading_text)
        try:
            page = comic.pages[index]
            self.log.log(f"EDIT_PROMPT [page {index + 1}]", instruction)
            parts = await self.backend.edit_image(page.image_bytes, page.mime_type, instruction)
            image_part = find_image_part(parts)
            if image_part is None:
                raise RuntimeError("Editing failed. The model did not return an image.")
            edited = comic.replace_page(index, image_part.data,
                                        image_part.mime_type or "image/png")
        except Exception as e:
            failure = classify_backend_error(e, "edit")
            logger.error("Error editing comic: %s", e)
            session.report(failure)
            return Outcome.failed(failure)
        finally:
            session.edit.release()
            session.set_loading("")
            # Clear prompt after attempting edit
            session.edit_prompt = ""

        session.update_page(edited)
        session.notify(EDIT_SUCCESS_NOTICE)
        return Outcome.committed()
