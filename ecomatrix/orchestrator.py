import asyncio
import logging
from typing import List, Optional

from .characters import format_characters
from .config import STORY_ASPECT_RATIO, STORY_PAGE_DELAY_MS, STRIP_ASPECT_RATIO
from .errors import Outcome, ValidationError, classify_backend_error
from .genai import ComicBackend, find_image_part
from .models import Character, Comic, Page, StoryParts, StyleOptions
from .session import ComicSession
from .utils import PromptLogger, fill, load_prompt

logger = logging.getLogger(__name__)

STRIP_TPL = load_prompt("strip")
STRIP_SCIENCE = load_prompt("strip_science")
STYLE_TPL = load_prompt("style")
STORY_TPL = load_prompt("story")
STORY_SCIENCE = load_prompt("story_science")
STORY_PAGE_TPL = load_prompt("story_page")
SUGGESTION_PROMPT = load_prompt("suggestion")

STYLE_FALLBACK_NOTICE = "Could not apply comic style, showing original."
EMPTY_PROMPT_MESSAGE = "Please describe your story idea first."


def build_strip_prompt(prompt: str, characters: List[Character], integrate_science: bool) -> str:
    return fill(STRIP_TPL,
                characters=format_characters(characters),
                prompt=prompt,
                science=STRIP_SCIENCE if integrate_science else "").strip()


def build_style_instruction(style: StyleOptions) -> str:
    return fill(STYLE_TPL,
                art_style=style.artStyle.lower(),
                line_thickness=style.lineThickness.lower(),
                shading=style.shadingTechnique.lower())


def build_story_prompt(prompt: str, characters: List[Character], integrate_science: bool) -> str:
    return fill(STORY_TPL,
                characters=format_characters(characters),
                prompt=prompt,
                science=STORY_SCIENCE if integrate_science else "").strip()


def build_story_page_prompt(narration: str) -> str:
    return fill(STORY_PAGE_TPL, narration=narration)


class GenerationOrchestrator:
    """
    Produces a whole new Comic, either as a single styled strip or as a
    three-page narrated story. A Comic is committed to the session only
    once every backend call has succeeded; any failure leaves the
    previous Comic in place.
    """

    def __init__(self, backend: ComicBackend, session: ComicSession,
                 page_delay_ms: int = STORY_PAGE_DELAY_MS,
                 prompt_log: Optional[PromptLogger] = None):
        self.backend = backend
        self.session = session
        self.page_delay = page_delay_ms / 1000
        self.log = prompt_log or PromptLogger()
        self.suggesting = False

    def _begin(self, prompt: str) -> Optional[Outcome]:
        """Guard checks shared by both modes; returns an Outcome to bail out with."""
        if self.session.busy:
            return Outcome.busy()
        if not prompt.strip():
            error = ValidationError(EMPTY_PROMPT_MESSAGE)
            self.session.report(error)
            return Outcome.rejected(error)
        self.session.generation.try_acquire()
        self.session.error = None
        return None

    def _fail(self, e: Exception, operation: str) -> Outcome:
        failure = classify_backend_error(e, operation)
        logger.error("Error generating %s: %s", operation, e)
        self.session.report(failure)
        return Outcome.failed(failure)

    def _commit(self, comic: Comic, prompt: str) -> None:
        self.session.commit_comic(comic)
        self.session.persistence.record_success(prompt)

    def _finish(self) -> None:
        self.session.generation.release()
        self.session.set_loading("")

    async def generate_strip(self, prompt: Optional[str] = None,
                             characters: Optional[List[Character]] = None,
                             style: Optional[StyleOptions] = None,
                             integrate_science: bool = True) -> Outcome:
        prompt = self.session.prompt if prompt is None else prompt
        characters = self.session.characters if characters is None else characters
        style = style or StyleOptions()

        bail = self._begin(prompt)
        if bail is not None:
            return bail

        warnings: List[str] = []
        try:
            self.session.set_loading("Creating comic strip")
            full_prompt = build_strip_prompt(prompt, characters, integrate_science)
            self.log.log("STRIP_IMAGE_PROMPT", full_prompt)

            image = await self.backend.generate_image(full_prompt, STRIP_ASPECT_RATIO)
            if not image:
                raise RuntimeError("Initial image generation failed.")
            mime = "image/png"

            if style.applyStyle:
                self.session.set_loading("Applying comic style")
                style_prompt = build_style_instruction(style)
                self.log.log("STRIP_STYLE_PROMPT", style_prompt)
                parts = await self.backend.edit_image(image, mime, style_prompt)
                image_part = find_image_part(parts)
                if image_part is not None:
                    image, mime = image_part.data, image_part.mime_type or mime
                else:
                    logger.warning("Comic styling failed. Falling back to the original image.")
                    warnings.append(STYLE_FALLBACK_NOTICE)
                    self.session.notify(STYLE_FALLBACK_NOTICE)

            comic = Comic(pages=[Page.from_bytes(0, image, mime)])
        except Exception as e:
            return self._fail(e, "comic")
        finally:
            self._finish()

        self._commit(comic, prompt)
        return Outcome.committed(warnings)

    async def generate_story(self, prompt: Optional[str] = None,
                             characters: Optional[List[Character]] = None,
                             integrate_science: bool = True) -> Outcome:
        prompt = self.session.prompt if prompt is None else prompt
        characters = self.session.characters if characters is None else characters

        bail = self._begin(prompt)
        if bail is not None:
            return bail

        try:
            # 1. Generate story
            self.session.set_loading("1/4: Generating story...")
            story_prompt = build_story_prompt(prompt, characters, integrate_science)
            self.log.log("STORY_PROMPT", story_prompt)
            story = (await self.backend.generate_structured(story_prompt, StoryParts)).as_list()
            self.log.log("STORY_RESPONSE", "\n\n".join(story))

            # 2. Generate images for each story part, strictly one after another
            images: List[bytes] = []
            for i, text in enumerate(story):
                await asyncio.sleep(self.page_delay)
                self.session.set_loading(f"{i + 2}/4: Generating page {i + 1}/3...")
                page_prompt = build_story_page_prompt(text)
                self.log.log(f"STORY_PAGE_PROMPT [#{i + 1}]", page_prompt)
                image = await self.backend.generate_image(page_prompt, STORY_ASPECT_RATIO)
                if not image:
                    raise RuntimeError(f"Image generation failed for page {i + 1}.")
                images.append(image)

            comic = Comic.from_images(images, narration=story)
        except Exception as e:
            return self._fail(e, "story")
        finally:
            self._finish()

        self._commit(comic, prompt)
        return Outcome.committed()

    async def suggest_prompt(self) -> Outcome:
        if self.suggesting:
            return Outcome.busy()
        self.suggesting = True
        self.session.error = None
        try:
            self.log.log("SUGGESTION_PROMPT", SUGGESTION_PROMPT)
            text = await self.backend.generate_text(SUGGESTION_PROMPT)
            # Clean up quotes
            suggestion = text.strip().strip('"').strip()
            if not suggestion:
                raise RuntimeError("Empty suggestion")
        except Exception as e:
            failure = classify_backend_error(e, "suggestion")
            logger.error("Error suggesting prompt: %s", e)
            self.session.report(failure)
            return Outcome.failed(failure)
        finally:
            self.suggesting = False
        self.session.set_prompt(suggestion)
        return Outcome.committed()
