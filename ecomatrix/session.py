import logging
from typing import Any, Callable, Dict, List, Optional

from .characters import CharacterRegistry
from .errors import CapabilityUnavailable, EcoMatrixError, Outcome
from .genai import ComicBackend
from .models import Comic, DraftSnapshot
from .persistence import PersistenceManager
from .voice import NarrationController, VoiceInput, append_transcript

logger = logging.getLogger(__name__)


class OperationToken:
    """Single-flight guard. Acquisition fails fast; nothing is queued."""

    def __init__(self, name: str):
        self.name = name
        self.held = False

    def try_acquire(self) -> bool:
        if self.held:
            return False
        self.held = True
        return True

    def release(self) -> None:
        self.held = False


class ComicSession:
    """
    Shared application state: the prompt, the current Comic and page, the
    staged edit instruction, the cast, and what the user should be told.

    Generation and editing write `comic` only through `commit_comic`.
    Every change to a tracked field (prompt, comic, narration, characters)
    re-arms the draft autosave, so mutators must run inside the event loop.
    """

    def __init__(self, persistence: PersistenceManager,
                 narration: Optional[NarrationController] = None,
                 voice: Optional[VoiceInput] = None):
        self.persistence = persistence
        persistence.notify = self.notify
        self.registry = CharacterRegistry(notify=self.notify, on_change=self._changed)
        self.narration = narration or NarrationController()
        self.narration.notify = self.notify
        self.voice = voice or VoiceInput()

        self.prompt = ""
        self.comic: Optional[Comic] = None
        self.current_page = 0
        self.edit_prompt = ""
        self.error: Optional[str] = None
        self.notices: List[str] = []
        self.loading_message = ""
        self.theme = "light"

        self.generation = OperationToken("generation")
        self.edit = OperationToken("edit")
        self.listeners: List[Callable[[Dict[str, Any]], None]] = []

    # ------------------ EVENTS ----------------------

    def emit(self, event: Dict[str, Any]) -> None:
        for listener in list(self.listeners):
            listener(event)

    def notify(self, message: str) -> None:
        self.notices.append(message)
        self.emit({"type": "notice", "message": message})

    def report(self, error: EcoMatrixError) -> None:
        self.error = error.message
        self.emit({"type": "error", "message": error.message})

    def set_loading(self, message: str) -> None:
        self.loading_message = message
        if message:
            self.emit({"type": "step", "message": message})

    @property
    def busy(self) -> bool:
        return self.generation.held or self.edit.held

    # ------------------ STATE -----------------------

    @property
    def characters(self):
        return self.registry.characters

    @property
    def story_parts(self) -> Optional[List[str]]:
        return self.comic.narration if self.comic is not None else None

    def snapshot(self) -> DraftSnapshot:
        return DraftSnapshot(
            prompt=self.prompt,
            comicImageUrls=self.comic.image_urls if self.comic is not None else None,
            storyParts=self.story_parts,
            characters=self.characters,
        )

    def _changed(self) -> None:
        self.persistence.on_fields_changed(self.snapshot())

    def start(self) -> None:
        """Load what the store remembers from the last run."""
        self.theme = self.persistence.load_theme()
        self.persistence.load_history()
        self.persistence.check_draft()

    def close(self) -> None:
        self.voice.close()
        self.narration.cancel()
        self.persistence.flush()

    def set_prompt(self, prompt: str) -> None:
        self.prompt = prompt
        self._changed()

    def set_comic(self, comic: Optional[Comic]) -> None:
        """Swap the whole Comic; the reader goes back to the first page."""
        self.comic = comic
        self.current_page = 0
        self.narration.cancel()
        self._changed()

    def commit_comic(self, comic: Comic) -> None:
        """Replace the Comic wholesale after a successful generation."""
        self.set_comic(comic)
        self.edit_prompt = ""

    def update_page(self, comic: Comic) -> None:
        """Install an edited Comic without moving the reader off their page."""
        self.comic = comic
        self._changed()

    def go_to_page(self, index: int) -> int:
        if self.comic is None:
            return self.current_page
        self.current_page = max(0, min(index, len(self.comic.pages) - 1))
        self.narration.cancel()
        return self.current_page

    def set_theme(self, theme: str) -> None:
        self.theme = theme
        self.persistence.save_theme(theme)

    # ------------------ HISTORY & DRAFT -------------

    def load_history_item(self, prompt: str) -> None:
        self.prompt = prompt
        self.error = None
        self.edit_prompt = ""
        self.set_comic(None)
        self.notify("Prompt loaded! You can generate the comic again.")

    def clear_history(self) -> None:
        self.persistence.clear_history()

    def resume_draft(self) -> bool:
        loaded = self.persistence.load_draft()
        if loaded.status == "missing":
            self.notify("No draft found to load.")
            return False
        if loaded.status == "corrupt":
            self.notify("Could not load draft.")
            return False
        draft = loaded.snapshot
        self.prompt = draft.prompt
        self.set_comic(draft.to_comic())
        self.registry.replace_all(draft.characters)
        self.notify("Draft loaded successfully!")
        return True

    def discard_draft(self) -> None:
        # The autosave then removes the persisted draft
        self.prompt = ""
        self.set_comic(None)
        self.registry.replace_all([])
        self.notify("Draft cleared.")

    # ------------------ CHARACTERS ------------------

    async def analyze_face(self, backend: ComicBackend, image_url: str) -> Outcome:
        failure = await self.registry.analyze_face(backend, image_url)
        if failure is not None:
            self.report(failure)
            return Outcome.failed(failure)
        return Outcome.committed()

    # ------------------ VOICE -----------------------

    def narrate(self) -> None:
        parts = self.story_parts
        text = parts[self.current_page] if parts and len(parts) > self.current_page else None
        self.narration.toggle(text)

    async def capture_voice(self) -> None:
        try:
            transcript = await self.voice.capture()
        except CapabilityUnavailable as e:
            self.report(e)
            return
        except Exception as e:
            logger.error("Speech recognition error: %s", e)
            self.report(EcoMatrixError(f"Voice input error: {e}"))
            return
        if transcript:
            self.set_prompt(append_transcript(self.prompt, transcript))
