import asyncio
import logging
from typing import Callable, Optional, Protocol

from .errors import CapabilityUnavailable

logger = logging.getLogger(__name__)

NARRATION_UNAVAILABLE = "Sorry, narration is not available on this system."
VOICE_INPUT_UNAVAILABLE = "Sorry, voice recognition is not available on this system."


class Speaker(Protocol):
    """Text-to-speech output. `speak` returns at once; `on_end` fires later."""

    def speak(self, text: str, on_end: Callable[[Optional[str]], None]) -> None: ...

    def cancel(self) -> None: ...


class Recognizer(Protocol):
    async def listen(self) -> str: ...


class NarrationController:
    """Reads the current page's narration aloud, one utterance at a time."""

    def __init__(self, speaker: Optional[Speaker] = None,
                 notify: Optional[Callable[[str], None]] = None):
        self.speaker = speaker
        self.notify = notify or (lambda message: None)
        self.narrating = False

    def toggle(self, text: Optional[str]) -> None:
        if self.speaker is None:
            error = CapabilityUnavailable(NARRATION_UNAVAILABLE)
            self.notify(error.message)
            return
        if self.narrating:
            self.cancel()
            return
        if not text:
            return
        self.narrating = True
        self.speaker.speak(text, self._on_end)

    def _on_end(self, error: Optional[str] = None) -> None:
        self.narrating = False
        if error:
            logger.error("Speech synthesis error: %s", error)
            self.notify(f"Narration failed: {error}")

    def cancel(self) -> None:
        if self.speaker is not None:
            self.speaker.cancel()
        self.narrating = False


class VoiceInput:
    """Single pending speech capture whose transcript feeds the prompt."""

    def __init__(self, recognizer: Optional[Recognizer] = None):
        self.recognizer = recognizer
        self._task: Optional[asyncio.Task] = None

    @property
    def listening(self) -> bool:
        return self._task is not None and not self._task.done()

    async def capture(self) -> Optional[str]:
        """
        Returns the transcript, or None when a capture was already running
        (that one is stopped instead) or this one was cancelled.
        """
        if self.recognizer is None:
            raise CapabilityUnavailable(VOICE_INPUT_UNAVAILABLE)
        if self.listening:
            self.close()
            return None
        task = asyncio.ensure_future(self.recognizer.listen())
        self._task = task
        try:
            await asyncio.wait({task})
        finally:
            if not task.done():
                task.cancel()
            self._task = None
        if task.cancelled():
            return None
        return task.result().strip()

    def close(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()


def append_transcript(prompt: str, transcript: str) -> str:
    return (f"{prompt.strip()} {transcript}" if prompt else transcript).strip()
