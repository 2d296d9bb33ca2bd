import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Literal, Optional

from pydantic import ValidationError as SchemaError

from .config import (DRAFT_DEBOUNCE_MS, DRAFT_KEY, HISTORY_KEY, HISTORY_LIMIT,
                     THEME_KEY, TUTORIAL_KEY)
from .errors import SchemaMigrationFailure, StorageFailure, StorageQuotaExceeded
from .history import HistoryLedger, decode_history, encode_history
from .models import DraftSnapshot
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

HISTORY_FULL_MESSAGE = "Could not save to history: storage is full."
HISTORY_CLEAR_FAILED_MESSAGE = "Could not clear history from storage."
DRAFT_FULL_MESSAGE = "Could not save draft: storage is full."
DRAFT_SAVE_FAILED_MESSAGE = "Could not save draft."


@dataclass
class DraftLoad:
    status: Literal["found", "missing", "corrupt"]
    snapshot: Optional[DraftSnapshot] = None


class PersistenceManager:
    """
    Sole writer of the persistent store: prompt history, the autosaved
    draft, and the two small UI preferences (theme, tutorial flag).

    Every failure is caught here. Quota problems become a notice through
    `notify`; anything else is logged. Nothing raises to the caller.
    """

    def __init__(self, store: KeyValueStore,
                 notify: Optional[Callable[[str], None]] = None,
                 debounce_ms: int = DRAFT_DEBOUNCE_MS,
                 history_limit: int = HISTORY_LIMIT):
        self.store = store
        self.notify = notify or (lambda message: None)
        self.debounce = debounce_ms / 1000
        self.ledger = HistoryLedger(limit=history_limit)
        self.has_draft = False
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[DraftSnapshot] = None

    # ------------------ HISTORY ---------------------

    @property
    def history(self) -> List[str]:
        return list(self.ledger.entries)

    def load_history(self) -> List[str]:
        try:
            raw = self.store.get(HISTORY_KEY)
        except StorageFailure as e:
            logger.error("Failed to read comic history: %s", e)
            self.ledger.clear()
            return self.history

        decoded = decode_history(raw)
        if decoded.kind == "invalid":
            failure = SchemaMigrationFailure(f"Discarding stored history: {decoded.reason}")
            logger.warning("%s", failure.message)
            self.ledger.clear()
            self._remove(HISTORY_KEY, "corrupt comic history")
            return self.history

        self.ledger.replace(decoded.entries)
        if decoded.needs_rewrite:
            logger.info("Migrated %d legacy history entries", len(decoded.entries))
            self._persist_history()
        return self.history

    def record_success(self, prompt: str) -> List[str]:
        """Move-to-front insert, cap, then persist. The in-memory update always stands."""
        self.ledger.record(prompt)
        self._persist_history()
        return self.history

    def clear_history(self) -> None:
        self.ledger.clear()
        try:
            self.store.remove(HISTORY_KEY)
        except StorageFailure as e:
            logger.error("Failed to clear history from storage: %s", e)
            self.notify(HISTORY_CLEAR_FAILED_MESSAGE)

    def _persist_history(self) -> None:
        try:
            self.store.set(HISTORY_KEY, encode_history(self.ledger.entries))
        except StorageQuotaExceeded:
            logger.warning("Storage quota is full. History will not be saved.")
            self.notify(HISTORY_FULL_MESSAGE)
        except StorageFailure as e:
            logger.error("Failed to save comic history: %s", e)

    # ------------------ DRAFT -----------------------

    def on_fields_changed(self, snapshot: DraftSnapshot) -> None:
        """
        Re-arm the autosave timer. Must be called from inside the running
        event loop; the latest snapshot wins when the timer fires.
        """
        self._pending = snapshot.model_copy(deep=True)
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce, self._on_timer)

    @property
    def save_pending(self) -> bool:
        return self._timer is not None

    def _on_timer(self) -> None:
        self._timer = None
        snapshot, self._pending = self._pending, None
        if snapshot is not None:
            self.save_draft(snapshot)

    def flush(self) -> None:
        """Write any pending snapshot now instead of waiting for the timer."""
        if self._timer is not None:
            self._timer.cancel()
            self._on_timer()

    def cancel_pending(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = None
        self._pending = None

    def save_draft(self, snapshot: DraftSnapshot) -> None:
        if snapshot.is_empty():
            # If everything is empty, clear any existing draft
            self.clear_draft()
            return
        try:
            self.store.set(DRAFT_KEY, snapshot.model_dump_json())
            self.has_draft = True
        except StorageQuotaExceeded:
            logger.warning("Storage quota is full. Draft will not be saved.")
            self.notify(DRAFT_FULL_MESSAGE)
        except StorageFailure as e:
            logger.error("Failed to save draft: %s", e)
            self.notify(DRAFT_SAVE_FAILED_MESSAGE)

    def check_draft(self) -> bool:
        """Startup probe: is there a draft worth offering to resume?"""
        try:
            self.has_draft = self.store.get(DRAFT_KEY) is not None
        except StorageFailure as e:
            logger.error("Failed to check for draft: %s", e)
            self.has_draft = False
        return self.has_draft

    def load_draft(self) -> DraftLoad:
        try:
            raw = self.store.get(DRAFT_KEY)
        except StorageFailure as e:
            logger.error("Failed to load draft: %s", e)
            return DraftLoad("corrupt")
        if raw is None:
            # Correct state if draft disappears
            self.has_draft = False
            return DraftLoad("missing")
        try:
            snapshot = DraftSnapshot.model_validate_json(raw)
        except (SchemaError, ValueError) as e:
            logger.error("Stored draft is unreadable: %s", e)
            return DraftLoad("corrupt")
        return DraftLoad("found", snapshot)

    def clear_draft(self) -> None:
        self._remove(DRAFT_KEY, "draft")
        self.has_draft = False

    # ------------------ PREFERENCES -----------------

    def load_theme(self, default: str = "light") -> str:
        try:
            theme = self.store.get(THEME_KEY)
        except StorageFailure as e:
            logger.error("Failed to read theme: %s", e)
            return default
        return theme if theme in ("light", "dark") else default

    def save_theme(self, theme: str) -> None:
        self._set(THEME_KEY, theme, "theme")

    def tutorial_completed(self) -> bool:
        try:
            return self.store.get(TUTORIAL_KEY) == "true"
        except StorageFailure as e:
            logger.error("Failed to read tutorial flag: %s", e)
            return False

    def mark_tutorial_completed(self) -> None:
        self._set(TUTORIAL_KEY, "true", "tutorial flag")

    def _set(self, key: str, value: str, what: str) -> None:
        try:
            self.store.set(key, value)
        except StorageFailure as e:
            logger.error("Failed to save %s: %s", what, e)

    def _remove(self, key: str, what: str) -> None:
        try:
            self.store.remove(key)
        except StorageFailure as e:
            logger.error("Failed to remove %s: %s", what, e)
