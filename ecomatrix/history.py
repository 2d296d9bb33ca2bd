import json
from dataclasses import dataclass, field
from typing import Any, List, Literal, Optional

from .config import HISTORY_LIMIT


class HistoryLedger:
    """Most-recent-first list of prompts, unique by exact string, capped."""

    def __init__(self, entries: Optional[List[str]] = None, limit: int = HISTORY_LIMIT):
        self.limit = limit
        self.entries: List[str] = list(entries or [])

    def record(self, prompt: str) -> List[str]:
        updated = [prompt] + [item for item in self.entries if item != prompt]
        self.entries = updated[:self.limit]
        return self.entries

    def clear(self) -> None:
        self.entries = []

    def replace(self, entries: List[str]) -> None:
        self.entries = list(entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self):
        return iter(self.entries)


@dataclass
class DecodedHistory:
    kind: Literal["current", "legacy", "invalid"]
    entries: List[str] = field(default_factory=list)
    reason: str = ""

    @property
    def needs_rewrite(self) -> bool:
        return self.kind == "legacy"


def decode_history(raw: Optional[str]) -> DecodedHistory:
    """
    Decide which schema a persisted history value uses.

    current: ["prompt", ...]             -> loaded verbatim
    legacy:  [{"prompt": "..."}, ...]    -> prompts extracted, caller re-persists
    anything else (incl. bad JSON)       -> invalid, caller discards it
    """
    if raw is None:
        return DecodedHistory("current")
    try:
        value: Any = json.loads(raw)
    except (TypeError, ValueError) as e:
        return DecodedHistory("invalid", reason=f"unparseable: {e}")

    if not isinstance(value, list):
        return DecodedHistory("invalid", reason=f"expected a list, got {type(value).__name__}")
    if all(isinstance(item, str) for item in value):
        return DecodedHistory("current", entries=value)
    if all(isinstance(item, dict) and isinstance(item.get("prompt"), str) for item in value):
        return DecodedHistory("legacy", entries=[item["prompt"] for item in value])
    return DecodedHistory("invalid", reason="unrecognized entry shape")


def encode_history(entries: List[str]) -> str:
    return json.dumps(entries)
