# config.py
import os
from pathlib import Path

from dotenv import load_dotenv

# ------------------ ENV & CONFIG ------------------
load_dotenv()

# google-genai: story text, suggestions, face analysis and image edits
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
# fal nano banana: text-to-image
FAL_API_KEY = os.getenv("FAL_API_KEY", "")

# Models (override via env if your account uses different names)
LLM_MODEL = os.getenv("PLANNING_MODEL", "gemini-2.5-flash")
NANO_IMAGE_MODEL = os.getenv("NANO_IMAGE_MODEL", "fal-ai/nano-banana")
NANO_EDIT_MODEL = os.getenv(
    "NANO_EDIT_MODEL", "gemini-2.5-flash-image-preview")

STRIP_ASPECT_RATIO = os.getenv("STRIP_ASPECT_RATIO", "16:9")
# more traditional book page
STORY_ASPECT_RATIO = os.getenv("STORY_ASPECT_RATIO", "4:3")
OUTPUT_FORMAT = "png"

# rate-limit pacing before each story page image
STORY_PAGE_DELAY_MS = int(os.getenv("STORY_PAGE_DELAY_MS", "5000"))
DRAFT_DEBOUNCE_MS = int(os.getenv("DRAFT_DEBOUNCE_MS", "1000"))
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "50"))

STORE_PATH = Path(os.getenv("STORE_PATH", "ecomatrix_store.json"))
STORE_QUOTA_BYTES = int(os.getenv("STORE_QUOTA_BYTES", str(5 * 1024 * 1024)))

PRINT_PROMPTS = os.getenv("PRINT_PROMPTS", "1") == "1"
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", "output"))

# ------------------ STORE KEYS --------------------
THEME_KEY = "ecoMatrixTheme"
TUTORIAL_KEY = "ecoMatrixTutorialCompleted"
HISTORY_KEY = "ecoMatrixComicHistory"
DRAFT_KEY = "ecoMatrixDraft"


def require_api_keys() -> None:
    """Fail fast before talking to the live backends."""
    if not GEMINI_API_KEY:
        raise RuntimeError("Missing GEMINI_API_KEY in .env")
    if not FAL_API_KEY:
        raise RuntimeError("Missing FAL_API_KEY in .env")
    os.environ["FAL_KEY"] = FAL_API_KEY
