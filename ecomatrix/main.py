# main.py
import argparse
import asyncio
import json
import random
import re
import string
import sys
from pathlib import Path
from typing import List, Optional

from .config import OUTPUT_DIR, STORE_PATH
from .editing import AMBIANCE_PRESETS, EditPipeline
from .genai import GAIC
from .models import StyleOptions
from .orchestrator import GenerationOrchestrator
from .persistence import PersistenceManager
from .session import ComicSession
from .storage import JsonFileStore
from .utils import PromptLogger, ensure_dir


def slugify(text: str, fallback: str = "item") -> str:
    text = text.strip().lower()
    text = re.sub(r"[^a-z0-9]+", "-", text).strip("-")
    return text[:40].strip("-") or fallback


def print_event(event: dict) -> None:
    if event["type"] == "step":
        print(f">> {event['message']}")
    elif event["type"] == "notice":
        print(f"   ! {event['message']}")
    elif event["type"] == "error":
        print(f"   x {event['message']}")


def write_comic(session: ComicSession, out_root: Path) -> List[Path]:
    written = []
    for page in session.comic.pages:
        path = out_root / f"page-{page.index + 1:03d}.png"
        path.write_bytes(page.image_bytes)
        written.append(path)
        print(f"   ✓ Page {page.index + 1} -> {path.name}")
    if session.comic.narration:
        (out_root / "narration.json").write_text(
            json.dumps(session.comic.narration, indent=2), encoding="utf-8")
    return written


async def run_pipeline(prompt: Optional[str], out_root: Path, story: bool = False,
                       style: Optional[StyleOptions] = None, integrate_science: bool = True,
                       preset: Optional[str] = None, store_path: Path = STORE_PATH) -> int:
    """
    Produce one comic from the command line.

    Args:
        prompt: The story idea; None asks the text backend for a suggestion
        out_root: Output directory for pages, narration and prompts
        story: Three-page narrated story instead of a single strip
        preset: Ambiance preset applied to the first page afterwards
    """
    ensure_dir(out_root)
    prompt_log = PromptLogger(out_root / "prompts_used.txt")
    g = GAIC()
    session = ComicSession(PersistenceManager(JsonFileStore(store_path)))
    session.listeners.append(print_event)
    session.start()

    orchestrator = GenerationOrchestrator(g, session, prompt_log=prompt_log)
    try:
        if prompt is None:
            print(">> Asking for a story idea...")
            if not (await orchestrator.suggest_prompt()).ok:
                return 1
            print(f"   Suggested: {session.prompt}")
        else:
            session.set_prompt(prompt)

        if story:
            outcome = await orchestrator.generate_story(integrate_science=integrate_science)
        else:
            outcome = await orchestrator.generate_strip(
                style=style, integrate_science=integrate_science)
        if not outcome.ok:
            return 1

        if preset:
            await EditPipeline(g, session, prompt_log=prompt_log).apply_preset(preset, 0)

        write_comic(session, out_root)
    finally:
        prompt_log.flush()
        session.close()

    print(f">> Done. Output at: {out_root}")
    return 0


# ------------------ CLI -------------------------


def cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="ecomatrix", description="Turn a story idea into an illustrated comic.")
    parser.add_argument("prompt", nargs="?", help="story idea; omitted asks for a suggestion")
    parser.add_argument("--story", action="store_true", help="three-page narrated story")
    parser.add_argument("--no-style", action="store_true", help="skip the comic style pass")
    parser.add_argument("--no-science", action="store_true", help="no climate science fact")
    parser.add_argument("--art-style", default="Western Comics")
    parser.add_argument("--line-thickness", default="Medium")
    parser.add_argument("--shading", default="Halftone Dots")
    parser.add_argument("--preset", choices=sorted(AMBIANCE_PRESETS))
    parser.add_argument("--out", type=Path, default=None, help="output directory")
    args = parser.parse_args(argv)

    style = StyleOptions(applyStyle=not args.no_style, artStyle=args.art_style,
                         lineThickness=args.line_thickness, shadingTechnique=args.shading)
    if args.out is None:
        run_id = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
        slug = slugify(args.prompt or "suggested", fallback="comic")
        args.out = OUTPUT_DIR / f"{slug}-{run_id}"

    return asyncio.run(run_pipeline(args.prompt, args.out, story=args.story, style=style,
                                    integrate_science=not args.no_science,
                                    preset=args.preset))


if __name__ == "__main__":
    sys.exit(cli())
