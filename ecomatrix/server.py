import asyncio
import json
import queue
import threading
from typing import Any, Awaitable, Callable, Dict, Generator, Optional

from flask import Flask, Response, jsonify, request
from pydantic import ValidationError as PayloadError

from .config import STORE_PATH
from .editing import EditPipeline
from .errors import Outcome
from .export import export_page, export_webcomic
from .genai import GAIC, ComicBackend
from .models import CharacterDraft, StyleOptions
from .orchestrator import GenerationOrchestrator
from .persistence import PersistenceManager
from .session import ComicSession
from .storage import JsonFileStore, KeyValueStore

CALL_TIMEOUT = 30


class EngineHost:
    """
    Owns the event loop the engine runs on. Flask handlers are plain
    threads, so everything touching the session is posted to this loop.
    """

    def __init__(self, backend: ComicBackend, store: KeyValueStore):
        self.backend = backend
        self.store = store
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self.loop.run_forever, daemon=True)
        self.events: "queue.Queue[Dict[str, Any]]" = queue.Queue()
        self.session: Optional[ComicSession] = None
        self.orchestrator: Optional[GenerationOrchestrator] = None
        self.editor: Optional[EditPipeline] = None

    def start(self) -> "EngineHost":
        self.thread.start()
        self.call(self._build)
        return self

    def _build(self) -> None:
        self.session = ComicSession(PersistenceManager(self.store))
        self.session.listeners.append(self.events.put)
        self.session.start()
        self.orchestrator = GenerationOrchestrator(self.backend, self.session)
        self.editor = EditPipeline(self.backend, self.session)

    def call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """Run a plain function on the loop and wait for its result."""
        async def runner():
            return fn(*args, **kwargs)
        return asyncio.run_coroutine_threadsafe(runner(), self.loop).result(CALL_TIMEOUT)

    def submit(self, coro: Awaitable[Outcome]) -> None:
        """Fire and forget; progress and results arrive on the event stream."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        future.add_done_callback(self._on_done)

    def _on_done(self, future) -> None:
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self.events.put({"type": "error", "message": str(exc)})
            return
        outcome = future.result()
        self.events.put({"type": "done", "status": outcome.status})

    def stop(self) -> None:
        if self.session is not None:
            self.call(self.session.close)
        self.loop.call_soon_threadsafe(self.loop.stop)


def page_arg(data: Dict[str, Any]) -> Optional[int]:
    """Optional page index from a JSON body; raises ValueError when unusable."""
    page = data.get("page")
    if page is None:
        return None
    if isinstance(page, bool):
        raise ValueError("page must be an integer")
    return int(page)


def bad_request(message: str):
    return jsonify({"error": message}), 400


def state_payload(session: ComicSession) -> Dict[str, Any]:
    comic = session.comic
    return {
        "prompt": session.prompt,
        "pageCount": len(comic.pages) if comic is not None else 0,
        "currentPage": session.current_page,
        "storyParts": session.story_parts,
        "editPrompt": session.edit_prompt,
        "error": session.error,
        "loading": session.loading_message,
        "isGenerating": session.generation.held,
        "isEditing": session.edit.held,
        "history": session.persistence.history,
        "hasDraft": session.persistence.has_draft,
        "theme": session.theme,
        "characters": [c.model_dump(exclude={"faceImage"}) for c in session.characters],
    }


def create_app(backend: Optional[ComicBackend] = None,
               store: Optional[KeyValueStore] = None) -> Flask:
    app = Flask(__name__, static_folder=None)
    host = EngineHost(backend or GAIC(), store or JsonFileStore(STORE_PATH)).start()
    app.config["ENGINE"] = host

    def session() -> ComicSession:
        return host.session

    @app.route("/api/state")
    def api_state():
        return jsonify(host.call(state_payload, session()))

    @app.route("/api/prompt", methods=["POST"])
    def api_prompt():
        data = request.get_json(force=True)
        host.call(session().set_prompt, data.get("prompt", ""))
        return jsonify({"success": True})

    @app.route("/api/generate", methods=["POST"])
    def api_generate():
        data = request.get_json(force=True)
        mode = data.get("mode", "strip")
        science = bool(data.get("integrateScience", True))
        if mode == "story":
            host.submit(host.orchestrator.generate_story(integrate_science=science))
        elif mode == "strip":
            try:
                style = StyleOptions(**data.get("style", {}))
            except (PayloadError, TypeError) as e:
                return bad_request(f"Invalid style: {e}")
            host.submit(host.orchestrator.generate_strip(
                style=style, integrate_science=science))
        else:
            return bad_request(f"Unknown mode '{mode}'")
        return jsonify({"started": True})

    @app.route("/api/suggest", methods=["POST"])
    def api_suggest():
        host.submit(host.orchestrator.suggest_prompt())
        return jsonify({"started": True})

    @app.route("/api/edit", methods=["POST"])
    def api_edit():
        data = request.get_json(force=True)
        try:
            page = page_arg(data)
        except (TypeError, ValueError):
            return bad_request("Invalid page")
        host.submit(host.editor.edit(data.get("instruction"), page))
        return jsonify({"started": True})

    @app.route("/api/preset", methods=["POST"])
    def api_preset():
        data = request.get_json(force=True)
        try:
            page = page_arg(data)
        except (TypeError, ValueError):
            return bad_request("Invalid page")
        host.submit(host.editor.apply_preset(data.get("preset", ""), page))
        return jsonify({"started": True})

    @app.route("/api/page", methods=["POST"])
    def api_page():
        data = request.get_json(force=True)
        try:
            page = page_arg(data)
        except (TypeError, ValueError):
            return bad_request("Invalid page")
        page = host.call(session().go_to_page, page or 0)
        return jsonify({"currentPage": page})

    @app.route("/api/page/<int:index>.png")
    def api_page_image(index: int):
        comic = session().comic
        contrast = request.args.get("contrast", 100, type=int)
        if comic is None or not 0 <= index < len(comic.pages):
            return "Not found", 404
        return Response(export_page(comic, index, contrast), mimetype="image/png")

    @app.route("/api/export/webcomic")
    def api_export_webcomic():
        comic = session().comic
        if comic is None or len(comic.pages) <= 1:
            return jsonify({"error": "A webcomic needs more than one page"}), 400
        return Response(export_webcomic(comic), mimetype="image/png")

    @app.route("/api/theme", methods=["POST"])
    def api_theme():
        theme = request.get_json(force=True).get("theme")
        if theme not in ("light", "dark"):
            return bad_request("Theme must be light or dark.")
        host.call(session().set_theme, theme)
        return jsonify({"theme": theme})

    @app.route("/api/history", methods=["GET", "DELETE"])
    def api_history():
        if request.method == "DELETE":
            host.call(session().clear_history)
        return jsonify({"history": session().persistence.history})

    @app.route("/api/history/load", methods=["POST"])
    def api_history_load():
        data = request.get_json(force=True)
        host.call(session().load_history_item, data.get("prompt", ""))
        return jsonify({"prompt": session().prompt})

    @app.route("/api/draft", methods=["POST", "DELETE"])
    def api_draft():
        if request.method == "DELETE":
            host.call(session().discard_draft)
            return jsonify({"success": True})
        return jsonify({"success": host.call(session().resume_draft)})

    @app.route("/api/characters", methods=["POST"])
    def api_add_character():
        try:
            draft = CharacterDraft(**request.get_json(force=True))
        except (PayloadError, TypeError) as e:
            return bad_request(f"Invalid character: {e}")
        character = host.call(session().registry.add, draft)
        if character is None:
            return bad_request("Character name is required.")
        return jsonify(character.model_dump())

    @app.route("/api/characters/face", methods=["POST"])
    def api_analyze_face():
        image = request.get_json(force=True).get("image")
        if not isinstance(image, str) or not image.startswith("data:"):
            return bad_request("An image data URL is required.")
        host.submit(session().analyze_face(host.backend, image))
        return jsonify({"started": True})

    @app.route("/api/characters/<character_id>", methods=["DELETE"])
    def api_remove_character(character_id: str):
        host.call(session().registry.remove, character_id)
        return jsonify({"success": True})

    @app.route("/api/stream")
    def api_stream() -> Response:
        def gen() -> Generator[str, None, None]:
            yield "event: ping\n" "data: {}\n\n"
            while True:
                try:
                    evt = host.events.get(timeout=60)
                except queue.Empty:
                    yield "event: ping\n" "data: {}\n\n"
                    continue
                yield f"data: {json.dumps(evt)}\n\n"
        return Response(gen(), mimetype="text/event-stream")

    return app


def run() -> None:
    app = create_app()
    app.run(host="127.0.0.1", port=5001, debug=False, threaded=True)


if __name__ == "__main__":
    run()
