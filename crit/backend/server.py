"""
FastAPI review server.

Run:
    crit serve --port 3847

Every route resolves the active session from disk per request; nothing is
cached between requests, so re-running capture while the server is up only
needs a page reload.
"""
import base64
import binascii
import json
import os
import re
import signal
import threading
from pathlib import Path
from typing import Callable, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from crit.config import Config
from crit.orchestrator.session import (
    CaptureIndexError,
    CorruptDocumentError,
    InvalidFilenameError,
    NoSessionError,
    Session,
    SessionStore,
    capture_filename,
)
from crit.orchestrator.state import EMPTY_CRITIQUE, EMPTY_MANIFEST
from crit.tools.simulator import DeviceController, SimctlController, SimulatorError


REVIEW_UI_PATH = Path(__file__).parent / "review-ui.html"

_DATA_URL_PREFIX = re.compile(r"^data:[\w.+-]+/[\w.+-]+;base64,")


class ImageUpload(BaseModel):
    """Canvas export from the review UI."""
    filename: str
    dataUrl: str


def decode_data_url(data_url: str) -> bytes:
    """
    Decode `data:image/png;base64,...` (prefix optional) to raw bytes.

    Raises:
        ValueError: payload is not valid base64
    """
    payload = _DATA_URL_PREFIX.sub("", data_url.strip(), count=1)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid image data: {e}") from e


def _reject_constant(name: str):
    raise ValueError(f"Invalid JSON constant: {name}")


def _default_shutdown() -> None:
    """Ask uvicorn to exit the same way Ctrl+C would."""
    os.kill(os.getpid(), signal.SIGINT)


def create_app(
    config: Config,
    store: Optional[SessionStore] = None,
    controller: Optional[DeviceController] = None,
    shutdown: Optional[Callable[[], None]] = None,
) -> FastAPI:
    """Build the review API bound to one project directory."""
    store = store or SessionStore(config)
    controller = controller or SimctlController()
    shutdown = shutdown or _default_shutdown

    app = FastAPI(
        title="Crit Review Server",
        description="Screenshot review and feedback API",
        version="1.0.0",
    )

    # Local tool, single trusted user
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )

    def debug(message: str) -> None:
        if config.debug:
            print(f"   [DEBUG] {message}", flush=True)

    def require_session() -> Session:
        session = store.get_latest_session()
        if session is None:
            raise HTTPException(status_code=404, detail="No session found")
        debug(f"session: {session.name}")
        return session

    # ─────────────────────────────────────────────────────────────
    # Error rendering: {"error": "..."} everywhere
    # ─────────────────────────────────────────────────────────────

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        messages = [
            f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        ]
        return JSONResponse({"error": "; ".join(messages) or "Invalid request"}, status_code=400)

    @app.exception_handler(CorruptDocumentError)
    async def corrupt_document(request: Request, exc: CorruptDocumentError):
        return JSONResponse({"error": str(exc)}, status_code=500)

    # ─────────────────────────────────────────────────────────────
    # Review UI
    # ─────────────────────────────────────────────────────────────

    @app.get("/")
    @app.get("/index.html")
    def review_ui():
        if not REVIEW_UI_PATH.is_file():
            raise HTTPException(status_code=404, detail="Not found")
        return FileResponse(REVIEW_UI_PATH, media_type="text/html")

    # ─────────────────────────────────────────────────────────────
    # Read endpoints (empty state is never an error)
    # ─────────────────────────────────────────────────────────────

    @app.get("/api/manifest")
    def get_manifest():
        session = store.get_latest_session()
        manifest = store.read_manifest(session) if session else None
        return manifest if manifest is not None else dict(EMPTY_MANIFEST, captures=[])

    @app.get("/api/critique")
    def get_critique():
        session = store.get_latest_session()
        critique = store.read_critique(session) if session else None
        return critique if critique is not None else {"captures": dict(EMPTY_CRITIQUE["captures"])}

    @app.get("/api/sessions")
    def get_sessions():
        return store.list_sessions()

    # ─────────────────────────────────────────────────────────────
    # Feedback export
    # ─────────────────────────────────────────────────────────────

    @app.post("/api/feedback")
    async def post_feedback(request: Request):
        session = require_session()
        raw = await request.body()
        try:
            document = json.loads(raw, parse_constant=_reject_constant)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=f"Invalid JSON body: {e}")

        feedback_path = store.write_feedback(session, document)
        print(f"📝 Feedback saved: {feedback_path}", flush=True)
        return {"success": True, "path": str(feedback_path)}

    def save_upload(kind: str, upload: ImageUpload) -> dict:
        session = require_session()
        try:
            data = decode_data_url(upload.dataUrl)
            relative = store.write_asset(session, kind, upload.filename, data)
        except (ValueError, InvalidFilenameError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        debug(f"wrote {relative} ({len(data)} bytes)")
        return {"success": True, "path": relative}

    @app.post("/api/annotated")
    def post_annotated(upload: ImageUpload):
        return save_upload("annotated", upload)

    @app.post("/api/references")
    def post_reference(upload: ImageUpload):
        return save_upload("references", upload)

    # ─────────────────────────────────────────────────────────────
    # Incremental capture
    # ─────────────────────────────────────────────────────────────

    @app.post("/api/snap")
    def snap():
        """Capture one screenshot into the active session (created if none)."""
        try:
            booted = controller.get_booted()
        except SimulatorError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if booted is None:
            raise HTTPException(status_code=400, detail="No booted simulator found")

        session = store.get_latest_session() or store.create_session()

        with store.session_lock(session.name):
            manifest = store.read_manifest(session)
            filename = capture_filename(store.next_capture_number(session, manifest))
            session.screenshots_dir.mkdir(parents=True, exist_ok=True)
            try:
                controller.screenshot(session.screenshots_dir / filename)
            except (SimulatorError, OSError) as e:
                raise HTTPException(status_code=500, detail=str(e))

            capture = {"image": f"screenshots/{filename}"}
            manifest = store.append_capture(session, booted.name, capture)

        count = len(manifest["captures"])
        print(f"📸 Snapped {filename} ({count} in {session.name})", flush=True)
        return {
            "success": True,
            "session": session.name,
            "index": count - 1,
            "capture": capture,
            "count": count,
        }

    @app.delete("/api/capture/{index}")
    def delete_capture(index: int):
        session = require_session()
        try:
            removed = store.delete_capture(session, index)
        except NoSessionError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except CaptureIndexError as e:
            raise HTTPException(status_code=400, detail=str(e))

        remaining = len(store.read_manifest(session)["captures"])
        print(f"🗑️  Removed {removed.get('image')}", flush=True)
        return {"success": True, "removed": removed, "remaining": remaining}

    # ─────────────────────────────────────────────────────────────
    # Shutdown
    # ─────────────────────────────────────────────────────────────

    @app.post("/api/stop")
    def stop():
        print("\n🛑 Stop requested from review UI", flush=True)
        timer = threading.Timer(config.stop_delay, shutdown)
        timer.daemon = True
        timer.start()
        return {"success": True}

    # ─────────────────────────────────────────────────────────────
    # Session files
    # ─────────────────────────────────────────────────────────────

    def serve_session_file(kind: str, file_path: str):
        session = store.get_latest_session()
        if session is None:
            raise HTTPException(status_code=404, detail="No session")
        resolved = store.resolve_asset(session, f"{kind}/{file_path}")
        if resolved is None:
            raise HTTPException(status_code=404, detail="Not found")
        return FileResponse(resolved)

    @app.get("/screenshots/{file_path:path}")
    def screenshots(file_path: str):
        return serve_session_file("screenshots", file_path)

    @app.get("/annotated/{file_path:path}")
    def annotated(file_path: str):
        return serve_session_file("annotated", file_path)

    @app.get("/references/{file_path:path}")
    def references(file_path: str):
        return serve_session_file("references", file_path)

    return app


def run_server(config: Config, controller: Optional[DeviceController] = None) -> None:
    """Start uvicorn in the foreground."""
    import uvicorn

    print("\n  Crit Review UI", flush=True)
    print("  ==================")
    print(f"  {config.url}")
    print(f"  Serving: {config.review_root}\n", flush=True)

    app = create_app(config, controller=controller)
    uvicorn.run(app, host=config.host, port=config.port)
