"""FastAPI application exposing edit sessions and the stand-alone AI tools."""
from dotenv import load_dotenv

# Load environment variables FIRST
load_dotenv()

import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

from ..config import configure_logging
from ..errors import InvalidRequest, RemoteError
from ..imaging import load_image_state
from ..presets import EDIT_PRESETS
from ..session.edit_session import EditSession
from ..session.models import OperationResult, SessionSnapshot
from ..session.registry import SessionRegistry, get_registry

configure_logging()
logger = logging.getLogger(__name__)

# -------------------------------------------------------------------
# FASTAPI APP
# -------------------------------------------------------------------
app = FastAPI(
    title="Photo Studio API",
    description="AI image editing sessions with undo/redo and live prompt suggestions",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------------------------------------------
# SCHEMAS
# -------------------------------------------------------------------
class SessionResponse(BaseModel):
    session_id: str
    result: Optional[OperationResult] = None
    session: SessionSnapshot


class EditRequest(BaseModel):
    prompt: Optional[str] = None


class PromptRequest(BaseModel):
    text: str


class SuggestionRequest(BaseModel):
    suggestion: str


class PresetRequest(BaseModel):
    name: str


class GenerateRequest(BaseModel):
    prompt: Optional[str] = None
    aspect_ratio: str = "1:1"
    load: bool = False


class TextResponse(BaseModel):
    success: bool
    text: str


# -------------------------------------------------------------------
# HELPERS
# -------------------------------------------------------------------
def get_session(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> EditSession:
    session = registry.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return session


def respond(session: EditSession, result: Optional[OperationResult] = None) -> SessionResponse:
    """Turn an operation result into a response, mapping failures to HTTP errors."""
    if result is not None and not result.success:
        status_code = 400 if result.error_kind == InvalidRequest.kind else 502
        raise HTTPException(status_code=status_code, detail=result.error)
    return SessionResponse(session_id=session.session_id, result=result, session=session.snapshot())


def image_response(data: bytes, mime_type: str) -> Response:
    return Response(content=data, media_type=mime_type)


# -------------------------------------------------------------------
# ROUTES
# -------------------------------------------------------------------
@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Photo Studio API",
        "architecture": "FastAPI → EditSession → Gemini",
        "version": "1.0.0",
        "endpoints": {
            "sessions": "POST /api/sessions",
            "upload": "POST /api/sessions/{id}/image",
            "edit": "POST /api/sessions/{id}/edit",
            "generate": "POST /api/generate",
            "analyze": "POST /api/analyze",
            "health": "GET /api/health",
        },
    }


@app.get("/api/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "service": "photo-studio-api"}


@app.get("/api/presets")
async def list_presets():
    return {"presets": EDIT_PRESETS}


@app.post("/api/sessions", response_model=SessionResponse)
async def create_session(registry: SessionRegistry = Depends(get_registry)):
    session = registry.create()
    return respond(session)


@app.get("/api/sessions/{session_id}", response_model=SessionResponse)
async def read_session(session: EditSession = Depends(get_session)):
    return respond(session)


@app.delete("/api/sessions/{session_id}")
async def delete_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    if not registry.close(session_id):
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return {"success": True}


@app.post("/api/sessions/{session_id}/image", response_model=SessionResponse)
async def upload_image(file: UploadFile = File(...), session: EditSession = Depends(get_session)):
    """Upload a new source image; this discards the session's previous history."""
    content = await file.read()
    try:
        image = load_image_state(content, filename=file.filename, content_type=file.content_type)
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    result = await session.select_image(image)
    return respond(session, result)


@app.get("/api/sessions/{session_id}/image/current")
async def current_image(session: EditSession = Depends(get_session)):
    image = session.current_image
    if image is None:
        raise HTTPException(status_code=404, detail="No image loaded")
    return image_response(image.data, image.mime_type)


@app.post("/api/sessions/{session_id}/edit", response_model=SessionResponse)
async def edit_image(request: EditRequest, session: EditSession = Depends(get_session)):
    result = await session.apply_edit(request.prompt)
    return respond(session, result)


@app.post("/api/sessions/{session_id}/undo", response_model=SessionResponse)
async def undo(session: EditSession = Depends(get_session)):
    return respond(session, session.undo())


@app.post("/api/sessions/{session_id}/redo", response_model=SessionResponse)
async def redo(session: EditSession = Depends(get_session)):
    return respond(session, session.redo())


@app.post("/api/sessions/{session_id}/prompt", response_model=SessionResponse)
async def type_prompt(request: PromptRequest, session: EditSession = Depends(get_session)):
    session.type_prompt(request.text)
    return respond(session)


@app.post("/api/sessions/{session_id}/preset", response_model=SessionResponse)
async def apply_preset(request: PresetRequest, session: EditSession = Depends(get_session)):
    return respond(session, session.apply_preset(request.name))


@app.post("/api/sessions/{session_id}/suggestions/accept", response_model=SessionResponse)
async def accept_suggestion(request: SuggestionRequest, session: EditSession = Depends(get_session)):
    return respond(session, session.accept_suggestion(request.suggestion))


@app.post("/api/sessions/{session_id}/suggestions/dismiss", response_model=SessionResponse)
async def dismiss_suggestion(request: SuggestionRequest, session: EditSession = Depends(get_session)):
    result = await session.dismiss_suggestion(request.suggestion)
    return respond(session, result)


@app.post("/api/sessions/{session_id}/suggestions/refresh", response_model=SessionResponse)
async def refresh_suggestions(session: EditSession = Depends(get_session)):
    result = await session.refresh_suggestions()
    return respond(session, result)


@app.post("/api/sessions/{session_id}/random-prompt", response_model=SessionResponse)
async def session_random_prompt(session: EditSession = Depends(get_session)):
    result = await session.random_prompt()
    return respond(session, result)


@app.post("/api/sessions/{session_id}/generate", response_model=SessionResponse)
async def session_generate(request: GenerateRequest, session: EditSession = Depends(get_session)):
    result = await session.generate_image(request.prompt, request.aspect_ratio, load=request.load)
    return respond(session, result)


@app.get("/api/sessions/{session_id}/image/generated")
async def generated_image(session: EditSession = Depends(get_session)):
    image = session.last_generated
    if image is None:
        raise HTTPException(status_code=404, detail="No image generated yet")
    return image_response(image.data, image.mime_type)


# -------------------------------------------------------------------
# STAND-ALONE TOOLS
# -------------------------------------------------------------------
@app.post("/api/generate")
async def generate(request: GenerateRequest, registry: SessionRegistry = Depends(get_registry)):
    """Generate an image from text without a session."""
    if not request.prompt or not request.prompt.strip():
        raise HTTPException(status_code=400, detail="Please enter a prompt.")
    try:
        image = await registry.service.generate_from_text(request.prompt, request.aspect_ratio)
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RemoteError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return image_response(image.data, image.mime_type)


@app.post("/api/analyze", response_model=TextResponse)
async def analyze(file: UploadFile = File(...), registry: SessionRegistry = Depends(get_registry)):
    """Describe an uploaded image."""
    content = await file.read()
    try:
        image = load_image_state(content, filename=file.filename, content_type=file.content_type)
        text = await registry.service.analyze_image(image)
    except InvalidRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except RemoteError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return TextResponse(success=True, text=text)


@app.get("/api/random-prompt", response_model=TextResponse)
async def random_prompt(registry: SessionRegistry = Depends(get_registry)):
    try:
        text = await registry.service.random_prompt()
    except RemoteError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return TextResponse(success=True, text=text)


# -------------------------------------------------------------------
# RUN SERVER
# -------------------------------------------------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
