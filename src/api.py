from fastapi import FastAPI, HTTPException, Query, Depends, Header
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import secrets
from typing import Optional, List, Dict
from pydantic import BaseModel

from config import settings, VERSION
from engine import create_engine
from session_controller import SessionController
from status import StatusReporter
from surface import HeadlessSurface

# Set up logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


# Request models
class PlayRequest(BaseModel):
    url: Optional[str] = None


class StatusResponse(BaseModel):
    message: str
    severity: str


class PresetInfo(BaseModel):
    name: str
    configured: bool


def build_controller() -> SessionController:
    surface = HeadlessSurface(
        native_support=settings.NATIVE_HLS_SUPPORT,
        autoplay_allowed=settings.AUTOPLAY_ALLOWED,
    )
    return SessionController(
        surface,
        reporter=StatusReporter(),
        engine_factory=create_engine,
        max_fatal_recoveries=settings.MAX_FATAL_RECOVERIES,
    )


# Global session controller
controller = build_controller()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events"""
    # Startup
    logger.info("⚡️ relay player starting up...")

    yield

    # Shutdown: no engine may outlive the process
    logger.info("relay player shutting down...")
    await controller.teardown()


app = FastAPI(
    title="relay player",
    version=VERSION,
    description="Headless live-stream player that routes playback through a same-origin relay",
    lifespan=lifespan,
    root_path=settings.ROOT_PATH,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def verify_token(
    x_api_token: Optional[str] = Header(None, alias="X-API-Token"),
    api_token: Optional[str] = Query(
        None, description="Player API token, for callers that cannot set X-API-Token")
):
    """
    Guard the player control routes when API_TOKEN is configured.

    Operators send the token in the X-API-Token header; the api_token query
    parameter exists for quick checks from a browser address bar. With no
    API_TOKEN configured the player is open, which suits a local deployment.
    """
    # Open player
    if not settings.API_TOKEN:
        return True

    # Header wins over the query parameter
    provided_token = x_api_token or api_token

    if not provided_token:
        raise HTTPException(
            status_code=401,
            detail="Player API token required (X-API-Token header or api_token query parameter)",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not secrets.compare_digest(provided_token.encode(), settings.API_TOKEN.encode()):
        raise HTTPException(
            status_code=403,
            detail="Invalid player API token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return True


def session_summary() -> Dict:
    if controller.session is None:
        return {"active": False}
    return controller.session.to_dict()


def play_response() -> Dict:
    return {
        "status": controller.reporter.to_dict(),
        "session": session_summary(),
    }


@app.post("/play", dependencies=[Depends(verify_token)])
async def play(request: PlayRequest):
    """Start playing a pasted URL, superseding any active session"""
    await controller.submit(request.url)
    return play_response()


@app.get("/presets", dependencies=[Depends(verify_token)], response_model=List[PresetInfo])
async def list_presets():
    return [
        PresetInfo(name=name, configured=bool(url))
        for name, url in controller.presets.items()
    ]


@app.post("/presets/{name}/play", dependencies=[Depends(verify_token)])
async def play_preset(name: str):
    """Start playing a configured preset"""
    try:
        await controller.play_preset(name)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown preset: {name}")
    return play_response()


@app.get("/status", dependencies=[Depends(verify_token)], response_model=StatusResponse)
async def get_status():
    return StatusResponse(**controller.reporter.to_dict())


@app.get("/session", dependencies=[Depends(verify_token)])
async def get_session():
    return session_summary()


@app.delete("/session", dependencies=[Depends(verify_token)])
async def delete_session():
    """Tear down the active session; a no-op when nothing is playing"""
    await controller.teardown()
    return {"message": "Session torn down", "session": session_summary()}


@app.get("/health", dependencies=[Depends(verify_token)])
async def health_check():
    return {
        "status": "healthy",
        "version": VERSION,
        "session_active": controller.session is not None,
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api:app", host=settings.HOST, port=settings.PORT,
                log_level=settings.LOG_LEVEL.lower())
