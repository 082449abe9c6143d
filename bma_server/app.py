"""
FastAPI application for the BMA Music Server

Endpoints:
  GET  /health               - Liveness check
  GET  /info                 - Server and library summary
  POST /pair                 - Issue a pairing token
  GET  /songs                - Full song list in library order      (Bearer)
  GET  /stream/{song_id}     - Raw audio for one song               (Bearer)
  GET  /artwork/{song_id}    - Embedded artwork for one song        (Bearer)
  POST /disconnect           - Forget the calling device            (Bearer)
"""

import argparse
import asyncio
import contextlib
import os
import sys
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse, Response
from loguru import logger

from .auth import BEARER_PREFIX, auth_error_response, require_auth
from .config import Settings
from .errors import AuthError, NotFoundError
from .library import MusicLibrary
from .models import AuthContext, PairingData, Song
from .network import server_url
from .trust import TrustLayer, truncate_token

SERVER_NAME = "BMA Music Server"
SERVER_VERSION = "2.0.0"

PNG_SIGNATURE = b"\x89PNG"


def artwork_media_type(data: bytes) -> str:
    """PNG when the bytes carry the PNG signature, JPEG otherwise."""
    if data[:4] == PNG_SIGNATURE:
        return "image/png"
    return "image/jpeg"


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

router = APIRouter()


def _library(request: Request) -> MusicLibrary:
    return request.app.state.library


def _trust(request: Request) -> TrustLayer:
    return request.app.state.trust


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _find_song(request: Request, song_id: str) -> Song:
    song = _library(request).get_song(song_id)
    if song is None:
        logger.warning(f"Song not found: {song_id}")
        raise NotFoundError("Song not found")
    return song


@router.get("/health")
async def health():
    return {"status": "healthy"}


@router.get("/info")
async def info(request: Request):
    """Server details and library statistics."""
    settings = _settings(request)
    snapshot = _library(request).snapshot()
    return {
        "server": SERVER_NAME,
        "version": SERVER_VERSION,
        "httpPort": settings.port,
        "serverUrl": server_url(settings),
        "library": {
            "albumCount": len(snapshot.albums),
            "songCount": len(snapshot.songs),
            "hasLibrary": snapshot.root is not None,
            "isScanning": snapshot.is_scanning,
        },
    }


@router.post("/pair")
async def pair(request: Request):
    """Issue a fresh pairing token for a new client."""
    settings = _settings(request)
    trust = _trust(request)

    token, expires_at = trust.issue_token_with_expiry(settings.token_ttl_minutes)
    pairing = PairingData(
        server_url=server_url(settings),
        token=token,
        expires_at=expires_at,
    )
    return JSONResponse(pairing.model_dump(mode="json", by_alias=True))


@router.get("/songs")
async def songs(request: Request, auth: AuthContext = Depends(require_auth)):
    """All songs in library order; ``sortOrder`` lets clients keep it."""
    library_songs = _library(request).get_songs()
    logger.info(f"Returning {len(library_songs)} songs to {auth.client_ip}")
    return JSONResponse([song.to_api_dict(i) for i, song in enumerate(library_songs)])


@router.get("/stream/{song_id}")
async def stream(song_id: str, request: Request, auth: AuthContext = Depends(require_auth)):
    song = _find_song(request, song_id)
    if not os.path.isfile(song.path):
        logger.warning(f"Audio file missing on disk: {song.path}")
        raise NotFoundError("Music file not found")

    logger.info(f"Streaming {song.artist or '?'} - {song.title} to {auth.client_ip}")
    return FileResponse(song.path, media_type="audio/mpeg", filename=song.filename)


@router.get("/artwork/{song_id}")
async def artwork(song_id: str, request: Request, auth: AuthContext = Depends(require_auth)):
    song = _find_song(request, song_id)
    if not song.has_artwork:
        raise NotFoundError("Artwork not found")

    return Response(
        content=song.artwork,
        media_type=artwork_media_type(song.artwork),
        headers={"Cache-Control": "public, max-age=3600"},
    )


@router.post("/disconnect")
async def disconnect(request: Request, auth: AuthContext = Depends(require_auth)):
    """Forget the calling device and revoke its token."""
    if not _trust(request).disconnect(auth.token):
        logger.warning(f"No device found for token {truncate_token(auth.token)}")
    return {"status": "disconnected", "message": "Device successfully disconnected"}


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

async def _reap_devices_forever(trust: TrustLayer, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        trust.reap_inactive_devices()


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    settings: Settings = app_instance.state.settings
    library: MusicLibrary = app_instance.state.library
    trust: TrustLayer = app_instance.state.trust

    # Startup
    if settings.music_folder is not None:
        library.select_folder(settings.music_folder)
    else:
        logger.warning("No music folder configured (set BMA_MUSIC_FOLDER)")

    reaper = asyncio.create_task(
        _reap_devices_forever(trust, settings.device_reap_seconds)
    )
    logger.info(f"{SERVER_NAME} ready at {server_url(settings)}")

    yield

    # Shutdown
    reaper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await reaper
    trust.reset()
    logger.info(f"{SERVER_NAME} stopped")


async def _log_requests(request: Request, call_next):
    start = time.perf_counter()
    client = request.client.host if request.client else "unknown"
    header = request.headers.get("authorization", "")
    auth_hint = truncate_token(header[len(BEARER_PREFIX):]) if header.startswith(BEARER_PREFIX) else "none"

    response = await call_next(request)

    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.info(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"({elapsed_ms:.1f} ms) from {client} auth={auth_hint}"
    )
    return response


async def _handle_auth_error(request: Request, exc: AuthError) -> JSONResponse:
    return auth_error_response(exc)


async def _handle_not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


def create_app(
    settings: Optional[Settings] = None,
    library: Optional[MusicLibrary] = None,
    trust: Optional[TrustLayer] = None,
) -> FastAPI:
    """Wire settings, library and trust layer into a FastAPI app."""
    settings = settings or Settings.from_env()

    app = FastAPI(title=SERVER_NAME, version=SERVER_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.library = library or MusicLibrary()
    app.state.trust = trust or TrustLayer(
        inactivity=timedelta(minutes=settings.device_inactivity_minutes)
    )

    app.middleware("http")(_log_requests)
    app.add_exception_handler(AuthError, _handle_auth_error)
    app.add_exception_handler(NotFoundError, _handle_not_found)
    app.include_router(router)
    return app


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def configure_logging(level: str) -> None:
    """Replace loguru's default sink with a single stderr sink at ``level``."""
    logger.remove()
    logger.add(sys.stderr, level=level)


def main():
    parser = argparse.ArgumentParser(description=f"Run the {SERVER_NAME}")
    parser.add_argument("--host", default=None, help="Interface to bind (BMA_HOST)")
    parser.add_argument("--port", type=int, default=None, help="HTTP port (BMA_PORT)")
    parser.add_argument("--music-folder", default=None, help="Folder to scan (BMA_MUSIC_FOLDER)")
    parser.add_argument("--log-level", default=None, help="Log level (BMA_LOG_LEVEL)")
    args = parser.parse_args()

    settings = Settings.from_env().with_overrides(
        host=args.host,
        port=args.port,
        music_folder=args.music_folder,
        log_level=args.log_level,
    )
    configure_logging(settings.log_level)

    logger.info(f"Starting {SERVER_NAME} on {settings.host}:{settings.port}")
    uvicorn_level = settings.log_level.lower()
    if uvicorn_level not in ("trace", "debug", "info", "warning", "error", "critical"):
        uvicorn_level = "info"
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=uvicorn_level,
    )


if __name__ == "__main__":
    main()
