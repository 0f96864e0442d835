"""
Instapod HTTP server.

Public:   GET /feed, GET /audio/{filename}, GET /health
Admin:    /api/* behind HTTP Basic auth (trigger, status, episodes, logs)

The pipeline itself never runs inside a request: POST /api/trigger only asks
the RunGuard to start a run and answers immediately.
"""

import logging
import secrets
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.responses import FileResponse, Response
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from instapod.config import AppConfig
from instapod.feed import generate_feed, write_feed
from instapod.logs import DEFAULT_LIMIT, log_buffer
from instapod.scheduler import CronTimer, RunGuard, get_status
from instapod.sources.instapaper import InstapaperClient
from instapod.state import StateStore

logger = logging.getLogger(__name__)

FEED_FILENAME = "feed.xml"
RSS_MEDIA_TYPE = "application/rss+xml; charset=utf-8"


def _admin_password(config: AppConfig) -> str:
    if config.admin.password:
        return config.admin.password
    password = secrets.token_urlsafe(16)
    logger.warning("=" * 60)
    logger.warning("No admin password configured (ADMIN_PASSWORD), generated one for this process")
    logger.warning(f"  Username: {config.admin.username}")
    logger.warning(f"  Password: {password}")
    logger.warning("=" * 60)
    return password


def create_app(config: AppConfig, state: StateStore, guard: RunGuard,
               timer: Optional[CronTimer] = None,
               source: Optional[InstapaperClient] = None) -> FastAPI:
    """Build the FastAPI app around already-wired pipeline objects.

    The source client, when given, is closed on shutdown.
    """
    username = config.admin.username
    password = _admin_password(config)
    audio_dir = config.audio_dir
    audio_dir.mkdir(parents=True, exist_ok=True)
    security = HTTPBasic()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if timer is not None:
            timer.start()
        if config.schedule.run_on_startup:
            guard.trigger("startup")
        yield
        if timer is not None:
            await timer.stop()
        if source is not None:
            await source.aclose()

    app = FastAPI(title="Instapod", lifespan=lifespan)

    def verify_credentials(credentials: HTTPBasicCredentials = Depends(security)):
        """Simple authentication"""
        correct_username = secrets.compare_digest(credentials.username.encode("utf-8"), username.encode("utf-8"))
        correct_password = secrets.compare_digest(credentials.password.encode("utf-8"), password.encode("utf-8"))

        if not (correct_username and correct_password):
            raise HTTPException(
                status_code=401,
                detail="Incorrect credentials",
                headers={"WWW-Authenticate": "Basic"},
            )
        return credentials.username

    # --- Public ------------------------------------------------------------

    @app.get("/feed")
    def feed():
        xml = generate_feed(config.feed, config.server.base_url, state.list_episodes(), audio_dir)
        try:
            write_feed(config.data_path / FEED_FILENAME, xml)
        except OSError as e:
            logger.warning(f"[server] Could not write {FEED_FILENAME}: {e}")
        return Response(content=xml, media_type=RSS_MEDIA_TYPE)

    @app.get("/audio/{filename}")
    def audio(filename: str):
        if "/" in filename or "\\" in filename or filename.startswith("."):
            raise HTTPException(status_code=404, detail="Not found")
        file_path = (audio_dir / filename).resolve()
        if not file_path.is_relative_to(audio_dir.resolve()) or not file_path.is_file():
            raise HTTPException(status_code=404, detail="Not found")
        return FileResponse(path=file_path, media_type="audio/mpeg")

    @app.get("/health")
    def health():
        return {"status": "ok", **get_status(state, guard)}

    # --- Admin -------------------------------------------------------------

    @app.post("/api/trigger")
    async def trigger(user: str = Depends(verify_credentials)):
        """Start a run in the background. A run already in progress is left alone."""
        started = guard.run_now()
        if not started:
            logger.info(f"[server] Trigger by {user} ignored: run already in progress")
        return {"status": "started"}

    @app.get("/api/status")
    def status(user: str = Depends(verify_credentials)):
        result = get_status(state, guard)
        if timer is not None:
            result["next_run_at"] = timer.next_fire_time().isoformat()
        return result

    @app.get("/api/episodes")
    def episodes(user: str = Depends(verify_credentials)):
        return [ep.model_dump(mode="json") for ep in state.list_episodes()]

    @app.delete("/api/episodes/{episode_id}")
    def delete_episode(episode_id: str, user: str = Depends(verify_credentials)):
        episode = state.delete(episode_id)
        if episode is None:
            raise HTTPException(status_code=404, detail=f"Episode not found: {episode_id}")
        audio_path = audio_dir / episode.audio_ref
        try:
            audio_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"[server] Could not remove audio {audio_path}: {e}")
        logger.info(f"[server] Episode {episode_id} deleted by {user}")
        return {"status": "deleted", "id": episode_id}

    @app.get("/api/logs")
    def logs(limit: int = Query(DEFAULT_LIMIT, ge=0, le=2000),
             since_id: Optional[int] = None,
             user: str = Depends(verify_credentials)):
        return {"logs": log_buffer.get_logs(limit=limit, since_id=since_id)}

    return app
