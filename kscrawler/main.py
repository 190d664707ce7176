from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException

from kscrawler import __version__
from kscrawler.config import load_crawler_config, settings
from kscrawler.models import EnqueueJobRequest, LoginStatusResponse, StartLoginRequest
from kscrawler.processor import process_job
from kscrawler.registry import session_registry
from kscrawler.store import job_store

logger = logging.getLogger("crawler-api")

_login_state = LoginStatusResponse(status="idle")
_login_task: Optional[asyncio.Task] = None


async def _cancel_login_task() -> None:
    global _login_task
    task, _login_task = _login_task, None
    if task is not None and not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


@asynccontextmanager
async def lifespan(_: FastAPI):
    yield
    await _cancel_login_task()
    await session_registry.close()


app = FastAPI(title="Kuaishou Crawler Service", version=__version__, lifespan=lifespan)


def verify_token(authorization: str | None = Header(default=None)) -> None:
    if not settings.crawler_api_token:
        return
    expected = f"Bearer {settings.crawler_api_token}"
    if authorization != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/internal/v1/crawl/jobs", dependencies=[Depends(verify_token)])
async def enqueue_job(req: EnqueueJobRequest, background_tasks: BackgroundTasks) -> dict[str, str]:
    payload = req.model_dump()
    payload["job_id"] = req.job_id or str(uuid.uuid4())
    await job_store.enqueue(payload)
    if settings.crawler_inline_mode:
        background_tasks.add_task(process_job, payload)
    return {"job_id": payload["job_id"], "status": "queued"}


@app.get("/internal/v1/crawl/jobs/{job_id}", dependencies=[Depends(verify_token)])
async def get_job(job_id: str) -> dict:
    return await job_store.get_status(job_id)


async def _await_login(timeout_s: int) -> None:
    global _login_state
    handle = session_registry.current
    if handle is None or handle.acquirer is None:
        return
    try:
        ok = await handle.acquirer.wait_for_login(timeout_s)
        if ok:
            await handle.refresh_client()
        _login_state = _login_state.model_copy(update={"status": "logged_in" if ok else "timeout"})
    except Exception as exc:  # noqa: BLE001
        logger.exception("Login polling failed: %s", exc)
        _login_state = _login_state.model_copy(update={"status": "failed", "error": f"poll_failed:{str(exc)[:200]}"})


@app.post("/internal/v1/auth/login", dependencies=[Depends(verify_token)])
async def start_login(req: StartLoginRequest) -> LoginStatusResponse:
    global _login_state, _login_task
    if _login_task is not None and not _login_task.done():
        return _login_state

    handle, _ = await session_registry.acquire(load_crawler_config())
    if handle.session.logged_in:
        _login_state = LoginStatusResponse(status="logged_in")
        return _login_state
    if handle.acquirer is None or not handle.acquirer.has_browser:
        _login_state = LoginStatusResponse(status="failed", error="browser_unavailable")
        return _login_state

    challenge = await handle.acquirer.present_qr()
    if challenge is None:
        _login_state = LoginStatusResponse(status="failed", error="qr_not_found")
        return _login_state
    _login_state = LoginStatusResponse(status="pending", qr_path=challenge.path, qr_payload=challenge.payload or "")
    _login_task = asyncio.create_task(_await_login(req.timeout_s))
    return _login_state


@app.get("/internal/v1/auth/status", dependencies=[Depends(verify_token)])
async def login_status() -> LoginStatusResponse:
    return _login_state


@app.post("/internal/v1/session/close", dependencies=[Depends(verify_token)])
async def close_session() -> dict[str, str]:
    global _login_state
    await _cancel_login_task()
    await session_registry.close()
    _login_state = LoginStatusResponse(status="idle")
    return {"status": "closed"}
