"""HTTP app: Slack events endpoint and the API used by remote dispatch listeners."""

import json
import logging
from contextlib import asynccontextmanager

import uvicorn
from slack_sdk.signature import SignatureVerifier
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse
from starlette.routing import Route

from cofounder.config import Config, get_config
from cofounder.core import blocking, mappers, state as state_mod
from cofounder.core import queue as queue_mod
from cofounder.core.errors import (
    CofounderError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from cofounder.db.engine import get_db, init_db
from cofounder.dispatch import orchestrator
from cofounder.dispatch.parser import is_dispatch_command, parse_dispatch_command
from cofounder.dispatch.worker import DispatchWorker
from cofounder.integrations import slack as slack_mod

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    NotFoundError: 404,
    ConflictError: 409,
    ValidationError: 400,
}


def _config(request: Request) -> Config:
    return request.app.state.config


def _get_db(request: Request):
    return init_db(_config(request).db_path)


def _error_response(e: CofounderError) -> JSONResponse:
    status = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(e, cls)), 500
    )
    return JSONResponse(e.to_dict(), status_code=status)


# ── Slack events ─────────────────────────────────────────────────────────────


async def slack_events(request: Request):
    body = await request.body()
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return PlainTextResponse("Invalid JSON", status_code=400)

    # Slack sends this once when the events URL is configured
    if payload.get("type") == "url_verification":
        logger.info("Slack URL verification challenge received")
        return JSONResponse({"challenge": payload.get("challenge")})

    config = _config(request)
    if not config.slack_signing_secret:
        logger.error("SLACK_SIGNING_SECRET not configured")
        return PlainTextResponse("Slack not configured", status_code=500)

    verifier = SignatureVerifier(config.slack_signing_secret)
    if not verifier.is_valid_request(body, dict(request.headers)):
        return PlainTextResponse("Invalid signature", status_code=400)

    # Slack retries events it thinks were not delivered; the first delivery already queued the job
    if request.headers.get("x-slack-retry-num"):
        return PlainTextResponse("OK")

    event = payload.get("event")
    if not event:
        return PlainTextResponse("OK")

    task = BackgroundTask(
        process_slack_event, config, request.app.state.worker, event
    )
    return PlainTextResponse("OK", background=task)


def process_slack_event(config: Config, worker: DispatchWorker | None, event: dict):
    """Handle one Slack event after the HTTP response has been sent."""
    event_type = event.get("type")
    if event_type == "message":
        if event.get("bot_id") or event.get("subtype") == "bot_message":
            return
    elif event_type != "app_mention":
        return

    if not is_dispatch_command(event.get("text")):
        return

    with get_db(config.db_path) as db:
        try:
            handle_dispatch_command(db, config, worker, event)
        except Exception:
            logger.exception("Error handling dispatch command from Slack")


def handle_dispatch_command(db, config: Config, worker: DispatchWorker | None, event: dict):
    channel = event["channel"]
    thread_ts = event.get("thread_ts") or event["ts"]

    command = parse_dispatch_command(event.get("text"))
    if command is None:
        _reply(config, channel, thread_ts, slack_mod.USAGE_HINT)
        return None

    _react(config, channel, event["ts"], "eyes")
    try:
        job = orchestrator.queue_dispatch(
            db,
            config,
            orchestrator.DispatchRequest(
                agent=command.agent,
                target=command.target,
                task=command.task,
                repo_path=command.repo_path,
                track_as_task=command.track_as_task,
                slack_message_ts=event["ts"],
                slack_channel_id=channel,
                slack_thread_ts=thread_ts,
                dispatched_by=event.get("user"),
            ),
            worker=worker,
        )
    except CofounderError as e:
        _reply(config, channel, thread_ts, f":x: Error: {e.message}")
        return None

    _reply(
        config,
        channel,
        thread_ts,
        slack_mod.format_dispatch_ack(job.target, job.agent, job.id),
    )
    return job


def _reply(config: Config, channel: str, thread_ts: str, text: str):
    try:
        slack_mod.post_thread_reply(config.slack_bot_token, channel, thread_ts, text)
    except slack_mod.SlackError as e:
        logger.warning("Could not reply in Slack thread %s: %s", thread_ts, e)


def _react(config: Config, channel: str, ts: str, emoji: str):
    try:
        slack_mod.add_reaction(config.slack_bot_token, channel, ts, emoji)
    except slack_mod.SlackError as e:
        logger.warning("Could not add reaction to %s: %s", ts, e)


# ── Listener API ─────────────────────────────────────────────────────────────


async def api_pending_jobs(request: Request):
    target = request.query_params.get("target")
    if not target:
        return JSONResponse({"error": True, "message": "target is required"}, status_code=400)
    db = _get_db(request)
    try:
        jobs = orchestrator.get_pending_jobs(db, target)
        return JSONResponse([mappers.job_to_dict(j) for j in jobs])
    except CofounderError as e:
        return _error_response(e)
    finally:
        db.close()


async def api_get_job(request: Request):
    job_id = request.path_params["job_id"]
    db = _get_db(request)
    try:
        return JSONResponse(mappers.job_to_dict(orchestrator.require_dispatch_job(db, job_id)))
    except CofounderError as e:
        return _error_response(e)
    finally:
        db.close()


async def api_mark_running(request: Request):
    job_id = request.path_params["job_id"]
    db = _get_db(request)
    try:
        return JSONResponse(mappers.job_to_dict(orchestrator.mark_job_running(db, job_id)))
    except CofounderError as e:
        return _error_response(e)
    finally:
        db.close()


async def api_complete_job(request: Request):
    job_id = request.path_params["job_id"]
    try:
        data = await request.json()
    except json.JSONDecodeError:
        return JSONResponse({"error": True, "message": "Invalid JSON"}, status_code=400)
    if not isinstance(data, dict) or not isinstance(data.get("result"), str):
        return JSONResponse(
            {"error": True, "message": "Body must include a 'result' string"}, status_code=400
        )

    db = _get_db(request)
    try:
        job = orchestrator.complete_job(
            db, _config(request), job_id, data["result"], bool(data.get("success", True))
        )
        return JSONResponse(mappers.job_to_dict(job))
    except CofounderError as e:
        return _error_response(e)
    finally:
        db.close()


async def api_queue(request: Request):
    db = _get_db(request)
    try:
        current = state_mod.get_state(db)
        result = []
        for task in queue_mod.list_queue(db):
            d = mappers.task_to_dict(task)
            d["blocked"] = blocking.is_blocked(db, task, current.current_task_id)
            result.append(d)
        return JSONResponse(result)
    finally:
        db.close()


async def api_state(request: Request):
    db = _get_db(request)
    try:
        return JSONResponse(mappers.state_to_dict(state_mod.get_state(db)))
    finally:
        db.close()


# ── App ───────────────────────────────────────────────────────────────────────


def create_app(
    config: Config | None = None,
    worker: DispatchWorker | None = None,
) -> Starlette:
    """Build the app. A worker passed in is started and stopped with it."""
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: Starlette):
        if worker:
            worker.start()
        try:
            yield
        finally:
            if worker:
                worker.stop()

    routes = [
        Route("/slack/events", slack_events, methods=["POST"]),
        Route("/api/dispatch/pending", api_pending_jobs),
        Route("/api/dispatch/{job_id:int}", api_get_job),
        Route("/api/dispatch/{job_id:int}/running", api_mark_running, methods=["POST"]),
        Route("/api/dispatch/{job_id:int}/complete", api_complete_job, methods=["POST"]),
        Route("/api/queue", api_queue),
        Route("/api/state", api_state),
    ]
    app = Starlette(routes=routes, lifespan=lifespan)
    app.state.config = config
    app.state.worker = worker
    return app


def run_server(host: str = "127.0.0.1", port: int = 8787):
    config = get_config()
    app = create_app(config, worker=DispatchWorker(config))
    uvicorn.run(app, host=host, port=port)
