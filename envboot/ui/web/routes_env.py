"""
Environment bootstrap API + SSE event stream.

Routes (mounted under ``/api/env``):

    GET  /state    — current BootstrapState (never starts a run)
    POST /start    — start (or join) a bootstrap run in the background
    GET  /events   — Server-Sent Events stream of bootstrap events

SSE wire format::

    event: env:stage
    id: 47
    data: {"v":1,"ts":1739648400.123,"seq":47,"type":"env:stage","data":{...}}

On reconnect, ``Last-Event-Id`` lets the bus replay what the client missed.
"""

from __future__ import annotations

import json
import logging

from flask import Blueprint, Response, current_app, jsonify, request

from envboot.core.models.bootstrap import BootstrapState
from envboot.core.services.progress import stage_progress, stage_step

logger = logging.getLogger(__name__)

env_bp = Blueprint("env", __name__)


def _ext() -> dict:
    return current_app.extensions["envboot"]


def _state_payload(state: BootstrapState) -> dict:
    data = state.model_dump(mode="json")
    data["progress"] = stage_progress(state.stage)
    data["step"] = stage_step(state.stage)
    return data


@env_bp.route("/state")
def env_state():  # type: ignore[no-untyped-def]
    """Current bootstrap state."""
    return jsonify(_state_payload(_ext()["service"].get_state()))


@env_bp.route("/start", methods=["POST"])
def env_start():  # type: ignore[no-untyped-def]
    """Kick off the bootstrap; progress arrives over ``/events``.

    Returns 200 with the cached state when the environment is already
    ready, 202 otherwise.
    """
    ext = _ext()
    service = ext["service"]
    future = service.start_background(ext["sink"])
    if future.done():
        return jsonify(_state_payload(future.result())), 200
    return jsonify(_state_payload(service.get_state())), 202


@env_bp.route("/events")
def env_events():  # type: ignore[no-untyped-def]
    """SSE endpoint — streams bootstrap events to the browser.

    Query params:
        since (int): Resume after this sequence number.  Overridden by
            the ``Last-Event-Id`` header when present.
    """
    since = request.args.get("since", 0, type=int)

    last_event_id = request.headers.get("Last-Event-Id")
    if last_event_id is not None:
        try:
            since = max(since, int(last_event_id))
        except (ValueError, TypeError):
            pass

    bus = _ext()["bus"]

    def generate():  # type: ignore[no-untyped-def]
        for envelope in bus.subscribe(since=since):
            yield (
                f"event: {envelope['type']}\n"
                f"id: {envelope['seq']}\n"
                f"data: {json.dumps(envelope, default=str)}\n\n"
            )

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )
