"""
Web server — Flask app factory for the bootstrap API.

The app owns exactly one ``EnvBootstrapService`` (created here unless
the caller passes one in) plus the ``EventBus`` its events are fanned
out on.  Both live in ``app.extensions["envboot"]``.
"""

from __future__ import annotations

import logging
from pathlib import Path

from flask import Flask

from envboot.core.config.loader import load_config
from envboot.core.services.env_bootstrap import EnvBootstrapService
from envboot.core.services.event_bus import EventBus
from envboot.core.services.event_sink import BusSink

logger = logging.getLogger(__name__)


def create_app(
    config_path: Path | None = None,
    service: EnvBootstrapService | None = None,
    bus: EventBus | None = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config_path: Path to envboot.yml (ignored when ``service`` is given).
        service: Pre-built service (tests inject fakes through this).
        bus: Event bus for SSE fan-out (a fresh one if None).

    Returns:
        Configured Flask application.
    """
    app = Flask(__name__)

    if service is None:
        service = EnvBootstrapService(load_config(config_path))
    if bus is None:
        bus = EventBus(buffer_size=service.config.max_logs)

    app.extensions["envboot"] = {
        "service": service,
        "bus": bus,
        "sink": BusSink(bus),
    }

    from envboot.ui.web.routes_env import env_bp

    app.register_blueprint(env_bp, url_prefix="/api/env")

    logger.info("Web app created")
    return app


def run_server(
    app: Flask,
    host: str = "127.0.0.1",
    port: int = 8000,
    debug: bool = False,
) -> None:
    """Run the Flask development server."""
    logger.info("Starting web server on %s:%d", host, port)
    app.run(host=host, port=port, debug=debug, use_reloader=False, threaded=True)
