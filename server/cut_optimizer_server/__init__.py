"""Flask app for the cut optimizer.

Admission limits, body size and worker pool are read from the environment;
the CLI and the tests pass explicit overrides instead.
"""

from __future__ import annotations

import os
from typing import Any

from flask import Flask
from flask_compress import Compress
from flask_cors import CORS

from .api.admission import build_admission_stack
from .api.routes import api, run_optimization
from .core.dispatcher import JobDispatcher
from .core.engine import optimize

DEFAULT_MAX_CONTENT_LENGTH = 32896
DEFAULT_TIMEOUT_S = 60
DEFAULT_MAX_REQUESTS = 100


def create_app(overrides: dict[str, Any] | None = None) -> Flask:
    """Create and configure the Flask app.

    Loads config from the environment, applies `overrides` on top, enables CORS
    (restrict via `CORS_ORIGINS` in prod) and response compression, then wires the
    job dispatcher and the admission stack and registers routes.
    """
    app = Flask(__name__)

    app.config["MAX_CONTENT_LENGTH"] = int(
        os.environ.get("MAX_CONTENT_LENGTH", str(DEFAULT_MAX_CONTENT_LENGTH))
    )
    app.config["REQUEST_TIMEOUT_S"] = float(os.environ.get("REQUEST_TIMEOUT_S", str(DEFAULT_TIMEOUT_S)))
    app.config["MAX_REQUESTS"] = int(os.environ.get("MAX_REQUESTS", str(DEFAULT_MAX_REQUESTS)))
    app.config["WORKER_POOL"] = os.environ.get("WORKER_POOL", "process")
    workers = os.environ.get("WORKERS")
    app.config["WORKERS"] = int(workers) if workers else None
    app.config["OPTIMIZER_ENGINE"] = optimize
    app.config["CORS_ORIGINS"] = os.environ.get("CORS_ORIGINS")

    if overrides:
        app.config.update(overrides)

    # Comma-separated allow-list; unset lets any origin call the API.
    allowed = [o.strip() for o in (app.config["CORS_ORIGINS"] or "").split(",") if o.strip()]
    CORS(app, origins=allowed or "*")

    Compress(app)

    app.extensions["job_dispatcher"] = JobDispatcher(
        engine=app.config["OPTIMIZER_ENGINE"],
        pool=app.config["WORKER_POOL"],
        workers=app.config["WORKERS"],
    )
    app.extensions["admission_stack"] = build_admission_stack(
        run_optimization,
        timeout=app.config["REQUEST_TIMEOUT_S"],
        max_requests=app.config["MAX_REQUESTS"],
    )

    app.register_blueprint(api, url_prefix="")

    return app
