from __future__ import annotations

import logging

from flask import Flask

logger = logging.getLogger(__name__)


def create_app(config_path: str | None = None) -> Flask:
    """Application factory used by tests and runtime."""
    from .api import register_api
    from .config import get_engine_settings, load_config
    from .database import init_db, session_scope
    from .services import FormulaService

    config = load_config(config_path)
    app = Flask(__name__, static_folder=None)
    app.config.update(config)

    init_db(app)
    register_api(app)

    if app.config.get("SEED_GLOBAL_DEFAULTS"):
        with session_scope() as session:
            created = FormulaService(session, get_engine_settings(app.config)).seed_default_formulas(None)
        logger.info("Global default formulas ready (%d created)", len(created))

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
