import logging

from flask import Flask

from routes.webhook import webhook_bp
from routes.storage_files import storage_files_bp

logger = logging.getLogger(__name__)


def _attach_fulfillment(app, orchestrator):
    """Share one orchestrator and one event loop across all requests."""
    from services.fulfillment import BackgroundLoop, build_orchestrator

    app.extensions["fulfillment"] = {
        "orchestrator": orchestrator or build_orchestrator(),
        "loop": BackgroundLoop(),
    }


def create_app(test_config=None, orchestrator=None):
    app = Flask(__name__)

    if test_config:
        app.config.update(test_config)

    from utils.logger import setup_logger
    setup_logger(app)

    _attach_fulfillment(app, orchestrator)

    # Liveness probe for the container platform
    @app.route("/ping")
    def ping():
        return {"status": "ok"}, 200

    # Readiness: font assets and cached run count
    @app.route("/healthz")
    def healthz():
        pipeline = app.extensions["fulfillment"]["orchestrator"]
        fonts = pipeline.fonts
        families = fonts.registered_families
        return {
            "status": "ok",
            "fonts": {
                "families": families,
                "fallbackAvailable": fonts.fallback_family in families,
                "substitutions": fonts.substitutions,
            },
            "runs": len(pipeline.runs),
        }, 200

    app.register_blueprint(webhook_bp)
    app.register_blueprint(storage_files_bp)

    logger.info("[App] Fulfillment service ready")
    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=5000)
