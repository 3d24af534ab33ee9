from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from api import api_blueprint
from models.base import create_schema, make_engine, make_session_factory
from services.auth_service import AuthService
from services.blob_service import BatchUploader, ObjectStore, S3ObjectStore
from services.cache_service import CacheService
from services.care_service import CareService
from services.errors import ServiceError
from services.health_service import HealthService
from services.plant_service import PlantService
from services.repository_service import RepositoryService
from services.user_service import UserService
from utils.config import Settings, load_settings
from utils.deadline import Deadline


@dataclass
class Services:
    repo: RepositoryService
    auth: AuthService
    plants: PlantService
    users: UserService
    care: CareService
    health: HealthService


def build_services(
        settings: Settings,
        *,
        session_factory=None,
        object_store: Optional[ObjectStore] = None,
        cache: Optional[CacheService] = None,
) -> Services:
    if session_factory is None:
        engine = make_engine(settings)
        create_schema(engine)
        session_factory = make_session_factory(engine)
    if object_store is None:
        object_store = S3ObjectStore.from_settings(settings)
    if cache is None and settings.REDISHOST:
        cache = CacheService.from_settings(settings)

    repo = RepositoryService(session_factory)
    uploader = BatchUploader(object_store, max_workers=settings.UPLOAD_MAX_WORKERS)
    return Services(
        repo=repo,
        auth=AuthService(repo, settings, cache),
        plants=PlantService(repo, uploader),
        users=UserService(repo, uploader),
        care=CareService(repo),
        health=HealthService(repo, cache),
    )


def create_app(
        settings: Optional[Settings] = None,
        *,
        session_factory=None,
        object_store: Optional[ObjectStore] = None,
        cache: Optional[CacheService] = None,
) -> Flask:
    settings = settings or load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = Flask(__name__)
    app.config.update(
        DEBUG=False,
        TESTING=False,
        PROPAGATE_EXCEPTIONS=False,
        SETTINGS=settings,
    )
    app.json.sort_keys = False

    app.extensions["plantlog"] = build_services(
        settings,
        session_factory=session_factory,
        object_store=object_store,
        cache=cache,
    )

    @app.before_request
    def bind_request_context():
        app.logger.info("%s %s", request.method, request.path)
        g.deadline = Deadline(settings.REQUEST_TIMEOUT)

    @app.teardown_request
    def release_request_context(exc):
        deadline = g.pop("deadline", None)
        if deadline is not None:
            deadline.cancel()

    @app.get("/alive")
    def alive():
        try:
            app.extensions["plantlog"].health.check_db_health()
        except Exception:
            app.logger.exception("database health check failed")
            return jsonify({"content": None, "message": "database unavailable"}), 503
        return jsonify({"content": None, "message": "alive"}), 200

    app.register_blueprint(api_blueprint, url_prefix="/api/v1")

    @app.errorhandler(HTTPException)
    def handle_http_exc(e: HTTPException):
        payload = {
            "error": e.name,
            "message": e.description or e.name,
            "status": e.code,
            "path": request.path,
        }
        return jsonify(payload), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_exc(e: Exception):
        # errors raised outside the blueprint handlers end up here
        if isinstance(e, ServiceError):
            app.logger.error("Unhandled service error: %s", e)
        else:
            app.logger.exception("Unhandled exception")
        payload = {
            "error": "Internal Server Error",
            "message": "Unexpected error",
            "status": 500,
            "path": request.path,
        }
        return jsonify(payload), 500

    return app


if __name__ == "__main__":
    _settings = load_settings()
    app = create_app(_settings)
    app.run(host="0.0.0.0", port=_settings.PORT, debug=False)
