"""FastAPI application."""

import json
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from commun.auth import AuthMiddleware, JWTService, get_auth
from commun.controllers import EntityRequest, ListRequestedKeys
from commun.errors import BadRequestError, CommunError, ServerError
from commun.metadata.loader import ConfigLoader
from commun.metadata.validator import validate_config_dir
from commun.persistence import DatabaseConfig, create_store
from commun.registry import Registry

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def _auth_disabled() -> bool:
    return os.environ.get("COMMUN_DISABLE_AUTH", "").lower() in ("1", "true", "yes")


def _resolve_base_path() -> Path:
    cwd = Path.cwd()
    if cwd.name == "backend":
        return cwd.parent
    return cwd


def build_registry_from_env() -> Registry:
    """Create a registry from COMMUN_CONFIG_PATH and the database settings."""
    base_path = _resolve_base_path()
    config_path = Path(os.environ.get("COMMUN_CONFIG_PATH", base_path / "config"))

    # Warn on invalid configs, don't block startup
    issues = validate_config_dir(config_path)
    for issue in issues:
        logger.warning("Entity config issue: %s", issue)

    store = create_store(DatabaseConfig.from_env(base_path))
    registry = Registry(store=store)
    registry.init()

    loader = ConfigLoader(config_path)
    loader.load_all()
    loader.register_all(registry)
    return registry


def create_app(
    registry: Registry | None = None,
    jwt_service: JWTService | None = None,
) -> FastAPI:
    """Create the REST application.

    Args:
        registry: Entity registry to serve; built from the environment on
            startup when omitted
        jwt_service: Access-token verifier; built from COMMUN_SECRET_KEY
            when omitted, unless COMMUN_DISABLE_AUTH is set
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize on startup, cleanup on shutdown."""
        owned = app.state.registry is None
        if owned:
            app.state.registry = build_registry_from_env()
        else:
            app.state.registry.init()
        await app.state.registry.create_indexes()

        yield

        if owned and app.state.registry.store is not None:
            app.state.registry.store.close()

    app = FastAPI(title="Commun API", lifespan=lifespan)
    app.state.registry = registry

    if jwt_service is None and not _auth_disabled():
        secret_key = os.environ.get("COMMUN_SECRET_KEY", "dev-secret-key-change-in-production")
        jwt_service = JWTService(secret_key)
    if jwt_service is not None:
        app.add_middleware(AuthMiddleware, jwt_service=jwt_service)

    @app.exception_handler(CommunError)
    async def commun_error_handler(request: Request, exc: CommunError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        error = ServerError()
        return JSONResponse(status_code=error.status_code, content=error.to_dict())

    app.include_router(create_entity_router())
    return app


# --- Entity Endpoints ---


def _registry(request: Request) -> Registry:
    return request.app.state.registry


async def _read_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        raise BadRequestError("Invalid JSON body")
    if not isinstance(body, dict):
        raise BadRequestError("Request body must be a JSON object")
    return body


def _entity_request(
    request: Request,
    key: str | None = None,
    body: dict[str, Any] | None = None,
) -> EntityRequest:
    return EntityRequest(
        params={"id": key} if key is not None else {},
        query=dict(request.query_params),
        body=body or {},
        auth=get_auth(request),
    )


def create_entity_router() -> APIRouter:
    router = APIRouter(prefix=API_PREFIX)

    @router.get("/{entity}")
    async def list_items(entity: str, request: Request) -> dict[str, Any]:
        """List records. Add ``totalCount=true`` to count all matches."""
        controller = _registry(request).get_controller(entity)
        entity_request = _entity_request(request)
        total_count = str(entity_request.query.pop("totalCount", "")).lower() in ("1", "true")
        return await controller.list(
            entity_request, ListRequestedKeys.all(total_count=total_count)
        )

    @router.get("/{entity}/{key}")
    async def get_item(entity: str, key: str, request: Request) -> dict[str, Any]:
        controller = _registry(request).get_controller(entity)
        return await controller.get(_entity_request(request, key))

    @router.post("/{entity}")
    async def create_item(entity: str, request: Request) -> dict[str, Any]:
        controller = _registry(request).get_controller(entity)
        body = await _read_body(request)
        return await controller.create(_entity_request(request, body=body))

    @router.put("/{entity}/{key}")
    async def update_item(entity: str, key: str, request: Request) -> dict[str, Any]:
        controller = _registry(request).get_controller(entity)
        body = await _read_body(request)
        return await controller.update(_entity_request(request, key, body))

    @router.delete("/{entity}/{key}")
    async def delete_item(entity: str, key: str, request: Request) -> dict[str, Any]:
        controller = _registry(request).get_controller(entity)
        return await controller.delete(_entity_request(request, key))

    return router
