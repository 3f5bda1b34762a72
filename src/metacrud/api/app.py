"""FastAPI application.

Mounts the five canonical operations of every controller. Handlers only move
data in and out: query string plus path id become the raw inputs, FastAPI
decodes the JSON body for writes, and a ResultError becomes its JSON error
body.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Body, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.datastructures import MultiDict

from metacrud.core.config import Settings
from metacrud.core.errors import ResultError, bad_request
from metacrud.core.types import DEFAULT_MAX_PAGE, Operation
from metacrud.metadata.functions import register_builtin_functions
from metacrud.metadata.loader import ControllerLoader
from metacrud.metadata.registry import MetadataRegistry
from metacrud.metadata.types import ControllerMetadata
from metacrud.metadata.validator import validate_controllers_dir
from metacrud.persistence.adapter import StorageBackend
from metacrud.persistence.config import create_backend
from metacrud.persistence.memory import MemoryBackend
from metacrud.routes.operations import (
    ROUTES,
    Controller,
    RouteOptions,
    controllers_by_table,
)

logger = logging.getLogger(__name__)


# --- Response models ---


class ListResponse(BaseModel):
    results: list[dict[str, Any]]
    total: int
    offset: int
    limit: int


class EditResponse(BaseModel):
    success: bool


class DeleteSummaryResponse(BaseModel):
    succeeded: int
    failed: int
    results: dict[str, bool]


_RESPONSE_MODELS: dict[Operation, Any] = {
    Operation.LIST: ListResponse,
    Operation.EDIT: EditResponse,
    Operation.NEW: None,
    Operation.GET: dict[str, Any],
    Operation.DELETE: bool | DeleteSummaryResponse,
}


# --- Request helpers ---


def _raw_inputs(request: Request) -> MultiDict:
    """Query string plus the path id, path id first."""
    items: list[tuple[str, Any]] = []
    if "id" in request.path_params:
        items.append(("id", request.path_params["id"]))
    items.extend(request.query_params.multi_items())
    return MultiDict(items)


async def result_error_handler(request: Request, exc: ResultError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render malformed or missing bodies as a 400 in the ResultError shape."""
    errors = exc.errors()
    fields = list(dict.fromkeys(str(e["loc"][0]) for e in errors if e.get("loc")))
    detail = errors[0]["msg"] if errors else "invalid input"
    error = bad_request(f"Malformed request: {detail}", fields)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# --- Routers ---


def _make_handler(controller: Controller, operation: Operation):
    if operation is Operation.NEW:

        async def handler(
            request: Request,
            body: dict[str, Any] | list[dict[str, Any]] = Body(...),
        ) -> Any:
            result = await controller.new(_raw_inputs(request), body)
            return JSONResponse(status_code=201, content=result)

    elif operation is Operation.EDIT:

        async def handler(request: Request, body: dict[str, Any] = Body(...)) -> Any:
            return await controller.edit(_raw_inputs(request), body)

    else:

        async def handler(request: Request) -> Any:
            return await controller.dispatch(operation, _raw_inputs(request))

    handler.__name__ = f"{operation.value}_{controller.meta.name}"
    return handler


def create_controller_router(
    meta: ControllerMetadata,
    backend: StorageBackend,
    routes: RouteOptions | None = None,
    max_page: int = DEFAULT_MAX_PAGE,
    targets: Mapping[str, ControllerMetadata] | None = None,
) -> APIRouter:
    """Create the router for one controller's canonical operations."""
    controller = Controller(meta, backend, routes, max_page=max_page, targets=targets)
    router = APIRouter(tags=[meta.name])

    for spec in ROUTES:
        router.add_api_route(
            f"/{meta.name}{spec.path}",
            _make_handler(controller, spec.operation),
            methods=[spec.method],
            response_model=_RESPONSE_MODELS[spec.operation],
            status_code=201 if spec.operation is Operation.NEW else 200,
            name=f"{meta.name}:{spec.operation.value}:{spec.method.lower()}",
        )

    return router


def create_metadata_router(controllers: Mapping[str, ControllerMetadata]) -> APIRouter:
    """Read-only description of the mounted controllers."""
    router = APIRouter(tags=["metadata"])

    @router.get("/_meta")
    async def list_controllers() -> dict[str, Any]:
        return {"controllers": sorted(controllers)}

    @router.get("/_meta/{name}")
    async def describe_controller(name: str) -> dict[str, Any]:
        meta = controllers.get(name)
        if meta is None:
            raise ResultError(404, f"Controller '{name}' not found")
        return meta.describe()

    return router


def mount_controllers(
    app: FastAPI,
    controllers: Mapping[str, ControllerMetadata],
    backend: StorageBackend,
    options: Mapping[str, RouteOptions] | None = None,
    settings: Settings | None = None,
) -> None:
    settings = settings or Settings()
    options = options or {}
    targets = controllers_by_table(controllers)
    for name, meta in controllers.items():
        if isinstance(backend, MemoryBackend):
            backend.set_primary_key(meta.table, meta.primary_key)
        app.include_router(
            create_controller_router(
                meta, backend, options.get(name), settings.max_page, targets
            ),
            prefix=settings.api_prefix,
        )
        logger.debug("Mounted controller '%s' at %s/%s", name, settings.api_prefix, name)
    app.include_router(create_metadata_router(controllers), prefix=settings.api_prefix)


def _log_schema_issues(settings: Settings) -> None:
    issues = validate_controllers_dir(settings.metadata_path)
    if not issues:
        return
    error_count = sum(1 for i in issues if i.severity == "error")
    warn_count = sum(1 for i in issues if i.severity == "warning")
    for issue in issues:
        if issue.severity == "error":
            logger.error("Controller schema error: %s", issue)
        else:
            logger.warning("Controller schema warning: %s", issue)
    logger.warning(
        "Controller validation: %d error(s), %d warning(s). "
        "Run 'metacrud controllers validate' for details.",
        error_count,
        warn_count,
    )


def create_app(
    settings: Settings | None = None,
    registry: MetadataRegistry | None = None,
    backend: StorageBackend | None = None,
    options: Mapping[str, RouteOptions] | None = None,
) -> FastAPI:
    """Build the application.

    With a registry given, its controllers are resolved and mounted
    immediately over the given backend (a connected MemoryBackend when
    omitted). Otherwise a lifespan handler loads YAML definitions from
    settings.metadata_path, connects the configured backend, and mounts
    every controller under settings.api_prefix.
    """
    settings = settings or Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    if registry is not None:
        if backend is None:
            backend = MemoryBackend()
        app = FastAPI(title="metacrud API")
        mount_controllers(app, registry.resolve_all(), backend, options, settings)
    else:

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            """Load definitions and connect storage on startup, close on shutdown."""
            register_builtin_functions()
            _log_schema_issues(settings)

            loader = ControllerLoader(settings.metadata_path)
            controllers = loader.load_all()

            db = backend or create_backend(settings.database)
            await db.connect()
            mount_controllers(
                app,
                controllers,
                db,
                {**loader.route_options, **(options or {})},
                settings,
            )
            logger.info(
                "Serving %d controller(s) under %s", len(controllers), settings.api_prefix
            )
            try:
                yield
            finally:
                await db.close()

        app = FastAPI(title="metacrud API", lifespan=lifespan)

    app.add_exception_handler(ResultError, result_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_error_handler)
    return app
