"""HTTP server exposing the entitlement database."""

import argparse
import json
import logging
import re
import sys
from typing import Any, Callable, Optional, Sequence

import uvicorn
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from appledb import handlers
from appledb.config import ConfigError, ServerConfig, TcpAddress, read_configuration
from appledb.database import DBController
from appledb.handlers import AppError
from appledb.models import (
    CreateExecutable,
    CreateOperatingSystemVersion,
    IPSWEntitlements,
)
from appledb.routes import (
    ADMIN_ROUTES,
    POST_EXECUTABLE,
    POST_EXECUTABLE_ENTITLEMENTS_ROUTE,
    POST_OPERATING_SYSTEM_VERSION,
    PublicRoutes,
)

log = logging.getLogger(__name__)

_INT_PATTERN = re.compile(r"[+-]?\d+")
_I32_MIN = -(2**31)
_I32_MAX = 2**31 - 1


class _Rejection(Exception):
    """A request refused before reaching a handler."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _path_int(text: str) -> int:
    if _INT_PATTERN.fullmatch(text):
        value = int(text)
        if _I32_MIN <= value <= _I32_MAX:
            return value
    raise _Rejection(400, f"Invalid URL: Cannot parse `{text}` to a `i32`")


def _is_json_content_type(header: str) -> bool:
    mime = header.split(";", 1)[0].strip().lower()
    if "/" not in mime:
        return False
    main, subtype = mime.split("/", 1)
    return main == "application" and (subtype == "json" or subtype.endswith("+json"))


async def _read_json(request: Request, limit: int) -> Any:
    if not _is_json_content_type(request.headers.get("content-type", "")):
        raise _Rejection(415, "Expected request with `Content-Type: application/json`")

    too_large = _Rejection(413, "Failed to buffer the request body: length limit exceeded")
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise too_large

    body = bytearray()
    async for chunk in request.stream():
        body += chunk
        if len(body) > limit:
            raise too_large

    try:
        return json.loads(bytes(body))
    except ValueError as exc:
        raise _Rejection(400, f"Failed to parse the request body as JSON: {exc}") from exc


def _decode(builder: Callable[[Any], Any], payload: Any) -> Any:
    try:
        return builder(payload)
    except (ValueError, TypeError) as exc:
        raise _Rejection(
            422, f"Failed to deserialize the JSON body into the target type: {exc}"
        ) from exc


def create_app(db: DBController, max_body_size: int) -> FastAPI:
    """Build the application serving the admin and public routes."""
    prefix = PublicRoutes.route_prefix()
    app = FastAPI(
        title="appledb",
        docs_url=f"{prefix}/swagger",
        openapi_url=f"{prefix}/openapi.json",
        redoc_url=None,
    )
    app.add_middleware(GZipMiddleware)
    app.state.db = db

    @app.exception_handler(AppError)
    async def _on_app_error(request: Request, exc: AppError) -> JSONResponse:
        return JSONResponse(exc.to_response_body(), status_code=exc.status_code)

    @app.exception_handler(_Rejection)
    async def _on_rejection(request: Request, exc: _Rejection) -> PlainTextResponse:
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    # Admin routes

    async def post_executable_entitlements(request: Request) -> Any:
        payload = await _read_json(request, max_body_size)
        entitlements = _decode(IPSWEntitlements.from_dict, payload)
        return await run_in_threadpool(
            handlers.post_executable_entitlements, db, entitlements
        )

    async def post_executable(request: Request) -> Any:
        payload = await _read_json(request, max_body_size)
        body = _decode(CreateExecutable.from_dict, payload)
        return await run_in_threadpool(handlers.post_executable, db, body)

    async def post_operating_system_version(request: Request) -> Any:
        payload = await _read_json(request, max_body_size)
        body = _decode(CreateOperatingSystemVersion.from_dict, payload)
        return await run_in_threadpool(handlers.post_operating_system_version, db, body)

    for path, endpoint in (
        (POST_EXECUTABLE_ENTITLEMENTS_ROUTE, post_executable_entitlements),
        (POST_EXECUTABLE, post_executable),
        (POST_OPERATING_SYSTEM_VERSION, post_operating_system_version),
    ):
        app.add_api_route(
            ADMIN_ROUTES + path, endpoint, methods=["POST"], include_in_schema=False
        )

    # Public routes

    def get_operating_systems() -> Any:
        return handlers.get_operating_systems(db)

    def get_operating_system_by_id(id: str) -> Any:
        return handlers.get_operating_system_by_id(db, _path_int(id))

    def get_operating_system_versions() -> Any:
        return handlers.get_operating_system_versions(db)

    def get_operating_system_versions_by_id(id: str) -> Any:
        return handlers.get_operating_system_version_by_id(db, _path_int(id))

    def get_executables() -> Any:
        return handlers.get_executables(db)

    def get_executables_by_id(id: str) -> Any:
        return handlers.get_executable_by_id(db, _path_int(id))

    def get_executables_by_name(id: str) -> Any:
        return handlers.get_executables_by_name(db, id)

    def get_executables_with_entitlement_for_os_version(
        operating_system_version_id: str, entitlement_key: str
    ) -> Any:
        return handlers.get_executables_with_entitlement_for_os_version(
            db, _path_int(operating_system_version_id), entitlement_key
        )

    def get_entitlements() -> Any:
        return handlers.get_entitlements(db)

    def get_entitlements_by_id(id: str) -> Any:
        return handlers.get_entitlement_by_id(db, _path_int(id))

    def get_entitlements_for_executable(id: str) -> Any:
        return handlers.get_entitlements_for_executable(db, _path_int(id))

    def diff_entitlements_for_executables(
        from_executable_id: str, to_executable_id: str
    ) -> Any:
        return handlers.diff_entitlements_for_executables(
            db, _path_int(from_executable_id), _path_int(to_executable_id)
        )

    public = {
        PublicRoutes.GET_OPERATING_SYSTEMS: get_operating_systems,
        PublicRoutes.GET_OPERATING_SYSTEM_BY_ID: get_operating_system_by_id,
        PublicRoutes.GET_OPERATING_SYSTEM_VERSIONS: get_operating_system_versions,
        PublicRoutes.GET_OPERATING_SYSTEM_VERSIONS_BY_ID: get_operating_system_versions_by_id,
        PublicRoutes.GET_EXECUTABLES: get_executables,
        PublicRoutes.GET_EXECUTABLES_BY_ID: get_executables_by_id,
        PublicRoutes.GET_EXECUTABLES_BY_NAME: get_executables_by_name,
        PublicRoutes.GET_EXECUTABLES_WITH_ENTITLEMENT: (
            get_executables_with_entitlement_for_os_version
        ),
        PublicRoutes.GET_ENTITLEMENTS: get_entitlements,
        PublicRoutes.GET_ENTITLEMENTS_BY_ID: get_entitlements_by_id,
        PublicRoutes.GET_ENTITLEMENTS_FOR_EXECUTABLE: get_entitlements_for_executable,
        PublicRoutes.DIFF_ENTITLEMENTS_EXECUTABLES: diff_entitlements_for_executables,
    }
    if set(public) != set(PublicRoutes):
        raise RuntimeError("all public handlers aren't documented...")
    for route, endpoint in public.items():
        app.add_api_route(prefix + route.value, endpoint, methods=["GET"])

    return app


def serve(configuration: ServerConfig) -> None:
    """Open the database and serve the API until interrupted."""
    with DBController(configuration.database_path) as db:
        app = create_app(db, configuration.http_max_body_size)
        log.info("Server listening on %s...", configuration.listen_mode)
        listen_mode = configuration.listen_mode
        if isinstance(listen_mode, TcpAddress):
            uvicorn.run(app, host=listen_mode.host, port=listen_mode.port)
        else:
            uvicorn.run(app, uds=str(listen_mode.path))


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the entitlement database.")
    parser.add_argument(
        "-c",
        "--config",
        dest="config_path",
        required=True,
        help="path to server configuration file",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the server from a configuration file."""
    args = _build_parser().parse_args(argv)
    try:
        configuration = read_configuration(args.config_path)
    except (OSError, ConfigError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    logging.basicConfig(level=logging.INFO)
    try:
        serve(configuration)
    except (OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0