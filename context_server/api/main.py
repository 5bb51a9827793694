"""
HTTP surface of the context server.

Routes translate requests into ContextService calls and return the envelope
the service built. Live updates are streamed from /sse as Server-Sent Events.
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional, Tuple

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .schemas import (
    CapabilitiesResponse,
    CapabilityFeatures,
    CapabilityLimits,
    HealthResponse,
    JsonRpcRequest,
)
from ..core.broadcaster import Subscriber, SubscriptionBroadcaster
from ..core.config import (
    CORS_ORIGINS,
    DB_PATH,
    MAX_BATCH_SIZE,
    MAX_VALUE_SIZE,
    PING_INTERVAL_SEC,
    REQUIRE_TOKEN_HEADER,
    SUBSCRIBER_QUEUE_SIZE,
    TOKEN_HEADER,
    VERSION,
    debug_enabled,
    validate_config,
)
from ..core.dao import ContextStore
from ..core.envelope import format_sse, make_error, make_response
from ..core.errors import (
    ContextServiceError,
    ContextValidationError,
    MissingTokenError,
    StorageError,
    UnsupportedMediaError,
)
from ..core.service import ContextService, ServiceReply, error_reply
from ..util.logging import logger

MEDIA_TYPE = "application/json+model-context"
JSON_CONTENT_TYPES = ("application/json", MEDIA_TYPE)
CORRELATION_HEADER = "X-Correlation-Id"

CONTEXT_METHODS = ("context/create", "context/update")
BATCH_METHOD = "context/batch"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ModelContextResponse(JSONResponse):
    media_type = MEDIA_TYPE


def _reply(reply: ServiceReply) -> ModelContextResponse:
    return ModelContextResponse(status_code=reply.status_code, content=reply.body)


def _header_correlation_id(request: Request) -> Optional[str]:
    return request.headers.get(CORRELATION_HEADER)


# Dependencies

def get_service(request: Request) -> ContextService:
    service = request.app.state.service
    if service is None:
        raise StorageError("Context store is not open")
    return service


def _attach_store(app: FastAPI, store: ContextStore):
    app.state.store = store
    app.state.service = ContextService(store, app.state.broadcaster, MAX_BATCH_SIZE)


def require_token(request: Request):
    """Token presence check; the token itself is never verified."""
    if request.app.state.require_token and not request.headers.get(request.app.state.token_header):
        raise MissingTokenError(f"Missing {request.app.state.token_header} header")


async def json_body(request: Request) -> Any:
    """Parse the request body as JSON, enforcing a JSON content type."""
    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type not in JSON_CONTENT_TYPES:
        raise UnsupportedMediaError(
            "Unsupported media type",
            {"content_type": content_type or None, "accepted": list(JSON_CONTENT_TYPES)},
        )

    raw = await request.body()
    try:
        return json.loads(raw)
    except (ValueError, UnicodeDecodeError, RecursionError) as e:
        raise ContextValidationError("Invalid JSON body", {"reason": str(e)})


def _unpack_rpc(body: Any, allowed_methods: Tuple[str, ...]) -> Tuple[Any, Any, Optional[str]]:
    """Split a JSON-RPC shaped body into (params, id, method).

    Plain bodies are returned as-is with no id and no method.
    """
    if not (isinstance(body, dict) and "jsonrpc" in body):
        return body, None, None

    try:
        rpc = JsonRpcRequest.model_validate(body)
    except ValidationError as e:
        raise ContextValidationError(
            "Invalid request envelope",
            [{"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()],
        )

    if rpc.method not in allowed_methods:
        raise ContextValidationError(
            f"Unsupported method: {rpc.method}",
            {"method": rpc.method, "allowed": list(allowed_methods)},
        )

    return rpc.params, rpc.id, rpc.method


def create_app(store: ContextStore = None, broadcaster: SubscriptionBroadcaster = None,
               require_token_header: bool = REQUIRE_TOKEN_HEADER,
               token_header: str = TOKEN_HEADER) -> FastAPI:
    """Build the application around an explicit store and broadcaster.

    Without a store, the one at DB_PATH is opened when the app starts up.
    """
    for issue in validate_config():
        logger.warning(f"Configuration issue: {issue}")

    broadcaster = broadcaster or SubscriptionBroadcaster(PING_INTERVAL_SEC, SUBSCRIBER_QUEUE_SIZE)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.store is None:
            _attach_store(app, ContextStore(DB_PATH))
        logger.info(f"Context server {VERSION} started (db={app.state.store.db_path})")
        yield
        broadcaster.close_all()
        app.state.store.close()
        logger.info("Context server stopped")

    app = FastAPI(
        title="Context Server API",
        version=VERSION,
        description="Key/value context store with live update streaming",
        docs_url="/docs" if debug_enabled() else None,
        redoc_url="/redoc" if debug_enabled() else None,
        lifespan=lifespan,
    )

    app.state.store = None
    app.state.service = None
    app.state.broadcaster = broadcaster
    if store is not None:
        _attach_store(app, store)
    app.state.require_token = require_token_header
    app.state.token_header = token_header

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    def health_check_endpoint(service: ContextService = Depends(get_service)):
        """Check system health."""
        db_health = service.store.health_check()
        return HealthResponse(
            status="ok" if db_health else "degraded",
            version=VERSION,
            db_health=db_health,
            context_count=service.store.count() if db_health else 0,
            subscribers=service.broadcaster.subscriber_count,
            timestamp=datetime.now(),
        )

    @app.get("/capabilities", dependencies=[Depends(require_token)])
    def capabilities_endpoint(request: Request):
        capabilities = CapabilitiesResponse(
            version=VERSION,
            features=CapabilityFeatures(),
            limits=CapabilityLimits(maxBatchSize=MAX_BATCH_SIZE, maxValueSize=MAX_VALUE_SIZE),
            methods=list(CONTEXT_METHODS) + [BATCH_METHOD],
        )
        return ModelContextResponse(
            content=make_response(capabilities.model_dump(), _header_correlation_id(request))
        )

    # Define /context/batch BEFORE /context/{key:path}
    @app.post("/context/batch", dependencies=[Depends(require_token)])
    def batch_endpoint(request: Request, body: Any = Depends(json_body),
                       service: ContextService = Depends(get_service)):
        """Apply a batch of upserts as one transaction."""
        correlation_id = _header_correlation_id(request)
        try:
            params, rpc_id, _ = _unpack_rpc(body, (BATCH_METHOD,))
        except ContextServiceError as e:
            return _reply(error_reply(e, correlation_id))
        if rpc_id is not None:
            correlation_id = rpc_id

        operations = params.get("operations") if isinstance(params, dict) else params
        return _reply(service.batch_apply(operations, correlation_id))

    @app.post("/context", dependencies=[Depends(require_token)])
    def create_or_update_endpoint(request: Request, body: Any = Depends(json_body),
                                  service: ContextService = Depends(get_service)):
        """Create or update one context record.

        A JSON-RPC body with method context/create refuses to overwrite an
        existing key (409); context/update and plain bodies upsert.
        """
        correlation_id = _header_correlation_id(request)
        try:
            payload, rpc_id, method = _unpack_rpc(body, CONTEXT_METHODS)
        except ContextServiceError as e:
            return _reply(error_reply(e, correlation_id))
        if rpc_id is not None:
            correlation_id = rpc_id

        return _reply(service.create_or_update(
            payload, correlation_id, strict_create=(method == "context/create")
        ))

    @app.get("/context/{key:path}", dependencies=[Depends(require_token)])
    def fetch_endpoint(key: str, request: Request, service: ContextService = Depends(get_service)):
        return _reply(service.fetch(key, _header_correlation_id(request)))

    @app.delete("/context/{key:path}", dependencies=[Depends(require_token)])
    def remove_endpoint(key: str, request: Request, service: ContextService = Depends(get_service)):
        return _reply(service.remove(key, _header_correlation_id(request)))

    @app.get("/sse", dependencies=[Depends(require_token)])
    async def subscribe_endpoint(request: Request, service: ContextService = Depends(get_service)):
        """Stream live-update notifications until the client disconnects."""
        subscriber = service.subscribe()
        return StreamingResponse(
            event_stream(request, subscriber, service.broadcaster),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.exception_handler(ContextServiceError)
    async def context_error_handler(request: Request, exc: ContextServiceError):
        return _reply(error_reply(exc, _header_correlation_id(request)))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        """Unknown routes and methods still answer with an error envelope."""
        return ModelContextResponse(
            status_code=exc.status_code,
            content=make_error(exc.status_code, str(exc.detail), _header_correlation_id(request)),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle all unhandled exceptions."""
        logger.error(f"Unhandled exception: {exc}")
        detail = {"debug": str(exc)} if debug_enabled() else None
        return ModelContextResponse(
            status_code=500,
            content=make_error(500, "Internal server error", _header_correlation_id(request), detail),
        )

    return app


async def event_stream(request: Request, subscriber: Subscriber, broadcaster: SubscriptionBroadcaster):
    """Yield SSE frames for one subscriber; always unregisters on exit."""
    try:
        async for envelope in subscriber:
            if await request.is_disconnected():
                break
            yield format_sse(envelope)
    finally:
        broadcaster.disconnect(subscriber)


app = create_app()
