"""Main FastAPI application."""
import asyncio
from contextlib import asynccontextmanager
import logging
from typing import Callable, Optional
import uuid

import httpx
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from campus_notifications.api import notifications
from campus_notifications.core.config import settings
from campus_notifications.core.errors import RETRIABLE_STATUS_CODES, NotificationError
from campus_notifications.core.events import EventTarget
from campus_notifications.core.storage import SqlStorageArea, StorageArea, StoredToken
from campus_notifications.services.notification_service import NotificationService
from campus_notifications.services.notification_state import NotificationState
from campus_notifications.services.notification_store import NotificationStore
from campus_notifications.services.socket_service import SocketService

logger = logging.getLogger(__name__)


def _error_payload(
    request: Request,
    *,
    code: str,
    message: str,
    retriable: bool,
) -> dict:
    return {
        "code": code,
        "message": message,
        "retriable": retriable,
        "request_id": getattr(request.state, "request_id", "unknown"),
    }


def create_app(
    *,
    storage_area: Optional[StorageArea] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    socket_factory: Optional[Callable[..., SocketService]] = None,
) -> FastAPI:
    """
    Build the application.

    The lifespan is the composition root: it opens one storage handle, builds
    store, service, socket and state for this session, starts the state, and
    tears everything down on shutdown. Anything passed in is used as-is and
    left open for the caller to dispose.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        area = storage_area or SqlStorageArea(settings.STORAGE_URL)
        storage = await asyncio.to_thread(area.open)
        token_provider = StoredToken(storage, settings.AUTH_TOKEN_STORAGE_KEY, fallback=settings.AUTH_TOKEN)
        await token_provider.load()
        client = http_client or NotificationStore.create_client()

        store = NotificationStore(client, token_provider)
        service = NotificationService(store)
        socket = (socket_factory or SocketService)(token_provider)
        state = NotificationState(service, socket, storage, page_events=EventTarget())

        app.state.page_events = state.page_events
        app.state.notification_state = state
        await state.start()
        logger.info("Notification state started (%s)", settings.ENVIRONMENT)
        try:
            yield
        finally:
            await state.close()
            storage.close()
            if http_client is None:
                await client.aclose()
            if storage_area is None:
                area.dispose()
            logger.info("Notification state closed")

    app = FastAPI(
        title="Campus Notifications",
        description="Notification delivery and state sync for the campus rewards platform",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or str(uuid.uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        if isinstance(detail, dict):
            code = str(detail.get("code") or f"http_{exc.status_code}")
            message = str(detail.get("message") or "Request failed")
            retriable = bool(
                detail.get("retriable")
                if detail.get("retriable") is not None
                else exc.status_code in RETRIABLE_STATUS_CODES or exc.status_code >= 500
            )
        else:
            code = f"http_{exc.status_code}"
            message = str(detail)
            retriable = exc.status_code in RETRIABLE_STATUS_CODES or exc.status_code >= 500

        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(request, code=code, message=message, retriable=retriable),
            headers={"X-Request-Id": getattr(request.state, "request_id", "unknown")},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_error_payload(
                request,
                code="validation_error",
                message="Request validation failed",
                retriable=False,
            ),
            headers={"X-Request-Id": getattr(request.state, "request_id", "unknown")},
        )

    @app.exception_handler(NotificationError)
    async def notification_exception_handler(request: Request, exc: NotificationError):
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=_error_payload(
                request,
                code="notification_upstream_error",
                message=exc.message,
                retriable=exc.retriable,
            ),
            headers={"X-Request-Id": getattr(request.state, "request_id", "unknown")},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_payload(
                request,
                code="internal_error",
                message="Unexpected server error",
                retriable=True,
            ),
            headers={"X-Request-Id": getattr(request.state, "request_id", "unknown")},
        )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept", "Origin", "X-Requested-With"],
    )

    app.include_router(notifications.router)

    @app.get("/")
    def root():
        return {
            "message": "Campus Notifications",
            "status": "running",
            "environment": settings.ENVIRONMENT,
        }

    @app.get("/health")
    def health(request: Request):
        """Health check: state running and socket connection status."""
        state = getattr(request.app.state, "notification_state", None)
        running = state is not None and not state.closed
        result = {
            "status": "healthy" if running else "degraded",
            "state": "running" if running else "stopped",
            "socket": "connected" if running and state.socket.is_connected else "disconnected",
        }
        return JSONResponse(content=result, status_code=200 if running else 503)

    return app


app = create_app()
