"""
FastAPI application exposing an alert store over HTTP.

The store is injected through create_app() and reached from the routes via
app.state, so the same routes serve the SQLite engine in production and the
in-memory store in tests.
"""

import json
import queue
import threading
import time
import uuid
from datetime import datetime
from typing import Dict, Iterator

import structlog
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse

from . import __version__
from .exceptions import StoreError
from .models import Alert
from .storage import AlertStore


logger = structlog.get_logger(__name__)


def _timestamp() -> str:
    return datetime.fromtimestamp(time.time()).isoformat() + "Z"


_DONE = object()


class StreamingSink:
    """Backup sink feeding a StreamingResponse while the backup runs.

    The store writes from a producer thread (see run()); at most
    ``max_chunks`` chunks are held between it and the response body. When the
    response stops reading, the next write raises and the backup aborts.
    """

    def __init__(self, max_chunks: int = 4, stall_timeout: float = 60.0):
        self.headers: Dict[str, str] = {}
        self.status_code = 200
        self.error: str | None = None
        self.stall_timeout = stall_timeout

        self._chunks: queue.Queue = queue.Queue(maxsize=max_chunks)
        self._headers_ready = threading.Event()
        self._cancelled = threading.Event()

    @property
    def buffered(self) -> int:
        """Number of chunks written but not yet sent."""
        return self._chunks.qsize()

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    def write(self, chunk: bytes) -> None:
        self._headers_ready.set()
        if not self._offer(chunk):
            raise ConnectionAbortedError("backup download stopped reading")

    def fail(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.error = message
        self._headers_ready.set()

    def _offer(self, item) -> bool:
        """Queue ``item``, waiting for room; False if the reader went away."""
        deadline = time.monotonic() + self.stall_timeout
        while not self._cancelled.is_set():
            try:
                self._chunks.put(item, timeout=0.1)
                return True
            except queue.Full:
                if time.monotonic() > deadline:
                    self._cancelled.set()
        return False

    def run(self, store: AlertStore) -> None:
        """Producer thread body: run the backup, then mark the end of the stream."""
        try:
            store.backup(self)
        finally:
            self._headers_ready.set()
            self._offer(_DONE)

    def wait_for_headers(self, timeout: float | None = None) -> bool:
        return self._headers_ready.wait(timeout)

    def iter_chunks(self) -> Iterator[bytes]:
        """Yield chunks as the producer writes them."""
        try:
            while True:
                item = self._chunks.get()
                if item is _DONE:
                    break
                yield item
            if self.error is not None:
                # Headers are already sent; aborting the body is the only signal left
                logger.error("Backup stream interrupted", error=self.error)
                raise RuntimeError(f"Backup interrupted: {self.error}")
        finally:
            self._cancelled.set()


def get_store(request: Request) -> AlertStore:
    """Dependency returning the store the app was created with."""
    return request.app.state.store


def create_app(store: AlertStore) -> FastAPI:
    """Build the HTTP application around ``store``."""
    app = FastAPI(
        title="Alertboard",
        description="Embedded alert store with prefix scans and snapshot backups",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.store = store

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "timestamp": _timestamp(),
            "service": "alertboard",
            "version": __version__,
        }

    @app.post("/alerts", status_code=201)
    def put_alert(alert: Alert, store: AlertStore = Depends(get_store)):
        """Store an alert, overwriting any alert with the same ID."""
        if not alert.ID:
            raise HTTPException(status_code=400, detail="Alert ID must not be empty")

        try:
            store.put_alert(alert)
        except StoreError as e:
            logger.error(
                "Failed to store alert",
                alert_id=alert.ID,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise HTTPException(status_code=500, detail=f"Failed to store alert: {e}")

        logger.info("Alert stored", alert_id=alert.ID, status=alert.Status)
        return {"id": alert.ID, "status": "stored"}

    @app.get("/alerts")
    def list_alerts(
        prefix: str = Query(default="", description="Return alerts whose ID starts with this prefix"),
        store: AlertStore = Depends(get_store),
    ):
        """List alerts by ID prefix in key order."""
        result = store.get_alerts_by_prefix(prefix)
        headers = {"X-Total-Count": str(result.count)}

        if result.error is not None:
            logger.error(
                "Prefix scan stopped early",
                prefix=prefix,
                count=result.count,
                error=str(result.error),
                error_type=type(result.error).__name__,
            )
            return JSONResponse(
                status_code=500,
                headers=headers,
                content={
                    "error": str(result.error),
                    "count": result.count,
                    "alerts": json.loads(result.data),
                },
            )

        return Response(content=result.data, media_type="application/json", headers=headers)

    @app.get("/alerts/{alert_id:path}")
    def get_alert(alert_id: str, store: AlertStore = Depends(get_store)):
        """Return the stored document for one alert."""
        data = store.get_alert(alert_id)
        if data is None:
            raise HTTPException(status_code=404, detail=f"Alert {alert_id} not found")
        return Response(content=data, media_type="application/json")

    @app.delete("/alerts/{alert_id:path}", status_code=204)
    def delete_alert(alert_id: str, store: AlertStore = Depends(get_store)):
        """Delete an alert. Unknown IDs are accepted."""
        try:
            store.delete_alert(alert_id)
        except StoreError as e:
            logger.error(
                "Failed to delete alert",
                alert_id=alert_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise HTTPException(status_code=500, detail=f"Failed to delete alert: {e}")

        logger.info("Alert deleted", alert_id=alert_id)
        return Response(status_code=204)

    @app.get("/backup")
    def backup(store: AlertStore = Depends(get_store)):
        """Download a snapshot of the whole alert database."""
        sink = StreamingSink()
        producer = threading.Thread(target=sink.run, args=(store,), name="alertboard-backup", daemon=True)
        producer.start()
        sink.wait_for_headers()

        if sink.error is not None:
            return PlainTextResponse(sink.error, status_code=sink.status_code)

        logger.info("Backup export started", size=sink.headers.get("Content-Length"))
        return StreamingResponse(sink.iter_chunks(), headers=sink.headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        correlation_id = str(uuid.uuid4())

        logger.error(
            "Unhandled exception in alertboard server",
            correlation_id=correlation_id,
            url=str(request.url),
            method=request.method,
            error=str(exc),
            exc_info=True,
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "correlation_id": correlation_id,
                "timestamp": _timestamp(),
            },
        )

    return app
