"""FastAPI REST interface for the kiosk vitals engine.

Single-process, single-device lifecycle with thread-safe access to:
- VitalsEngine (device sources, reading cache, single-flight capture, sessions)
- VisitStore (pandas DataFrame of saved visits, optional JSON file)

Error mapping:
- NoDevice → 503
- SerialIOError → 503
- CaptureBusy → 409
- NoReading → 409
- CaptureTimeout → 504
- UnknownChannel → 404
- Other exceptions → 500
"""

import asyncio
import logging
import os
from threading import RLock
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from data_store import VisitStore
from vitals_engine import VitalsEngine, __version__
from vitals_engine.errors import (
    CaptureBusy,
    CaptureTimeout,
    NoDevice,
    NoReading,
    SerialIOError,
    UnknownChannel,
)
from vitals_engine.models import SerialSettings, SourceState
from vitals_engine.sources import HardwareSource

# =============================================================================
# Environment Configuration
# =============================================================================

# Read configuration from environment variables
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "4000"))
DEFAULT_SERIAL_PORT = os.getenv("SERIAL_PORT", "/dev/ttyUSB0")
DEFAULT_SERIAL_BAUD = int(os.getenv("SERIAL_BAUD", "9600"))
SERIAL_TIMEOUT_S = float(os.getenv("SERIAL_TIMEOUT_S", "0.2"))
CAPTURE_TIMEOUT_S = float(os.getenv("CAPTURE_TIMEOUT_S", "5.0"))
CAPTURE_WINDOW_S = float(os.getenv("CAPTURE_WINDOW_S", "10.0"))
VISITS_PATH = os.getenv("VISITS_PATH", "saved_data.json")
CORS_ORIGINS = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://127.0.0.1:3000"
).split(",")

# Configure logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

SERVICE_INFO = {
    "service": "Vitals Kiosk API",
    "version": __version__,
    "status": "online",
}

# =============================================================================
# Global Singletons
# =============================================================================

_engine: Optional[VitalsEngine] = None
_store: Optional[VisitStore] = None
_lock = RLock()  # Protects state-changing operations


def get_engine() -> VitalsEngine:
    """Engine singleton, created on first use."""
    global _engine
    with _lock:
        if _engine is None:
            _engine = VitalsEngine(
                capture_timeout_s=CAPTURE_TIMEOUT_S,
                window_s=CAPTURE_WINDOW_S,
            )
        return _engine


def get_store() -> VisitStore:
    """Visit store singleton, created on first use."""
    global _store
    with _lock:
        if _store is None:
            _store = VisitStore(path=VISITS_PATH or None)
        return _store


# =============================================================================
# FastAPI App
# =============================================================================

app = FastAPI(
    title="Vitals Kiosk API",
    description="REST interface for bedside vitals capture at the intake kiosk",
    version=__version__
)

# CORS for the kiosk frontend (configurable via CORS_ORIGINS env var)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 404 logging middleware for debugging
@app.middleware("http")
async def log_404_requests(request: Request, call_next):
    """Log all 404 responses to help debug missing routes."""
    response = await call_next(request)
    if response.status_code == 404:
        logger.warning(f"404 NOT FOUND: {request.method} {request.url.path} query={dict(request.query_params)}")
    return response

# =============================================================================
# Request/Response Models
# =============================================================================

class PatientInfo(BaseModel):
    """Intake form fields sent along with a save request."""
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    dateOfBirth: Optional[str] = None
    insurance: Optional[str] = None
    insuranceId: Optional[str] = None
    symptoms: Optional[str] = None


class StatusResponse(BaseModel):
    """Response for POST /api/connect, /api/disconnect and simulator toggles."""
    status: str
    source: str


def _patient_dict(patient: Optional[PatientInfo]) -> dict:
    return patient.model_dump(exclude_none=True) if patient else {}


# =============================================================================
# Exception Handlers
# =============================================================================

def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(NoDevice)
async def no_device_handler(request, exc: NoDevice):
    """Map NoDevice to 503 Service Unavailable."""
    logger.warning(f"NoDevice: {exc}")
    return _error_response(503, exc)


@app.exception_handler(SerialIOError)
async def serial_io_error_handler(request, exc: SerialIOError):
    """Map SerialIOError to 503 Service Unavailable."""
    logger.error(f"SerialIOError: {exc}")
    return _error_response(503, exc)


@app.exception_handler(CaptureBusy)
async def capture_busy_handler(request, exc: CaptureBusy):
    """Map CaptureBusy to 409 Conflict."""
    logger.warning(f"CaptureBusy: {exc}")
    return _error_response(409, exc)


@app.exception_handler(NoReading)
async def no_reading_handler(request, exc: NoReading):
    """Map NoReading to 409 Conflict."""
    logger.warning(f"NoReading: {exc}")
    return _error_response(409, exc)


@app.exception_handler(CaptureTimeout)
async def capture_timeout_handler(request, exc: CaptureTimeout):
    """Map CaptureTimeout to 504 Gateway Timeout."""
    logger.error(f"CaptureTimeout: {exc}")
    return _error_response(504, exc)


@app.exception_handler(UnknownChannel)
async def unknown_channel_handler(request, exc: UnknownChannel):
    """Map UnknownChannel to 404 Not Found."""
    logger.warning(f"UnknownChannel: {exc}")
    return _error_response(404, exc)


# =============================================================================
# Read-Only Endpoints (Low Latency)
# =============================================================================

@app.get("/api/sensor")
async def get_sensor():
    """Get the most recent cached reading.

    Returns the reading dict, or 204 No Content if nothing has arrived yet.
    """
    latest = get_engine().latest()
    if latest is None:
        return Response(status_code=204)
    return latest.to_dict()


@app.get("/api/debug")
async def get_debug():
    """Diagnostic snapshot: latest reading, source state, flags and port."""
    status = get_engine().status()
    status["visits"] = get_store().count()
    return status


@app.get("/api/ports")
async def get_ports():
    """List candidate serial ports and whether serial access is available at all."""
    engine = get_engine()
    supported = HardwareSource.is_supported()
    return {
        "supported": supported,
        "ports": HardwareSource.list_ports() if supported else [],
        "default_port": DEFAULT_SERIAL_PORT,
        "source": engine.source_state.value,
    }


# =============================================================================
# Source Lifecycle Endpoints
# =============================================================================

@app.post("/api/connect", response_model=StatusResponse)
async def connect(
    port: str = Query(DEFAULT_SERIAL_PORT, description="Serial port (e.g., /dev/ttyUSB0)"),
    baud: int = Query(DEFAULT_SERIAL_BAUD, description="Baud rate")
):
    """Connect to the bedside device, stopping the simulator if it runs.

    Args:
        port: Serial port path
        baud: Baud rate (default 9600)

    Returns:
        {"status": "connected", "source": "hardware"}

    Raises:
        400: If already connected or the settings are invalid
        503: If port cannot be opened (SerialIOError)
    """
    engine = get_engine()

    with _lock:
        if engine.source_state is SourceState.HARDWARE:
            raise HTTPException(
                status_code=400,
                detail="Already connected. Disconnect first."
            )

        try:
            settings = SerialSettings(port=port, baud=baud, timeout_s=SERIAL_TIMEOUT_S)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        logger.info(f"Connecting to {port} at {baud} baud...")
        engine.connect(settings=settings)

        return StatusResponse(status="connected", source=engine.source_state.value)


@app.post("/api/disconnect", response_model=StatusResponse)
async def disconnect():
    """Close whichever source is live. Idempotent."""
    engine = get_engine()
    with _lock:
        engine.disconnect()
        return StatusResponse(status="disconnected", source=engine.source_state.value)


@app.post("/api/simulate/start", response_model=StatusResponse)
async def start_simulation(seed: Optional[int] = Query(None, description="Seed for a reproducible sequence")):
    """Start the simulator, closing the hardware connection if open."""
    engine = get_engine()
    with _lock:
        engine.start_simulation(seed=seed)
        return StatusResponse(status="simulating", source=engine.source_state.value)


@app.post("/api/simulate/stop", response_model=StatusResponse)
async def stop_simulation():
    """Stop the simulator if it is the live source."""
    engine = get_engine()
    with _lock:
        engine.stop_simulation()
        return StatusResponse(status="stopped", source=engine.source_state.value)


# =============================================================================
# Capture & Save Endpoints
# =============================================================================

@app.post("/api/capture-and-save")
async def capture_and_save(patient: Optional[PatientInfo] = None):
    """Wait for the next fresh reading and store it as a visit.

    The wait runs off the event loop so a concurrent request is rejected
    with 409 instead of being queued.

    Raises:
        503: No live device
        409: Another capture is outstanding
        504: No reading within the capture timeout
    """
    engine = get_engine()
    store = get_store()
    saved = await asyncio.to_thread(engine.capture_and_save, store, _patient_dict(patient))
    return {"ok": True, "saved": saved}


@app.post("/api/save-latest")
async def save_latest(patient: Optional[PatientInfo] = None):
    """Store the cached latest reading as a visit, then freeze the cache.

    Raises:
        409: No reading cached yet
    """
    engine = get_engine()
    with _lock:
        saved = engine.save_latest(get_store(), _patient_dict(patient))
    return {"ok": True, "saved": saved, "collecting": engine.collecting}


@app.post("/api/collecting/resume")
async def resume_collecting():
    """Let the cache follow the device again after a save-latest."""
    engine = get_engine()
    engine.resume_collecting()
    return {"collecting": engine.collecting}


# =============================================================================
# Capture Session Endpoints
# =============================================================================

@app.post("/api/session/start")
async def start_session():
    """Open a new capture window; every channel restarts with no samples."""
    engine = get_engine()
    with _lock:
        engine.start_capture()
        return engine.session.snapshot()


@app.post("/api/session/stop")
async def stop_session():
    """Stop the window and commit every channel that has samples."""
    engine = get_engine()
    with _lock:
        committed = engine.stop_capture()
        return {"committed": committed, "session": engine.session.snapshot()}


@app.get("/api/session")
async def get_session():
    """Session status and progress.

    Each call also enforces the window: the first poll after it has elapsed
    finishes the session.
    """
    engine = get_engine()
    with _lock:
        engine.poll_capture()
        return engine.session.snapshot()


@app.post("/api/session/vitals/{channel}/commit")
async def commit_vital(channel: str):
    """Commit one channel to the median of its samples.

    Raises:
        404: Unknown channel
    """
    engine = get_engine()
    with _lock:
        value = engine.commit_vital(channel)
        return {"channel": channel, "committed": value}


@app.post("/api/session/vitals/{channel}/recapture")
async def recapture_vital(channel: str):
    """Clear one channel so the next readings start a fresh sample set.

    Raises:
        404: Unknown channel
    """
    engine = get_engine()
    with _lock:
        engine.recapture_vital(channel)
        return {"channel": channel, "status": "capturing"}


@app.get("/api/vitals")
async def get_vitals():
    """Committed vitals, uncommitted channels omitted."""
    engine = get_engine()
    return {
        "vitals": engine.committed_vitals(),
        "complete": engine.session.is_complete(),
    }


@app.post("/api/vitals/save")
async def save_vitals(patient: Optional[PatientInfo] = None):
    """Store the committed vitals as a visit.

    Raises:
        409: Nothing committed yet
    """
    engine = get_engine()
    with _lock:
        vitals = engine.committed_vitals()
        if not vitals:
            raise HTTPException(status_code=409, detail="No committed vitals to save")
        saved = get_store().save_vitals(vitals, _patient_dict(patient))
    return {"ok": True, "saved": saved}


# =============================================================================
# Visit Records
# =============================================================================

@app.get("/api/visits/latest")
async def get_latest_visit():
    """Newest stored visit, or 204 No Content if none."""
    latest = get_store().get_latest()
    if latest is None:
        return Response(status_code=204)
    return latest


@app.get("/api/visits")
async def list_visits(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """Stored visits, newest first."""
    store = get_store()
    return {
        "total": store.count(),
        "visits": store.list_visits(limit=limit, offset=offset),
    }


# =============================================================================
# Health Check
# =============================================================================

@app.get("/")
async def root():
    """Service info."""
    return SERVICE_INFO


@app.get("/health")
async def health():
    """Health check endpoint."""
    return SERVICE_INFO


# =============================================================================
# Startup/Shutdown Events
# =============================================================================

@app.on_event("startup")
async def startup_event():
    """Log startup and configuration."""
    logger.info("=" * 60)
    logger.info("Vitals Kiosk API started")
    logger.info(f"Version: {__version__}")
    logger.info(f"Host: {API_HOST}")
    logger.info(f"Port: {API_PORT}")
    logger.info(f"Default Serial Port: {DEFAULT_SERIAL_PORT}")
    logger.info(f"Default Serial Baud: {DEFAULT_SERIAL_BAUD}")
    logger.info(f"Capture Timeout: {CAPTURE_TIMEOUT_S}s")
    logger.info(f"Capture Window: {CAPTURE_WINDOW_S}s")
    logger.info(f"Visits Path: {VISITS_PATH or '(memory only)'}")
    logger.info(f"CORS Origins: {CORS_ORIGINS}")
    logger.info(f"Log Level: {LOG_LEVEL}")
    logger.info("=" * 60)


@app.on_event("shutdown")
async def shutdown_event():
    """Clean up resources on shutdown."""
    logger.info("Shutting down Vitals Kiosk API...")

    if _engine is not None:
        try:
            _engine.shutdown()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}")

    logger.info("Shutdown complete")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=API_HOST, port=API_PORT)
