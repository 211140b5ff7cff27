from __future__ import annotations

from datetime import UTC, datetime
from dotenv import load_dotenv
import logging
from fastapi import FastAPI, Response
from prometheus_client import CONTENT_TYPE_LATEST, REGISTRY, generate_latest

from .. import __version__
from .routers.workspace import router as workspace_router
from ..observability.metrics import metrics_middleware_factory

load_dotenv()  # Load GEMINI_API_KEY / OPENROUTER_API_KEY etc. from .env if present

app = FastAPI(title="NeonVibe Workspace API", version=__version__)

logging.basicConfig(level=logging.INFO)
logging.getLogger("neonvibe.stream").setLevel(logging.INFO)

# Observability: request latency histogram
app.middleware("http")(metrics_middleware_factory())

app.include_router(workspace_router)
app.include_router(workspace_router, prefix="/api")


@app.get("/")
def root():
    return {"name": "NeonVibe Workspace API", "version": __version__}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
    }


@app.get("/metrics")
def metrics() -> Response:
    return Response(generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
