"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from paradero.api import routes, stops, ws
from paradero.config import settings
from paradero.core.directions_client import DirectionsClient
from paradero.core.red_client import RedClient
from paradero.core.route_geometry import RouteGeometryEngine
from paradero.core.scheduler import create_scheduler
from paradero.core.stop_directory import StopDirectory

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    red = RedClient()
    directions = DirectionsClient()
    directory = StopDirectory(red)

    # Wire up API modules
    stops.red = red
    stops.directory = directory
    routes.engine = RouteGeometryEngine(directions)
    ws.red = red

    await directory.refresh()

    scheduler = create_scheduler(directory)
    scheduler.start()
    logger.info("Paradero started - arrivals refresh every %dms", settings.sync_interval_ms)

    yield

    # Shutdown
    scheduler.shutdown(wait=False)
    await red.close()
    await directions.close()
    logger.info("Paradero shut down")


app = FastAPI(
    title="Paradero Live",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(stops.router)
app.include_router(routes.router)
app.include_router(ws.router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
