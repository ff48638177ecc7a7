"""SolarTrack milestone service: FastAPI application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from solartrack import config
from solartrack.db import connection, migrations
from solartrack.db.sync_engine import MilestoneSyncEngine
from solartrack.milestones.catalog import load_catalog
from solartrack.observability import initialize as initialize_observability, shutdown as shutdown_observability
from solartrack.routers.milestones import milestones_router, project_milestones_router

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("solartrack")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("SolarTrack milestone service starting up")
    initialize_observability(app)

    # 1. Load and validate the rule catalog; a bad catalog aborts startup
    catalog = load_catalog()

    # 2. Initialize DB connection
    db = await connection.get_connection()

    # 3. Run migrations and seed definitions/weights from the catalog
    await migrations.run_migrations(db, catalog)

    # 4. Initialize the milestone engine
    app.state.milestone_engine = MilestoneSyncEngine(db, catalog)

    yield

    logger.info("SolarTrack milestone service shutting down")
    shutdown_observability(app)
    await connection.close_connection()


app = FastAPI(
    title="SolarTrack Milestones API",
    description="Milestone synchronization and progress derivation for solar installation projects",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(project_milestones_router)
app.include_router(milestones_router)


@app.get("/api/health")
def health():
    """Health check endpoint."""
    engine = getattr(app.state, "milestone_engine", None)
    return {
        "status": "ok",
        "db": "connected" if connection._connection else "disconnected",
        "catalogVersion": engine.catalog.version if engine else "",
    }
