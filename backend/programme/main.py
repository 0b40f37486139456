"""
Programme - construction scheduling engine with baselines and variance.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from programme import __version__
from programme.config import get_settings
from programme.exceptions import register_exception_handlers
from programme.logging_config import get_logger, setup_logging
from programme.routes import baselines, commands, dependencies, exchange, projects, tasks
from programme.services.engine import EngineRegistry, build_baseline_store

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown events."""
    settings = get_settings()
    logger.info("Starting Programme API...")
    if settings.persistence_backend == "sql":
        from programme.database import init_db

        await init_db()
        logger.info("Database initialized")
    app.state.registry = EngineRegistry(build_baseline_store(settings), settings)
    yield
    logger.info("Shutting down Programme API...")


app = FastAPI(
    title="Programme",
    description="Construction programme scheduling with dependency validation, baselines and variance",
    version=__version__,
    lifespan=lifespan,
)

# Register custom exception handlers
register_exception_handlers(app)

# Include routers
PROJECT = "/projects/{project_id}"
app.include_router(projects.router, prefix="/projects", tags=["Projects"])
app.include_router(tasks.router, prefix=f"{PROJECT}/tasks", tags=["Tasks"])
app.include_router(dependencies.router, prefix=f"{PROJECT}/dependencies", tags=["Dependencies"])
app.include_router(commands.router, prefix=PROJECT, tags=["Commands"])
app.include_router(baselines.router, prefix=PROJECT, tags=["Baselines"])
app.include_router(exchange.router, prefix=PROJECT, tags=["Import/Export"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
