"""FastAPI application entry point."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .routes import events, mappings, migrations
from .storage import migration_storage

app = FastAPI(
    title="POS Migrate API",
    description="API for migrating point-of-sale exports into a commerce store",
    version=__version__,
)

# CORS middleware for the wizard frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://127.0.0.1:5173", "http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(mappings.router, prefix="/api/mappings", tags=["mappings"])
app.include_router(migrations.router, prefix="/api/migrations", tags=["migrations"])
app.include_router(events.router, prefix="/api/events", tags=["events"])


@app.get("/api/health")
async def health_check():
    """Liveness plus the number of runs held in memory."""
    return {"status": "healthy", "version": __version__, "runs": len(migration_storage.list_all())}
