"""Migration planning and execution endpoints."""

import logging
import os

from fastapi import APIRouter, BackgroundTasks, HTTPException

from ...exceptions import MappingError
from ...models.migration import CommerceConfig, MigrationConfig, MigrationOptions
from ...models.record import SourceRecord
from ...orchestrator import MigrationOrchestrator
from ..models import (
    MigrationCreate,
    MigrationListResponse,
    MigrationReportResponse,
    MigrationResponse,
    MigrationStepModel,
)
from ..storage import MigrationRun, migration_storage
from .events import migration_progress

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_response(run: MigrationRun) -> MigrationResponse:
    plan = run.orchestrator.plan
    progress = run.orchestrator.progress
    return MigrationResponse(
        id=plan.id,
        status=run.status.value,
        strategy=plan.strategy.value,
        total_records=plan.total_records,
        estimated_duration_seconds=plan.estimated_duration_seconds,
        overall_progress=plan.overall_progress,
        steps=[MigrationStepModel(**s.to_dict()) for s in plan.steps],
        progress=progress.to_dict() if progress else None,
    )


def _get_run(migration_id: str) -> MigrationRun:
    run = migration_storage.get(migration_id)
    if not run:
        raise HTTPException(status_code=404, detail="Migration not found")
    return run


@router.post("", response_model=MigrationResponse)
async def create_migration(data: MigrationCreate):
    """Plan a new migration."""
    commerce = CommerceConfig.from_env(dry_run=data.dry_run)
    if data.shop_domain:
        commerce.shop_domain = data.shop_domain
    if data.access_token:
        commerce.access_token = data.access_token

    config = MigrationConfig(
        commerce=commerce,
        output_dir=os.environ.get("POSMIGRATE_OUTPUT_DIR", "./data"),
        webhook_base_url=data.webhook_base_url or os.environ.get("WEBHOOK_BASE_URL"),
    )

    records = []
    for idx, record in enumerate(data.records):
        records.append(SourceRecord(
            data=record.data,
            resource_kind=record.resource_kind,
            id=record.id or str(idx),
        ))
    mappings = [m.to_field_mapping() for m in data.mappings]
    options = MigrationOptions(
        priority=data.priority,
        resource_kinds=list(data.resource_kinds),
        test_mode=data.test_mode,
    )

    orchestrator = MigrationOrchestrator(config)
    try:
        orchestrator.create_plan(records, mappings, options)
    except MappingError as e:
        raise HTTPException(status_code=422, detail=str(e))

    run = migration_storage.add(MigrationRun(orchestrator=orchestrator, records=records, mappings=mappings))
    return _to_response(run)


@router.get("", response_model=MigrationListResponse)
async def list_migrations():
    """List all migrations."""
    runs = migration_storage.list_all()
    return MigrationListResponse(migrations=[_to_response(r) for r in runs], total=len(runs))


@router.get("/{migration_id}", response_model=MigrationResponse)
async def get_migration(migration_id: str):
    """Get a specific migration."""
    return _to_response(_get_run(migration_id))


@router.delete("/{migration_id}")
async def delete_migration(migration_id: str):
    """Delete a migration that is not running."""
    run = _get_run(migration_id)
    if run.is_running:
        raise HTTPException(status_code=400, detail="Cannot delete a running migration")
    migration_storage.delete(migration_id)
    return {"status": "deleted"}


@router.post("/{migration_id}/start")
async def start_migration(migration_id: str, background_tasks: BackgroundTasks):
    """Start a planned migration."""
    run = _get_run(migration_id)

    if run.started:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot start migration in status: {run.status.value}"
        )

    run.started = True
    background_tasks.add_task(run_migration_task, migration_id)
    return {"status": "started", "migration_id": migration_id}


@router.post("/{migration_id}/cancel")
async def cancel_migration(migration_id: str):
    """Cancel a running migration at the next batch boundary."""
    run = _get_run(migration_id)

    if run.status.is_terminal:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot cancel migration in status: {run.status.value}"
        )

    run.orchestrator.cancel()
    return {"status": "cancelling"}


@router.post("/{migration_id}/rollback")
async def rollback_migration(migration_id: str):
    """Delete every record a finished migration created."""
    run = _get_run(migration_id)

    if not run.status.is_terminal:
        raise HTTPException(
            status_code=400,
            detail=f"Cannot rollback migration in status: {run.status.value}"
        )

    deleted = await run.orchestrator.rollback()
    return {"status": "rolled_back", "deleted": deleted}


@router.get("/{migration_id}/report", response_model=MigrationReportResponse)
async def get_report(migration_id: str):
    """Analytics, integrity and validation results of a run."""
    run = _get_run(migration_id)
    orchestrator = run.orchestrator
    return MigrationReportResponse(
        id=migration_id,
        status=run.status.value,
        analytics=orchestrator.analytics,
        integrity=orchestrator.integrity_report.to_dict() if orchestrator.integrity_report else None,
        validation=orchestrator.transformation.to_dict() if orchestrator.transformation else None,
    )


async def run_migration_task(migration_id: str):
    """Background task to run a migration with progress updates."""
    run = migration_storage.get(migration_id)
    if not run:
        return

    orchestrator = run.orchestrator

    def on_progress(step, overall):
        migration_progress.publish(migration_id, orchestrator.snapshot())

    try:
        await orchestrator.execute(run.records, run.mappings, on_progress=on_progress)
    except Exception as e:
        logger.error(f"Migration {migration_id} failed: {e}")
        migration_progress.publish(migration_id, {"plan_id": migration_id, "error": str(e)}, event="error")
    finally:
        migration_progress.publish(migration_id, orchestrator.snapshot(), event="complete")
