"""Migration orchestrator - plans and runs a migration stage by stage."""

import asyncio
import json
import logging
import math
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from .exceptions import MappingError, MigrationAlreadyStartedError, PlanNotCreatedError
from .loaders.batch_executor import BatchExecutor, is_retryable_error
from .loaders.bulk_executor import BulkExecutor
from .loaders.commerce_client import CommerceClient
from .models.mapping import FieldMapping
from .models.migration import (
    MigrationConfig,
    MigrationOptions,
    MigrationPlan,
    MigrationPriority,
    MigrationProgress,
    MigrationStatus,
    MigrationStep,
    MigrationStrategy,
    OperationError,
    StepStatus,
)
from .models.record import (
    Operation,
    OperationKind,
    ResourceKind,
    SourceRecord,
    TransformationOutcome,
)
from .services.analytics import MigrationAnalytics
from .services.rate_limiter import RateLimiter
from .services.retry_queue import RetryQueue
from .services.transformer import RecordTransformer, validate_mappings
from .services.verifier import IntegrityReport, IntegrityVerifier

logger = logging.getLogger(__name__)

# Records per minute by strategy and resource kind
RATES_PER_MINUTE = {
    MigrationStrategy.BULK: {ResourceKind.PRODUCT: 500, ResourceKind.CUSTOMER: 1000, ResourceKind.ORDER: 200},
    MigrationStrategy.BATCH: {ResourceKind.PRODUCT: 100, ResourceKind.CUSTOMER: 200, ResourceKind.ORDER: 50},
    MigrationStrategy.HYBRID: {ResourceKind.PRODUCT: 300, ResourceKind.CUSTOMER: 600, ResourceKind.ORDER: 125},
}
DEFAULT_RATE_PER_MINUTE = 100

BACKUP_ESTIMATE_SECONDS = 300
TEST_MODE_SAMPLE_SIZE = 10

RESOURCE_STAGES = [
    (ResourceKind.PRODUCT, "Migrate Products", "Import product catalog with variants and inventory"),
    (ResourceKind.CUSTOMER, "Migrate Customers", "Import customer database with contact information"),
    (ResourceKind.ORDER, "Migrate Orders", "Import historical order data"),
    (ResourceKind.INVENTORY, "Migrate Inventory", "Set inventory levels"),
]

ProgressCallback = Callable[[MigrationStep, float], None]


class CancellationToken:
    """Cooperative cancel flag shared by the orchestrator and its executors."""

    def __init__(self):
        self._cancelled = False
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "Cancelled by user") -> None:
        self._cancelled = True
        self.reason = reason

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled


def select_strategy(record_count: int, priority: MigrationPriority) -> MigrationStrategy:
    """Pick the plan-level strategy from volume and user priority."""
    if record_count > 10000:
        return MigrationStrategy.BULK if priority == MigrationPriority.SPEED else MigrationStrategy.HYBRID
    if record_count > 1000:
        return MigrationStrategy.BATCH if priority == MigrationPriority.RELIABILITY else MigrationStrategy.HYBRID
    return MigrationStrategy.BATCH


def estimate_migration_time(record_count: int, resource_kind: ResourceKind, strategy: MigrationStrategy) -> int:
    """Advisory stage duration in seconds."""
    rate = RATES_PER_MINUTE.get(strategy, {}).get(resource_kind, DEFAULT_RATE_PER_MINUTE)
    return math.ceil(record_count / rate) * 60


class MigrationOrchestrator:
    """
    Orchestrates a migration run.

    Handles:
    - Plan creation and strategy selection
    - Validation and transformation of source records
    - Backup of existing target data
    - Resource stages through the batch or bulk executor
    - Integrity verification
    - Cancellation, rollback and run reports

    Stages run strictly in order. A validation failure aborts the run with
    no completions; failures in resource stages are recorded and later
    stages still run.
    """

    def __init__(
        self,
        config: MigrationConfig,
        client: Optional[CommerceClient] = None,
        rate_limiter: Optional[RateLimiter] = None,
        retry_queue: Optional[RetryQueue] = None
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Migration configuration
            client: Commerce API client
            rate_limiter: Rate limiter owned by this run
            retry_queue: Retry queue owned by this run
        """
        self.config = config
        self.client = client or CommerceClient(config.commerce)
        self.rate_limiter = rate_limiter or RateLimiter()
        self.retry_queue = retry_queue or RetryQueue(
            max_retries=config.max_retries,
            base_delay=config.retry_base_delay,
            is_retryable=is_retryable_error,
        )
        self.transformer = RecordTransformer()
        self.verifier = IntegrityVerifier()
        self.cancel_token = CancellationToken()

        self.batch_executor = BatchExecutor(self.client, self.rate_limiter, self.retry_queue, self.cancel_token)
        self.bulk_executor = BulkExecutor(
            self.client,
            rate_limiter=self.rate_limiter,
            cancel_token=self.cancel_token,
            poll_interval=config.poll_interval,
            max_poll_seconds=config.max_poll_seconds,
        )

        # Runtime state
        self.plan: Optional[MigrationPlan] = None
        self.options: Optional[MigrationOptions] = None
        self.progress: Optional[MigrationProgress] = None
        self.transformation: Optional[TransformationOutcome] = None
        self.integrity_report: Optional[IntegrityReport] = None
        self.analytics: Optional[Dict[str, Any]] = None
        self.backup_path: Optional[Path] = None
        self.report_path: Optional[Path] = None
        self._on_progress: Optional[ProgressCallback] = None

        self._setup_directories()

    def _setup_directories(self):
        """Create output directories."""
        base = Path(self.config.output_dir)
        self.backups_dir = base / "backups"
        self.logs_dir = base / "logs"

        for dir in [self.backups_dir, self.logs_dir]:
            dir.mkdir(parents=True, exist_ok=True)

    def create_plan(
        self,
        records: List[SourceRecord],
        mappings: List[FieldMapping],
        options: Optional[MigrationOptions] = None
    ) -> MigrationPlan:
        """
        Build the ordered stage list for a run.

        Raises:
            MappingError: If a source field is mapped more than once
        """
        options = options or MigrationOptions()

        mapping_check = validate_mappings(mappings)
        if not mapping_check.is_valid:
            raise MappingError("; ".join(e.message for e in mapping_check.errors))
        for warning in mapping_check.warnings:
            logger.warning(warning.message)

        selected, skipped = self._select_records(records, options)
        counts = Counter(r.resource_kind for r in selected)
        total = len(selected)
        strategy = select_strategy(total, options.priority)

        steps = [MigrationStep(
            id="validation",
            name="Data Validation",
            description="Validate and transform source data according to mappings",
            estimated_time_seconds=math.ceil(total / 1000) * 60,
        ), MigrationStep(
            id="backup",
            name="Create Backup",
            description="Create backup of existing store data",
            estimated_time_seconds=BACKUP_ESTIMATE_SECONDS,
        )]

        for kind, name, description in RESOURCE_STAGES:
            if kind not in options.resource_kinds:
                continue
            steps.append(MigrationStep(
                id=kind.stage_id,
                name=name,
                description=description,
                estimated_time_seconds=estimate_migration_time(counts.get(kind, 0), kind, strategy),
                resource_kind=kind,
            ))

        steps.append(MigrationStep(
            id="verification",
            name="Data Verification",
            description="Verify migration integrity and consistency",
            estimated_time_seconds=math.ceil(total / 500) * 60,
        ))

        self.plan = MigrationPlan(
            steps=steps,
            total_records=total,
            estimated_duration_seconds=sum(s.estimated_time_seconds for s in steps),
            strategy=strategy,
        )
        self.options = options

        logger.info(
            f"Created plan {self.plan.id}: {total} records, strategy {strategy.value}, "
            f"{len(steps)} stages, ~{self.plan.estimated_duration_seconds}s"
            + (f", {skipped} records skipped" if skipped else "")
        )
        return self.plan

    def _select_records(
        self,
        records: List[SourceRecord],
        options: MigrationOptions
    ) -> Tuple[List[SourceRecord], int]:
        """Keep records of the requested kinds; test mode keeps a small sample per kind."""
        selected = []
        per_kind: Counter = Counter()

        for record in records:
            if record.resource_kind not in options.resource_kinds:
                continue
            if options.test_mode and per_kind[record.resource_kind] >= TEST_MODE_SAMPLE_SIZE:
                continue
            per_kind[record.resource_kind] += 1
            selected.append(record)

        return selected, len(records) - len(selected)

    async def execute(
        self,
        records: List[SourceRecord],
        mappings: List[FieldMapping],
        on_progress: Optional[ProgressCallback] = None
    ) -> MigrationProgress:
        """
        Run the planned migration.

        Args:
            records: Tagged source records
            mappings: Field mappings
            on_progress: Called as on_progress(step, overall_percent) on every
                stage status or progress change

        Returns:
            Final MigrationProgress; completed + failed == total

        Raises:
            PlanNotCreatedError: If create_plan() was not called first
            MigrationAlreadyStartedError: If this plan has already been executed
        """
        if not self.plan or not self.options:
            raise PlanNotCreatedError("No migration plan created. Call create_plan first.")
        # Checked and claimed before the first await
        if self.progress is not None:
            raise MigrationAlreadyStartedError(f"Migration plan {self.plan.id} has already been executed")

        self._on_progress = on_progress
        selected, skipped = self._select_records(records, self.options)

        self.progress = MigrationProgress(skipped=skipped)
        self.progress.start()
        current_step: Optional[MigrationStep] = None

        try:
            # Stage 1: Validation
            logger.info("=== STAGE: VALIDATION ===")
            current_step = self.plan.get_step("validation")
            self._start_step(current_step)
            self.transformation = self.transformer.validate_and_transform(mappings, selected)

            if not self.transformation.is_valid:
                self._abort_on_validation(current_step, selected)
                return self.progress

            self._complete_step(current_step)
            valid_records = self.transformation.valid_data

            # Stage 2: Backup
            logger.info("=== STAGE: BACKUP ===")
            current_step = self.plan.get_step("backup")
            self._start_step(current_step)
            await self._run_backup()
            self._complete_step(current_step)

            await self._setup_webhooks()

            # Stages 3+: Resources
            for step in self.plan.resource_steps:
                current_step = step
                kind_records = [r for r in valid_records if r.resource_kind == step.resource_kind]

                if self.cancel_token.is_cancelled:
                    stage = self._cancelled_stage(step, kind_records)
                else:
                    logger.info(f"=== STAGE: {step.id.upper()} ===")
                    stage = await self._run_resource_stage(step, kind_records)

                self.progress.merge(stage)

            # Final stage: Verification
            current_step = self.plan.get_step("verification")
            if self.cancel_token.is_cancelled:
                self._start_step(current_step)
                self._fail_step(current_step, "Cancelled before verification")
                self.progress.finish(MigrationStatus.CANCELLED)
            else:
                logger.info("=== STAGE: VERIFICATION ===")
                await self._run_verification(current_step, valid_records)
                self.progress.finish(MigrationStatus.COMPLETED)

            logger.info(
                f"=== MIGRATION {self.progress.status.value.upper()}: "
                f"{self.progress.completed}/{self.progress.total} completed, {self.progress.failed} failed ==="
            )

        except Exception as e:
            logger.error(f"Migration failed: {e}")
            if current_step and current_step.status == StepStatus.RUNNING:
                self._fail_step(current_step, str(e))
            self._abort(selected, f"Migration aborted: {e}")

        finally:
            if self.progress.completed_at is None:
                self.progress.finish(self.progress.status)
            self.analytics = MigrationAnalytics.report(self.progress, self.plan)
            if self.config.save_report:
                self._save_report()

        return self.progress

    async def _run_resource_stage(self, step: MigrationStep, records: List[SourceRecord]) -> MigrationProgress:
        """Run one resource stage through the bulk or batch executor."""
        kind = step.resource_kind
        self._start_step(step)

        use_bulk = self.plan.strategy == MigrationStrategy.BULK and self.client.supports_bulk(kind)
        if self.plan.strategy == MigrationStrategy.BULK and not use_bulk:
            logger.info(f"Bulk import is unavailable for {kind.value}, using batches")
        # HYBRID runs as BATCH; only its time estimates differ
        step.strategy = MigrationStrategy.BULK if use_bulk else MigrationStrategy.BATCH

        try:
            if use_bulk:
                stage = await self.bulk_executor.run_bulk(kind, [r.data for r in records])
            else:
                operations = [
                    Operation(
                        operation_kind=OperationKind.CREATE,
                        resource_kind=kind,
                        payload=r.data,
                        record_id=r.id,
                    )
                    for r in records
                ]
                stage = await self.batch_executor.run(
                    operations,
                    on_batch_complete=lambda p: self._update_step(step, p.percent_complete),
                )
                await self.batch_executor.retry_failed(stage)
        except Exception as e:
            logger.error(f"Stage {step.id} failed: {e}")
            self._fail_step(step, str(e))
            stage = MigrationProgress(total=len(records))
            self._fail_records(stage, records, f"Stage {step.id} failed: {e}")
            stage.finish(MigrationStatus.FAILED)
            return stage

        if stage.status == MigrationStatus.COMPLETED:
            if stage.failed:
                step.errors.append(f"{stage.failed} of {stage.total} records failed")
            self._complete_step(step)
        else:
            message = stage.errors[-1].error_message if stage.errors else stage.status.value
            self._fail_step(step, message)

        logger.info(f"Stage {step.id}: {stage.completed} completed, {stage.failed} failed")
        return stage

    def _cancelled_stage(self, step: MigrationStep, records: List[SourceRecord]) -> MigrationProgress:
        self._start_step(step)
        self._fail_step(step, "Cancelled")
        stage = MigrationProgress(total=len(records))
        self._fail_records(stage, records, "Migration cancelled before execution")
        stage.finish(MigrationStatus.CANCELLED)
        return stage

    async def _run_backup(self):
        """Snapshot existing target data for the selected resource kinds."""
        snapshot = {}
        for step in self.plan.resource_steps:
            if not self.client.supports_listing(step.resource_kind):
                continue
            snapshot[step.id] = await asyncio.to_thread(self.client.list_resources, step.resource_kind)

        self.backup_path = self.backups_dir / f"{self.plan.id}.json"
        with open(self.backup_path, 'w') as f:
            json.dump({
                "plan_id": self.plan.id,
                "created_at": datetime.utcnow().isoformat(),
                "resources": snapshot,
            }, f, indent=2, default=str)

        logger.info(
            f"Backed up {sum(len(v) for v in snapshot.values())} existing records to {self.backup_path}"
        )

    async def _setup_webhooks(self):
        if not self.config.webhook_base_url:
            return
        try:
            await asyncio.to_thread(self.client.setup_webhooks, self.config.webhook_base_url)
        except Exception as e:
            logger.warning(f"Webhook setup failed, continuing without monitoring: {e}")

    async def _run_verification(self, step: MigrationStep, valid_records: List[SourceRecord]):
        """Compare submitted records with what the target now holds."""
        self._start_step(step)
        kinds = [
            s.resource_kind for s in self.plan.resource_steps if self.client.supports_listing(s.resource_kind)
        ]

        try:
            migrated = []
            for kind in kinds:
                migrated.extend(await asyncio.to_thread(self.client.list_resources, kind))
        except Exception as e:
            logger.error(f"Verification failed: {e}")
            self._fail_step(step, f"Verification failed: {e}")
            return

        original = [r.data for r in valid_records if r.resource_kind in kinds]
        self.integrity_report = self.verifier.verify(original, migrated)

        if self.integrity_report.missing_records:
            step.errors.append(f"{len(self.integrity_report.missing_records)} records missing")
        if self.integrity_report.inconsistencies:
            step.errors.append(f"{len(self.integrity_report.inconsistencies)} records inconsistent")
        self._complete_step(step)

    def _abort_on_validation(self, step: MigrationStep, records: List[SourceRecord]):
        """Fail the whole run: nothing crosses the validation boundary."""
        invalid = self.transformation.invalid_data
        self._fail_step(step, f"{len(invalid)} records failed validation")

        self.progress.total = len(records)
        self.progress.completed = 0
        self.progress.failed = len(records)
        for item in invalid:
            self.progress.errors.append(OperationError(
                operation=Operation(
                    operation_kind=OperationKind.CREATE,
                    resource_kind=item.original.resource_kind,
                    payload=item.original.data,
                    record_id=item.original.id,
                ),
                error_message="Validation failed: " + "; ".join(f"{e.field}: {e.message}" for e in item.errors),
            ))
        self.progress.finish(MigrationStatus.FAILED)
        logger.error(f"{len(invalid)} records failed validation, migration aborted")

    def _abort(self, records: List[SourceRecord], message: str):
        """Fail the run after a system error; unfinished records count as failed."""
        self.progress.total = len(records)
        self.progress.failed = len(records) - self.progress.completed
        self.progress.errors.append(OperationError(
            operation=Operation(operation_kind=OperationKind.CREATE, resource_kind=ResourceKind.PRODUCT),
            error_message=message,
        ))
        self.progress.finish(MigrationStatus.FAILED)

    def _fail_records(self, progress: MigrationProgress, records: List[SourceRecord], message: str):
        for record in records:
            progress.record_failure(OperationError(
                operation=Operation(
                    operation_kind=OperationKind.CREATE,
                    resource_kind=record.resource_kind,
                    payload=record.data,
                    record_id=record.id,
                ),
                error_message=message,
            ))

    def _start_step(self, step: MigrationStep):
        step.start()
        self._notify(step)

    def _update_step(self, step: MigrationStep, progress: float):
        step.set_progress(progress)
        self._notify(step)

    def _complete_step(self, step: MigrationStep):
        step.complete()
        self._notify(step)

    def _fail_step(self, step: MigrationStep, error: str):
        step.fail(error)
        self._notify(step)

    def _notify(self, step: MigrationStep):
        if not self._on_progress:
            return
        try:
            self._on_progress(step, self.plan.overall_progress)
        except Exception as e:
            logger.warning(f"Progress callback failed: {e}")

    def cancel(self, reason: str = "Cancelled by user"):
        """Stop the run at the next batch boundary."""
        logger.info(f"Cancellation requested: {reason}")
        self.cancel_token.cancel(reason)

    async def rollback(self) -> Dict[str, int]:
        """Delete every record created by the run; returns deletions per kind."""
        if not self.progress or not self.progress.created_ids:
            logger.error("Nothing to roll back")
            return {}

        logger.info("Starting rollback...")
        deleted = {}

        for kind_value, ids in self.progress.created_ids.items():
            kind = ResourceKind(kind_value)
            count = 0
            for target_id in ids:
                try:
                    await self.rate_limiter.throttle()
                    await asyncio.to_thread(self.client.delete_resource, kind, target_id)
                    count += 1
                except Exception as e:
                    logger.error(f"Failed to delete {kind_value} {target_id}: {e}")
            deleted[kind_value] = count

        logger.info(f"Rollback completed: {deleted}")
        return deleted

    def snapshot(self) -> Dict[str, Any]:
        """Current state of the run, as pushed to progress subscribers."""
        return {
            "plan_id": self.plan.id if self.plan else None,
            "status": self.progress.status.value if self.progress else MigrationStatus.PENDING.value,
            "overall_progress": self.plan.overall_progress if self.plan else 0.0,
            "steps": [s.to_dict() for s in self.plan.steps] if self.plan else [],
            "progress": self.progress.to_dict() if self.progress else None,
        }

    def _save_report(self):
        """Save the migration report."""
        self.report_path = self.logs_dir / f"migration_report_{datetime.utcnow().strftime('%Y%m%d_%H%M%S')}.json"
        with open(self.report_path, 'w') as f:
            json.dump({
                "plan": self.plan.to_dict(),
                "options": self.options.to_dict() if self.options else None,
                "progress": self.progress.to_dict(),
                "integrity": self.integrity_report.to_dict() if self.integrity_report else None,
                "analytics": self.analytics,
                "backup_path": str(self.backup_path) if self.backup_path else None,
            }, f, indent=2, default=str)
        logger.info(f"Saved migration report to {self.report_path}")
