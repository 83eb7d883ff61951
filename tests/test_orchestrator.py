import asyncio
import json

import pytest

from posmigrate.exceptions import (
    BulkOperationError,
    CommerceAPIError,
    MappingError,
    MigrationAlreadyStartedError,
    PlanNotCreatedError,
)
from posmigrate.loaders.commerce_client import OperationResult
from posmigrate.models.mapping import FieldMapping
from posmigrate.models.migration import (
    MigrationOptions,
    MigrationPriority,
    MigrationStatus,
    MigrationStrategy,
    StepStatus,
)
from posmigrate.models.record import ResourceKind, SourceRecord, tag_records
from posmigrate.orchestrator import (
    MigrationOrchestrator,
    estimate_migration_time,
    select_strategy,
)


def make_records():
    products = tag_records(
        [
            {"item_name": "Widget", "item_sku": "W-1", "item_price": "9.5", "qty": "3"},
            {"item_name": "Gadget", "item_sku": "G-1", "item_price": "$12", "qty": "1"},
        ],
        ResourceKind.PRODUCT,
    )
    customers = tag_records([{"email": "ann@example.com"}], ResourceKind.CUSTOMER)
    for record in customers:
        record.id = f"customer-{record.id}"
    return products + customers


@pytest.mark.unit
class TestStrategySelection:
    def test_strategy_table(self) -> None:
        assert select_strategy(500, MigrationPriority.SPEED) == MigrationStrategy.BATCH
        assert select_strategy(5000, MigrationPriority.SPEED) == MigrationStrategy.HYBRID
        assert select_strategy(5000, MigrationPriority.RELIABILITY) == MigrationStrategy.BATCH
        assert select_strategy(20000, MigrationPriority.SPEED) == MigrationStrategy.BULK
        assert select_strategy(20000, MigrationPriority.BALANCED) == MigrationStrategy.HYBRID

    def test_boundaries_are_exclusive(self) -> None:
        assert select_strategy(1000, MigrationPriority.BALANCED) == MigrationStrategy.BATCH
        assert select_strategy(10000, MigrationPriority.SPEED) == MigrationStrategy.HYBRID

    def test_estimates_round_up_to_whole_minutes(self) -> None:
        assert estimate_migration_time(150, ResourceKind.PRODUCT, MigrationStrategy.BATCH) == 120
        assert estimate_migration_time(0, ResourceKind.PRODUCT, MigrationStrategy.BATCH) == 0
        assert estimate_migration_time(250, ResourceKind.INVENTORY, MigrationStrategy.BULK) == 180


@pytest.mark.unit
class TestCreatePlan:
    """Plan shape, record selection and mapping checks."""

    def test_default_stages(self, migration_config, mock_client, product_mappings) -> None:
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)

        plan = orchestrator.create_plan(make_records(), product_mappings)

        assert [s.id for s in plan.steps] == [
            "validation", "backup", "products", "customers", "orders", "verification"
        ]
        assert plan.total_records == 3
        assert plan.strategy == MigrationStrategy.BATCH
        assert plan.estimated_duration_seconds == sum(s.estimated_time_seconds for s in plan.steps)
        assert all(s.status == StepStatus.PENDING for s in plan.steps)

    def test_unselected_kinds_are_skipped(self, migration_config, mock_client, product_mappings) -> None:
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)

        plan = orchestrator.create_plan(
            make_records(), product_mappings, MigrationOptions(resource_kinds=[ResourceKind.PRODUCT])
        )

        assert plan.total_records == 2
        assert [s.id for s in plan.resource_steps] == ["products"]

    def test_test_mode_samples_each_kind(self, migration_config, mock_client, product_mappings) -> None:
        records = tag_records([{"item_name": f"Item {i}"} for i in range(15)], ResourceKind.PRODUCT)
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)

        plan = orchestrator.create_plan(records, product_mappings, MigrationOptions(test_mode=True))

        assert plan.total_records == 10

    def test_duplicate_source_field_is_rejected(self, migration_config, mock_client) -> None:
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)
        mappings = [FieldMapping("name", "title"), FieldMapping("name", "vendor")]

        with pytest.raises(MappingError):
            orchestrator.create_plan(make_records(), mappings)
        assert orchestrator.plan is None

    def test_output_directories_are_created(self, migration_config, mock_client, tmp_path) -> None:
        MigrationOrchestrator(migration_config, client=mock_client)

        assert (tmp_path / "data" / "backups").is_dir()
        assert (tmp_path / "data" / "logs").is_dir()


@pytest.mark.unit
class TestExecute:
    """Running a plan end to end."""

    @pytest.mark.asyncio
    async def test_execute_requires_plan(self, migration_config, mock_client, product_mappings) -> None:
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)

        with pytest.raises(PlanNotCreatedError):
            await orchestrator.execute(make_records(), product_mappings)

    @pytest.mark.asyncio
    async def test_plan_executes_only_once(self, migration_config, mock_client, product_mappings) -> None:
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)
        records = make_records()
        orchestrator.create_plan(records, product_mappings)
        first = await orchestrator.execute(records, product_mappings)

        with pytest.raises(MigrationAlreadyStartedError):
            await orchestrator.execute(records, product_mappings)

        assert orchestrator.progress is first
        assert (first.status, first.total, first.completed, first.failed) == (MigrationStatus.COMPLETED, 3, 3, 0)

    @pytest.mark.asyncio
    async def test_concurrent_execute_keeps_progress_intact(self, migration_config, mock_client, product_mappings) -> None:
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)
        records = make_records()
        orchestrator.create_plan(records, product_mappings)

        outcomes = await asyncio.gather(
            orchestrator.execute(records, product_mappings),
            orchestrator.execute(records, product_mappings),
            return_exceptions=True,
        )

        errors = [o for o in outcomes if isinstance(o, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], MigrationAlreadyStartedError)
        progress = orchestrator.progress
        assert (progress.status, progress.total, progress.completed, progress.failed) == (
            MigrationStatus.COMPLETED, 3, 3, 0
        )
        assert orchestrator.analytics["summary"]["successful_records"] == 3

    @pytest.mark.asyncio
    async def test_dry_run_end_to_end(self, migration_config, product_mappings) -> None:
        orchestrator = MigrationOrchestrator(migration_config)
        records = make_records()
        orchestrator.create_plan(records, product_mappings)
        updates = []

        progress = await orchestrator.execute(
            records, product_mappings, on_progress=lambda step, overall: updates.append((step.id, overall))
        )

        assert progress.status == MigrationStatus.COMPLETED
        assert progress.total == 3
        assert progress.completed == 3
        assert progress.failed == 0
        assert all(s.status == StepStatus.COMPLETED for s in orchestrator.plan.steps)
        assert orchestrator.plan.overall_progress == 100.0
        assert orchestrator.integrity_report.integrity_percent == 100
        assert updates[-1] == ("verification", 100.0)
        assert orchestrator.analytics["summary"]["success_rate"] == 100.0

        with open(orchestrator.report_path) as f:
            report = json.load(f)
        assert report["progress"]["completed"] == 3
        assert report["integrity"]["integrity_percent"] == 100
        assert orchestrator.backup_path.exists()

    @pytest.mark.asyncio
    async def test_invalid_record_aborts_before_any_write(self, migration_config, mock_client) -> None:
        records = tag_records([{"cost": "abc"}, {"cost": "5"}], ResourceKind.PRODUCT)
        mappings = [FieldMapping("cost", "price")]
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)
        orchestrator.create_plan(records, mappings)

        progress = await orchestrator.execute(records, mappings)

        assert progress.status == MigrationStatus.FAILED
        assert progress.completed == 0
        assert progress.failed == 2
        assert len(progress.errors) == 1
        assert progress.errors[0].operation.record_id == "0"
        assert orchestrator.plan.get_step("validation").status == StepStatus.FAILED
        assert orchestrator.plan.get_step("backup").status == StepStatus.PENDING
        mock_client.execute_operation.assert_not_called()
        mock_client.list_resources.assert_not_called()

    @pytest.mark.asyncio
    async def test_record_failures_do_not_fail_the_stage(
        self, migration_config, mock_client, product_mappings
    ) -> None:
        def execute(operation):
            if operation.record_id == "1":
                raise CommerceAPIError("API Error: title is invalid", status_code=422)
            return OperationResult(target_id=f"gid-{operation.record_id}")

        mock_client.execute_operation.side_effect = execute
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)
        records = make_records()
        orchestrator.create_plan(records, product_mappings)

        progress = await orchestrator.execute(records, product_mappings)

        assert progress.status == MigrationStatus.COMPLETED
        assert progress.completed == 2
        assert progress.failed == 1
        products = orchestrator.plan.get_step("products")
        assert products.status == StepStatus.COMPLETED
        assert products.errors == ["1 of 2 records failed"]

    @pytest.mark.asyncio
    async def test_failed_stage_does_not_stop_later_stages(
        self, migration_config, mock_client, product_mappings
    ) -> None:
        def submit(kind, records):
            if kind == ResourceKind.PRODUCT:
                raise BulkOperationError("Bulk operation rejected", error_code="INVALID")
            return "gid://shopify/BulkOperation/2"

        mock_client.submit_bulk_import.side_effect = submit
        mock_client.get_bulk_operation_status.return_value = {"status": "COMPLETED"}
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)
        records = make_records()
        orchestrator.create_plan(records, product_mappings)
        orchestrator.plan.strategy = MigrationStrategy.BULK

        progress = await orchestrator.execute(records, product_mappings)

        assert progress.status == MigrationStatus.COMPLETED
        assert progress.completed == 1
        assert progress.failed == 2
        assert orchestrator.plan.get_step("products").status == StepStatus.FAILED
        assert orchestrator.plan.get_step("customers").status == StepStatus.COMPLETED
        assert orchestrator.plan.get_step("customers").strategy == MigrationStrategy.BULK
        # No bulk mutation for orders; the stage falls back to batches
        assert orchestrator.plan.get_step("orders").strategy == MigrationStrategy.BATCH

    @pytest.mark.asyncio
    async def test_backup_failure_aborts(self, migration_config, mock_client, product_mappings) -> None:
        mock_client.list_resources.side_effect = CommerceAPIError("Request failed: connection refused")
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)
        records = make_records()
        orchestrator.create_plan(records, product_mappings)

        progress = await orchestrator.execute(records, product_mappings)

        assert progress.status == MigrationStatus.FAILED
        assert progress.failed == 3
        assert progress.is_reconciled
        assert orchestrator.plan.get_step("backup").status == StepStatus.FAILED
        mock_client.execute_operation.assert_not_called()

    @pytest.mark.asyncio
    async def test_webhook_failure_is_not_fatal(self, migration_config, mock_client, product_mappings) -> None:
        migration_config.webhook_base_url = "https://example.com"
        mock_client.setup_webhooks.side_effect = CommerceAPIError("API Error: forbidden", status_code=403)
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)
        records = make_records()
        orchestrator.create_plan(records, product_mappings)

        progress = await orchestrator.execute(records, product_mappings)

        mock_client.setup_webhooks.assert_called_once_with("https://example.com")
        assert progress.status == MigrationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_broken_progress_callback_is_ignored(
        self, migration_config, mock_client, product_mappings
    ) -> None:
        def callback(step, overall):
            raise RuntimeError("subscriber went away")

        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)
        records = make_records()
        orchestrator.create_plan(records, product_mappings)

        progress = await orchestrator.execute(records, product_mappings, on_progress=callback)

        assert progress.status == MigrationStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_skipped_records_are_counted(self, migration_config, mock_client, product_mappings) -> None:
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)
        records = make_records()
        options = MigrationOptions(resource_kinds=[ResourceKind.CUSTOMER])
        orchestrator.create_plan(records, product_mappings, options)

        progress = await orchestrator.execute(records, product_mappings)

        assert progress.total == 1
        assert progress.skipped == 2


@pytest.mark.unit
class TestCancelAndRollback:
    @pytest.mark.asyncio
    async def test_cancel_before_resource_stages(self, migration_config, mock_client, product_mappings) -> None:
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)
        records = make_records()
        orchestrator.create_plan(records, product_mappings)
        orchestrator.cancel("operator stop")

        progress = await orchestrator.execute(records, product_mappings)

        assert progress.status == MigrationStatus.CANCELLED
        assert progress.completed == 0
        assert progress.failed == 3
        assert progress.is_reconciled
        assert orchestrator.plan.get_step("verification").errors == ["Cancelled before verification"]
        mock_client.execute_operation.assert_not_called()

    @pytest.mark.asyncio
    async def test_cancel_during_products_stage(self, migration_config, mock_client, product_mappings) -> None:
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)
        records = make_records()
        orchestrator.create_plan(records, product_mappings)

        def cancel_on_products(step, overall):
            if step.id == "products" and step.status == StepStatus.RUNNING:
                orchestrator.cancel()

        progress = await orchestrator.execute(records, product_mappings, on_progress=cancel_on_products)

        assert progress.status == MigrationStatus.CANCELLED
        assert orchestrator.plan.get_step("products").status == StepStatus.FAILED
        assert orchestrator.plan.get_step("customers").status == StepStatus.FAILED
        assert orchestrator.snapshot()["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_rollback_deletes_created_records(self, migration_config, product_mappings) -> None:
        orchestrator = MigrationOrchestrator(migration_config)
        records = make_records()
        orchestrator.create_plan(records, product_mappings)
        await orchestrator.execute(records, product_mappings)

        deleted = await orchestrator.rollback()

        assert deleted == {"product": 2, "customer": 1}
        assert orchestrator.client.list_resources(ResourceKind.PRODUCT) == []
        assert orchestrator.client.list_resources(ResourceKind.CUSTOMER) == []

    @pytest.mark.asyncio
    async def test_rollback_without_run(self, migration_config, mock_client) -> None:
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)

        assert await orchestrator.rollback() == {}
        mock_client.delete_resource.assert_not_called()

    @pytest.mark.asyncio
    async def test_inventory_is_not_backed_up_or_verified(self, migration_config, mock_client, product_mappings) -> None:
        def list_resources(kind):
            if kind == ResourceKind.INVENTORY:
                raise CommerceAPIError("API Error: location_ids or inventory_item_ids required", status_code=422)
            return []

        mock_client.list_resources.side_effect = list_resources
        records = tag_records([{"item_sku": "W-1", "qty": "4"}], ResourceKind.INVENTORY)
        orchestrator = MigrationOrchestrator(migration_config, client=mock_client)
        orchestrator.create_plan(records, product_mappings, MigrationOptions(resource_kinds=[ResourceKind.INVENTORY]))

        progress = await orchestrator.execute(records, product_mappings)

        assert progress.status == MigrationStatus.COMPLETED
        assert (progress.completed, progress.failed) == (1, 0)
        assert all(s.status == StepStatus.COMPLETED for s in orchestrator.plan.steps)
        mock_client.list_resources.assert_not_called()
        assert mock_client.execute_operation.call_args.args[0].payload == {"sku": "W-1", "inventory_quantity": 4}

    @pytest.mark.asyncio
    async def test_dry_run_with_inventory(self, migration_config, product_mappings) -> None:
        orchestrator = MigrationOrchestrator(migration_config)
        inventory = tag_records([{"item_sku": "W-1", "qty": "4"}], ResourceKind.INVENTORY)
        for record in inventory:
            record.id = f"inventory-{record.id}"
        records = make_records() + inventory
        kinds = [ResourceKind.PRODUCT, ResourceKind.CUSTOMER, ResourceKind.INVENTORY]
        orchestrator.create_plan(records, product_mappings, MigrationOptions(resource_kinds=kinds))

        progress = await orchestrator.execute(records, product_mappings)

        assert progress.status == MigrationStatus.COMPLETED
        assert progress.completed == 4
        assert "inventory" not in progress.created_ids
        assert orchestrator.integrity_report.integrity_percent == 100
        with open(orchestrator.backup_path) as f:
            assert sorted(json.load(f)["resources"]) == ["customers", "products"]
        assert await orchestrator.rollback() == {"product": 2, "customer": 1}

    def test_snapshot_before_plan(self, migration_config, mock_client) -> None:
        snapshot = MigrationOrchestrator(migration_config, client=mock_client).snapshot()

        assert snapshot["status"] == "pending"
        assert snapshot["steps"] == []


def test_source_record_ids_default_to_uuid() -> None:
    record = SourceRecord(data={}, resource_kind=ResourceKind.ORDER)
    assert len(record.id) == 36
