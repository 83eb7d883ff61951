"""
Pytest configuration and shared fixtures.

Time-dependent components take an injectable clock and sleep; FakeClock
provides both so tests never wait in real time.
"""

from typing import List
from unittest.mock import Mock

import pytest

from posmigrate.loaders.commerce_client import CommerceClient, OperationResult
from posmigrate.models.mapping import FieldMapping
from posmigrate.models.migration import CommerceConfig, MigrationConfig
from posmigrate.models.record import Operation, ResourceKind

from .helpers import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def product_mappings() -> List[FieldMapping]:
    return [
        FieldMapping("item_name", "title", 90),
        FieldMapping("item_sku", "sku", 95),
        FieldMapping("item_price", "price", 90),
        FieldMapping("qty", "inventory_quantity", 85),
        FieldMapping("email", "email", 95),
        FieldMapping("notes", "", 0),
    ]


@pytest.fixture
def mock_client() -> Mock:
    """Commerce client double whose writes succeed with sequential ids."""
    client = Mock(spec=CommerceClient)
    client.last_call_limit = None
    counter = {"n": 0}

    def execute(operation: Operation) -> OperationResult:
        counter["n"] += 1
        return OperationResult(target_id=str(counter["n"]))

    client.execute_operation.side_effect = execute
    client.list_resources.return_value = []
    client.supports_bulk.side_effect = lambda kind: kind in (ResourceKind.PRODUCT, ResourceKind.CUSTOMER)
    client.supports_listing.side_effect = lambda kind: kind != ResourceKind.INVENTORY
    return client


@pytest.fixture
def migration_config(tmp_path) -> MigrationConfig:
    return MigrationConfig(
        commerce=CommerceConfig(shop_domain="test-shop", access_token="token", dry_run=True),
        output_dir=str(tmp_path / "data"),
        retry_base_delay=0.0,
    )
