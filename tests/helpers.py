"""Test doubles shared across test modules."""

from typing import List

from posmigrate.models.record import Operation, OperationKind, ResourceKind


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_operations(count: int, kind: ResourceKind = ResourceKind.PRODUCT) -> List[Operation]:
    return [
        Operation(
            operation_kind=OperationKind.CREATE,
            resource_kind=kind,
            payload={"title": f"Item {i}", "sku": f"SKU-{i}"},
            record_id=str(i),
        )
        for i in range(count)
    ]
