"""Migration execution models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime
import os
import uuid

from .record import Operation, ResourceKind


class MigrationStatus(str, Enum):
    """Status of a migration run or executor pass."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (MigrationStatus.COMPLETED, MigrationStatus.FAILED, MigrationStatus.CANCELLED)


class StepStatus(str, Enum):
    """Status of a single plan stage."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class MigrationStrategy(str, Enum):
    """How resource stages talk to the commerce API."""
    BULK = "bulk"  # One asynchronous bulk job per stage
    BATCH = "batch"  # Rate-limited batches of per-record calls
    HYBRID = "hybrid"  # Declared for mid-sized runs, executed as BATCH


class MigrationPriority(str, Enum):
    """User preference used for strategy selection."""
    SPEED = "speed"
    RELIABILITY = "reliability"
    BALANCED = "balanced"


# Allowed step transitions; no back-transitions
_STEP_TRANSITIONS = {
    StepStatus.PENDING: {StepStatus.RUNNING},
    StepStatus.RUNNING: {StepStatus.COMPLETED, StepStatus.FAILED},
    StepStatus.COMPLETED: set(),
    StepStatus.FAILED: set(),
}


@dataclass
class OperationError:
    """A failed operation as it appears in the final report."""
    operation: Operation
    error_message: str
    retry_count: int = 0
    retryable: bool = False
    permanent: bool = True
    status_code: Optional[int] = None
    retry_history: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "operation": self.operation.to_dict(),
            "error_message": self.error_message,
            "retry_count": self.retry_count,
            "retryable": self.retryable,
            "permanent": self.permanent,
            "status_code": self.status_code,
            "retry_history": self.retry_history,
        }


@dataclass
class MigrationProgress:
    """
    Running tally of a migration or of one executor pass.

    completed + failed never exceeds total; once the status is terminal
    they add up to total exactly.
    """
    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    status: MigrationStatus = MigrationStatus.PENDING
    errors: List[OperationError] = field(default_factory=list)
    created_ids: Dict[str, List[str]] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def start(self) -> None:
        self.status = MigrationStatus.RUNNING
        self.started_at = datetime.utcnow()

    def finish(self, status: MigrationStatus) -> None:
        self.status = status
        self.completed_at = datetime.utcnow()

    def record_success(self, resource_kind: ResourceKind, created_id: Optional[str] = None) -> None:
        """Count one completed operation."""
        if self.completed + self.failed >= self.total:
            raise ValueError("Progress already accounts for every operation")
        self.completed += 1
        if created_id:
            self.created_ids.setdefault(resource_kind.value, []).append(created_id)

    def record_failure(self, error: OperationError) -> None:
        """Count one failed operation and keep its error."""
        if self.completed + self.failed >= self.total:
            raise ValueError("Progress already accounts for every operation")
        self.failed += 1
        self.errors.append(error)

    def resolve_failure(
        self,
        error: OperationError,
        created_id: Optional[str] = None
    ) -> None:
        """Move a failed operation to completed after a successful retry."""
        for idx, existing in enumerate(self.errors):
            if existing is error:
                del self.errors[idx]
                break
        else:
            raise ValueError("Error is not part of this progress record")
        self.failed -= 1
        self.completed += 1
        if created_id:
            self.created_ids.setdefault(error.operation.resource_kind.value, []).append(created_id)

    def merge(self, other: "MigrationProgress") -> None:
        """Fold a finished stage tally into this one."""
        self.total += other.total
        self.completed += other.completed
        self.failed += other.failed
        self.errors.extend(other.errors)
        for kind, ids in other.created_ids.items():
            self.created_ids.setdefault(kind, []).extend(ids)

    @property
    def is_reconciled(self) -> bool:
        return self.completed + self.failed == self.total

    @property
    def percent_complete(self) -> float:
        if self.total == 0:
            return 100.0
        return (self.completed + self.failed) / self.total * 100

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "skipped": self.skipped,
            "status": self.status.value,
            "errors": [e.to_dict() for e in self.errors],
            "created_ids": self.created_ids,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class MigrationStep:
    """A single stage in a migration plan."""
    id: str
    name: str
    description: str = ""
    status: StepStatus = StepStatus.PENDING
    progress: float = 0.0  # 0-100
    estimated_time_seconds: int = 0
    errors: List[str] = field(default_factory=list)
    resource_kind: Optional[ResourceKind] = None
    strategy: Optional[MigrationStrategy] = None  # Strategy actually executed
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def _transition(self, status: StepStatus) -> None:
        if status not in _STEP_TRANSITIONS[self.status]:
            raise ValueError(f"Step {self.id} cannot move from {self.status.value} to {status.value}")
        self.status = status

    def start(self) -> None:
        self._transition(StepStatus.RUNNING)
        self.started_at = datetime.utcnow()
        self.progress = 0.0

    def complete(self) -> None:
        self._transition(StepStatus.COMPLETED)
        self.completed_at = datetime.utcnow()
        self.progress = 100.0

    def fail(self, error: str) -> None:
        self._transition(StepStatus.FAILED)
        self.completed_at = datetime.utcnow()
        self.errors.append(error)

    def set_progress(self, progress: float) -> None:
        self.progress = max(0.0, min(100.0, progress))

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "status": self.status.value,
            "progress": self.progress,
            "estimated_time_seconds": self.estimated_time_seconds,
            "errors": self.errors,
            "resource_kind": self.resource_kind.value if self.resource_kind else None,
            "strategy": self.strategy.value if self.strategy else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class MigrationPlan:
    """Ordered stages for one migration run."""
    steps: List[MigrationStep]
    total_records: int
    estimated_duration_seconds: int
    strategy: MigrationStrategy
    id: str = field(default_factory=lambda: f"migration_{uuid.uuid4().hex[:12]}")
    created_at: datetime = field(default_factory=datetime.utcnow)

    def get_step(self, step_id: str) -> Optional[MigrationStep]:
        """Get a step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    @property
    def resource_steps(self) -> List[MigrationStep]:
        return [s for s in self.steps if s.resource_kind is not None]

    @property
    def overall_progress(self) -> float:
        """Arithmetic mean of stage progress, not weighted by record count."""
        if not self.steps:
            return 0.0
        return sum(s.progress for s in self.steps) / len(self.steps)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "steps": [s.to_dict() for s in self.steps],
            "total_records": self.total_records,
            "estimated_duration_seconds": self.estimated_duration_seconds,
            "strategy": self.strategy.value,
            "created_at": self.created_at.isoformat(),
            "overall_progress": self.overall_progress,
        }


@dataclass
class MigrationOptions:
    """User choices for plan creation."""
    priority: MigrationPriority = MigrationPriority.BALANCED
    resource_kinds: List[ResourceKind] = field(
        default_factory=lambda: [ResourceKind.PRODUCT, ResourceKind.CUSTOMER, ResourceKind.ORDER]
    )
    test_mode: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "priority": self.priority.value,
            "resource_kinds": [k.value for k in self.resource_kinds],
            "test_mode": self.test_mode,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationOptions":
        """Create from dictionary representation."""
        kinds = data.get("resource_kinds") or data.get("resource_types")
        return cls(
            priority=MigrationPriority(data.get("priority", "balanced")),
            resource_kinds=(
                [ResourceKind.from_stage(k) for k in kinds]
                if kinds else cls().resource_kinds
            ),
            test_mode=data.get("test_mode", False),
        )


@dataclass
class CommerceConfig:
    """Connection settings for the target commerce API."""
    shop_domain: str = ""
    access_token: Optional[str] = None
    api_version: str = "2024-01"
    timeout: float = 30.0
    dry_run: bool = False
    # Location whose stock inventory records set
    location_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "shop_domain": self.shop_domain,
            "api_version": self.api_version,
            "timeout": self.timeout,
            "dry_run": self.dry_run,
            "location_id": self.location_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommerceConfig":
        """Create from dictionary representation."""
        return cls(
            shop_domain=data.get("shop_domain", ""),
            access_token=data.get("access_token"),
            api_version=data.get("api_version", "2024-01"),
            timeout=data.get("timeout", 30.0),
            dry_run=data.get("dry_run", False),
            location_id=data.get("location_id"),
        )

    @classmethod
    def from_env(cls, dry_run: bool = False) -> "CommerceConfig":
        """Create from SHOP_* environment variables."""
        return cls(
            shop_domain=os.environ.get("SHOP_DOMAIN", ""),
            access_token=os.environ.get("SHOP_ACCESS_TOKEN"),
            api_version=os.environ.get("SHOP_API_VERSION", "2024-01"),
            dry_run=dry_run,
            location_id=os.environ.get("SHOP_LOCATION_ID"),
        )


@dataclass
class MigrationConfig:
    """Configuration for a migration run."""
    commerce: CommerceConfig = field(default_factory=CommerceConfig)

    # Output
    output_dir: str = "./data"
    save_report: bool = True

    # Notifications
    webhook_base_url: Optional[str] = None

    # Executor tuning
    poll_interval: float = 5.0
    max_poll_seconds: float = 3600.0
    retry_base_delay: float = 1.0
    max_retries: int = 3

    # LLM options for mapping suggestions
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o"
    llm_api_key: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "commerce": self.commerce.to_dict(),
            "output_dir": self.output_dir,
            "save_report": self.save_report,
            "webhook_base_url": self.webhook_base_url,
            "poll_interval": self.poll_interval,
            "max_poll_seconds": self.max_poll_seconds,
            "retry_base_delay": self.retry_base_delay,
            "max_retries": self.max_retries,
            "llm_provider": self.llm_provider,
            "llm_model": self.llm_model,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationConfig":
        """Create from dictionary representation."""
        commerce_data = data.get("commerce")
        commerce = CommerceConfig.from_dict(commerce_data) if commerce_data else CommerceConfig.from_env()

        return cls(
            commerce=commerce,
            output_dir=data.get("output_dir", "./data"),
            save_report=data.get("save_report", True),
            webhook_base_url=data.get("webhook_base_url") or os.environ.get("WEBHOOK_BASE_URL"),
            poll_interval=data.get("poll_interval", 5.0),
            max_poll_seconds=data.get("max_poll_seconds", 3600.0),
            retry_base_delay=data.get("retry_base_delay", 1.0),
            max_retries=data.get("max_retries", 3),
            llm_provider=data.get("llm_provider", "openai"),
            llm_model=data.get("llm_model", "gpt-4o"),
            llm_api_key=data.get("llm_api_key"),
        )
