"""Command line interface for POS migrations."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

from .exceptions import MappingError
from .extractors import read_export
from .models.mapping import FieldMapping
from .models.migration import (
    CommerceConfig,
    MigrationConfig,
    MigrationOptions,
    MigrationPriority,
)
from .models.record import ResourceKind, SourceRecord, tag_records
from .orchestrator import MigrationOrchestrator
from .services.llm_inference import MappingAssistant
from .services.verifier import IntegrityVerifier

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="POS Migrate - Move point-of-sale exports into a commerce store"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Detect schema
    detect_parser = subparsers.add_parser("detect", help="Detect the schema of an export")
    detect_parser.add_argument("--input", required=True, help="Path to CSV/JSON export")
    detect_parser.add_argument("--output", help="Output file path")

    # Suggest mappings
    suggest_parser = subparsers.add_parser("suggest", help="Suggest field mappings for an export")
    suggest_parser.add_argument("--input", required=True, help="Path to CSV/JSON export")
    suggest_parser.add_argument("--output", help="Write mappings to this file")

    # Plan
    plan_parser = subparsers.add_parser("plan", help="Show the migration plan")
    _add_run_arguments(plan_parser)

    # Run migration
    run_parser = subparsers.add_parser("run", help="Run a migration")
    _add_run_arguments(run_parser)
    run_parser.add_argument("--dry-run", action="store_true", help="Simulate without changes")

    # Verify
    verify_parser = subparsers.add_parser("verify", help="Compare original and migrated records")
    verify_parser.add_argument("--original", required=True, help="JSON/CSV file of submitted records")
    verify_parser.add_argument("--migrated", required=True, help="JSON/CSV file of migrated records")

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.command == "detect":
        return run_detect(args)
    elif args.command == "suggest":
        return run_suggest(args)
    elif args.command == "plan":
        return run_plan(args)
    elif args.command == "run":
        return run_migration(args)
    elif args.command == "verify":
        return run_verify(args)
    else:
        parser.print_help()
        return 1


def _add_run_arguments(parser: argparse.ArgumentParser):
    parser.add_argument(
        "--input", required=True, action="append",
        help="Export file, optionally prefixed with its kind: customer=customers.csv",
    )
    parser.add_argument("--mapping", required=True, help="Path to mapping JSON file")
    parser.add_argument("--config", help="Path to migration config JSON file")
    parser.add_argument(
        "--priority", default="balanced", choices=[p.value for p in MigrationPriority],
        help="Strategy preference",
    )
    parser.add_argument(
        "--resource-kinds", nargs="+", default=["product", "customer", "order"],
        help="Resource kinds to migrate",
    )
    parser.add_argument("--test-mode", action="store_true", help="Migrate a small sample per kind")


def load_records(inputs: List[str]) -> List[SourceRecord]:
    """Read every input file and tag its rows with the file's resource kind."""
    records = []
    for entry in inputs:
        kind, _, path = entry.rpartition("=")
        resource_kind = ResourceKind.from_stage(kind) if kind else ResourceKind.PRODUCT
        rows = read_export(path)
        tagged = tag_records(rows, resource_kind, id_field="id")
        for record in tagged:
            record.id = f"{resource_kind.value}:{record.id}"
        records.extend(tagged)
    return records


def load_mappings(path: str) -> List[FieldMapping]:
    """Load mappings from a JSON list or an object with a "mappings" key."""
    with open(path) as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("mappings", [])
    return [FieldMapping.from_dict(m) for m in data]


def load_config(path: Optional[str], dry_run: bool = False) -> MigrationConfig:
    if path:
        with open(path) as f:
            config = MigrationConfig.from_dict(json.load(f))
    else:
        config = MigrationConfig(commerce=CommerceConfig.from_env())
    if dry_run:
        config.commerce.dry_run = True
    return config


def _options(args) -> MigrationOptions:
    return MigrationOptions(
        priority=MigrationPriority(args.priority),
        resource_kinds=[ResourceKind.from_stage(k) for k in args.resource_kinds],
        test_mode=args.test_mode,
    )


def _write_or_print(data: Any, output: Optional[str]):
    if output:
        with open(output, 'w') as f:
            json.dump(data, f, indent=2, default=str)
        print(f"Saved to {output}")
    else:
        print(json.dumps(data, indent=2, default=str))


def run_detect(args):
    """Detect the schema of an export."""
    rows = read_export(args.input)
    assistant = MappingAssistant()
    result = asyncio.run(assistant.detect_schema(rows))
    _write_or_print(result.to_dict(), args.output)
    return 0


def run_suggest(args):
    """Suggest mappings for an export."""
    rows = read_export(args.input)
    if not rows:
        print("No rows found")
        return 1

    assistant = MappingAssistant()

    async def suggest():
        schema = await assistant.detect_schema(rows)
        fields = schema.field_names or list(rows[0].keys())
        return await assistant.suggest_mappings(fields, rows, schema.detected_source)

    suggestions = asyncio.run(suggest())
    _write_or_print([s.to_field_mapping().to_dict() for s in suggestions], args.output)
    return 0


def run_plan(args):
    """Print the plan for a migration without running it."""
    config = load_config(args.config, dry_run=True)
    config.save_report = False
    records = load_records(args.input)
    mappings = load_mappings(args.mapping)

    orchestrator = MigrationOrchestrator(config)
    try:
        plan = orchestrator.create_plan(records, mappings, _options(args))
    except MappingError as e:
        print(f"Invalid mapping: {e}")
        return 1

    print(f"\nPlan {plan.id}")
    print(f"Strategy: {plan.strategy.value}")
    print(f"Records: {plan.total_records}")
    print(f"Estimated duration: {plan.estimated_duration_seconds}s")
    for step in plan.steps:
        print(f"  - {step.name} (~{step.estimated_time_seconds}s)")
    return 0


def run_migration(args):
    """Run a migration."""
    config = load_config(args.config, dry_run=args.dry_run)
    records = load_records(args.input)
    mappings = load_mappings(args.mapping)

    orchestrator = MigrationOrchestrator(config)
    try:
        orchestrator.create_plan(records, mappings, _options(args))
    except MappingError as e:
        print(f"Invalid mapping: {e}")
        return 1

    def on_progress(step, overall):
        logger.info(f"[{overall:5.1f}%] {step.name}: {step.status.value} {step.progress:.0f}%")

    async def execute():
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handlers unavailable; Ctrl-C will not cancel gracefully")
        return await orchestrator.execute(records, mappings, on_progress=on_progress)

    result = asyncio.run(execute())

    print("\n" + "=" * 60)
    print("MIGRATION COMPLETE")
    print("=" * 60)
    print(f"Status: {result.status.value}")
    print(f"Total: {result.total}")
    print(f"Succeeded: {result.completed}")
    print(f"Failed: {result.failed}")
    if result.skipped:
        print(f"Skipped: {result.skipped}")
    if result.duration_seconds:
        print(f"Duration: {result.duration_seconds:.2f} seconds")
    if orchestrator.integrity_report:
        print(f"Integrity: {orchestrator.integrity_report.integrity_percent:.1f}%")
    for recommendation in (orchestrator.analytics or {}).get("recommendations", []):
        print(f"  * {recommendation}")
    if orchestrator.report_path:
        print(f"Report: {orchestrator.report_path}")

    return 0 if result.status.value == "completed" else 1


def run_verify(args):
    """Compare two record sets."""
    original: List[Dict[str, Any]] = read_export(args.original)
    migrated: List[Dict[str, Any]] = read_export(args.migrated)

    report = IntegrityVerifier().verify(original, migrated)
    print(json.dumps(report.to_dict(), indent=2, default=str))
    return 0 if report.is_complete and not report.inconsistencies else 1


if __name__ == "__main__":
    sys.exit(main())
