"""
Primary orchestration entry point for the receipt storage engine.
"""

from __future__ import annotations

import argparse
import json
import sys
import time
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from config import AppConfig, ensure_directories
from database import DatabaseManager
from naming import DEFAULT_PATTERN, PathResolver, PatternValidationError, validate_pattern
from optimization import ImageOptimizer, OptimizationBatchRunner
from renaming import AssociationRecovery, LegacyLayoutMigrator, RenameEngine
from storage import FileStorage, ReceiptFileService, StorageRootError
from utils import ResourceMonitor, setup_logging
from watch import WatchFolderService, WatchScheduler


class Orchestrator:
    """Wire storage, naming, rename, optimization and watch components from configuration."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.loggers = setup_logging(self.config.resolve_path("paths", "logs", default="logs"))
        self.logger = self.loggers["main"]
        self.movement_logger = self.loggers["movement"]
        self.performance_logger = self.loggers["performance"]

        self.default_pattern = str(self.config.get("naming", "default_pattern", default=DEFAULT_PATTERN))
        validate_pattern(self.default_pattern)
        self.db_paths = self._build_db_paths()
        self.db_manager = DatabaseManager(self.db_paths, default_pattern=self.default_pattern)
        self.db_manager.initialize()
        self._ensure_paths()

        self.resource_monitor = ResourceMonitor.from_config(config)
        self.storage_root = self.config.resolve_path("paths", "storage_root", default="data/receipts")
        self.storage = FileStorage(self.storage_root, logger=self.logger, movement_logger=self.movement_logger)
        self.resolver = PathResolver(
            self.storage_root,
            pattern_source=self.db_manager,
            lookup=self.db_manager,
            default_pattern=self.default_pattern,
            logger=self.logger,
        )
        self.rename_engine = RenameEngine(
            self.db_manager,
            self.resolver,
            self.storage,
            logger=self.logger,
            movement_logger=self.movement_logger,
            monitor=self.resource_monitor,
        )
        self.legacy_migrator = LegacyLayoutMigrator(
            self.db_manager,
            self.resolver,
            self.storage,
            logger=self.logger,
            movement_logger=self.movement_logger,
            monitor=self.resource_monitor,
            rename_engine=self.rename_engine,
        )
        self.association_recovery = AssociationRecovery(
            self.db_manager, self.resolver, logger=self.logger, monitor=self.resource_monitor
        )
        self.optimizer = ImageOptimizer(config, logger=self.logger)
        self.batch_runner = OptimizationBatchRunner(
            config,
            self.db_manager,
            self.resolver,
            self.optimizer,
            logger=self.logger,
            movement_logger=self.movement_logger,
            performance_logger=self.performance_logger,
            monitor=self.resource_monitor,
        )
        self.file_service = ReceiptFileService(
            config,
            self.db_manager,
            self.resolver,
            self.storage,
            self.rename_engine,
            optimizer=self.optimizer,
            logger=self.logger,
            movement_logger=self.movement_logger,
        )
        self.watch_service = WatchFolderService(
            config,
            self.db_manager,
            self.file_service,
            self.storage,
            logger=self.logger,
            movement_logger=self.movement_logger,
        )
        self.watch_enabled = bool(self.config.get("watch", "enabled", default=True))
        self.watch_scheduler = WatchScheduler(
            self.watch_service,
            interval_minutes=self.config.get_int("watch", "interval_minutes", default=30, minimum=1),
            logger=self.logger,
        )

    def close(self) -> None:
        self.watch_scheduler.stop()
        self.db_manager.close()

    def rename_all(self, pattern: Optional[str] = None) -> dict:
        if pattern is not None:
            validate_pattern(pattern)
        return self._run_operation(
            "rename_all",
            lambda operation_id: self.rename_engine.rename_all(pattern=pattern, operation_id=operation_id),
            requires_storage=True,
        )

    def migrate_legacy_layout(self) -> dict:
        return self._run_operation(
            "migrate_legacy_layout",
            lambda operation_id: self.legacy_migrator.migrate(operation_id=operation_id),
            requires_storage=True,
        )

    def recover_associations(self) -> dict:
        return self._run_operation(
            "recover_associations",
            lambda operation_id: self.association_recovery.recover(),
            requires_storage=True,
        )

    def optimize_batch(self, batch_size: Optional[int] = None, max_concurrent: Optional[int] = None) -> dict:
        return self._run_operation(
            "optimize_batch",
            lambda operation_id: self.batch_runner.optimize_pending(
                batch_size=batch_size, max_concurrent=max_concurrent, operation_id=operation_id
            ),
            requires_storage=True,
        )

    def reoptimize_batch(self, batch_size: Optional[int] = None, max_concurrent: Optional[int] = None) -> dict:
        return self._run_operation(
            "reoptimize_batch",
            lambda operation_id: self.batch_runner.reoptimize_all(
                batch_size=batch_size, max_concurrent=max_concurrent, operation_id=operation_id
            ),
            requires_storage=True,
        )

    def trigger_scan(self) -> dict:
        return self._run_operation(
            "watch_scan",
            lambda operation_id: self.watch_service.scan(operation_id=operation_id),
            requires_storage=True,
        )

    def run_watch(self, poll_seconds: float = 1.0) -> dict:
        """Run the watch scheduler until interrupted."""
        if not self.watch_enabled:
            self.logger.warning("Watch service is disabled in configuration.")
            return {"enabled": False}
        self.storage.ensure_root()
        self.watch_scheduler.start()
        try:
            while not self.watch_scheduler.wait(poll_seconds):
                pass
        except KeyboardInterrupt:
            self.logger.info("Stopping watch service.")
        finally:
            self.watch_scheduler.stop()
        return self.watch_status()

    def set_pattern(self, pattern: str) -> dict:
        self.db_manager.set_pattern(pattern)
        self.logger.info("Filename pattern updated: %s", pattern)
        return {"pattern": self.db_manager.get_pattern()}

    def show_pattern(self) -> dict:
        return {"pattern": self.db_manager.get_pattern(), "default_pattern": self.default_pattern}

    def watch_status(self) -> dict:
        status = self.watch_service.status().as_dict()
        status["enabled"] = self.watch_enabled
        status["watch_folder"] = str(self.watch_service.watch_folder)
        status["processed_files"] = self.watch_service.count_processed_files()
        return status

    def clear_processed(self) -> dict:
        return {"removed_files": self.watch_service.clear_processed()}

    def _run_operation(
        self,
        operation_type: str,
        action: Callable[[str], Any],
        requires_storage: bool = False,
    ) -> dict:
        operation_id = self.db_manager.start_operation(operation_type)
        self.logger.info("Starting %s operation %s", operation_type, operation_id)
        started = time.monotonic()
        try:
            if requires_storage:
                self.storage.ensure_root()
            result = action(operation_id)
        except Exception:
            self.db_manager.complete_operation(operation_id, status="failed")
            self.logger.exception("%s operation %s failed.", operation_type, operation_id)
            raise
        summary = _summarize(result)
        self.db_manager.complete_operation(
            operation_id, status="completed", details=json.dumps(summary, default=str)
        )
        self.performance_logger.info(
            "%s operation %s finished in %.2fs", operation_type, operation_id, time.monotonic() - started
        )
        summary["operation_id"] = operation_id
        return summary

    def _build_db_paths(self) -> dict[str, Path]:
        """Resolve database file paths from configuration."""
        return {
            "metadata": self.config.resolve_path("databases", "metadata", default="data/receipt_vault.sqlite"),
            "state": self.config.resolve_path("databases", "state", default="data/state.sqlite"),
        }

    def _ensure_paths(self) -> None:
        """Create required directories for logs and staging paths."""
        ensure_directories(
            [
                self.config.resolve_path("paths", "logs", default="logs"),
                self.config.resolve_path("paths", "upload_staging", default="data/uploads"),
            ]
        )


def _summarize(result: Any) -> dict:
    if is_dataclass(result):
        return asdict(result)
    if isinstance(result, dict):
        return dict(result)
    return {"result": result}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Receipt storage and naming engine.")
    parser.add_argument("--config", default=None, help="Optional config path override")
    subparsers = parser.add_subparsers(dest="command", required=True)

    rename = subparsers.add_parser("rename-all", help="Rename every stored file with the current pattern")
    rename.add_argument("--pattern", default=None, help="Pattern to use instead of the stored one")
    subparsers.add_parser("migrate-legacy-layout", help="Move files out of per-record-id directories and rename them")
    subparsers.add_parser("recover-associations", help="Re-link orphaned files to their records")
    for name, help_text in (
        ("optimize-batch", "Optimize files that are not optimized yet"),
        ("reoptimize-batch", "Reset and optimize every stored image"),
    ):
        batch = subparsers.add_parser(name, help=help_text)
        batch.add_argument("--batch-size", type=int, default=None, help="Files per chunk")
        batch.add_argument("--max-concurrent", type=int, default=None, help="Worker threads per chunk")
    subparsers.add_parser("trigger-scan", help="Scan the watch folder once")
    subparsers.add_parser("watch", help="Run the watch folder scheduler until interrupted")
    set_pattern = subparsers.add_parser("set-pattern", help="Validate and store a filename pattern")
    set_pattern.add_argument("pattern", help="Pattern such as {date}_{vendor}_{amount}")
    subparsers.add_parser("show-pattern", help="Print the active filename pattern")
    subparsers.add_parser("watch-status", help="Print the watch service state")
    subparsers.add_parser("clear-processed", help="Delete files in the watch processed folder")
    return parser


def dispatch(orchestrator: Orchestrator, args: argparse.Namespace) -> dict:
    command = args.command
    if command == "rename-all":
        return orchestrator.rename_all(pattern=args.pattern)
    if command == "migrate-legacy-layout":
        return orchestrator.migrate_legacy_layout()
    if command == "recover-associations":
        return orchestrator.recover_associations()
    if command == "optimize-batch":
        return orchestrator.optimize_batch(batch_size=args.batch_size, max_concurrent=args.max_concurrent)
    if command == "reoptimize-batch":
        return orchestrator.reoptimize_batch(batch_size=args.batch_size, max_concurrent=args.max_concurrent)
    if command == "trigger-scan":
        return orchestrator.trigger_scan()
    if command == "watch":
        return orchestrator.run_watch()
    if command == "set-pattern":
        return orchestrator.set_pattern(args.pattern)
    if command == "show-pattern":
        return orchestrator.show_pattern()
    if command == "watch-status":
        return orchestrator.watch_status()
    if command == "clear-processed":
        return orchestrator.clear_processed()
    raise ValueError(f"Unknown command: {command}")


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.load(Path(args.config) if args.config else None)

    try:
        orchestrator = Orchestrator(config)
    except PatternValidationError as exc:
        print(f"ERROR: invalid naming.default_pattern: {exc}", file=sys.stderr)
        return 2
    try:
        summary = dispatch(orchestrator, args)
    except PatternValidationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 2
    except StorageRootError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1
    finally:
        orchestrator.close()
    print(json.dumps(summary, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
