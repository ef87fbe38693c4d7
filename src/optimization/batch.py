"""
Batch optimization of stored receipt images with bounded concurrency.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from config import AppConfig
from database import DatabaseManager, Record, StoredFile
from naming import PathResolver
from utils import ResourceMonitor

from .engine import ImageOptimizationError, ImageOptimizer, OptimizationOutcome, OptimizationResult


@dataclass
class OptimizationBatchStats:
    """Summary of an optimization pass."""

    total: int = 0
    optimized: int = 0
    skipped: int = 0
    bytes_saved: int = 0
    errors: list[dict] = field(default_factory=list)


@dataclass(frozen=True)
class OptimizationJobResult:
    """Outcome of one worker task."""

    stored_file: StoredFile
    source: Optional[Path]
    skip_reason: Optional[str] = None
    result: Optional[OptimizationResult] = None
    error_message: Optional[str] = None


class OptimizationBatchRunner:
    """Optimize pending or all stored images in chunks on a thread pool."""

    def __init__(
        self,
        config: AppConfig,
        db_manager: DatabaseManager,
        resolver: PathResolver,
        optimizer: ImageOptimizer,
        logger: Optional[logging.Logger] = None,
        movement_logger: Optional[logging.Logger] = None,
        performance_logger: Optional[logging.Logger] = None,
        monitor: Optional[ResourceMonitor] = None,
    ) -> None:
        self.config = config
        self.db_manager = db_manager
        self.resolver = resolver
        self.optimizer = optimizer
        self.logger = logger or logging.getLogger("receipt_vault")
        self.movement_logger = movement_logger or logging.getLogger("receipt_vault.movement")
        self.performance_logger = performance_logger or logging.getLogger("receipt_vault.performance")
        self.monitor = monitor
        self.batch_size = config.get_int("optimization", "batch_size", default=10, minimum=1)
        self.max_concurrent = config.get_int("optimization", "max_concurrent", default=3, minimum=1)

    def optimize_pending(
        self,
        batch_size: Optional[int] = None,
        max_concurrent: Optional[int] = None,
        operation_id: Optional[str] = None,
    ) -> OptimizationBatchStats:
        """Optimize every file whose optimization flag is unset."""
        return self._run(self.db_manager.list_unoptimized_files(), batch_size, max_concurrent, operation_id)

    def reoptimize_all(
        self,
        batch_size: Optional[int] = None,
        max_concurrent: Optional[int] = None,
        operation_id: Optional[str] = None,
    ) -> OptimizationBatchStats:
        """Reset the flag on every stored image and optimize them again."""
        files = []
        for stored_file in self.db_manager.list_all_files():
            if not self.optimizer.is_image(Path(stored_file.filename)):
                continue
            self.db_manager.reset_optimized(stored_file.id)
            files.append(stored_file)
        return self._run(files, batch_size, max_concurrent, operation_id)

    def _run(
        self,
        files: list[StoredFile],
        batch_size: Optional[int],
        max_concurrent: Optional[int],
        operation_id: Optional[str],
    ) -> OptimizationBatchStats:
        batch_size = max(int(batch_size or self.batch_size), 1)
        max_concurrent = max(int(max_concurrent or self.max_concurrent), 1)
        stats = OptimizationBatchStats(total=len(files))
        records: dict[int, Optional[Record]] = {}
        chunks = [files[start : start + batch_size] for start in range(0, len(files), batch_size)]

        for number, chunk in enumerate(chunks, start=1):
            if self.monitor is not None:
                self.monitor.throttle()
            started = time.monotonic()
            jobs = [(stored_file, self._source_for(stored_file, records)) for stored_file in chunk]
            with ThreadPoolExecutor(max_workers=max_concurrent) as executor:
                pending = [executor.submit(self._process_file, stored_file, source) for stored_file, source in jobs]
                for result in self._drain_futures(pending):
                    self._handle_result(result, stats, operation_id)
            self.performance_logger.info(
                "Optimization chunk %s/%s: files=%s elapsed=%.2fs",
                number,
                len(chunks),
                len(chunk),
                time.monotonic() - started,
            )

        self.logger.info(
            "Optimization pass completed. Total=%s Optimized=%s Skipped=%s Errors=%s Saved=%s bytes",
            stats.total,
            stats.optimized,
            stats.skipped,
            len(stats.errors),
            stats.bytes_saved,
        )
        return stats

    def _source_for(self, stored_file: StoredFile, records: dict[int, Optional[Record]]) -> Optional[Path]:
        if stored_file.record_id not in records:
            records[stored_file.record_id] = self.db_manager.get_record(stored_file.record_id)
        record = records[stored_file.record_id]
        if record is None:
            return None
        candidate = self.resolver.path_for(record, stored_file)
        if candidate.is_file():
            return candidate
        legacy = self.resolver.legacy_directory_for(record.id) / stored_file.filename
        return legacy if legacy.is_file() else candidate

    def _drain_futures(self, pending: list) -> Iterable[OptimizationJobResult]:
        for future in as_completed(pending):
            yield future.result()

    def _process_file(self, stored_file: StoredFile, source: Optional[Path]) -> OptimizationJobResult:
        if source is None:
            return OptimizationJobResult(stored_file, None, error_message="record_not_found")
        if not self.optimizer.is_image(source):
            return OptimizationJobResult(stored_file, source, skip_reason="not_image")
        if not source.is_file():
            return OptimizationJobResult(stored_file, source, skip_reason="source_missing")
        output = self.optimizer.output_path_for(source)
        if output != source and output.exists():
            return OptimizationJobResult(stored_file, source, error_message=f"Output already exists: {output}")
        try:
            result = self.optimizer.optimize(source, output)
        except (ImageOptimizationError, OSError) as exc:
            return OptimizationJobResult(stored_file, source, error_message=str(exc))
        if result.outcome is OptimizationOutcome.OPTIMIZED and result.output != source:
            source.unlink()
        return OptimizationJobResult(stored_file, source, result=result)

    def _handle_result(
        self,
        job: OptimizationJobResult,
        stats: OptimizationBatchStats,
        operation_id: Optional[str],
    ) -> None:
        stored_file = job.stored_file
        if job.error_message is not None:
            stats.errors.append(
                {"file_id": stored_file.id, "filename": stored_file.filename, "error": job.error_message}
            )
            self.logger.error("Optimization failed for file %s (%s): %s", stored_file.id, stored_file.filename, job.error_message)
            return
        if job.skip_reason is not None or job.result.outcome is OptimizationOutcome.SKIPPED:
            stats.skipped += 1
            self.db_manager.mark_optimized(stored_file.id)
            reason = job.skip_reason or job.result.reason
            self.movement_logger.info("Optimization skipped for %s: %s", stored_file.filename, reason)
            return

        result = job.result
        new_filename = result.output.name
        if new_filename != stored_file.filename:
            self.db_manager.set_filename(stored_file.id, new_filename)
        self.db_manager.mark_optimized(stored_file.id)
        stats.optimized += 1
        stats.bytes_saved += result.bytes_saved
        self.db_manager.record_file_operation(
            operation_id,
            action="optimize",
            source_path=str(job.source),
            destination_path=str(result.output),
            status="completed",
            size=result.optimized_size,
        )
        self.movement_logger.info(
            "Optimized: %s -> %s (%s -> %s bytes)",
            job.source,
            result.output,
            result.original_size,
            result.optimized_size,
        )
