"""One ingest run: traversal wired to the file pipeline.

This module provides:
- IngestRunner: Walks the input root once and processes every matching file

With one worker every file runs to completion before the walk continues.
With more workers files are handed to a thread pool; each file is still
processed start to finish by a single thread, and a directory is only
pruned once every file discovered directly in it has reached a terminal
stage (its subdirectories were already drained at their own markers).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from cryptdrop.core.config import PipelineConfig
from cryptdrop.core.types import Stage
from cryptdrop.ingest.pipeline import FilePipeline
from cryptdrop.ingest.traversal import TraversalDriver
from cryptdrop.ingest.types import FileTask, RunReport

logger = logging.getLogger(__name__)


class IngestRunner:
    """Runs one full traversal of the input root.

    Usage:
        runner = IngestRunner(config, pipeline)
        report = runner.run()
    """

    def __init__(
        self,
        config: PipelineConfig,
        pipeline: FilePipeline,
        driver: TraversalDriver | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            config: Pipeline configuration.
            pipeline: Pipeline processing each matching file.
            driver: Traversal driver (built from config if omitted).
        """
        self._config = config
        self._pipeline = pipeline
        self._driver = driver or TraversalDriver(config.input_path, config.extensions)

    def run(self) -> RunReport:
        """Walk the input root once.

        Returns:
            Report of the run.

        Raises:
            ConfigError: If the input root or a work area is unusable.
        """
        self._pipeline.prepare()
        report = RunReport()

        if self._config.workers == 1:
            self._driver.run(
                on_file=lambda path: self._record(report, self._process(path)),
                report=report,
            )
        else:
            self._run_pooled(report)

        logger.info(f"Run finished: {report.summary()}")
        for task in report.failed:
            logger.warning(
                f"Left at {task.failed_at.value if task.failed_at else '?'}: "
                f"{task.source_path} ({task.error})"
            )
        return report

    def _run_pooled(self, report: RunReport) -> None:
        """Process files on a thread pool, draining each directory before pruning."""
        pending: defaultdict[Path, list[Future[FileTask]]] = defaultdict(list)

        with ThreadPoolExecutor(
            max_workers=self._config.workers,
            thread_name_prefix="cryptdrop-worker",
        ) as executor:

            def on_file(path: Path) -> None:
                pending[path.parent].append(executor.submit(self._process, path))

            def before_prune(directory: Path) -> None:
                # Results are collected on the walking thread only
                for future in pending.pop(directory, []):
                    self._record(report, future.result())

            self._driver.run(on_file=on_file, before_prune=before_prune, report=report)

    def _process(self, path: Path) -> FileTask:
        """Run the pipeline for one file, turning unexpected errors into a failed task."""
        try:
            return self._pipeline.process(path)
        except Exception as e:
            logger.exception(f"Unexpected error processing {path}")
            task = FileTask.for_source(path, self._config)
            task.fail(e)
            return task

    def _record(self, report: RunReport, task: FileTask) -> None:
        if task.stage is Stage.PURGED:
            report.purged += 1
        else:
            report.failed.append(task)
