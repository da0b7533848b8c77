"""Job submission surface.

Submitting a batch creates a task and returns its id at once; the analysis
runs on a worker thread and reports its terminal state into the task
registry. Callers poll ``status``.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable

from bioblueprint.config import AppConfig
from bioblueprint.datasets import Dataset, DatasetCatalog, MetaFileError, update_meta_context
from bioblueprint.models import AnalysisResult, EvidenceImage, KnownInfo, TaskStatus
from bioblueprint.pipeline import InsufficientDataError, JobOrchestrator
from bioblueprint.preprocess import SUPPORTED_EXTENSIONS, PreprocessError, normalize_image
from bioblueprint.tasks import TaskRegistry

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[[logging.LoggerAdapter], JobOrchestrator]


class UploadValidationError(ValueError):
    """Raised when an upload batch violates the count, size or type limits."""

    pass


class TaskLogAdapter(logging.LoggerAdapter):
    """Prefixes every log line with the task id."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        return f"[{self.extra['task_id']}] {msg}", kwargs


class JobService:
    """Runs analysis jobs in the background and tracks them in a registry.

    Attributes:
        registry: Task registry shared with pollers.
        config: Application configuration.
        catalog: Dataset catalog for named runs.
    """

    def __init__(
        self,
        registry: TaskRegistry,
        orchestrator_factory: OrchestratorFactory | None = None,
        config: AppConfig | None = None,
        catalog: DatasetCatalog | None = None,
        max_workers: int | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            registry: Where task state is recorded.
            orchestrator_factory: Builds one orchestrator per job from a task
                logger. Defaults to a Gemini-backed orchestrator.
            config: Application configuration. Uses defaults if None.
            catalog: Dataset catalog. Built from ``config.datasets_root`` if None.
            max_workers: Concurrent jobs. Defaults to the configured value.
        """
        self.registry = registry
        self.config = config or AppConfig()
        self.catalog = catalog or DatasetCatalog(self.config.datasets_root)
        self._orchestrator_factory = orchestrator_factory or self._default_orchestrator
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or self.config.pipeline.max_workers,
            thread_name_prefix="bioblueprint-job",
        )
        self._futures: dict[str, Future] = {}

    def _default_orchestrator(self, log: logging.LoggerAdapter) -> JobOrchestrator:
        return JobOrchestrator(config=self.config, log=log)

    # =========================================================================
    # Submission
    # =========================================================================

    def validate_upload(self, paths: list[Path]) -> None:
        """Check batch size, per-file size and file type.

        Raises:
            UploadValidationError: On the first violated limit.
        """
        limits = self.config.pipeline

        if not paths:
            raise UploadValidationError("No images uploaded")
        if len(paths) > limits.max_images_per_job:
            raise UploadValidationError(
                f"Too many images: {len(paths)} (max {limits.max_images_per_job})"
            )

        for path in paths:
            path = Path(path)
            if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
                raise UploadValidationError(f"Unsupported file type: {path.name}")
            if not path.is_file():
                raise UploadValidationError(f"File not found: {path}")
            if path.stat().st_size > limits.max_image_bytes:
                raise UploadValidationError(
                    f"File too large: {path.name} "
                    f"(max {limits.max_image_bytes // (1024 * 1024)} MB)"
                )

    def submit_upload(
        self,
        paths: list[Path],
        known: KnownInfo | None = None,
        skip_context: bool = False,
    ) -> str:
        """Stage an uploaded batch and start analyzing it.

        Args:
            paths: Uploaded image files, in batch order.
            known: User-declared facts.
            skip_context: Skip context detection.

        Returns:
            The new task id.

        Raises:
            UploadValidationError: If the batch violates the upload limits.
        """
        self.validate_upload(paths)

        staging_dir = Path(tempfile.mkdtemp(prefix="bioblueprint-"))
        staged = []
        for index, path in enumerate(paths):
            path = Path(path)
            target = staging_dir / f"{index:03d}_{path.name}"
            shutil.copy2(path, target)
            staged.append(target)

        task_id = self._new_task()
        self._submit(
            task_id,
            self._run_upload,
            task_id,
            staged,
            staging_dir,
            known,
            skip_context,
        )
        return task_id

    def submit_dataset(
        self,
        name: str,
        known: KnownInfo | None = None,
        skip_context: bool = False,
    ) -> str:
        """Start analyzing a named dataset.

        Known info from the sidecar is used as a base; ``known`` overrides it
        field by field.

        Raises:
            DatasetNotFoundError: If the dataset does not exist.
        """
        dataset = self.catalog.get(name)
        task_id = self._new_task()
        self._submit(task_id, self._run_dataset, task_id, dataset, known, skip_context)
        return task_id

    def status(self, task_id: str) -> dict[str, Any]:
        """Public view of a task.

        Raises:
            TaskNotFoundError: If the id is unknown or expired.
        """
        return self.registry.require(task_id).public_view()

    def wait(self, task_id: str, timeout: float | None = None) -> None:
        """Block until the task's worker has finished."""
        future = self._futures.get(task_id)
        if future is not None:
            future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _new_task(self) -> str:
        task_id = str(uuid.uuid4())
        self.registry.create(task_id)
        return task_id

    def _submit(self, task_id: str, fn: Callable[..., None], *args: Any) -> None:
        future = self._executor.submit(fn, *args)
        self._futures[task_id] = future
        future.add_done_callback(lambda _: self._futures.pop(task_id, None))

    # =========================================================================
    # Workers
    # =========================================================================

    def _run_upload(
        self,
        task_id: str,
        paths: list[Path],
        staging_dir: Path,
        known: KnownInfo | None,
        skip_context: bool,
    ) -> None:
        log = TaskLogAdapter(logger, {"task_id": task_id})
        try:
            self._execute(task_id, log, paths, known=known, skip_context=skip_context)
        finally:
            try:
                shutil.rmtree(staging_dir)
                log.debug(f"Removed staging directory {staging_dir}")
            except OSError as e:
                log.warning(f"Failed to remove staging directory {staging_dir}: {e}")

    def _run_dataset(
        self,
        task_id: str,
        dataset: Dataset,
        known: KnownInfo | None,
        skip_context: bool,
    ) -> None:
        log = TaskLogAdapter(logger, {"task_id": task_id})
        try:
            meta = dataset.read_meta()
        except MetaFileError as e:
            log.error(f"Failed to read sidecar for {dataset.name}: {e}")
            self.registry.update(task_id, status=TaskStatus.FAILED, error=str(e))
            return

        merged = dict(meta.known.populated()) if meta.known else {}
        if known is not None:
            merged.update(known.populated())
        seeded = KnownInfo.model_validate(merged) if merged else None

        stored_context = meta.context if meta.has_context else None
        result = self._execute(
            task_id,
            log,
            dataset.image_paths(),
            known=seeded,
            skip_context=skip_context,
            context=stored_context,
            meta=meta,
        )

        if result is not None and result.context is not None and stored_context is None:
            try:
                update_meta_context(dataset.path, result.context)
            except OSError as e:
                log.warning(f"Failed to write context to sidecar: {e}")

    def _execute(
        self,
        task_id: str,
        log: logging.LoggerAdapter,
        paths: list[Path],
        **options: Any,
    ) -> AnalysisResult | None:
        """Preprocess and analyze, recording the outcome on the task.

        Returns:
            The AnalysisResult on success, None on failure.
        """
        self.registry.update(task_id, status=TaskStatus.PROCESSING)
        try:
            images = self._preprocess(log, paths)

            orchestrator = self._orchestrator_factory(log)
            result = orchestrator.run(images, **options)
        except Exception as e:
            log.error(f"Analysis failed: {e}")
            self.registry.update(
                task_id,
                status=TaskStatus.FAILED,
                error=str(e) or type(e).__name__,
            )
            return None

        self.registry.update(task_id, status=TaskStatus.COMPLETED, result=result.blueprint)
        log.info("Analysis completed")
        return result

    def _preprocess(self, log: logging.LoggerAdapter, paths: list[Path]) -> list[EvidenceImage]:
        """Normalize each file, skipping the ones that cannot be decoded.

        Raises:
            InsufficientDataError: If no file could be normalized.
        """
        images = []
        for path in paths:
            try:
                images.append(normalize_image(path, self.config.preprocess))
            except PreprocessError as e:
                log.warning(f"Skipping image: {e}")

        if not images:
            raise InsufficientDataError(
                f"None of the {len(paths)} images could be preprocessed"
            )

        log.info(f"Preprocessed {len(images)} of {len(paths)} images")
        return images
