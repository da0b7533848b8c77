"""Job orchestrator: runs the analysis phases for one batch of images.

The run is linear and aborts on the first failing phase:

    context (optional) -> scan -> analyze -> filter -> synthesize -> merge

Each phase is a single inference round covering the whole batch, so
cross-image correlation happens inside that round.

Example:
    >>> orchestrator = JobOrchestrator()
    >>> result = orchestrator.run(images, known=KnownInfo(gender="female"))
    >>> result.blueprint["character_name"]
    'austin_climbing_engineer'
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable

from bioblueprint.ai.analyzer import DeepAnalyzer
from bioblueprint.ai.client import AIClientError, GeminiClient, InferenceProvider
from bioblueprint.ai.context_detector import ContextDetector
from bioblueprint.ai.scanner import EvidenceScanner
from bioblueprint.ai.synthesizer import Synthesizer
from bioblueprint.analysis.confidence import filter_by_confidence, focus_topics
from bioblueprint.analysis.known_info import apply_known_info
from bioblueprint.config import AppConfig
from bioblueprint.models import (
    AnalysisResult,
    ContextDetectionResult,
    EvidenceImage,
    KnownInfo,
    MetaFile,
)
from bioblueprint.utils.logging import LogContext

logger = logging.getLogger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class AnalysisError(Exception):
    """Base exception for orchestration errors."""

    pass


class InsufficientDataError(AnalysisError):
    """Raised when the batch holds no images."""

    pass


class AINotAvailableError(AnalysisError):
    """Raised when no inference provider can be created."""

    pass


# =============================================================================
# Orchestrator
# =============================================================================


class PipelineStage(str, Enum):
    """Progress of one run. Stages only ever move forward."""

    NOT_STARTED = "not_started"
    CONTEXT_DETECTED = "context_detected"
    SCANNED = "scanned"
    ANALYZED = "analyzed"
    FILTERED = "filtered"
    SYNTHESIZED = "synthesized"
    MERGED = "merged"
    DONE = "done"


class JobOrchestrator:
    """Sequences the analysis phases for one batch.

    An orchestrator holds no per-run state apart from ``stage``; use one
    instance per run when running concurrently.

    Attributes:
        provider: Inference provider shared by all phases.
        config: Application configuration.
        stage: Last stage reached by the current run.
    """

    def __init__(
        self,
        provider: InferenceProvider | None = None,
        config: AppConfig | None = None,
        log: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            provider: Inference provider. A Gemini client is created if None.
            config: Application configuration. Uses defaults if None.
            log: Logger for run progress. Uses the module logger if None.

        Raises:
            AINotAvailableError: If no provider was given and the Gemini
                client cannot be created.
        """
        self.config = config or AppConfig()
        self.log = log or logger
        self.stage = PipelineStage.NOT_STARTED

        if provider is None:
            try:
                provider = GeminiClient(settings=self.config.ai)
            except AIClientError as e:
                logger.error(f"Failed to initialize AI client: {e}")
                raise AINotAvailableError(f"AI service unavailable: {e}")
        self.provider = provider

        phase_args = {
            "provider": self.provider,
            "settings": self.config.ai,
            "raw_response_dir": self.config.pipeline.raw_response_dir,
            "logger": self.log,
        }
        self.context_detector = ContextDetector(**phase_args)
        self.scanner = EvidenceScanner(**phase_args)
        self.analyzer = DeepAnalyzer(**phase_args)
        self.synthesizer = Synthesizer(**phase_args)

    def run(
        self,
        images: list[EvidenceImage],
        skip_context: bool = False,
        known: KnownInfo | None = None,
        context: ContextDetectionResult | None = None,
        meta: MetaFile | None = None,
        progress_callback: Callable[[str, float], None] | None = None,
    ) -> AnalysisResult:
        """Run every phase over the batch.

        Args:
            images: Evidence batch, at least one image.
            skip_context: Skip context detection entirely.
            known: User-declared facts merged into the final blueprint.
            context: Previously detected context. Detection is skipped and
                this context is used for synthesis.
            meta: Sidecar record echoed back in the result.
            progress_callback: Called with (stage_name, percent_complete).

        Returns:
            The blueprint, the context used and the echoed sidecar.

        Raises:
            InsufficientDataError: If ``images`` is empty.
            ResponseError: If any inference phase fails. The run is aborted.
        """
        self.stage = PipelineStage.NOT_STARTED
        thresholds = self.config.pipeline

        def report_progress(stage: str, percent: float) -> None:
            if progress_callback:
                progress_callback(stage, percent)

        if not images:
            raise InsufficientDataError("Need at least 1 image for analysis, got 0")

        self.log.info(f"Starting analysis of {len(images)} images")

        # Phase 0: context
        if context is not None and not skip_context:
            self.log.info("Using previously detected context")
            self._advance(PipelineStage.CONTEXT_DETECTED)
        elif not skip_context:
            report_progress("Detecting Context", 0.0)
            with LogContext("Phase 0: Context Detection", logger=self.log):
                context = self.context_detector.run(images)
            self._log_context(context)
            self._advance(PipelineStage.CONTEXT_DETECTED)
        else:
            context = None

        # Phase 1: scan
        report_progress("Scanning", 15.0)
        with LogContext("Phase 1: Quick Scan", logger=self.log):
            scan = self.scanner.run(images)
        self._advance(PipelineStage.SCANNED)

        references = scan.summary.cross_references
        focus = focus_topics(references, thresholds.focus_topic_threshold)
        self.log.info(
            f"Scan found {len(references)} cross-references, "
            f"{len(scan.summary.high_priority_images)} high-priority images, "
            f"focus topics: {', '.join(focus) or 'none'}"
        )

        # Phase 2: analysis
        report_progress("Deep Analysis", 40.0)
        with LogContext("Phase 2: Deep Analysis", logger=self.log):
            tree = self.analyzer.run(images, scan, focus)
        self._advance(PipelineStage.ANALYZED)

        filtered = self.filter_tree(tree, thresholds.synthesis_confidence_threshold)
        self._advance(PipelineStage.FILTERED)
        self.log.info(
            f"Kept {len(filtered)} of {len(tree)} sections at confidence "
            f">= {thresholds.synthesis_confidence_threshold}"
        )

        # Phase 3: synthesis
        report_progress("Synthesizing", 70.0)
        with LogContext("Phase 3: Synthesis", logger=self.log):
            blueprint = self.synthesizer.run(
                filtered,
                known=known,
                context=context.summary if context else None,
            )
        self._advance(PipelineStage.SYNTHESIZED)

        report_progress("Merging Known Info", 95.0)
        if known is not None and not known.is_empty:
            apply_known_info(blueprint, known)
            self.log.info(f"Applied known info: {', '.join(known.populated())}")
        self._advance(PipelineStage.MERGED)

        self._advance(PipelineStage.DONE)
        report_progress("Complete", 100.0)
        self.log.info(f"Analysis complete: {blueprint.get('character_name')}")

        return AnalysisResult(blueprint=blueprint, context=context, meta=meta)

    def filter_tree(self, tree: dict[str, Any], threshold: float | None = None) -> dict[str, Any]:
        """Prune an analysis tree with the configured generic threshold.

        ``run`` calls this with the stricter synthesis threshold. Other callers
        get ``pipeline.default_confidence_threshold`` unless they pass one.
        """
        if threshold is None:
            threshold = self.config.pipeline.default_confidence_threshold
        return filter_by_confidence(tree, threshold)

    def _advance(self, stage: PipelineStage) -> None:
        self.stage = stage
        self.log.debug(f"Stage: {stage.value}")

    def _log_context(self, context: ContextDetectionResult) -> None:
        summary = context.summary
        self.log.info(
            f"Context: source={summary.dominant_source_type.value}, "
            f"domain={summary.dominant_domain.value}, "
            f"format={summary.dominant_format.value}, "
            f"privacy={summary.overall_privacy_level.value}"
        )


def analyze_with_all_phases(
    images: list[EvidenceImage],
    provider: InferenceProvider | None = None,
    config: AppConfig | None = None,
    skip_context: bool = False,
    known: KnownInfo | None = None,
) -> AnalysisResult:
    """Run the full pipeline with a fresh orchestrator.

    Args:
        images: Evidence batch, at least one image.
        provider: Inference provider. A Gemini client is created if None.
        config: Application configuration.
        skip_context: Skip context detection.
        known: User-declared facts.

    Returns:
        The analysis result.
    """
    orchestrator = JobOrchestrator(provider=provider, config=config)
    return orchestrator.run(images, skip_context=skip_context, known=known)
