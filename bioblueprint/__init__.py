"""BioBlueprint - Build an evidence-backed profile document from personal images.

Images go through context classification, a quick scan, deep analysis and
synthesis. Low-confidence inferences are pruned before synthesis and
user-declared facts always win over inferred ones.

Quick Start:
    >>> from bioblueprint import JobOrchestrator, preprocess_directory
    >>> images = preprocess_directory(Path("./datasets/alice"))
    >>> result = JobOrchestrator().run(images)
    >>> print(result.blueprint["character_name"])

CLI Usage:
    $ bioblueprint config set-key
    $ bioblueprint datasets
    $ bioblueprint run alice --interactive
"""

__version__ = "0.1.0"

from bioblueprint.analysis import apply_known_info, filter_by_confidence
from bioblueprint.models import (
    AnalysisResult,
    ContextDetectionResult,
    EvidenceImage,
    KnownInfo,
    MetaFile,
    ScanResult,
    Task,
    TaskStatus,
)
from bioblueprint.pipeline import JobOrchestrator, analyze_with_all_phases
from bioblueprint.preprocess import PreprocessError, normalize_image, preprocess_directory
from bioblueprint.tasks import NotFoundError, TaskNotFoundError, TaskRegistry

__all__ = [
    # Version
    "__version__",
    # Models
    "AnalysisResult",
    "ContextDetectionResult",
    "EvidenceImage",
    "KnownInfo",
    "MetaFile",
    "ScanResult",
    "Task",
    "TaskStatus",
    # Pipeline
    "JobOrchestrator",
    "analyze_with_all_phases",
    "filter_by_confidence",
    "apply_known_info",
    # Preprocessing
    "PreprocessError",
    "normalize_image",
    "preprocess_directory",
    # Tasks
    "TaskRegistry",
    "NotFoundError",
    "TaskNotFoundError",
]
