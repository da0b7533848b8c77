"""Named datasets and their ``meta.json`` sidecar.

A dataset is a directory of images under the catalog root. Its optional
sidecar remembers what the user told us (known info) and what context
detection found, so later runs can reuse both.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from bioblueprint.models import (
    ContentDomain,
    ContentFormat,
    ContextDetectionResult,
    KnownInfo,
    MetaFile,
    SourceType,
)
from bioblueprint.preprocess import list_images
from bioblueprint.tasks import NotFoundError

logger = logging.getLogger(__name__)

META_FILENAME = "meta.json"


class DatasetNotFoundError(NotFoundError):
    """Raised when a dataset name is unknown to the catalog."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Dataset not found: {name}")
        self.name = name


class MetaFileError(Exception):
    """Raised when a sidecar file exists but cannot be parsed."""

    pass


# =============================================================================
# Sidecar
# =============================================================================


def meta_path(dataset_dir: Path) -> Path:
    return Path(dataset_dir) / META_FILENAME


def read_meta(dataset_dir: Path) -> MetaFile:
    """Load the sidecar, or an empty record when there is none.

    Raises:
        MetaFileError: If the file exists but is not a valid sidecar.
    """
    path = meta_path(dataset_dir)
    if not path.exists():
        return MetaFile()

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return MetaFile.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise MetaFileError(f"Invalid sidecar {path}: {e}")


def write_meta(dataset_dir: Path, meta: MetaFile) -> None:
    path = meta_path(dataset_dir)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(meta.to_wire(), f, indent=2, ensure_ascii=False)
    logger.debug(f"Wrote sidecar {path}")


def update_meta_context(dataset_dir: Path, context: ContextDetectionResult) -> MetaFile:
    """Replace the stored context and save."""
    meta = read_meta(dataset_dir).model_copy(update={"context": context})
    write_meta(dataset_dir, meta)
    return meta


def update_meta_known(dataset_dir: Path, known: KnownInfo) -> MetaFile:
    """Merge known info into the stored known info and save.

    Populated fields of ``known`` overwrite stored ones; everything else is
    kept.
    """
    meta = read_meta(dataset_dir)
    merged = dict(meta.known.populated()) if meta.known else {}
    merged.update(known.populated())

    meta = meta.model_copy(update={"known": KnownInfo.model_validate(merged)})
    write_meta(dataset_dir, meta)
    return meta


def context_summary_line(meta: MetaFile) -> str:
    """One-line description of the stored context, skipping unknown axes."""
    if meta.context is None:
        return "No context detected"

    summary = meta.context.summary
    parts = []
    if summary.dominant_source_type != SourceType.UNKNOWN:
        parts.append(f"Source: {summary.dominant_source_type.value}")
    if summary.dominant_domain != ContentDomain.UNKNOWN:
        parts.append(f"Domain: {summary.dominant_domain.value}")
    if summary.dominant_format != ContentFormat.UNKNOWN:
        parts.append(f"Format: {summary.dominant_format.value}")
    if summary.detected_apps:
        parts.append(f"Apps: {', '.join(summary.detected_apps)}")
    if summary.detected_usernames:
        parts.append(f"Users: {', '.join(summary.detected_usernames)}")

    return " | ".join(parts)


# =============================================================================
# Catalog
# =============================================================================


@dataclass(frozen=True)
class Dataset:
    """A named directory of images."""

    name: str
    path: Path
    image_count: int
    has_meta: bool

    def image_paths(self) -> list[Path]:
        return list_images(self.path)

    def read_meta(self) -> MetaFile:
        return read_meta(self.path)


class DatasetCatalog:
    """Lists the datasets under a root directory.

    Attributes:
        root: Directory whose subdirectories are datasets.
    """

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def _load(self, path: Path) -> Dataset:
        return Dataset(
            name=path.name,
            path=path,
            image_count=len(list_images(path)),
            has_meta=meta_path(path).exists(),
        )

    def list(self) -> list[Dataset]:
        """Datasets holding at least one image, sorted by name."""
        if not self.root.is_dir():
            logger.debug(f"Dataset root does not exist: {self.root}")
            return []

        datasets = []
        for path in sorted(p for p in self.root.iterdir() if p.is_dir()):
            dataset = self._load(path)
            if dataset.image_count > 0:
                datasets.append(dataset)
        return datasets

    def get(self, name: str) -> Dataset:
        """Look up a dataset by name.

        Raises:
            DatasetNotFoundError: If no such dataset directory exists.
        """
        path = self.root / name
        if name in ("", ".", "..") or Path(name).name != name or not path.is_dir():
            raise DatasetNotFoundError(name)
        return self._load(path)
