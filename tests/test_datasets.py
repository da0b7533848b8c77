"""Tests for the dataset catalog and the meta.json sidecar."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from bioblueprint.datasets import (
    DatasetCatalog,
    DatasetNotFoundError,
    MetaFileError,
    context_summary_line,
    read_meta,
    update_meta_context,
    update_meta_known,
    write_meta,
)
from bioblueprint.models import (
    ContentDomain,
    ContextDetectionResult,
    ContextSummary,
    KnownInfo,
    MetaFile,
    SourceType,
)
from bioblueprint.tasks import NotFoundError

from conftest import CONTEXT_RESPONSE


class TestDatasetCatalog:
    """Tests for listing and looking up datasets."""

    def test_lists_only_image_directories(self, dataset_root: Path) -> None:
        """Test stray files and image-less directories are not datasets."""
        datasets = DatasetCatalog(dataset_root).list()

        assert [d.name for d in datasets] == ["alice"]
        assert datasets[0].image_count == 2
        assert datasets[0].has_meta is False

    def test_sorted_by_name(self, dataset_root: Path) -> None:
        """Test datasets are listed alphabetically."""
        for name in ("zoe", "bob"):
            (dataset_root / name).mkdir()
            (dataset_root / name / "x.jpg").write_bytes(b"\xff\xd8")

        assert [d.name for d in DatasetCatalog(dataset_root).list()] == ["alice", "bob", "zoe"]

    def test_missing_root(self, tmp_path: Path) -> None:
        """Test a missing root lists nothing."""
        assert DatasetCatalog(tmp_path / "nowhere").list() == []

    def test_get_existing(self, dataset_root: Path) -> None:
        """Test lookup returns the dataset with its image paths in name order."""
        dataset = DatasetCatalog(dataset_root).get("alice")

        assert [p.name for p in dataset.image_paths()] == ["01.jpg", "02.png"]

    @pytest.mark.parametrize("name", ["bob", "README.md", "", ".", "..", "../datasets", "a/b"])
    def test_get_unknown(self, dataset_root: Path, name: str) -> None:
        """Test unknown names, files and path tricks are all not found."""
        with pytest.raises(DatasetNotFoundError) as exc_info:
            DatasetCatalog(dataset_root).get(name)

        assert isinstance(exc_info.value, NotFoundError)


class TestSidecar:
    """Tests for reading and updating meta.json."""

    def test_missing_sidecar_is_empty(self, dataset_root: Path) -> None:
        """Test a dataset without a sidecar reads as an empty record."""
        meta = read_meta(dataset_root / "alice")

        assert meta == MetaFile()
        assert not meta.has_context

    def test_invalid_json(self, dataset_root: Path) -> None:
        """Test an unparseable sidecar raises MetaFileError."""
        (dataset_root / "alice" / "meta.json").write_text("{oops", encoding="utf-8")

        with pytest.raises(MetaFileError):
            read_meta(dataset_root / "alice")

    def test_wrong_shape(self, dataset_root: Path) -> None:
        """Test a sidecar of the wrong shape raises MetaFileError."""
        (dataset_root / "alice" / "meta.json").write_text('{"known": 5}', encoding="utf-8")

        with pytest.raises(MetaFileError):
            read_meta(dataset_root / "alice")

    def test_written_as_camel_case_json(self, dataset_root: Path) -> None:
        """Test the sidecar is plain camelCase JSON without empty fields."""
        update_meta_known(dataset_root / "alice", KnownInfo(age_range="25-35"))

        data = json.loads((dataset_root / "alice" / "meta.json").read_text(encoding="utf-8"))

        assert data == {"known": {"ageRange": "25-35"}}

    def test_known_merge_keeps_other_fields(self, dataset_root: Path) -> None:
        """Test merged known info keeps stored fields and the stored context."""
        path = dataset_root / "alice"
        context = ContextDetectionResult.model_validate(CONTEXT_RESPONSE)
        write_meta(path, MetaFile(known=KnownInfo(gender="male", name="Sam"), context=context))

        meta = update_meta_known(path, KnownInfo(gender="female", location=""))

        assert meta.known.populated() == {"gender": "female", "name": "Sam"}
        assert read_meta(path).has_context

    def test_context_update_keeps_known(self, dataset_root: Path) -> None:
        """Test replacing the context leaves the known info alone."""
        path = dataset_root / "alice"
        update_meta_known(path, KnownInfo(username="@sam"))

        update_meta_context(path, ContextDetectionResult.model_validate(CONTEXT_RESPONSE))
        meta = read_meta(path)

        assert meta.known.username == "@sam"
        assert len(meta.context.images) == 3
        assert DatasetCatalog(dataset_root).get("alice").has_meta


class TestContextSummaryLine:
    """Tests for the one-line context description."""

    def test_no_context(self) -> None:
        """Test a sidecar without context says so."""
        assert context_summary_line(MetaFile()) == "No context detected"

    def test_unknown_axes_skipped(self) -> None:
        """Test only known axes, apps and users are listed."""
        meta = MetaFile(
            context=ContextDetectionResult(
                summary=ContextSummary(
                    dominant_source_type=SourceType.APP_SCREENSHOT,
                    dominant_domain=ContentDomain.SOCIAL_MEDIA,
                    detected_apps=["Instagram"],
                    detected_usernames=["@sam", "@alex"],
                )
            )
        )

        assert context_summary_line(meta) == (
            "Source: app_screenshot | Domain: social_media | "
            "Apps: Instagram | Users: @sam, @alex"
        )
