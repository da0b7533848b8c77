"""Central Pytest Fixtures for BioBlueprint.

This module provides reusable test data, a scripted inference provider and
temporary dataset directories across all test modules.

Fixtures included:
- Images: sample_images, gps_image, image_files, dataset_root
- Provider: fake_provider (canned JSON per phase), phase_responses
- Analysis: sample_tree, sample_blueprint
- Config: app_config (raw responses under tmp_path)
"""

from __future__ import annotations

import copy
import json
from datetime import datetime
from pathlib import Path
from typing import Any

import pytest
from PIL import Image

from bioblueprint.ai.client import ContentBlock, TextBlock
from bioblueprint.config import AppConfig, PipelineSettings
from bioblueprint.models import EvidenceImage, ExifData, GpsCoordinate

# =============================================================================
# Helper Functions
# =============================================================================


def create_test_image(
    path: Path,
    width: int = 100,
    height: int = 100,
    color: str = "red",
    exif_datetime: datetime | None = None,
    camera: tuple[str, str] | None = None,
) -> Path:
    """Helper to create a test image with optional EXIF metadata.

    Args:
        path: Where to save the image.
        width: Width in pixels.
        height: Height in pixels.
        color: Solid color for the image.
        exif_datetime: Datetime to embed in EXIF (DateTime).
        camera: (Make, Model) to embed in EXIF.

    Returns:
        Path to the created image.
    """
    img = Image.new("RGB", (width, height), color=color)

    if exif_datetime or camera:
        exif = img.getexif()
        # 306 is DateTime, 271 is Make, 272 is Model
        if exif_datetime:
            exif[306] = exif_datetime.strftime("%Y:%m:%d %H:%M:%S")
        if camera:
            exif[271], exif[272] = camera
        img.save(path, exif=exif)
    else:
        img.save(path)

    return path


def make_evidence(
    filename: str,
    capture_time: str | None = None,
    gps: tuple[float, float] | None = None,
    camera: str | None = None,
) -> EvidenceImage:
    """Build an EvidenceImage without touching the file system."""
    exif = None
    if capture_time or gps or camera:
        exif = ExifData(
            capture_time=capture_time,
            gps=GpsCoordinate(latitude=gps[0], longitude=gps[1]) if gps else None,
            camera=camera,
        )
    return EvidenceImage(
        filename=filename,
        base64="aGVsbG8=",
        size_kb=12.0,
        original_size_kb=48.0,
        exif=exif,
    )


def block_text(blocks: list[ContentBlock]) -> str:
    """Concatenate the text blocks of a request."""
    return "".join(b.text for b in blocks if isinstance(b, TextBlock))


# =============================================================================
# Canned Phase Responses
# =============================================================================


CONTEXT_RESPONSE: dict[str, Any] = {
    "images": [
        {
            "imageIndex": 0,
            "sourceType": {"value": "camera_photo", "confidence": 0.95},
            "contentDomain": {"value": "daily_life", "confidence": 0.8},
            "interactionMode": {"value": "unknown", "confidence": 0.3},
            "contentFormat": {"value": "single_image", "confidence": 0.9},
            "subjectRelation": {"value": "own_account", "confidence": 0.7},
            "visibleText": {"usernames": [], "otherText": ["CLIMB"]},
            "privacySensitivity": {"level": "medium", "flags": ["location_visible"]},
        },
        {
            "imageIndex": 1,
            "sourceType": {"value": "camera_photo", "confidence": 0.9},
            "contentDomain": {"value": "daily_life", "confidence": 0.8},
            "interactionMode": {"value": "unknown", "confidence": 0.3},
            "contentFormat": {"value": "single_image", "confidence": 0.9},
            "subjectRelation": {"value": "own_account", "confidence": 0.7},
            "privacySensitivity": {"level": "low", "flags": []},
        },
        {
            "imageIndex": 2,
            "sourceType": {"value": "app_screenshot", "confidence": 0.9},
            "contentDomain": {"value": "social_media", "confidence": 0.85},
            "interactionMode": {"value": "profile_viewing", "confidence": 0.8},
            "contentFormat": {"value": "grid_overview", "confidence": 0.9},
            "subjectRelation": {"value": "own_account", "confidence": 0.6},
            "detectedApp": {"name": "Instagram", "confidence": 0.9, "reasoning": "grid"},
            "visibleText": {"usernames": ["@climber"]},
            "privacySensitivity": {"level": "low", "flags": []},
        },
    ],
}

SCAN_RESPONSE: dict[str, Any] = {
    "scanResults": [
        {
            "imageIndex": 0,
            "tags": [
                {"tag": "climbing_gym", "confidence": 0.9, "category": "hobby"},
                {"tag": "mystery", "confidence": 0.5, "category": "not_a_category"},
            ],
            "textDetected": [{"text": "Plano, TX", "type": "location_tag", "confidence": 1.0}],
            "peopleCount": 1,
            "hasLocation": True,
            "locationTag": "Plano, TX",
            "priority": "high",
        },
        {
            "imageIndex": 1,
            "tags": [{"tag": "bouldering", "confidence": 0.8, "category": "hobby"}],
            "priority": "medium",
        },
        {
            "imageIndex": 2,
            "tags": [{"tag": "latte", "confidence": 0.7, "category": "food"}],
            "priority": "low",
        },
    ],
    "summary": {
        "crossReferences": [
            {"topic": "climbing", "images": [0, 1], "confidence": 0.9, "evidence": ["gym"]},
            {"topic": "coffee", "images": [2], "confidence": 0.9, "evidence": ["latte"]},
        ],
    },
}

ANALYSIS_RESPONSE: dict[str, Any] = {
    "corePersonality": {
        "gender": {"value": "male", "confidence": 0.9, "evidence": ["img_0: selfie"]},
        "mbti": {"value": "INTJ", "confidence": 0.5, "evidence": ["img_2: caption"]},
    },
    "expressionEngine": {
        "hobbies": [
            {"value": "climbing", "confidence": 0.9, "evidence": ["img_0", "img_1"]},
            {"value": "knitting", "confidence": 0.75, "evidence": ["img_2"]},
        ],
    },
    "goal": {"shortTerm": {"value": "run a marathon", "confidence": 0.4, "evidence": []}},
}

SYNTHESIS_RESPONSE: dict[str, Any] = {
    "id": "model-made-id",
    "character_name": "Plano Climbing Engineer",
    "profile": {
        "identity_card": {
            "gender": "male",
            "location": "Plano, TX",
            "occupation": "Software Engineer",
            "interests": ["rock climbing"],
            "bio": "Weekend climber.",
        }
    },
    "blueprint": {
        "core_personality": {"summary": {"value": "Focused", "confidence": 0.9}},
        "expression_engine": {"hobbies": "Climbing most weekends."},
    },
}


class FakeProvider:
    """Inference provider that answers each call from a scripted list.

    Entries are strings (returned verbatim) or dicts (returned as JSON).
    Every call is recorded as (system_instruction, blocks, max_output_tokens).
    """

    def __init__(self, responses: list[Any]) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, list[ContentBlock], int]] = []

    def infer(self, system_instruction: str, blocks: list[ContentBlock], max_output_tokens: int) -> str:
        self.calls.append((system_instruction, blocks, max_output_tokens))
        if not self.responses:
            raise AssertionError("FakeProvider ran out of scripted responses")
        response = self.responses.pop(0)
        if isinstance(response, dict):
            return "Here you go:\n```json\n" + json.dumps(response) + "\n```"
        return response


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def phase_responses() -> list[dict[str, Any]]:
    """Fresh copies of the four canned phase responses, in phase order."""
    return copy.deepcopy(
        [CONTEXT_RESPONSE, SCAN_RESPONSE, ANALYSIS_RESPONSE, SYNTHESIS_RESPONSE]
    )


@pytest.fixture
def fake_provider(phase_responses: list[dict[str, Any]]) -> FakeProvider:
    """Provider scripted for one full four-phase run."""
    return FakeProvider(phase_responses)


@pytest.fixture
def sample_images() -> list[EvidenceImage]:
    """Three images; the first carries GPS and a capture time."""
    return [
        make_evidence(
            "IMG_0001.jpg",
            capture_time="2024-06-01T10:00:00Z",
            gps=(33.0198, -96.6989),
            camera="Apple iPhone 15",
        ),
        make_evidence("IMG_0002.jpg"),
        make_evidence("screenshot.png"),
    ]


@pytest.fixture
def sample_tree() -> dict[str, Any]:
    """Deep-analysis tree with leaves on both sides of the usual thresholds."""
    return copy.deepcopy(ANALYSIS_RESPONSE)


@pytest.fixture
def sample_blueprint() -> dict[str, Any]:
    """Synthesized blueprint with an inferred identity card."""
    return {
        "id": "b6c1",
        "character_name": "plano_climbing_engineer",
        "profile": {
            "identity_card": {
                "gender": "male",
                "age": "25-30",
                "location": "Plano, TX",
                "occupation": "Software Engineer",
                "interests": ["climbing"],
                "bio": "Weekend climber.",
            }
        },
        "blueprint": {"core_personality": {"summary": "Focused"}},
    }


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Default configuration with raw responses and datasets under tmp_path."""
    return AppConfig(
        pipeline=PipelineSettings(raw_response_dir=tmp_path / "raw"),
        datasets_root=tmp_path / "datasets",
    )


@pytest.fixture
def image_files(tmp_path: Path) -> list[Path]:
    """Three small image files on disk, one with EXIF."""
    directory = tmp_path / "uploads"
    directory.mkdir()
    return [
        create_test_image(
            directory / "a.jpg",
            exif_datetime=datetime(2024, 6, 1, 10, 0, 0),
            camera=("Apple", "iPhone 15"),
        ),
        create_test_image(directory / "b.png", color="blue"),
        create_test_image(directory / "c.jpg", color="green"),
    ]


@pytest.fixture
def dataset_root(tmp_path: Path) -> Path:
    """Dataset root with 'alice' (2 images), 'empty' (none) and a stray file."""
    root = tmp_path / "datasets"
    alice = root / "alice"
    alice.mkdir(parents=True)
    create_test_image(alice / "01.jpg")
    create_test_image(alice / "02.png", color="blue")
    (alice / "notes.txt").write_text("not an image")
    (root / "empty").mkdir()
    (root / "README.md").write_text("datasets")
    return root
