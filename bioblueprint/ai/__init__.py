"""Inference client and the four single-round analysis phases."""

from bioblueprint.ai.analyzer import DeepAnalyzer
from bioblueprint.ai.client import (
    AIClientError,
    EmptyResponseError,
    GeminiClient,
    ImageBlock,
    InferenceProvider,
    ResponseError,
    ResponseFormatError,
    ResponseParseError,
    TextBlock,
    extract_json_object,
    generate_json,
)
from bioblueprint.ai.context_detector import ContextDetector
from bioblueprint.ai.scanner import EvidenceScanner
from bioblueprint.ai.synthesizer import Synthesizer

__all__ = [
    "AIClientError",
    "ResponseError",
    "EmptyResponseError",
    "ResponseFormatError",
    "ResponseParseError",
    "InferenceProvider",
    "GeminiClient",
    "TextBlock",
    "ImageBlock",
    "extract_json_object",
    "generate_json",
    "ContextDetector",
    "EvidenceScanner",
    "DeepAnalyzer",
    "Synthesizer",
]
