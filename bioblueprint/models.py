"""Core data models for BioBlueprint.

This module defines the records that flow between the analysis phases: the
preprocessed evidence images, the context and scan results returned by the
inference provider, user-declared known info, the sidecar file and the task
record. All models use Pydantic v2 for validation and serialization.

Provider JSON uses camelCase keys, so every model carries a camelCase alias
generator and accepts both spellings. Serialize with ``by_alias=True`` to get
the wire format back.

The deep-analysis tree and the synthesized blueprint are deliberately left as
open JSON mappings: their second-level fields are chosen by the model at run
time, under the fixed section names in ``BLUEPRINT_SECTIONS``.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone
from enum import Enum
import math
from typing import Annotated, Any, Generic, TypeVar

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

T = TypeVar("T")

# Open JSON document shapes
AnalysisTree = dict[str, Any]
Blueprint = dict[str, Any]

# The seven top-level categories of the deep-analysis tree
BLUEPRINT_SECTIONS: tuple[str, ...] = (
    "corePersonality",
    "careerEngine",
    "expressionEngine",
    "aestheticEngine",
    "simulation",
    "backstory",
    "goal",
)


class WireModel(BaseModel):
    """Base model for records exchanged with the inference provider."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """Serialize to the camelCase JSON form, dropping unset optionals."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# =============================================================================
# Enums
# =============================================================================


class SourceType(str, Enum):
    """What kind of image this is."""

    APP_SCREENSHOT = "app_screenshot"
    CAMERA_PHOTO = "camera_photo"
    EDITED_PHOTO = "edited_photo"
    DOCUMENT_SCAN = "document_scan"
    SCREEN_RECORDING = "screen_recording"
    DOWNLOADED_IMAGE = "downloaded_image"
    UNKNOWN = "unknown"


class ContentDomain(str, Enum):
    """Which area of life the image relates to."""

    SOCIAL_MEDIA = "social_media"
    MESSAGING = "messaging"
    FINANCE = "finance"
    SHOPPING = "shopping"
    TRAVEL = "travel"
    HEALTH = "health"
    WORK = "work"
    ENTERTAINMENT = "entertainment"
    DAILY_LIFE = "daily_life"
    UNKNOWN = "unknown"


class InteractionMode(str, Enum):
    """What the user was doing when the image was captured."""

    CONTENT_BROWSING = "content_browsing"
    CONTENT_POSTING = "content_posting"
    PRIVATE_CHAT = "private_chat"
    GROUP_CHAT = "group_chat"
    TRANSACTION = "transaction"
    NOTIFICATION = "notification"
    PROFILE_VIEWING = "profile_viewing"
    SEARCH_RESULTS = "search_results"
    SETTINGS = "settings"
    UNKNOWN = "unknown"


class ContentFormat(str, Enum):
    """How content is laid out in the image."""

    SINGLE_IMAGE = "single_image"
    GRID_OVERVIEW = "grid_overview"
    FEED_LIST = "feed_list"
    CHAT_THREAD = "chat_thread"
    DETAIL_PAGE = "detail_page"
    FULL_SCREEN = "full_screen"
    UNKNOWN = "unknown"


class SubjectRelation(str, Enum):
    """Whose content the image shows."""

    OWN_ACCOUNT = "own_account"
    OTHER_PERSON = "other_person"
    PUBLIC_CONTENT = "public_content"
    RECEIVED_MESSAGE = "received_message"
    UNKNOWN = "unknown"


class PrivacyLevel(str, Enum):
    """Privacy sensitivity of an image, ordered low < medium < high."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIVACY_RANK[self]


_PRIVACY_RANK = {PrivacyLevel.LOW: 0, PrivacyLevel.MEDIUM: 1, PrivacyLevel.HIGH: 2}


class TagCategory(str, Enum):
    """The ten life domains a scan tag can belong to."""

    HOBBY = "hobby"
    FOOD = "food"
    TRAVEL = "travel"
    SOCIAL = "social"
    BACKSTORY = "backstory"
    LOCATION = "location"
    AESTHETIC = "aesthetic"
    PET = "pet"
    FAMILY = "family"
    WORK = "work"


class ScanPriority(str, Enum):
    """How much personal signal a scanned image carries."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class FieldSource(str, Enum):
    """Provenance of a blueprint field after the known-info merge."""

    USER_INPUT = "user_input"
    INFERRED = "inferred"
    DETECTED = "detected"


class TaskStatus(str, Enum):
    """Lifecycle states of an analysis task."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


def _coerce_enum(enum_cls: type[Enum], value: Any, default: Enum) -> Enum:
    """Map a provider string onto an enum, falling back to ``default``."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return default


def _read_confidence(value: Any) -> float:
    """Read a provider confidence. Missing or non-numeric values count as 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(number) else number


def _clamp_confidence(value: Any) -> float:
    return max(0.0, min(1.0, _read_confidence(value)))


# Clamped into [0, 1] on validation
Confidence = Annotated[float, BeforeValidator(_clamp_confidence)]

# Left unclamped for calibrate_confidence to bring into range
RawConfidence = Annotated[float, BeforeValidator(_read_confidence)]


# =============================================================================
# Evidence Images
# =============================================================================


class GpsCoordinate(WireModel):
    """A latitude/longitude pair in signed decimal degrees."""

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class ExifData(WireModel):
    """Capture metadata extracted from an image, all fields best-effort.

    Attributes:
        capture_time: ISO-8601 capture timestamp
        gps: Capture location
        camera: Camera make and model
        orientation: EXIF orientation tag
    """

    capture_time: str | None = None
    gps: GpsCoordinate | None = None
    camera: str | None = None
    orientation: int | None = None

    @property
    def is_empty(self) -> bool:
        return not any((self.capture_time, self.gps, self.camera, self.orientation))

    @property
    def capture_date(self) -> str | None:
        """Date portion (YYYY-MM-DD) of the capture time."""
        if not self.capture_time:
            return None
        return self.capture_time.split("T")[0]

    def capture_datetime(self) -> datetime | None:
        """Parse the capture time, assuming UTC for naive timestamps."""
        if not self.capture_time:
            return None
        try:
            parsed = datetime.fromisoformat(self.capture_time.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed


class EvidenceImage(WireModel):
    """One normalized input image.

    Produced by preprocessing and immutable afterwards.

    Attributes:
        filename: Original file name
        base64: Base64-encoded JPEG payload
        size_kb: Encoded payload size
        original_size_kb: Size of the source file
        exif: Capture metadata, if any was found
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    filename: str
    base64: str = Field(repr=False)
    size_kb: float = 0.0
    original_size_kb: float = 0.0
    exif: ExifData | None = None

    @property
    def has_gps(self) -> bool:
        return self.exif is not None and self.exif.gps is not None

    @property
    def has_capture_time(self) -> bool:
        return self.exif is not None and self.exif.capture_time is not None


# =============================================================================
# Context Detection
# =============================================================================


class Classification(WireModel, Generic[T]):
    """A categorical value with the provider's confidence."""

    value: T
    confidence: Confidence = 0.0
    reasoning: str | None = None


class SourceTypeClassification(Classification[SourceType]):
    @field_validator("value", mode="before")
    @classmethod
    def _coerce(cls, v: Any) -> SourceType:
        return _coerce_enum(SourceType, v, SourceType.UNKNOWN)


class ContentDomainClassification(Classification[ContentDomain]):
    @field_validator("value", mode="before")
    @classmethod
    def _coerce(cls, v: Any) -> ContentDomain:
        return _coerce_enum(ContentDomain, v, ContentDomain.UNKNOWN)


class InteractionModeClassification(Classification[InteractionMode]):
    @field_validator("value", mode="before")
    @classmethod
    def _coerce(cls, v: Any) -> InteractionMode:
        return _coerce_enum(InteractionMode, v, InteractionMode.UNKNOWN)


class ContentFormatClassification(Classification[ContentFormat]):
    @field_validator("value", mode="before")
    @classmethod
    def _coerce(cls, v: Any) -> ContentFormat:
        return _coerce_enum(ContentFormat, v, ContentFormat.UNKNOWN)


class SubjectRelationClassification(Classification[SubjectRelation]):
    @field_validator("value", mode="before")
    @classmethod
    def _coerce(cls, v: Any) -> SubjectRelation:
        return _coerce_enum(SubjectRelation, v, SubjectRelation.UNKNOWN)


class DetectedApp(WireModel):
    """The provider's guess at which application produced a screenshot."""

    name: str
    confidence: Confidence = 0.0
    reasoning: str = ""


class VisibleText(WireModel):
    """Text groups read off an image."""

    ui_language: str | None = None
    usernames: list[str] = Field(default_factory=list)
    timestamps: list[str] = Field(default_factory=list)
    key_labels: list[str] = Field(default_factory=list)
    other_text: list[str] = Field(default_factory=list)


class PrivacySensitivity(WireModel):
    """Privacy assessment of a single image."""

    level: PrivacyLevel = PrivacyLevel.LOW
    flags: list[str] = Field(default_factory=list)

    @field_validator("level", mode="before")
    @classmethod
    def _coerce_level(cls, v: Any) -> PrivacyLevel:
        return _coerce_enum(PrivacyLevel, v, PrivacyLevel.LOW)


class ImageContext(WireModel):
    """Context classification for one image.

    Attributes:
        image_index: Position of the image in the batch
        source_type: Screenshot, camera photo, scan, ...
        content_domain: Area of life the image belongs to
        interaction_mode: What the user was doing
        content_format: Layout of the content
        subject_relation: Whose content is shown
        detected_app: Application guess, only when the provider is confident
        visible_text: Extracted text groups
        privacy_sensitivity: Privacy level and flags
    """

    image_index: int
    source_type: SourceTypeClassification = Field(
        default_factory=lambda: SourceTypeClassification(value=SourceType.UNKNOWN)
    )
    content_domain: ContentDomainClassification = Field(
        default_factory=lambda: ContentDomainClassification(value=ContentDomain.UNKNOWN)
    )
    interaction_mode: InteractionModeClassification = Field(
        default_factory=lambda: InteractionModeClassification(value=InteractionMode.UNKNOWN)
    )
    content_format: ContentFormatClassification = Field(
        default_factory=lambda: ContentFormatClassification(value=ContentFormat.UNKNOWN)
    )
    subject_relation: SubjectRelationClassification = Field(
        default_factory=lambda: SubjectRelationClassification(value=SubjectRelation.UNKNOWN)
    )
    detected_app: DetectedApp | None = None
    visible_text: VisibleText = Field(default_factory=VisibleText)
    privacy_sensitivity: PrivacySensitivity = Field(default_factory=PrivacySensitivity)


class ContextSummary(WireModel):
    """Batch-level aggregate of the per-image contexts."""

    dominant_source_type: SourceType = SourceType.UNKNOWN
    dominant_domain: ContentDomain = ContentDomain.UNKNOWN
    dominant_format: ContentFormat = ContentFormat.UNKNOWN
    detected_usernames: list[str] = Field(default_factory=list)
    detected_apps: list[str] = Field(default_factory=list)
    overall_privacy_level: PrivacyLevel = PrivacyLevel.LOW

    @field_validator("dominant_source_type", mode="before")
    @classmethod
    def _coerce_source(cls, v: Any) -> SourceType:
        return _coerce_enum(SourceType, v, SourceType.UNKNOWN)

    @field_validator("dominant_domain", mode="before")
    @classmethod
    def _coerce_domain(cls, v: Any) -> ContentDomain:
        return _coerce_enum(ContentDomain, v, ContentDomain.UNKNOWN)

    @field_validator("dominant_format", mode="before")
    @classmethod
    def _coerce_format(cls, v: Any) -> ContentFormat:
        return _coerce_enum(ContentFormat, v, ContentFormat.UNKNOWN)

    @field_validator("overall_privacy_level", mode="before")
    @classmethod
    def _coerce_privacy(cls, v: Any) -> PrivacyLevel:
        return _coerce_enum(PrivacyLevel, v, PrivacyLevel.LOW)

    @classmethod
    def from_images(cls, images: list[ImageContext]) -> "ContextSummary":
        """Aggregate per-image contexts into a summary.

        The dominant value of each axis is the most frequent one, with ties
        going to the value seen first. Usernames and apps are unioned in
        first-seen order and the privacy level is the maximum observed.

        Args:
            images: Per-image context records.

        Returns:
            Computed ContextSummary.
        """

        def dominant(values: list[Enum], default: Enum) -> Enum:
            if not values:
                return default
            counts = Counter(values)
            best = max(counts.values())
            return next(v for v in values if counts[v] == best)

        usernames: list[str] = []
        apps: list[str] = []
        privacy = PrivacyLevel.LOW
        for ctx in images:
            for name in ctx.visible_text.usernames:
                if name not in usernames:
                    usernames.append(name)
            if ctx.detected_app and ctx.detected_app.name not in apps:
                apps.append(ctx.detected_app.name)
            if ctx.privacy_sensitivity.level.rank > privacy.rank:
                privacy = ctx.privacy_sensitivity.level

        return cls(
            dominant_source_type=dominant(
                [c.source_type.value for c in images], SourceType.UNKNOWN
            ),
            dominant_domain=dominant(
                [c.content_domain.value for c in images], ContentDomain.UNKNOWN
            ),
            dominant_format=dominant(
                [c.content_format.value for c in images], ContentFormat.UNKNOWN
            ),
            detected_usernames=usernames,
            detected_apps=apps,
            overall_privacy_level=privacy,
        )


class ContextDetectionResult(WireModel):
    """Output of the context classification phase."""

    images: list[ImageContext] = Field(default_factory=list)
    summary: ContextSummary = Field(default_factory=ContextSummary)


# =============================================================================
# Quick Scan
# =============================================================================


class ImageTag(WireModel):
    """A single tag assigned to an image during the scan."""

    tag: str
    confidence: Confidence = 0.0
    category: TagCategory


class DetectedText(WireModel):
    """A text snippet read off an image."""

    text: str
    type: str | None = None
    confidence: float | None = None


class DetectedDate(WireModel):
    """A date read off an image, with the provider's interpretation."""

    date: str
    context: str | None = None
    inferred_date: str | None = None


class ImageScan(WireModel):
    """Quick-scan record for one image.

    Attributes:
        image_index: Position of the image in the batch
        tags: Tags in the order the provider listed them
        text_detected: OCR snippets
        dates_detected: Dates read from the image
        people_count: Number of people visible
        has_location: Whether the image carries a location signal
        location_tag: Location text, if any
        priority: How much personal signal the image carries
    """

    image_index: int
    tags: list[ImageTag] = Field(default_factory=list)
    text_detected: list[DetectedText] = Field(default_factory=list)
    dates_detected: list[DetectedDate] = Field(default_factory=list)
    people_count: int = 0
    has_location: bool = False
    location_tag: str | None = None
    priority: ScanPriority = ScanPriority.LOW

    @field_validator("tags", mode="before")
    @classmethod
    def _drop_unknown_categories(cls, v: Any) -> Any:
        """Skip tags whose category is outside the fixed taxonomy."""
        if not isinstance(v, list):
            return v
        valid = {c.value for c in TagCategory}
        return [t for t in v if not isinstance(t, dict) or t.get("category") in valid]

    @field_validator("text_detected", mode="before")
    @classmethod
    def _wrap_plain_text(cls, v: Any) -> Any:
        if not isinstance(v, list):
            return v
        return [{"text": t} if isinstance(t, str) else t for t in v]

    @field_validator("priority", mode="before")
    @classmethod
    def _coerce_priority(cls, v: Any) -> ScanPriority:
        return _coerce_enum(ScanPriority, v, ScanPriority.LOW)

    @property
    def has_text(self) -> bool:
        return any(t.text.strip() for t in self.text_detected)


class CrossReference(WireModel):
    """A topic supported by one or more images."""

    topic: str
    images: list[int] = Field(default_factory=list)
    confidence: RawConfidence = 0.0
    evidence: list[str] = Field(default_factory=list)
    text_evidence: list[str] = Field(default_factory=list)

    @property
    def occurrences(self) -> int:
        return len(set(self.images))


class ImageTextExtraction(WireModel):
    """All text read from one image."""

    image_index: int
    texts: list[str] = Field(default_factory=list)


class ScanSummary(WireModel):
    """Batch-level scan aggregates."""

    total_images: int = 0
    category_distribution: dict[TagCategory, int] = Field(default_factory=dict)
    high_priority_images: list[int] = Field(default_factory=list)
    cross_references: list[CrossReference] = Field(default_factory=list)
    all_text_extracted: list[ImageTextExtraction] = Field(default_factory=list)

    @field_validator("category_distribution", mode="before")
    @classmethod
    def _drop_unknown_categories(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v
        valid = {c.value for c in TagCategory}
        return {k: n for k, n in v.items() if str(k) in valid}


class ScanResult(WireModel):
    """Output of the quick-scan phase."""

    scan_results: list[ImageScan] = Field(default_factory=list)
    summary: ScanSummary = Field(default_factory=ScanSummary)


# =============================================================================
# Known Info, Sidecar and Results
# =============================================================================


class KnownInfo(WireModel):
    """User-declared ground truth about the subject.

    Every field is optional. Additional string fields are accepted and kept.
    Known info is authoritative and never confidence-filtered.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    gender: str | None = None
    username: str | None = None
    name: str | None = None
    age_range: str | None = None
    nationality: str | None = None
    location: str | None = None
    occupation: str | None = None

    def populated(self) -> dict[str, str]:
        """Return the non-empty fields, keyed by their wire names."""
        return {k: v for k, v in self.to_wire().items() if v not in (None, "")}

    @property
    def is_empty(self) -> bool:
        return not self.populated()


class TrackedField(WireModel, Generic[T]):
    """A blueprint field tagged with where its value came from."""

    value: T
    source: FieldSource
    confidence: float | None = None
    evidence: list[str] | None = None


class MetaFile(WireModel):
    """Sidecar record persisted next to a dataset."""

    known: KnownInfo | None = None
    context: ContextDetectionResult | None = None
    notes: str | None = None

    @property
    def has_context(self) -> bool:
        return self.context is not None and len(self.context.images) > 0


class AnalysisResult(WireModel):
    """Return value of a full orchestrator run."""

    blueprint: Blueprint
    context: ContextDetectionResult | None = None
    meta: MetaFile | None = None


class Task(WireModel):
    """Lifecycle record of one asynchronous analysis run."""

    id: str
    status: TaskStatus = TaskStatus.PENDING
    result: Blueprint | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))

    def public_view(self) -> dict[str, Any]:
        """Status payload for pollers: result only when completed, error only when failed."""
        view: dict[str, Any] = {
            "id": self.id,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
        }
        if self.status == TaskStatus.COMPLETED and self.result is not None:
            view["result"] = self.result
        if self.status == TaskStatus.FAILED and self.error:
            view["error"] = self.error
        return view
