from __future__ import annotations
import mimetypes
from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Any, Literal, Optional, Union
from uuid import uuid4
from pydantic import BaseModel, ConfigDict, Field

SourceKind = Literal["image", "url"]
ItemStatus = Literal["processing", "done", "error"]

SCHEMA_MARKER = "schema.org"


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def new_local_id() -> str:
    return f"local-{uuid4().hex}"


class Ingredient(BaseModel):
    amount: Optional[float] = None
    unit: Optional[str] = None
    name: str
    group_name: Optional[str] = None
    notes: Optional[str] = None
    order_index: int = 0


class Step(BaseModel):
    step_number: int
    description: str
    extra: Optional[dict[str, Any]] = None


class Tool(BaseModel):
    name: str
    notes: Optional[str] = None


class RecipeFields(BaseModel):
    title: str
    subtitle: Optional[str] = None
    introduction: Optional[str] = None
    description: str = ""
    ingredients: list[Ingredient] = Field(default_factory=list)
    instructions: list[Step] = Field(default_factory=list)
    tools: list[Tool] = Field(default_factory=list)
    servings: Optional[int] = None
    prep_time: Optional[str] = None
    cook_time: Optional[str] = None
    difficulty: Optional[str] = None
    cuisine: Optional[str] = None
    author: Optional[str] = None
    cookbook_name: Optional[str] = None
    isbn: Optional[str] = None
    source_language: str = "en"
    ai_tags: list[str] = Field(default_factory=list)
    extra_data: dict[str, Any] = Field(default_factory=dict)


class ExtractionUsage(BaseModel):
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    @property
    def from_schema(self) -> bool:
        return self.model == SCHEMA_MARKER


class ImageSource(BaseModel):
    filename: str
    data: bytes
    content_type: str = "image/jpeg"
    path: Optional[Path] = None

    @classmethod
    def from_path(cls, path: Path) -> ImageSource:
        content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        return cls(filename=path.name, data=path.read_bytes(), content_type=content_type, path=path)


class StoredImage(BaseModel):
    path: str
    public_url: str
    signed_url: str


class Provenance(BaseModel):
    source_type: SourceKind
    source_url: Optional[str] = None
    original_image_url: Optional[str] = None
    usage: Optional[ExtractionUsage] = None
    raw_extracted_data: Optional[dict[str, Any]] = None


class PersistedRecipe(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    user_id: Optional[str] = None
    title: str
    description: Optional[str] = None
    source_type: Optional[str] = None
    source_url: Optional[str] = None
    original_image_url: Optional[str] = None
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    ingredients: list[Ingredient] = Field(default_factory=list)
    instructions: list[Step] = Field(default_factory=list)
    tools: list[Tool] = Field(default_factory=list)


class QueueContext(BaseModel):
    collection_id: Optional[str] = None


class PendingRef(BaseModel):
    kind: Literal["pending"] = "pending"
    local_id: str


class PersistedRef(BaseModel):
    kind: Literal["persisted"] = "persisted"
    record_id: str


ItemRef = Annotated[Union[PendingRef, PersistedRef], Field(discriminator="kind")]


class QueueItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    ref: ItemRef
    source_kind: SourceKind
    source: str
    status: ItemStatus = "processing"
    title: str
    preview_url: Optional[str] = None
    context: QueueContext = Field(default_factory=QueueContext)
    error_message: Optional[str] = None
    warning: Optional[str] = None
    extracted_fields: Optional[RecipeFields] = None
    usage: Optional[ExtractionUsage] = None
    created_at: datetime = Field(default_factory=_now)

    @classmethod
    def pending(
        cls,
        source_kind: SourceKind,
        source: str,
        title: str,
        context: QueueContext | None = None,
        preview_url: str | None = None,
    ) -> QueueItem:
        local_id = new_local_id()
        return cls(
            id=local_id,
            ref=PendingRef(local_id=local_id),
            source_kind=source_kind,
            source=source,
            title=title,
            preview_url=preview_url,
            context=context or QueueContext(),
        )

    @property
    def record_id(self) -> Optional[str]:
        return self.ref.record_id if isinstance(self.ref, PersistedRef) else None

    @property
    def is_terminal(self) -> bool:
        return self.status != "processing"
