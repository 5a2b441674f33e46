"""Chunk models shared by indexes, stores and the assembly stages."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ChunkMetadata(BaseModel):
    """Well-known chunk metadata plus a side-map for everything else.

    Unknown keys passed at construction time are moved into ``extra`` so
    that ``ChunkMetadata(category="tech")`` keeps the value instead of
    dropping it.
    """

    model_config = ConfigDict(frozen=True)

    start_index: int | None = Field(default=None, ge=0, description="Start offset in the source document")
    end_index: int | None = Field(default=None, ge=0, description="End offset in the source document")
    page_number: int | None = Field(default=None, ge=0, description="Page number in the source document")
    section: str | None = Field(default=None, description="Section heading the chunk belongs to")
    source: str | None = Field(default=None, description="Human readable source name")
    file_path: str | None = Field(default=None, description="Path of the source file")
    url: str | None = Field(default=None, description="URL of the source")
    extra: dict[str, Any] = Field(default_factory=dict, description="Arbitrary extension data")

    @model_validator(mode="before")
    @classmethod
    def collect_extra_fields(cls, data: Any) -> Any:
        """Move unknown keys into the ``extra`` side-map."""
        if not isinstance(data, dict):
            return data
        known = {k: v for k, v in data.items() if k in cls.model_fields}
        unknown = {k: v for k, v in data.items() if k not in cls.model_fields}
        if unknown:
            known["extra"] = {**known.get("extra", {}), **unknown}
        return known

    def get(self, key: str, default: Any = None) -> Any:
        """Look up a typed field or an extension key by name."""
        if key in type(self).model_fields and key != "extra":
            value = getattr(self, key)
            return default if value is None else value
        return self.extra.get(key, default)


class Chunk(BaseModel):
    """Immutable unit of indexed text."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1, description="Identifier, unique within a corpus")
    content: str
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)
    document_id: str | None = None

    def with_content(self, content: str) -> "Chunk":
        """Return a copy with different content (used for truncation)."""
        return self.model_copy(update={"content": content})
