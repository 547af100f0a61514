from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..core.timeutil import ensure_aware


class RecordModel(BaseModel):
    """Typed view of a stored map.

    Persisted field names are camelCase; unknown fields are ignored and a
    ``null`` falls back to the field default so business code never sees a
    ``None`` where the model promises a value.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @field_validator("*", mode="before")
    @classmethod
    def _null_to_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None and info.field_name is not None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return value

    @model_validator(mode="after")
    def _attach_timezone(self):
        for name in type(self).model_fields:
            value = getattr(self, name)
            if isinstance(value, datetime) and value.tzinfo is None:
                setattr(self, name, ensure_aware(value))
        return self

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class DocumentModel(RecordModel):
    """Record stored as its own document; ``id`` is the document key."""

    id: str = Field(default="", exclude=True)

    @classmethod
    def from_document(cls, doc_id: str, data: Mapping[str, Any]):
        payload = {key: value for key, value in data.items() if key != "id"}
        payload["id"] = doc_id
        return cls.model_validate(payload)

    @classmethod
    def from_snapshot(cls, snapshot):
        return cls.from_document(snapshot.id, snapshot.data)
