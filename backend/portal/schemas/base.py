from __future__ import annotations
from typing import Any, Dict

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class DocumentModel(BaseModel):
    """Read model over a store document (camelCase on the wire, snake_case here)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    @classmethod
    def from_document(cls, doc: Dict[str, Any]):
        return cls.model_validate(doc)
