"""Shared pydantic base for models exchanged with the UI.

Python code uses snake_case attributes; JSON on the wire is camelCase
(sourceUrl, playbackUrl, fullOutput). Both spellings are accepted on input.
"""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        """JSON-ready dict with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
