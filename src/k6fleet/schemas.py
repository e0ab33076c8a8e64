"""Pydantic base types shared by request/response models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Response record serialized with camelCase keys.

    Accepts snake_case field names on construction, so records can be built
    straight from ORM rows.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Ack(BaseModel):
    """Plain acknowledgement returned to agents."""

    success: bool = True
    message: str = ""
