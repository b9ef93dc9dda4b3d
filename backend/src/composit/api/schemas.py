"""Shared base for API request/response models."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake_case fields exposed to clients in camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
