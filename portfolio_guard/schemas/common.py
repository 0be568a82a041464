"""Shared schema base and the uniform action response."""
from typing import Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base schema serialized with camelCase keys (snake_case accepted on input)."""

    model_config = {"alias_generator": to_camel, "populate_by_name": True, "from_attributes": True}


class ActionResponse(CamelModel):
    """Response schema for actions with no payload: {success, message?}."""
    success: bool = True
    message: Optional[str] = None

