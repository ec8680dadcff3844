"""Pydantic base schema utilities for relayflow models."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """
    Base Pydantic model for all domain schemas.

    Configures common Pydantic behaviors:
    - ``populate_by_name=True``: Allow initialization by alias or field name.
    - ``extra="forbid"``: Prevent unknown fields from slipping into the model, ensuring strict validation.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
    )


class WireSchema(BaseSchema):
    """Base for models that cross a driver boundary.

    Fields serialize with camelCase aliases (``actionDefinitionId``) and accept
    either spelling on input, so external drivers and plugins can use the
    conventional wire names.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        extra="forbid",
        alias_generator=to_camel,
    )

    def to_wire(self) -> dict:
        """Serialize with camelCase keys, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
