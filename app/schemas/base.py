from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Shared pydantic base: reads ORM objects and dataclasses by attribute."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=False)
