from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base schema for responses read straight off ORM rows"""
    model_config = ConfigDict(from_attributes=True)
