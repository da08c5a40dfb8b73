from pydantic import BaseModel

class BaseSchema(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    class Config:
        from_attributes = True
        populate_by_name = True
