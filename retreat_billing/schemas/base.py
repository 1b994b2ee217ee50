"""
Base schema classes.

Response schemas built from ORM objects inherit from BaseResponseSchema so
``model_validate(orm_obj)`` works without per-class config.
"""

from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """
    Base class for response schemas that read from ORM models.

    Usage:
        class InvoiceResponse(BaseResponseSchema):
            id: int
            status: str
    """
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Base class for request bodies; unknown fields are ignored."""
    model_config = ConfigDict(extra='ignore')
