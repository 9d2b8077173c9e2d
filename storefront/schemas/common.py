"""Common Pydantic schemas used across the API."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class CamelSchema(BaseSchema):
    """Schema whose JSON field names are camelCase, as the storefront client sends them."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )


class HealthResponse(BaseSchema):
    """Health check response schema."""

    status: str
    version: str
    environment: str
    checks: dict[str, str]


class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: str | None = None
    code: str | None = None


class OkResponse(BaseSchema):
    ok: bool = True
