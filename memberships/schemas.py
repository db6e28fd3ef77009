"""
Pydantic input schemas for creator-owned entities.

Registries accept either a schema instance or a plain mapping; mappings are
parsed with ``parse_input`` so pydantic failures surface as the engine's own
ValidationError.
"""

from enum import Enum
from typing import Any, List, Mapping, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from memberships import config
from memberships.errors import ValidationError
from memberships.models import Visibility

SchemaT = TypeVar("SchemaT", bound=BaseModel)
EnumT = TypeVar("EnumT", bound=Enum)


def _strip_required(value: str) -> str:
    stripped = value.strip()
    if not stripped:
        raise ValueError("must not be empty")
    return stripped


class TierSpec(BaseModel):
    """Fields for a new membership tier."""
    model_config = ConfigDict(extra="forbid")

    name: str
    monthly_price: int = Field(..., gt=0, description="Price in the smallest currency unit")
    rank: int = Field(1, gt=0)
    description: str = ""
    benefits: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator("benefits")
    @classmethod
    def drop_blank_benefits(cls, value: List[str]) -> List[str]:
        return [b.strip() for b in value if b.strip()]


class TierUpdate(BaseModel):
    """Partial tier edit; omitted fields are left unchanged."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    monthly_price: Optional[int] = Field(None, gt=0)
    rank: Optional[int] = Field(None, gt=0)
    description: Optional[str] = None
    benefits: Optional[List[str]] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _strip_required(value)


class PostSpec(BaseModel):
    """Fields for a new post."""
    model_config = ConfigDict(extra="forbid")

    title: str
    description: str = ""
    body: str = ""
    visibility: Visibility = Visibility.PUBLIC
    min_tier_rank: int = Field(0, ge=0)

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: str) -> str:
        return _strip_required(value)


class PostUpdate(BaseModel):
    """Partial post edit. The owning creator can never be changed."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = None
    description: Optional[str] = None
    body: Optional[str] = None
    visibility: Optional[Visibility] = None
    min_tier_rank: Optional[int] = Field(None, ge=0)

    @field_validator("title")
    @classmethod
    def validate_title(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _strip_required(value)


class FileSpec(BaseModel):
    """Metadata of an uploaded file."""
    model_config = ConfigDict(extra="forbid")

    file_name: str
    file_size: int = Field(..., gt=0)
    mime_type: str
    storage_path: str

    @field_validator("file_name", "storage_path")
    @classmethod
    def validate_required(cls, value: str) -> str:
        return _strip_required(value)

    @model_validator(mode="after")
    def validate_limits(self):
        if self.file_size > config.MAX_FILE_SIZE_BYTES:
            raise ValueError(
                f"file_size {self.file_size} exceeds the {config.MAX_FILE_SIZE_BYTES} byte limit"
            )
        if self.mime_type not in config.ALLOWED_FILE_MIME_TYPES:
            raise ValueError(f"mime_type '{self.mime_type}' is not allowed")
        return self


def parse_input(schema: Type[SchemaT], data: Union[SchemaT, Mapping[str, Any]]) -> SchemaT:
    """Validate ``data`` against ``schema``, raising the engine ValidationError."""
    if isinstance(data, schema):
        return data
    try:
        return schema.model_validate(dict(data))
    except PydanticValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise ValidationError(f"Invalid {schema.__name__}", details={"errors": errors}) from exc


def parse_enum(enum_cls: Type[EnumT], value: Any, field: str) -> EnumT:
    """Coerce ``value`` to ``enum_cls``, raising the engine ValidationError."""
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = [member.value for member in enum_cls]
        raise ValidationError(
            f"{field} must be one of {allowed}",
            details={"field": field, "value": str(value), "allowed": allowed},
        ) from exc
