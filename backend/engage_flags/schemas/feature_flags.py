from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from engage_flags.models.enums import FlagTypeEnum, RolloutStrategyEnum


class EvaluationContextIn(BaseModel):
    user_id: Optional[int] = Field(None, alias="userId")
    organization_id: Optional[int] = Field(None, alias="organizationId")
    environment: Optional[str] = None

    class Config:
        populate_by_name = True


class FlagEvaluateRequest(BaseModel):
    flag_keys: list[str] = Field(..., alias="flagKeys")
    context: Optional[EvaluationContextIn] = None

    @field_validator("flag_keys")
    @classmethod
    def validate_flag_keys(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("flagKeys must contain at least one flag key")
        if any(not key.strip() for key in value):
            raise ValueError("flagKeys must not contain blank keys")
        return value

    class Config:
        populate_by_name = True


class FeatureFlagCreate(BaseModel):
    flag_key: str = Field(..., alias="flagKey", min_length=1, max_length=128)
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    flag_type: FlagTypeEnum = Field(FlagTypeEnum.BOOLEAN, alias="flagType")
    default_value: str = Field("false", alias="defaultValue")
    is_active: bool = Field(True, alias="isActive")

    class Config:
        populate_by_name = True


class FeatureFlagUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    flag_type: Optional[FlagTypeEnum] = Field(None, alias="flagType")
    default_value: Optional[str] = Field(None, alias="defaultValue")
    is_active: Optional[bool] = Field(None, alias="isActive")

    class Config:
        populate_by_name = True


class FeatureFlagRead(BaseModel):
    id: int
    flag_key: str
    name: str
    description: Optional[str] = None
    flag_type: FlagTypeEnum
    default_value: str
    is_active: bool
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrganizationFlagUpdate(BaseModel):
    is_enabled: bool = Field(..., alias="isEnabled")
    rollout_percentage: Optional[int] = Field(None, alias="rolloutPercentage", ge=0, le=100)
    rollout_strategy: Optional[RolloutStrategyEnum] = Field(None, alias="rolloutStrategy")
    rollout_config: Optional[dict[str, Any]] = Field(None, alias="rolloutConfig")
    environment: Optional[str] = None

    class Config:
        populate_by_name = True


class OrganizationFlagRead(BaseModel):
    id: int
    organization_id: int
    flag_key: str
    is_enabled: bool
    rollout_percentage: int
    rollout_strategy: RolloutStrategyEnum
    rollout_config: Optional[Any] = None
    environment: str
    enabled_by: Optional[int] = None
    enabled_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Joined from the flag definition; absent when the definition is gone.
    flag_name: Optional[str] = None
    flag_description: Optional[str] = None
    flag_type: Optional[FlagTypeEnum] = None

    class Config:
        from_attributes = True


class UserOverrideUpdate(BaseModel):
    # Accepts the JSON value directly (true, 3, "blue") or its text form.
    override_value: Any = Field(..., alias="overrideValue")
    reason: Optional[str] = None
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")

    @field_validator("override_value")
    @classmethod
    def validate_override_value(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("overrideValue is required")
        return value

    class Config:
        populate_by_name = True


class UserOverrideRead(BaseModel):
    id: int
    user_id: int
    flag_key: str
    override_value: str
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    flag_name: Optional[str] = None
    flag_description: Optional[str] = None
    flag_type: Optional[FlagTypeEnum] = None

    class Config:
        from_attributes = True
