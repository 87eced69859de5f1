"""Validated input for the rule write path."""

from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from notifyflow.services.rules.compiler import RuleType


Channel = Literal["email", "whatsapp"]
DelayUnit = Literal["minutes", "hours", "days"]
ProductScope = Literal["all", "specific"]

# Columns a partial update may omit but never clear.
_REQUIRED_ON_UPDATE = (
    "name",
    "is_enabled",
    "rule_type",
    "channels",
    "attachments",
    "product_scope",
    "filters",
    "priority",
)


class RuleFilter(BaseModel):
    path: str = Field(min_length=1)
    op: Literal["eq", "neq", "exists", "gte", "lte", "contains"]
    value: Any = None


class RuleAttachment(BaseModel):
    id: str
    name: str
    url: str
    type: Literal["image", "file"]


class RuleCreate(BaseModel):
    """Authored rule fields; derived fields are computed on save."""

    name: str = Field(min_length=1)
    description: str | None = None
    is_enabled: bool = True
    rule_type: RuleType
    trigger_condition: str | None = None
    channels: list[Channel] = Field(min_length=1)
    whatsapp_message: str | None = None
    email_subject: str | None = None
    email_body: str | None = None
    attachments: list[RuleAttachment] = Field(default_factory=list)
    delay_value: int = Field(default=0, ge=0)
    delay_unit: DelayUnit = "minutes"
    product_scope: ProductScope = "all"
    product_ids: list[str] | None = None
    filters: list[RuleFilter] = Field(default_factory=list)
    priority: int = 0

    @model_validator(mode="after")
    def _specific_scope_needs_products(self) -> "RuleCreate":
        if self.product_scope == "specific" and not self.product_ids:
            raise ValueError("product_ids required when product_scope is 'specific'")
        return self


class RuleUpdate(BaseModel):
    """Partial update; only fields that were explicitly set are applied."""

    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    is_enabled: bool | None = None
    rule_type: RuleType | None = None
    trigger_condition: str | None = None
    channels: list[Channel] | None = Field(default=None, min_length=1)
    whatsapp_message: str | None = None
    email_subject: str | None = None
    email_body: str | None = None
    attachments: list[RuleAttachment] | None = None
    delay_value: int | None = Field(default=None, ge=0)
    delay_unit: DelayUnit | None = None
    product_scope: ProductScope | None = None
    product_ids: list[str] | None = None
    filters: list[RuleFilter] | None = None
    priority: int | None = None

    @model_validator(mode="after")
    def _no_null_for_required_columns(self) -> "RuleUpdate":
        nulled = sorted(f for f in _REQUIRED_ON_UPDATE if f in self.model_fields_set and getattr(self, f) is None)
        if nulled:
            raise ValueError(f"fields cannot be null: {', '.join(nulled)}")
        return self
