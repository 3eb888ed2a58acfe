# bookingguard/services/api/schemas/rule.py
"""
Typed rule definitions. One model per rule type so malformed conditions are
rejected when a rule is written, not when it is evaluated.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union
import uuid

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator


class _Conditions(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class PatternConditions(_Conditions):
    min_amount: Optional[Decimal] = Field(None, ge=0)
    max_days_notice: Optional[int] = Field(None, ge=0)

    @model_validator(mode="after")
    def check_not_empty(self):
        if self.min_amount is None and self.max_days_notice is None:
            raise ValueError("pattern rule needs min_amount and/or max_days_notice")
        return self


class EmailConditions(_Conditions):
    suspicious_domains: List[str] = Field(default_factory=list)

    @field_validator("suspicious_domains")
    @classmethod
    def normalise_domains(cls, value: List[str]) -> List[str]:
        domains = []
        for domain in value:
            domain = domain.strip().lower().lstrip("@")
            if not domain:
                raise ValueError("empty domain in suspicious_domains")
            if domain not in domains:
                domains.append(domain)
        return domains


class VelocityConditions(_Conditions):
    subject: Literal["email", "ip", "user"] = "email"
    max_attempts: int = Field(..., ge=1, validation_alias=AliasChoices("max_attempts", "max_bookings"))
    window_hours: float = Field(..., gt=0, le=24 * 30, validation_alias=AliasChoices("window_hours", "time_window_hours"))


class HistoryConditions(_Conditions):
    min_bookings: int = Field(..., ge=0)
    cancellation_threshold: float = Field(..., ge=0, le=1)


CONDITION_MODELS = {
    "pattern": PatternConditions,
    "email": EmailConditions,
    "velocity": VelocityConditions,
    "history": HistoryConditions,
}


class _RuleBase(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    score_contribution: int = Field(..., ge=0, validation_alias=AliasChoices("score_contribution", "add_risk_score"))
    flag_for_review: bool = False
    create_alert: bool = False
    auto_block: bool = False
    weight: int = 10
    is_active: bool = True
    created_by: Optional[str] = None


class PatternRuleCreate(_RuleBase):
    rule_type: Literal["pattern"]
    conditions: PatternConditions


class EmailRuleCreate(_RuleBase):
    rule_type: Literal["email"]
    conditions: EmailConditions


class VelocityRuleCreate(_RuleBase):
    rule_type: Literal["velocity"]
    conditions: VelocityConditions


class HistoryRuleCreate(_RuleBase):
    rule_type: Literal["history"]
    conditions: HistoryConditions


RuleCreate = Annotated[
    Union[PatternRuleCreate, EmailRuleCreate, VelocityRuleCreate, HistoryRuleCreate],
    Field(discriminator="rule_type"),
]
rule_create_adapter = TypeAdapter(RuleCreate)


class RuleUpdate(BaseModel):
    """Partial update. `conditions` is re-validated against the stored rule type."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    conditions: Optional[dict] = None
    score_contribution: Optional[int] = Field(None, ge=0)
    flag_for_review: Optional[bool] = None
    create_alert: Optional[bool] = None
    auto_block: Optional[bool] = None
    weight: Optional[int] = None
    is_active: Optional[bool] = None


class RuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rule_id: uuid.UUID
    name: str
    description: Optional[str]
    rule_type: str
    conditions: dict
    score_contribution: int
    flag_for_review: bool
    create_alert: bool
    auto_block: bool
    weight: int
    is_active: bool
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
