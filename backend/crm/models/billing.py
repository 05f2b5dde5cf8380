"""
Token Billing Models

Each user owns a token balance refilled by buying a plan; billable
features spend tokens from it.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class TokenUsage(BaseModel):
    """Current token balance for an owner"""
    owner_id: str
    plan: Optional[str] = None
    total_tokens: int = Field(0, ge=0)
    used_tokens: int = Field(0, ge=0)
    last_updated: Optional[datetime] = None
    expiration_date: Optional[datetime] = None

    @property
    def remaining(self) -> int:
        return max(0, self.total_tokens - self.used_tokens)


class TokenUsageResponse(TokenUsage):
    remaining_tokens: int = 0


class ReserveRequest(BaseModel):
    cost: int = Field(1, ge=1)


class ReserveResponse(BaseModel):
    allowed: bool
    remaining_tokens: int


class ActivationStatus(BaseModel):
    """Whether a checkout session has been turned into tokens yet"""
    checkout_session_id: str
    activated: bool = False
    plan: Optional[str] = None
    tokens: Optional[int] = None
    purchased_at: Optional[datetime] = None
