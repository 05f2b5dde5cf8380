"""
Deal Management Models

A deal ("negócio") links a company, its contacts and a service/plan
selection, and moves through the organization's pipeline stages.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Literal
from datetime import datetime
from decimal import Decimal


# ============================================================
# INTAKE MODELS (3-step wizard)
# ============================================================

class CompanyData(BaseModel):
    """Step 1 - company identification"""
    name: str = Field(..., min_length=1, max_length=255)
    cnpj: Optional[str] = None
    segment: Optional[str] = None
    region: Optional[str] = None
    size: Optional[str] = None
    revenue_range: Optional[str] = None
    pain_points: Optional[str] = None


class ContactData(BaseModel):
    """Step 2 - a contact at the company"""
    name: str = ""
    email: Optional[str] = None
    whatsapp: Optional[str] = None
    linkedin: Optional[str] = None
    target_role: Optional[str] = None


class DealTerms(BaseModel):
    """Step 3 - commercial terms"""
    name: str = Field(..., min_length=1, max_length=255)
    setup_value: Decimal = Field(Decimal("0"), ge=0)
    service_id: Optional[str] = None
    plan_id: Optional[str] = None
    custom_plan_price: Optional[Decimal] = Field(None, ge=0)
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100)
    stage_id: Optional[str] = None
    description: Optional[str] = Field(None, max_length=2000)


class DealIntake(BaseModel):
    """Full wizard submission"""
    company: CompanyData
    contacts: List[ContactData] = Field(..., min_length=1)
    terms: DealTerms


# ============================================================
# DEAL MODELS
# ============================================================

class Deal(BaseModel):
    """Full deal record"""
    id: str
    organization_id: Optional[str] = None
    name: str
    company_id: Optional[str] = None
    contact_ids: List[str] = []
    service_id: Optional[str] = None
    plan_id: Optional[str] = None
    custom_plan_price: Optional[Decimal] = None
    setup_value: Decimal = Decimal("0")
    discount_percent: Decimal = Decimal("0")
    stage_id: str
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DealWithPrice(Deal):
    """Deal plus its effective monthly price after discount"""
    effective_monthly_price: Decimal = Decimal("0")


class DealUpdate(BaseModel):
    """Update a deal - all fields optional"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    setup_value: Optional[Decimal] = Field(None, ge=0)
    service_id: Optional[str] = None
    plan_id: Optional[str] = None
    custom_plan_price: Optional[Decimal] = Field(None, ge=0)
    discount_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    description: Optional[str] = Field(None, max_length=2000)
    assigned_to: Optional[str] = None


class StageMove(BaseModel):
    """Move a deal to another stage"""
    stage_id: str


class StageStep(BaseModel):
    """Move a deal one stage backward or forward"""
    direction: Literal["prev", "next"]


# ============================================================
# INTERACTION MODELS (Timeline)
# ============================================================

InteractionKind = Literal["note", "call", "email", "whatsapp", "social", "stage_change", "field_change"]

# Kinds written only by the system on stage moves and edits
SYSTEM_INTERACTION_KINDS = ("stage_change", "field_change")


class InteractionCreate(BaseModel):
    """Manual timeline entry"""
    kind: InteractionKind = "note"
    title: Optional[str] = Field(None, max_length=255)
    description: str = Field(..., max_length=5000)


class Interaction(BaseModel):
    """Append-only timeline entry"""
    id: str
    business_id: str
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    user_name: str = "Unknown"
    kind: str
    title: str
    description: str = ""
    metadata: Optional[dict] = None
    created_at: datetime

    class Config:
        from_attributes = True
