"""
Service Catalog Models

A service sells one or more monthly plans. Deals reference a service and
one of its plans (or the "custom" sentinel with an explicit price).
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal


CUSTOM_PLAN_ID = "custom"


class ServicePlan(BaseModel):
    """A plan of a service, priced per month"""
    id: str
    name: str
    price: Decimal = Field(Decimal("0"), ge=0)
    duration: str = "mensal"
    features: List[str] = []
    active: bool = True


class ServiceBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    plans: List[ServicePlan] = Field(..., min_length=1)


class ServiceCreate(ServiceBase):
    """Create a service with at least one plan"""
    pass


class ServiceUpdate(BaseModel):
    """Update a service - all fields optional"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    plans: Optional[List[ServicePlan]] = Field(None, min_length=1)
    active: Optional[bool] = None


class Service(ServiceBase):
    """Full service record"""
    id: str
    organization_id: Optional[str] = None
    active: bool = True
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    def find_plan(self, plan_id: Optional[str]) -> Optional[ServicePlan]:
        if not plan_id:
            return None
        return next((p for p in self.plans if p.id == plan_id), None)


DEFAULT_SERVICES = [
    {
        "name": "Consultoria em Patentes",
        "description": "Monitoramento e análise de patentes",
        "plans": [
            {
                "id": "individual",
                "name": "Individual",
                "price": 199,
                "duration": "mensal",
                "features": ["Busca de patentes", "Alertas básicos", "Relatório mensal"],
                "active": True,
            },
            {
                "id": "corporate",
                "name": "Corporativo",
                "price": 899,
                "duration": "mensal",
                "features": ["Busca avançada", "Alertas personalizados", "Análise competitiva", "Consultoria"],
                "active": True,
            },
        ],
        "active": True,
    }
]
