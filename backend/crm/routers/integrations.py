"""
Integrations Router - CNPJ lookup, WhatsApp and AI chat
"""
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address

from crm.deps import UserContext, get_user_context, get_language
from crm.i18n import translate
from crm.models.deals import InteractionCreate
from crm.services.chat_webhook import ChatWebhookClient, get_chat_client
from crm.services.cnpj_lookup import CNPJLookup, get_cnpj_lookup
from crm.services.deal_service import DealService, get_deal_service
from crm.services.messaging import WhatsAppSender, get_whatsapp_sender

logger = logging.getLogger(__name__)

# Rate limiter (the public CNPJ registry is throttled upstream)
limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/api/v1/integrations", tags=["integrations"])


# ==========================================
# Pydantic Models
# ==========================================

class CompanyLookupResponse(BaseModel):
    source: str
    company: Dict[str, Any]


class WhatsAppRequest(BaseModel):
    phone: str = Field(..., min_length=8, max_length=30)
    text: str = Field(..., min_length=1, max_length=4096)
    deal_id: Optional[str] = Field(None, description="Log the message on this deal's timeline")


class WhatsAppResponse(BaseModel):
    sent: bool
    interaction_id: Optional[str] = None


class ChatRequest(BaseModel):
    message: str = Field(..., max_length=4000)
    session_id: str = Field(..., min_length=1, max_length=100)


class ChatResponse(BaseModel):
    reply: str


# ==========================================
# Endpoints
# ==========================================

@router.get("/cnpj/{cnpj}", response_model=CompanyLookupResponse)
@limiter.limit("30/minute")
async def lookup_cnpj(
    request: Request,
    cnpj: str,
    ctx: UserContext = Depends(get_user_context),
    lookup: CNPJLookup = Depends(get_cnpj_lookup),
):
    """Company data for the intake wizard's first step"""
    result = await lookup.lookup_company(cnpj)
    return CompanyLookupResponse(source=result["source"], company=result["company"])


@router.post("/whatsapp", response_model=WhatsAppResponse)
@limiter.limit("20/minute")
async def send_whatsapp(
    request: Request,
    data: WhatsAppRequest,
    ctx: UserContext = Depends(get_user_context),
    language: str = Depends(get_language),
    sender: WhatsAppSender = Depends(get_whatsapp_sender),
    deals: DealService = Depends(get_deal_service),
):
    """Send a WhatsApp message, optionally logging it on a deal"""
    if data.deal_id:
        # Scope check before anything is sent
        await deals.get_deal(ctx, data.deal_id)

    await sender.send_text(data.phone, data.text)

    interaction_id = None
    if data.deal_id:
        interaction = await deals.add_interaction(ctx, data.deal_id, InteractionCreate(
            kind="whatsapp",
            title=translate("whatsapp_sent_title", language),
            description=data.text,
        ))
        interaction_id = interaction.id

    return WhatsAppResponse(sent=True, interaction_id=interaction_id)


@router.post("/chat", response_model=ChatResponse)
@limiter.limit("30/minute")
async def chat(
    request: Request,
    data: ChatRequest,
    ctx: UserContext = Depends(get_user_context),
    language: str = Depends(get_language),
    client: ChatWebhookClient = Depends(get_chat_client),
):
    """Forward a message to the AI assistant"""
    reply = await client.send_message(data.message, data.session_id, language)
    return ChatResponse(reply=reply)
