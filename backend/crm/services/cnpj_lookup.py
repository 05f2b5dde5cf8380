"""
CNPJ lookup (ReceitaWS) for Brazilian company data.

Also maps the registry payload onto our company fields (size, revenue
range, segment, region).
"""
import logging
import re
from typing import Any, Dict, List, Optional

import httpx

from crm.config import IntegrationConfig, get_integration_config
from crm.errors import ValidationError, NotFoundError, ExternalServiceError

logger = logging.getLogger(__name__)

REGIONS = {
    "Norte": ["AC", "AP", "AM", "PA", "RO", "RR", "TO"],
    "Nordeste": ["AL", "BA", "CE", "MA", "PB", "PE", "PI", "RN", "SE"],
    "Centro-Oeste": ["GO", "MT", "MS", "DF"],
    "Sudeste": ["ES", "MG", "RJ", "SP"],
    "Sul": ["PR", "RS", "SC"],
}

# First matching keyword group wins
SEGMENT_KEYWORDS = [
    ("Tecnologia", ["tecnologia", "software", "dados", "internet", "hospedagem", "aplicação"]),
    ("Saúde", ["saúde", "médic", "hospital"]),
    ("Educação", ["educação", "ensino", "escola"]),
    ("Financeiro", ["financ", "banco", "crédito"]),
    ("Varejo", ["varejo", "comércio", "venda"]),
    ("Indústria", ["indústria", "fabricação", "manufatura"]),
    ("Agronegócio", ["agro", "rural", "pecuária"]),
    ("Serviços", ["serviço", "consultoria", "assessoria"]),
]


def clean_cnpj(value: str) -> str:
    """Digits only."""
    return re.sub(r"\D", "", value or "")


def format_cnpj(value: str) -> str:
    """Apply the XX.XXX.XXX/XXXX-XX mask progressively (works while typing)."""
    digits = clean_cnpj(value)
    if len(digits) <= 2:
        return digits
    if len(digits) <= 5:
        return f"{digits[:2]}.{digits[2:]}"
    if len(digits) <= 8:
        return f"{digits[:2]}.{digits[2:5]}.{digits[5:]}"
    if len(digits) <= 12:
        return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:]}"
    return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:14]}"


def map_company_size(porte: Optional[str]) -> str:
    porte = (porte or "").upper()
    if "MICRO" in porte:
        return "Micro (até 9 funcionários)"
    if "PEQUENO" in porte:
        return "Pequena (10-49 funcionários)"
    if "MEDIO" in porte or "MÉDIO" in porte:
        return "Média (50-249 funcionários)"
    if "GRANDE" in porte:
        return "Grande (250+ funcionários)"
    return "Micro (até 9 funcionários)"


def parse_capital(capital_social: Optional[str]) -> float:
    """'1.500.000,50' -> 1500000.5 (0 when unparseable)"""
    cleaned = re.sub(r"[^\d,]", "", capital_social or "").replace(",", ".")
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def map_revenue_range(capital_social: Optional[str]) -> str:
    capital = parse_capital(capital_social)
    if capital <= 360_000:
        return "Até R$ 360 mil"
    if capital <= 4_800_000:
        return "R$ 360 mil - R$ 4,8 milhões"
    if capital <= 300_000_000:
        return "R$ 4,8 milhões - R$ 300 milhões"
    return "Acima de R$ 300 milhões"


def determine_segment(main_activity: Optional[List[Dict[str, str]]]) -> str:
    if not main_activity:
        return "Outros"
    activity = (main_activity[0].get("text") or "").lower()
    for segment, keywords in SEGMENT_KEYWORDS:
        if any(keyword in activity for keyword in keywords):
            return segment
    return "Outros"


def determine_region(uf: Optional[str]) -> str:
    uf = (uf or "").upper()
    for region, states in REGIONS.items():
        if uf in states:
            return region
    return "Sudeste"


def to_company_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Map a ReceitaWS payload to the intake's company step."""
    return {
        "name": data.get("fantasia") or data.get("nome") or "",
        "cnpj": format_cnpj(data.get("cnpj", "")),
        "segment": determine_segment(data.get("atividade_principal")),
        "region": determine_region(data.get("uf")),
        "size": map_company_size(data.get("porte")),
        "revenue_range": map_revenue_range(data.get("capital_social")),
        "email": data.get("email") or None,
        "phone": data.get("telefone") or None,
        "city": data.get("municipio") or None,
        "state": data.get("uf") or None,
    }


class CNPJLookup:
    """Brazilian company registry lookup."""

    def __init__(self, config: Optional[IntegrationConfig] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config or get_integration_config()
        self.transport = transport

    async def fetch(self, cnpj: str) -> Dict[str, Any]:
        """
        Fetch raw registry data for a CNPJ.

        Raises:
            ValidationError: If the CNPJ does not have 14 digits
            NotFoundError: If the registry reports an error for it
            ExternalServiceError: On timeouts or non-2xx responses
        """
        digits = clean_cnpj(cnpj)
        if len(digits) != 14:
            raise ValidationError("CNPJ must have 14 digits")

        try:
            async with httpx.AsyncClient(timeout=self.config.http_timeout, transport=self.transport) as client:
                response = await client.get(
                    f"{self.config.cnpj_api_url}/{digits}",
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException as e:
            logger.error(f"CNPJ lookup timeout for {digits}")
            raise ExternalServiceError("cnpj", "lookup timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"CNPJ lookup failed for {digits}: {e}")
            raise ExternalServiceError("cnpj", f"lookup failed: {e}") from e

        if response.status_code != 200:
            logger.error(f"CNPJ API returned status {response.status_code} for {digits}")
            raise ExternalServiceError("cnpj", f"API returned status {response.status_code}")

        data = response.json()
        if data.get("status") == "ERROR":
            raise NotFoundError(data.get("message") or "CNPJ not found")

        return data

    async def lookup_company(self, cnpj: str) -> Dict[str, Any]:
        """Fetch and map to company fields."""
        data = await self.fetch(cnpj)
        company = to_company_fields(data)
        logger.info(f"CNPJ lookup found '{company['name']}'")
        return {"source": "receitaws", "company": company, "raw": data}


# Singleton instance
_cnpj_lookup: Optional[CNPJLookup] = None


def get_cnpj_lookup() -> CNPJLookup:
    """Get or create CNPJ lookup instance"""
    global _cnpj_lookup
    if _cnpj_lookup is None:
        _cnpj_lookup = CNPJLookup()
    return _cnpj_lookup
