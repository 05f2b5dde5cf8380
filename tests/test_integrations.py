"""
Tests for the outbound integrations: CNPJ registry, WhatsApp (Evolution
API) and the AI chat webhook. HTTP is served by httpx.MockTransport.
"""
import asyncio
import json

import httpx
import pytest

from crm.config import IntegrationConfig
from crm.errors import ExternalServiceError, NotFoundError, ValidationError
from crm.services import cnpj_lookup
from crm.services.chat_webhook import ChatWebhookClient, parse_chat_reply
from crm.services.cnpj_lookup import CNPJLookup
from crm.services.messaging import WhatsAppSender, format_phone_for_whatsapp


@pytest.fixture
def config():
    config = IntegrationConfig()
    config.cnpj_api_url = "https://registry.test/v1/cnpj"
    config.evolution_api_url = "https://evolution.test/"
    config.evolution_api_key = "secret-key"
    config.evolution_instance = "vendas"
    config.chat_webhook_url = "https://chat.test/webhook"
    config.http_timeout = 5.0
    return config


RECEITA_PAYLOAD = {
    "status": "OK",
    "cnpj": "11222333000181",
    "nome": "ACME TECNOLOGIA LTDA",
    "fantasia": "ACME",
    "porte": "EMPRESA DE PEQUENO PORTE",
    "capital_social": "1.500.000,00",
    "uf": "PR",
    "municipio": "CURITIBA",
    "atividade_principal": [{"code": "62.01-5-01", "text": "Desenvolvimento de programas de computador sob encomenda - software"}],
}


class TestCNPJHelpers:
    @pytest.mark.parametrize("raw, masked", [
        ("11", "11"),
        ("11222", "11.222"),
        ("11222333", "11.222.333"),
        ("112223330001", "11.222.333/0001"),
        ("11222333000181", "11.222.333/0001-81"),
        ("11.222.333/0001-81", "11.222.333/0001-81"),
    ])
    def test_format_cnpj(self, raw, masked):
        assert cnpj_lookup.format_cnpj(raw) == masked

    @pytest.mark.parametrize("porte, size", [
        ("MICRO EMPRESA", "Micro (até 9 funcionários)"),
        ("EMPRESA DE PEQUENO PORTE", "Pequena (10-49 funcionários)"),
        ("MÉDIO", "Média (50-249 funcionários)"),
        ("GRANDE", "Grande (250+ funcionários)"),
        ("DEMAIS", "Micro (até 9 funcionários)"),
        (None, "Micro (até 9 funcionários)"),
    ])
    def test_company_size(self, porte, size):
        assert cnpj_lookup.map_company_size(porte) == size

    @pytest.mark.parametrize("capital, revenue", [
        ("100.000,00", "Até R$ 360 mil"),
        ("360.000,00", "Até R$ 360 mil"),
        ("1.500.000,00", "R$ 360 mil - R$ 4,8 milhões"),
        ("50.000.000,00", "R$ 4,8 milhões - R$ 300 milhões"),
        ("500.000.000,00", "Acima de R$ 300 milhões"),
        ("", "Até R$ 360 mil"),
    ])
    def test_revenue_range(self, capital, revenue):
        assert cnpj_lookup.map_revenue_range(capital) == revenue

    def test_segment(self):
        assert cnpj_lookup.determine_segment([{"text": "Atividades de atendimento hospitalar"}]) == "Saúde"
        assert cnpj_lookup.determine_segment([{"text": "Comércio varejista de calçados"}]) == "Varejo"
        assert cnpj_lookup.determine_segment([{"text": "Extração de minério"}]) == "Outros"
        assert cnpj_lookup.determine_segment([]) == "Outros"

    @pytest.mark.parametrize("uf, region", [
        ("AM", "Norte"), ("ba", "Nordeste"), ("DF", "Centro-Oeste"),
        ("SP", "Sudeste"), ("RS", "Sul"), ("XX", "Sudeste"), (None, "Sudeste"),
    ])
    def test_region(self, uf, region):
        assert cnpj_lookup.determine_region(uf) == region

    def test_company_fields(self):
        fields = cnpj_lookup.to_company_fields(RECEITA_PAYLOAD)
        assert fields["name"] == "ACME"
        assert fields["cnpj"] == "11.222.333/0001-81"
        assert fields["segment"] == "Tecnologia"
        assert fields["region"] == "Sul"
        assert fields["size"] == "Pequena (10-49 funcionários)"
        assert fields["revenue_range"] == "R$ 360 mil - R$ 4,8 milhões"


class TestCNPJLookup:
    def test_lookup(self, config):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, json=RECEITA_PAYLOAD)

        lookup = CNPJLookup(config, transport=httpx.MockTransport(handler))
        result = asyncio.run(lookup.lookup_company("11.222.333/0001-81"))

        assert seen == ["https://registry.test/v1/cnpj/11222333000181"]
        assert result["company"]["name"] == "ACME"

    def test_invalid_cnpj_makes_no_request(self, config):
        def handler(request):
            raise AssertionError("no request expected")

        lookup = CNPJLookup(config, transport=httpx.MockTransport(handler))
        with pytest.raises(ValidationError):
            asyncio.run(lookup.fetch("123"))

    def test_not_found(self, config):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(200, json={"status": "ERROR", "message": "CNPJ inválido"})
        )
        with pytest.raises(NotFoundError) as exc:
            asyncio.run(CNPJLookup(config, transport=transport).fetch("11222333000181"))
        assert exc.value.message == "CNPJ inválido"

    def test_upstream_error(self, config):
        transport = httpx.MockTransport(lambda request: httpx.Response(429, text="Too many requests"))
        with pytest.raises(ExternalServiceError):
            asyncio.run(CNPJLookup(config, transport=transport).fetch("11222333000181"))

    def test_timeout(self, config):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ExternalServiceError):
            asyncio.run(CNPJLookup(config, transport=httpx.MockTransport(handler)).fetch("11222333000181"))


class TestWhatsApp:
    @pytest.mark.parametrize("phone, formatted", [
        ("(11) 98765-4321", "5511987654321"),
        ("1133334444", "551133334444"),
        ("+55 11 98765-4321", "5511987654321"),
        ("987654321", "987654321"),
    ])
    def test_format_phone(self, phone, formatted):
        assert format_phone_for_whatsapp(phone) == formatted

    def test_send(self, config):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201, json={"key": {"id": "msg-1"}})

        sender = WhatsAppSender(config, transport=httpx.MockTransport(handler))
        asyncio.run(sender.send_text("(11) 98765-4321", " Olá! "))

        request = requests[0]
        assert str(request.url) == "https://evolution.test/message/sendText/vendas"
        assert request.headers["apikey"] == "secret-key"
        assert json.loads(request.content) == {"number": "5511987654321", "text": "Olá!"}

    def test_send_failure(self, config):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(ExternalServiceError):
            asyncio.run(WhatsAppSender(config, transport=transport).send_text("11987654321", "Oi"))

    def test_not_configured(self, config):
        config.evolution_api_key = None
        with pytest.raises(ExternalServiceError):
            asyncio.run(WhatsAppSender(config).send_text("11987654321", "Oi"))


class TestChatReplies:
    @pytest.mark.parametrize("body, reply", [
        ('[{"output": "Resposta em lista"}]', "Resposta em lista"),
        ('{"output": "Resposta direta"}', "Resposta direta"),
        ('{"message": "Mensagem"}', "Mensagem"),
        ('"Só texto"', "Só texto"),
        ("texto puro, sem JSON", "texto puro, sem JSON"),
    ])
    def test_shapes(self, body, reply):
        assert parse_chat_reply(body) == reply

    def test_empty_body(self):
        assert parse_chat_reply("").startswith("Recebi sua mensagem e estou processando")
        assert parse_chat_reply("  ", "en").startswith("I received your message and I'm processing")

    @pytest.mark.parametrize("body", ['{"foo": 1}', "[]", "42", '[{"text": "x"}]'])
    def test_unexpected_format(self, body):
        assert "problema no formato" in parse_chat_reply(body)

    def test_send_message(self, config):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(200, json=[{"output": "Olá, como posso ajudar?"}])

        client = ChatWebhookClient(config, transport=httpx.MockTransport(handler))
        reply = asyncio.run(client.send_message("  Oi  ", "session-9"))

        assert reply == "Olá, como posso ajudar?"
        assert requests == [{"message": "Oi", "sessionId": "session-9"}]

    def test_blank_message(self, config):
        with pytest.raises(ValidationError):
            asyncio.run(ChatWebhookClient(config).send_message("  ", "session-9"))

    def test_webhook_error(self, config):
        transport = httpx.MockTransport(lambda request: httpx.Response(502))
        with pytest.raises(ExternalServiceError):
            asyncio.run(ChatWebhookClient(config, transport=transport).send_message("Oi", "s"))
