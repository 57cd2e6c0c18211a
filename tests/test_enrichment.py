"""
Tests for the CNPJ registry lookup (no network: the session is faked).
"""
import sys
from pathlib import Path

import requests

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from registry_import.enrichment import (  # noqa: E402
    CnpjLookup,
    format_postal_code,
    parse_brasilapi,
    parse_cnpjws,
)

BRASILAPI_PAYLOAD = {
    "cnpj": "12345678000195",
    "razao_social": "ACME COMERCIO LTDA",
    "nome_fantasia": "ACME",
    "data_inicio_atividade": "2010-05-03",
    "cep": "01310100",
    "bairro": "BELA VISTA",
    "descricao_tipo_de_logradouro": "AVENIDA",
    "logradouro": "PAULISTA",
    "numero": "1000",
    "municipio": "SAO PAULO",
    "uf": "SP",
    "ddd_telefone_1": "1133334444",
    "email": None,
}

CNPJWS_PAYLOAD = {
    "razao_social": "ACME COMERCIO LTDA",
    "estabelecimento": {
        "nome_fantasia": "ACME",
        "data_inicio_atividade": "2010-05-03",
        "cep": "01310100",
        "bairro": "BELA VISTA",
        "tipo_logradouro": "AVENIDA",
        "logradouro": "PAULISTA",
        "numero": "1000",
        "cidade": {"nome": "São Paulo"},
        "estado": {"sigla": "SP"},
        "ddd1": "11",
        "telefone1": "3333-4444",
        "email": "contato@acme.com.br",
    },
}


class FakeResponse:
    def __init__(self, status_code, payload=None):
        self.status_code = status_code
        self._payload = payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def json(self):
        if self._payload is None:
            raise ValueError("no JSON body")
        return self._payload


class FakeSession:
    def __init__(self, responses):
        self.responses = responses
        self.headers = {}
        self.calls = []

    def get(self, url, timeout=None):
        self.calls.append((url, timeout))
        for prefix, response in self.responses.items():
            if url.startswith(prefix):
                if isinstance(response, Exception):
                    raise response
                return response
        raise requests.ConnectionError(f"unexpected url {url}")


# ============================================================================
# Parsers
# ============================================================================

def test_postal_code_formatting():
    assert format_postal_code("01310100") == "01310-100"
    assert format_postal_code("01310-100") == "01310-100"
    assert format_postal_code(None) == ""


def test_parse_brasilapi():
    fields = parse_brasilapi(BRASILAPI_PAYLOAD)
    assert fields["legal_name"] == "ACME COMERCIO LTDA"
    assert fields["street"] == "AVENIDA PAULISTA"
    assert fields["postal_code"] == "01310-100"
    assert fields["city"] == "SAO PAULO"
    assert fields["email"] == ""


def test_parse_cnpjws():
    fields = parse_cnpjws(CNPJWS_PAYLOAD)
    assert fields["city"] == "São Paulo"
    assert fields["state"] == "SP"
    assert fields["phone"] == "1133334444"
    assert fields["street"] == "AVENIDA PAULISTA"


# ============================================================================
# Lookup
# ============================================================================

def test_lookup_uses_brasilapi_first():
    session = FakeSession({"https://brasilapi.com.br": FakeResponse(200, BRASILAPI_PAYLOAD)})
    fields = CnpjLookup(session=session, timeout=5).lookup("12.345.678/0001-95")
    assert fields["trade_name"] == "ACME"
    assert "email" not in fields
    assert session.calls == [("https://brasilapi.com.br/api/cnpj/v1/12345678000195", 5)]
    assert session.headers["Accept"] == "application/json"


def test_lookup_falls_back_to_cnpjws():
    session = FakeSession({
        "https://brasilapi.com.br": FakeResponse(404),
        "https://publica.cnpj.ws": FakeResponse(200, CNPJWS_PAYLOAD),
    })
    fields = CnpjLookup(session=session).lookup("12345678000195")
    assert fields["email"] == "contato@acme.com.br"
    assert len(session.calls) == 2


def test_lookup_all_providers_fail():
    session = FakeSession({
        "https://brasilapi.com.br": requests.Timeout("read timed out"),
        "https://publica.cnpj.ws": FakeResponse(200, None),
    })
    assert CnpjLookup(session=session).lookup("12345678000195") == {}


def test_lookup_ignores_cpf():
    session = FakeSession({})
    assert CnpjLookup(session=session).lookup("123.456.789-09") == {}
    assert session.calls == []
