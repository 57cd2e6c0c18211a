"""
CNPJ registry lookup used to enrich companies on creation.

BrasilAPI first, publica.cnpj.ws as fallback. Lookups never fail an
import: any error is logged and an empty dict is returned.
"""

import logging
from typing import Any, Dict, Optional

import requests

from .normalizer import only_digits

logger = logging.getLogger(__name__)

BRASILAPI_URL = "https://brasilapi.com.br/api/cnpj/v1/{cnpj}"
CNPJWS_URL = "https://publica.cnpj.ws/cnpj/{cnpj}"
REQUEST_TIMEOUT = 15


def format_postal_code(value) -> str:
    digits = only_digits(str(value or ""))
    if len(digits) == 8:
        return f"{digits[:5]}-{digits[5:]}"
    return str(value or "")


def _join(*parts) -> str:
    return " ".join(str(p).strip() for p in parts if p and str(p).strip())


def parse_brasilapi(data: Dict[str, Any]) -> Dict[str, str]:
    street_type = data.get("descricao_tipo_de_logradouro") or data.get("descricao_tipo_logradouro")
    return {
        "legal_name": data.get("razao_social") or "",
        "trade_name": data.get("nome_fantasia") or "",
        "opening_date": data.get("data_inicio_atividade") or data.get("data_abertura") or "",
        "postal_code": format_postal_code(data.get("cep")),
        "district": data.get("bairro") or "",
        "street": _join(street_type, data.get("logradouro")),
        "number": str(data.get("numero") or ""),
        "city": data.get("municipio") or data.get("cidade") or "",
        "state": data.get("uf") or data.get("estado") or "",
        "phone": str(data.get("ddd_telefone_1") or data.get("telefone") or ""),
        "email": data.get("email") or "",
    }


def parse_cnpjws(data: Dict[str, Any]) -> Dict[str, str]:
    est = data.get("estabelecimento") or {}
    return {
        "legal_name": data.get("razao_social") or "",
        "trade_name": est.get("nome_fantasia") or "",
        "opening_date": est.get("data_inicio_atividade") or "",
        "postal_code": format_postal_code(est.get("cep")),
        "district": est.get("bairro") or "",
        "street": _join(est.get("tipo_logradouro"), est.get("logradouro")),
        "number": str(est.get("numero") or ""),
        "city": (est.get("cidade") or {}).get("nome") or "",
        "state": (est.get("estado") or {}).get("sigla") or "",
        "phone": only_digits(str(est.get("ddd1") or "")) + only_digits(str(est.get("telefone1") or "")),
        "email": est.get("email") or "",
    }


class CnpjLookup:
    """
    Registry lookup client.

    Usage:
        lookup = CnpjLookup()
        fields = lookup.lookup("12.345.678/0001-95")
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = REQUEST_TIMEOUT):
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        self.timeout = timeout

    def _fetch(self, url: str) -> Dict[str, Any]:
        resp = self.session.get(url, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def lookup(self, tax_id: str) -> Dict[str, str]:
        """Return the non-empty registry fields for a CNPJ, or {}."""
        cnpj = only_digits(tax_id)
        if len(cnpj) != 14:
            return {}

        providers = (
            ("brasilapi", BRASILAPI_URL, parse_brasilapi),
            ("cnpjws", CNPJWS_URL, parse_cnpjws),
        )
        for provider, url, parse in providers:
            try:
                data = self._fetch(url.format(cnpj=cnpj))
            except (requests.RequestException, ValueError) as e:
                logger.info("CNPJ lookup via %s failed for %s: %s", provider, cnpj, e)
                continue
            fields = {k: v for k, v in parse(data).items() if v}
            logger.debug("CNPJ %s enriched via %s (%d fields)", cnpj, provider, len(fields))
            return fields

        logger.warning("CNPJ %s could not be enriched by any provider", cnpj)
        return {}
