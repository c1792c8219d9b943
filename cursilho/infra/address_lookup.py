import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from ..core.normalizers import normalize_cep, normalize_uf

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Address:
    postal_code: str
    street: Optional[str]
    district: Optional[str]
    city: Optional[str]
    state: Optional[str]


class ViaCepAddressLookup:
    """
    Consulta endereço por CEP no ViaCEP.

    Preenchimento de conveniência: CEP inexistente, resposta inválida
    ou falha de rede retornam None e apenas geram log.
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str = "https://viacep.com.br/ws") -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def lookup(self, cep: str) -> Optional[Address]:
        digits = normalize_cep(cep)
        if digits is None:
            return None

        try:
            resp = await self._client.get(f"{self._base_url}/{digits}/json/")
            if resp.status_code != 200:
                logger.info(f"ViaCEP respondeu {resp.status_code}: cep={digits}")
                return None
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Erro ao consultar ViaCEP: cep={digits}, error={type(e).__name__}: {e}")
            return None

        if not isinstance(data, dict) or data.get("erro"):
            logger.info(f"CEP não encontrado: cep={digits}")
            return None

        return Address(
            postal_code=digits,
            street=data.get("logradouro") or None,
            district=data.get("bairro") or None,
            city=data.get("localidade") or None,
            state=normalize_uf(data.get("uf")),
        )
