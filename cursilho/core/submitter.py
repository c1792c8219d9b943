import logging
from typing import Any, Dict

import httpx

from .errors import ServerRejection, TransportError
from .normalizers import mask_cpf_for_log

logger = logging.getLogger(__name__)

# Mensagens do servidor repassadas ao usuário; acima disso, mensagem genérica
_SAFE_STATUSES = (400, 404, 409)


class EnrollmentSubmitter:
    """
    Envia o payload montado pelo assistente para POST /submit-inscricao.

    O servidor refaz todas as validações, então repetir o envio é seguro.
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def submit(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self._base_url}/submit-inscricao"
        cpf_log = mask_cpf_for_log(payload.get("cpf"))
        logger.info(f"Enviando inscrição: cpf={cpf_log}")

        try:
            resp = await self._client.post(url, json=payload)
        except httpx.HTTPError as e:
            logger.warning(
                f"Falha de rede ao enviar inscrição: cpf={cpf_log}, "
                f"error={type(e).__name__}: {e}"
            )
            raise TransportError() from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if resp.status_code >= 400:
            server_message = body.get("error")
            logger.warning(
                f"Inscrição rejeitada: cpf={cpf_log}, status={resp.status_code}, "
                f"error={server_message}"
            )
            if resp.status_code in _SAFE_STATUSES and server_message:
                raise ServerRejection(resp.status_code, str(server_message))
            if resp.status_code >= 500:
                raise TransportError()
            raise ServerRejection(resp.status_code, f"Erro {resp.status_code} ao submeter inscrição")

        logger.info(f"Inscrição aceita: cpf={cpf_log}, status={resp.status_code}")
        return body
