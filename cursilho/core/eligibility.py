"""
Verificação de elegibilidade por CPF.

Responde se a pessoa já existe e se já participou de um Cursilho
(alguma inscrição com status confirmado ou participado).

Dois lados da mesma pergunta:
- RepositoryEligibilityGateway: lê o banco de forma síncrona (servidor, autoritativa)
- HttpEligibilityGateway: chama GET /check-cpf, implementa EligibilityGateway
  (assistente, consultiva)
"""
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import LookupFailedError, ValidationError
from .normalizers import mask_cpf_for_log, normalize_cpf
from ..storage.models import PARTICIPATION_STATUSES, Person
from ..storage.repository import EnrollmentRepository, PersonRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersonSummary:
    id: int
    nome: Optional[str]
    whatsapp: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class EligibilityVerdict:
    exists: bool
    participated: bool
    person: Optional[PersonSummary] = None

    def to_dict(self) -> dict:
        data = {"exists": self.exists, "participated": self.participated}
        if self.person is not None:
            data["person"] = {
                "id": self.person.id,
                "nome": self.person.nome,
                "whatsapp": self.person.whatsapp,
                "email": self.person.email,
            }
        return data


NOT_FOUND = EligibilityVerdict(exists=False, participated=False)


def has_participated(statuses) -> bool:
    return any(status in PARTICIPATION_STATUSES for status in statuses)


class EligibilityGateway(Protocol):
    async def check(self, cpf: str) -> EligibilityVerdict:
        ...


class RepositoryEligibilityGateway:
    """
    Consulta pessoa e inscrições no banco. Somente leitura.
    """

    def __init__(self, db: Session) -> None:
        self._persons = PersonRepository(db)
        self._enrollments = EnrollmentRepository(db)

    def find_person(self, cpf: str, for_update: bool = False) -> Optional[Person]:
        return self._persons.find_by_cpf(cpf, for_update=for_update)

    def verdict_for(self, person: Optional[Person]) -> EligibilityVerdict:
        if person is None:
            return NOT_FOUND
        statuses = self._enrollments.list_statuses_for_person(person.id)
        return EligibilityVerdict(
            exists=True,
            participated=has_participated(statuses),
            person=PersonSummary(
                id=person.id,
                nome=person.full_name,
                whatsapp=person.whatsapp,
                email=person.email,
            ),
        )

    def check_sync(self, cpf: str) -> EligibilityVerdict:
        normalized = normalize_cpf(cpf)
        if normalized is None:
            raise ValidationError("CPF inválido")
        try:
            verdict = self.verdict_for(self.find_person(normalized))
        except SQLAlchemyError as e:
            logger.error(
                f"Erro ao consultar elegibilidade: cpf={mask_cpf_for_log(normalized)}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True,
            )
            raise LookupFailedError() from e

        logger.debug(
            f"Elegibilidade consultada: cpf={mask_cpf_for_log(normalized)}, "
            f"exists={verdict.exists}, participated={verdict.participated}"
        )
        return verdict


class HttpEligibilityGateway:
    """
    Cliente de GET /check-cpf usado pelo assistente de inscrição.
    Qualquer falha de rede ou resposta não-2xx vira LookupFailedError.
    """

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def check(self, cpf: str) -> EligibilityVerdict:
        url = f"{self._base_url}/check-cpf"
        try:
            resp = await self._client.get(url, params={"cpf": cpf})
        except httpx.HTTPError as e:
            logger.warning(f"Falha de rede ao verificar CPF: error={type(e).__name__}: {e}")
            raise LookupFailedError() from e

        try:
            body = resp.json()
        except ValueError:
            body = None

        if resp.status_code != 200:
            message = body.get("error") if isinstance(body, dict) else None
            logger.warning(
                f"check-cpf respondeu {resp.status_code}: cpf={mask_cpf_for_log(cpf)}"
            )
            raise LookupFailedError(message or f"Erro {resp.status_code} ao verificar CPF")

        # 200 sem objeto JSON (página de proxy, corpo truncado) é falha, não "não encontrado"
        if not isinstance(body, dict) or "exists" not in body:
            logger.warning(
                f"check-cpf respondeu 200 com corpo inesperado: cpf={mask_cpf_for_log(cpf)}"
            )
            raise LookupFailedError()

        person_data = body.get("person")
        person = None
        if person_data:
            person = PersonSummary(
                id=person_data.get("id"),
                nome=person_data.get("nome"),
                whatsapp=person_data.get("whatsapp"),
                email=person_data.get("email"),
            )
        return EligibilityVerdict(
            exists=bool(body.get("exists")),
            participated=bool(body.get("participated")),
            person=person,
        )
