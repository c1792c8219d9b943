import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional
from sqlalchemy import func, select
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from .models import Cursilhista, Enrollment, Person

logger = logging.getLogger(__name__)

# Campos da pessoa que podem ser atualizados numa nova inscrição
PERSON_MUTABLE_FIELDS = (
    "full_name",
    "whatsapp",
    "alt_contact",
    "email",
    "birth_date",
    "postal_code",
    "street",
    "city",
    "state",
    "church",
    "notes",
)


def _document_as_typed(document: Optional[str]) -> Optional[str]:
    # Cabe na coluna persons.document
    document = (document or "").strip()[:Person.document.type.length]
    return document or None


def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


class PersonRepository:
    """
    Repositório de pessoas.

    Não faz commit: a transação pertence a quem chama.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def find_by_cpf(self, cpf: str, for_update: bool = False) -> Optional[Person]:
        stmt = select(Person).where(Person.cpf == cpf).limit(1)
        if for_update:
            # Ignorado pelo SQLite, serializa a inscrição no PostgreSQL
            stmt = stmt.with_for_update()
        return self._db.execute(stmt).scalars().first()

    def create_person(self, cpf: str, fields: Dict[str, Any], document: Optional[str] = None) -> Person:
        logger.debug(f"Criando pessoa: fields={sorted(k for k, v in fields.items() if _is_present(v))}")
        person = Person(cpf=cpf, document=_document_as_typed(document))
        for name in PERSON_MUTABLE_FIELDS:
            value = fields.get(name)
            if _is_present(value):
                setattr(person, name, value)
        try:
            self._db.add(person)
            self._db.flush()
        except IntegrityError as e:
            logger.error(
                f"Erro de integridade ao criar pessoa: error={type(e).__name__}: {e}",
                exc_info=True,
            )
            raise

        assert person.id is not None, "Person persisted without id!"
        return person

    def merge_update(self, person: Person, fields: Dict[str, Any]) -> List[str]:
        """
        Atualiza somente os campos presentes na nova submissão.
        Ausência de um campo nunca apaga o dado existente.

        Retorna a lista de campos alterados.
        """
        changed = []
        for name in PERSON_MUTABLE_FIELDS:
            value = fields.get(name)
            if _is_present(value) and getattr(person, name) != value:
                setattr(person, name, value)
                changed.append(name)
        if changed:
            self._db.flush()
        logger.debug(f"Pessoa atualizada: id={person.id}, campos={changed}")
        return changed


class CursilhistaRepository:

    def __init__(self, db: Session) -> None:
        self._db = db

    def create_cursilhista(self, person_id: int, **fields: Any) -> Cursilhista:
        cursilhista = Cursilhista(person_id=person_id, **fields)
        self._db.add(cursilhista)
        self._db.flush()
        assert cursilhista.id is not None, "Cursilhista persisted without id!"
        return cursilhista


class EnrollmentRepository:

    def __init__(self, db: Session) -> None:
        self._db = db

    def list_statuses_for_person(self, person_id: int) -> List[str]:
        stmt = select(Enrollment.status).where(Enrollment.person_id == person_id)
        return list(self._db.execute(stmt).scalars().all())

    def create_enrollment(
        self,
        person_id: int,
        cursilhista_id: int,
        event_key: str,
        amount: Decimal,
        payment_method: str,
        status: str = "pending",
    ) -> Enrollment:
        enrollment = Enrollment(
            person_id=person_id,
            cursilhista_id=cursilhista_id,
            event_key=event_key,
            amount=amount,
            payment_method=payment_method,
            status=status,
        )
        try:
            self._db.add(enrollment)
            self._db.flush()
        except SQLAlchemyError as e:
            logger.error(
                f"Erro de banco de dados ao criar inscrição: person_id={person_id}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True,
            )
            raise

        assert enrollment.id is not None, "Enrollment persisted without id!"
        return enrollment

    def get(self, enrollment_id: int) -> Optional[Enrollment]:
        return self._db.get(Enrollment, enrollment_id)

    def list_enrollments(
        self,
        status: Optional[str] = None,
        event_key: Optional[str] = None,
    ) -> List[Enrollment]:
        stmt = select(Enrollment).order_by(Enrollment.id)
        if status:
            stmt = stmt.where(Enrollment.status == status)
        if event_key:
            stmt = stmt.where(Enrollment.event_key == event_key)
        return list(self._db.execute(stmt).scalars().all())

    def set_status(self, enrollment: Enrollment, status: str) -> Enrollment:
        enrollment.status = status
        self._db.flush()
        return enrollment

    def summary_by_status(self, event_key: Optional[str] = None) -> Dict[str, Dict[str, Any]]:
        stmt = select(
            Enrollment.status,
            func.count(Enrollment.id),
            func.coalesce(func.sum(Enrollment.amount), 0),
        ).group_by(Enrollment.status)
        if event_key:
            stmt = stmt.where(Enrollment.event_key == event_key)
        return {
            status: {"count": count, "amount": Decimal(str(total))}
            for status, count, total in self._db.execute(stmt).all()
        }
