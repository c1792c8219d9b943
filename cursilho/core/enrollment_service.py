import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .eligibility import EligibilityVerdict, RepositoryEligibilityGateway
from .errors import ConflictError, DuplicateError, EnrollmentError, NotFoundError, ValidationError
from .normalizers import mask_cpf_for_log, normalize_cpf
from .registration_state import PaymentMethod
from ..config import AppConfig
from ..domain.event_info import get_event_info
from ..infra.email_service import EmailService
from ..storage.models import ENROLLMENT_STATUSES, Enrollment
from ..storage.repository import CursilhistaRepository, EnrollmentRepository, PersonRepository

logger = logging.getLogger(__name__)


@dataclass
class EnrollmentRequest:
    """
    Inscrição já traduzida do formato de entrada (assistente ou legado).
    `person` usa os nomes de campo do modelo Person.
    """
    cpf: str
    person: Dict[str, Any] = field(default_factory=dict)
    payment_method: str = PaymentMethod.PIX.value
    shirt_size: Optional[str] = None
    dietary_restriction: Optional[str] = None
    medical_restriction: Optional[str] = None
    health_notes: Optional[str] = None
    financial_responsible: Optional[Dict[str, Any]] = None
    accepts_terms: bool = False
    terms_version: Optional[str] = None
    event_key: Optional[str] = None


class EnrollmentService:
    """
    Caminho autoritativo da inscrição.

    Não confia em nenhuma verificação feita pelo assistente: revalida o CPF,
    refaz a checagem de participação e grava pessoa, perfil e inscrição
    numa única transação.
    """

    def __init__(
        self,
        db_session_factory: sessionmaker,
        config: AppConfig,
        email_service: Optional[EmailService] = None,
    ) -> None:
        self._db_session_factory = db_session_factory
        self._config = config
        self._email_service = email_service

    def price_for(self, method: PaymentMethod) -> Decimal:
        if method == PaymentMethod.CARD:
            return self._config.price_card
        return self._config.price_pix

    def check_cpf(self, cpf: str) -> EligibilityVerdict:
        db = self._db_session_factory()
        try:
            return RepositoryEligibilityGateway(db).check_sync(cpf)
        finally:
            db.close()

    def enroll(self, request: EnrollmentRequest) -> Enrollment:
        cpf = normalize_cpf(request.cpf)
        if cpf is None:
            raise ValidationError("CPF inválido")

        full_name = (request.person.get("full_name") or "").strip()
        if not full_name:
            raise ValidationError("Nome obrigatório")

        try:
            method = PaymentMethod(request.payment_method or PaymentMethod.PIX.value)
        except ValueError:
            raise ValidationError("Forma de pagamento inválida")

        amount = self.price_for(method)
        event_key = request.event_key or self._config.event_key
        cpf_log = mask_cpf_for_log(cpf)

        db = self._db_session_factory()
        try:
            gateway = RepositoryEligibilityGateway(db)
            persons = PersonRepository(db)

            person = gateway.find_person(cpf, for_update=True)
            verdict = gateway.verdict_for(person)
            if verdict.participated:
                logger.warning(f"Inscrição recusada, CPF já participou: cpf={cpf_log}")
                raise DuplicateError("CPF já participou de um Cursilho")

            if person is not None:
                changed = persons.merge_update(person, request.person)
                logger.info(f"Pessoa existente reaproveitada: person_id={person.id}, campos={changed}")
            else:
                person = persons.create_person(cpf, request.person, document=request.cpf)
                logger.info(f"Pessoa criada: person_id={person.id}, cpf={cpf_log}")

            cursilhista = CursilhistaRepository(db).create_cursilhista(
                person_id=person.id,
                shirt_size=request.shirt_size,
                dietary_restriction=request.dietary_restriction,
                medical_restriction=request.medical_restriction,
                health_notes=request.health_notes,
                financial_responsible=request.financial_responsible,
                accepts_terms=bool(request.accepts_terms),
                terms_version=request.terms_version,
                terms_accepted_at=datetime.now(timezone.utc) if request.accepts_terms else None,
            )

            enrollment = EnrollmentRepository(db).create_enrollment(
                person_id=person.id,
                cursilhista_id=cursilhista.id,
                event_key=event_key,
                amount=amount,
                payment_method=method.value,
                status="pending",
            )

            db.commit()
            person_email, person_name = person.email, person.full_name
        except EnrollmentError:
            db.rollback()
            raise
        except IntegrityError as e:
            db.rollback()
            logger.error(
                f"Violação de unicidade na inscrição: cpf={cpf_log}, "
                f"error={type(e).__name__}: {e}",
            )
            raise ConflictError() from e
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                f"Erro de banco de dados na inscrição: cpf={cpf_log}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True,
            )
            raise EnrollmentError() from e
        finally:
            db.close()

        logger.info(
            f"Inscrição criada: enrollment_id={enrollment.id}, person_id={enrollment.person_id}, "
            f"event_key={event_key}, method={method.value}, amount={amount}"
        )
        self._notify(person_email, person_name, enrollment)
        return enrollment

    def _notify(self, email: Optional[str], full_name: str, enrollment: Enrollment) -> None:
        if self._email_service is None or not email:
            return
        event = get_event_info(enrollment.event_key, self._config.price_pix, self._config.price_card)
        try:
            self._email_service.send_enrollment_received(
                to_email=email,
                full_name=full_name,
                event_name=event.name,
                amount=enrollment.amount,
                payment_method=enrollment.payment_method,
            )
        except Exception as e:
            # Inscrição já gravada: falha no e-mail só gera log
            logger.error(
                f"Erro ao enviar e-mail de inscrição: enrollment_id={enrollment.id}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True,
            )

    def set_status(self, enrollment_id: int, status: str) -> Enrollment:
        """
        Mudança de status feita pela administração (confirmação de pagamento,
        presença, cancelamento). O índice único parcial garante uma única
        inscrição confirmada/participada por pessoa.
        """
        if status not in ENROLLMENT_STATUSES:
            raise ValidationError(f"Status inválido: {status}")

        db = self._db_session_factory()
        try:
            repo = EnrollmentRepository(db)
            enrollment = repo.get(enrollment_id)
            if enrollment is None:
                raise NotFoundError("Inscrição não encontrada")
            previous = enrollment.status
            repo.set_status(enrollment, status)
            db.commit()
        except EnrollmentError:
            db.rollback()
            raise
        except IntegrityError as e:
            db.rollback()
            logger.warning(
                f"Status recusado pela unicidade: enrollment_id={enrollment_id}, status={status}"
            )
            raise ConflictError(
                "Esta pessoa já possui uma inscrição confirmada ou participada."
            ) from e
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                f"Erro ao alterar status: enrollment_id={enrollment_id}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True,
            )
            raise EnrollmentError() from e
        finally:
            db.close()

        logger.info(f"Status alterado: enrollment_id={enrollment_id}, {previous} -> {status}")
        return enrollment

    def list_enrollments(
        self,
        status: Optional[str] = None,
        event_key: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        db = self._db_session_factory()
        try:
            items = []
            for enrollment in EnrollmentRepository(db).list_enrollments(status=status, event_key=event_key):
                data = enrollment.to_dict()
                data["person"] = {
                    "nome": enrollment.person.full_name,
                    "cpf": mask_cpf_for_log(enrollment.person.cpf),
                    "whatsapp": enrollment.person.whatsapp,
                }
                items.append(data)
            return items
        finally:
            db.close()

    def summary(self, event_key: Optional[str] = None) -> Dict[str, Any]:
        db = self._db_session_factory()
        try:
            by_status = EnrollmentRepository(db).summary_by_status(event_key=event_key)
        finally:
            db.close()

        counts = {status: by_status.get(status, {}).get("count", 0) for status in ENROLLMENT_STATUSES}
        expected = sum(
            (row["amount"] for status, row in by_status.items() if status != "cancelled"),
            Decimal("0"),
        )
        return {
            "event_key": event_key,
            "total": sum(counts.values()),
            "by_status": counts,
            "amount_expected": float(expected.quantize(Decimal("0.01"))),
        }
