from datetime import datetime, timezone
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship
from .database import Base

ENROLLMENT_STATUSES = ("pending", "confirmed", "attended", "cancelled")

# Status que contam como participação efetiva de um cursilhista
PARTICIPATION_STATUSES = ("confirmed", "attended")

_PARTICIPATION_CLAUSE = text("status IN ('confirmed', 'attended')")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Person(Base):
    """
    Pessoa identificada pelo CPF normalizado.
    """
    __tablename__ = "persons"

    id = Column(Integer, primary_key=True, autoincrement=True)
    full_name = Column(String(200), nullable=False)
    document = Column(String(20), nullable=True)  # CPF como digitado
    cpf = Column(String(11), nullable=False, unique=True, index=True)
    whatsapp = Column(String(20), nullable=True)
    alt_contact = Column(String(50), nullable=True)
    email = Column(String(200), nullable=True)
    birth_date = Column(Date, nullable=True)
    postal_code = Column(String(8), nullable=True)
    street = Column(String(200), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(2), nullable=True)
    church = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    enrollments = relationship("Enrollment", back_populates="person")


class Cursilhista(Base):
    """
    Perfil de cursilhista ligado a uma pessoa (dados do evento).
    """
    __tablename__ = "cursilhistas"

    id = Column(Integer, primary_key=True, autoincrement=True)
    person_id = Column(Integer, ForeignKey("persons.id"), nullable=False, index=True)
    shirt_size = Column(String(10), nullable=True)
    dietary_restriction = Column(Text, nullable=True)
    medical_restriction = Column(Text, nullable=True)
    health_notes = Column(Text, nullable=True)
    financial_responsible = Column(JSON, nullable=True)
    accepts_terms = Column(Boolean, nullable=False, default=False)
    terms_version = Column(String(100), nullable=True)
    terms_accepted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    person = relationship("Person")


class Enrollment(Base):
    """
    Inscrição de uma pessoa em uma edição do evento.
    """
    __tablename__ = "enrollments"
    __table_args__ = (
        # Uma pessoa só pode ter uma inscrição confirmada/participada
        Index(
            "uq_enrollments_person_participation",
            "person_id",
            unique=True,
            postgresql_where=_PARTICIPATION_CLAUSE,
            sqlite_where=_PARTICIPATION_CLAUSE,
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    person_id = Column(Integer, ForeignKey("persons.id"), nullable=False, index=True)
    cursilhista_id = Column(Integer, ForeignKey("cursilhistas.id"), nullable=False)
    event_key = Column(String(100), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")
    amount = Column(Numeric(10, 2), nullable=False)
    payment_method = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    person = relationship("Person", back_populates="enrollments")
    cursilhista = relationship("Cursilhista")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "person_id": self.person_id,
            "cursilhista_id": self.cursilhista_id,
            "event_key": self.event_key,
            "status": self.status,
            "amount": float(self.amount),
            "payment_method": self.payment_method,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
