"""
Fixtures compartilhadas: banco SQLite em memória por teste,
aplicação FastAPI e e-mail falso.
"""
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from cursilho.api.http import create_app
from cursilho.config import AppConfig
from cursilho.core.enrollment_service import EnrollmentService
from cursilho.storage.database import create_session_factory

VALID_CPF = "11144477735"
OTHER_VALID_CPF = "52998224725"
ADMIN_KEY = "test-key"


class RecordingEmailService:
    def __init__(self) -> None:
        self.sent = []

    def send_enrollment_received(self, **kwargs) -> None:
        self.sent.append(kwargs)


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        database_url="sqlite://",
        env="dev",
        admin_api_key=ADMIN_KEY,
        event_key="14-cursilho-2026",
        price_pix=Decimal("700.08"),
        price_card=Decimal("750.08"),
    )


@pytest.fixture
def db_session_factory(config):
    # StaticPool: cada teste ganha um banco em memória novo
    return create_session_factory(config.database_url, create_tables=True)


@pytest.fixture
def db(db_session_factory):
    session = db_session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def email_service() -> RecordingEmailService:
    return RecordingEmailService()


@pytest.fixture
def service(db_session_factory, config, email_service) -> EnrollmentService:
    return EnrollmentService(db_session_factory, config, email_service=email_service)


@pytest.fixture
def client(config, db_session_factory, email_service):
    app = create_app(config=config, db_session_factory=db_session_factory, email_service=email_service)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers():
    return {"X-API-KEY": ADMIN_KEY}


def submit_body(cpf: str = VALID_CPF, **overrides) -> dict:
    """Corpo de /submit-inscricao como o assistente envia."""
    body = {
        "cpf": cpf,
        "email": "joao@example.com",
        "termos": {"aceite": True, "versao": "TERMO_CURSILHO_14_PIB_MOGI.pdf"},
        "dadosPessoais": {
            "nome": "João da Silva",
            "whatsapp": "11987654321",
            "nascimento": "1985-03-10",
            "email": "joao@example.com",
            "cidade": "Mogi das Cruzes",
            "uf": "SP",
            "igreja": "PIB Mogi",
            "camiseta": "G",
            "restricaoAlimentar": "lactose",
        },
        "contato": {"whatsapp": "11987654321"},
        "saude": "Hipertensão controlada",
        "financeiro": {"responsavelProprio": True, "metodo": "pix", "amount": 700.08},
        "responsavelFinanceiro": {"nome": "João da Silva", "relacao": "Próprio", "whatsapp": "11987654321"},
    }
    body.update(overrides)
    return body
