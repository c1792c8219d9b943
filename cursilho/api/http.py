import logging
import time
from uuid import uuid4
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy import text
from sqlalchemy.orm import sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from ..config import AppConfig
from ..core.enrollment_service import EnrollmentRequest, EnrollmentService
from ..core.errors import EnrollmentError, ValidationError
from ..core.normalizers import (
    mask_cpf_for_log,
    normalize_cep,
    normalize_phone,
    normalize_uf,
    only_digits,
    parse_birth_date,
)
from ..domain.event_info import TERMS_VERSION, get_event_info
from ..infra.email_service import EmailService
from ..storage.database import create_session_factory

logger = logging.getLogger(__name__)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# -----------------------
# POST /submit-inscricao (formato do assistente)
# -----------------------

class TermosIn(_WireModel):
    aceite: bool = False
    versao: Optional[str] = None


class DadosPessoaisIn(_WireModel):
    nome: Optional[str] = None
    whatsapp: Optional[str] = None
    nascimento: Optional[str] = None
    contato_altern: Optional[str] = Field(default=None, alias="contatoAltern")
    email: Optional[str] = None
    cep: Optional[str] = None
    logradouro: Optional[str] = None
    cidade: Optional[str] = None
    uf: Optional[str] = None
    igreja: Optional[str] = None
    camiseta: Optional[str] = None
    restricao_alimentar: Optional[str] = Field(default=None, alias="restricaoAlimentar")
    restricao_medica: Optional[str] = Field(default=None, alias="restricaoMedica")


class ContatoIn(_WireModel):
    whatsapp: Optional[str] = None
    contato_altern: Optional[str] = Field(default=None, alias="contatoAltern")


class FinanceiroIn(_WireModel):
    responsavel_proprio: bool = Field(
        default=True,
        validation_alias=AliasChoices("responsavelProprio", "responsavelProrio", "responsavel_proprio"),
    )
    metodo: str = "pix"
    # Valor enviado pelo cliente é ignorado; o servidor aplica o preço fixo
    amount: Optional[float] = None


class ResponsavelIn(_WireModel):
    nome: Optional[str] = None
    relacao: Optional[str] = None
    whatsapp: Optional[str] = None


class SubmitInscricaoRequest(_WireModel):
    cpf: str = ""
    email: Optional[str] = None
    termos: TermosIn = Field(default_factory=TermosIn)
    dados_pessoais: DadosPessoaisIn = Field(default_factory=DadosPessoaisIn, alias="dadosPessoais")
    contato: ContatoIn = Field(default_factory=ContatoIn)
    saude: Optional[str] = None
    financeiro: FinanceiroIn = Field(default_factory=FinanceiroIn)
    responsavel_financeiro: Optional[ResponsavelIn] = Field(default=None, alias="responsavelFinanceiro")
    observacoes: Optional[str] = None
    event_key: Optional[str] = None


# -----------------------
# POST /enroll (formato legado)
# -----------------------

class LegacyPersonalIn(_WireModel):
    nome: Optional[str] = None
    whatsapp: Optional[str] = None
    email: Optional[str] = None
    nascimento: Optional[str] = None
    cidade: Optional[str] = None
    uf: Optional[str] = None
    igreja: Optional[str] = None
    observacoes: Optional[str] = None
    camiseta: Optional[str] = None
    restricao_alimentar: Optional[str] = Field(default=None, alias="restricaoAlimentar")
    restricao_medica: Optional[str] = Field(default=None, alias="restricaoMedica")


class LegacyFinanceIn(_WireModel):
    responsavel_proprio: bool = Field(
        default=True,
        validation_alias=AliasChoices("responsavelProrio", "responsavelProprio", "responsavel_proprio"),
    )
    responsavel: Optional[ResponsavelIn] = None
    metodo: str = "pix"


class LegacyTermsIn(_WireModel):
    aceita_termos: bool = Field(default=False, alias="aceitaTermos")


class LegacyEnrollRequest(_WireModel):
    cpf: str = ""
    personal: LegacyPersonalIn = Field(default_factory=LegacyPersonalIn)
    finance: LegacyFinanceIn = Field(default_factory=LegacyFinanceIn)
    terms: LegacyTermsIn = Field(default_factory=LegacyTermsIn)
    event_key: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    status: str


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _phone(raw: Optional[str]) -> Optional[str]:
    """Telefone com DDD sem o 55 do DDI; se fora do padrão, os dígitos como vieram."""
    return normalize_phone(raw) or only_digits(raw) or None


def _birth_date(raw: Optional[str]):
    if not _clean(raw):
        return None
    parsed = parse_birth_date(raw)
    if parsed is None:
        raise ValidationError("Data de nascimento inválida")
    return parsed


def _responsible_block(own: bool, nome: Optional[str], whatsapp: Optional[str],
                       responsavel: Optional[ResponsavelIn]) -> Dict[str, Any]:
    if own:
        return {"nome": nome, "relacao": "Próprio", "whatsapp": whatsapp}
    responsavel = responsavel or ResponsavelIn()
    return {
        "nome": _clean(responsavel.nome),
        "relacao": _clean(responsavel.relacao),
        "whatsapp": _phone(responsavel.whatsapp),
    }


def submit_to_request(body: SubmitInscricaoRequest) -> EnrollmentRequest:
    """Traduz o formato do assistente para EnrollmentRequest."""
    dp = body.dados_pessoais
    whatsapp = _phone(dp.whatsapp or body.contato.whatsapp)
    nome = _clean(dp.nome)
    return EnrollmentRequest(
        cpf=body.cpf,
        person={
            "full_name": nome,
            "whatsapp": whatsapp,
            "alt_contact": _clean(dp.contato_altern or body.contato.contato_altern),
            "email": _clean(body.email or dp.email),
            "birth_date": _birth_date(dp.nascimento),
            "postal_code": normalize_cep(dp.cep),
            "street": _clean(dp.logradouro),
            "city": _clean(dp.cidade),
            "state": normalize_uf(dp.uf),
            "church": _clean(dp.igreja),
            "notes": _clean(body.observacoes),
        },
        payment_method=body.financeiro.metodo,
        shirt_size=_clean(dp.camiseta),
        dietary_restriction=_clean(dp.restricao_alimentar),
        medical_restriction=_clean(dp.restricao_medica),
        health_notes=_clean(body.saude),
        financial_responsible=_responsible_block(
            body.financeiro.responsavel_proprio, nome, whatsapp, body.responsavel_financeiro
        ),
        accepts_terms=body.termos.aceite,
        terms_version=body.termos.versao or TERMS_VERSION,
        event_key=_clean(body.event_key),
    )


def legacy_to_request(body: LegacyEnrollRequest) -> EnrollmentRequest:
    """Traduz o formato legado de /enroll para EnrollmentRequest."""
    personal = body.personal
    whatsapp = _phone(personal.whatsapp)
    nome = _clean(personal.nome)
    return EnrollmentRequest(
        cpf=body.cpf,
        person={
            "full_name": nome,
            "whatsapp": whatsapp,
            "email": _clean(personal.email),
            "birth_date": _birth_date(personal.nascimento),
            "city": _clean(personal.cidade),
            "state": normalize_uf(personal.uf),
            "church": _clean(personal.igreja),
            "notes": _clean(personal.observacoes),
        },
        payment_method=body.finance.metodo,
        shirt_size=_clean(personal.camiseta),
        dietary_restriction=_clean(personal.restricao_alimentar),
        medical_restriction=_clean(personal.restricao_medica),
        financial_responsible=_responsible_block(
            body.finance.responsavel_proprio, nome, whatsapp, body.finance.responsavel
        ),
        accepts_terms=body.terms.aceita_termos,
        terms_version=TERMS_VERSION if body.terms.aceita_termos else None,
        event_key=_clean(body.event_key),
    )


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware que gera request_id único para cada requisição
    e adiciona aos logs e headers de resposta.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = uuid4().hex[:16]
        request.state.request_id = request_id

        start_time = time.time()
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Request processado: request_id={request_id}, "
            f"method={request.method}, path={request.url.path}, "
            f"status={response.status_code}, duration_ms={duration_ms:.2f}"
        )
        return response


def require_api_key(config: AppConfig, x_api_key: Optional[str]) -> None:
    """
    Valida API key dos endpoints administrativos.

    Em produção (ENV=prod), sempre exige API key.
    Em desenvolvimento (ENV=dev), só exige se ADMIN_API_KEY estiver configurada.
    """
    expected_key = config.admin_api_key or ""

    if config.env == "prod" or expected_key.strip():
        if not x_api_key or x_api_key != expected_key:
            logger.warning(f"Tentativa de acesso administrativo não autorizado: env={config.env}")
            raise HTTPException(status_code=401, detail="Invalid API key")
    else:
        logger.debug("ADMIN_API_KEY não configurada, aceitando requisição sem autenticação (modo desenvolvimento)")


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(
    config: Optional[AppConfig] = None,
    db_session_factory: Optional[sessionmaker] = None,
    email_service: Optional[EmailService] = None,
) -> FastAPI:
    """
    Cria a aplicação FastAPI e injeta dependências principais (config + serviço).
    """
    config = config or AppConfig.load_from_env()
    if db_session_factory is None:
        db_session_factory = create_session_factory(
            config.database_url,
            create_tables=config.create_tables,
            env=config.env,
        )
    service = EnrollmentService(
        db_session_factory=db_session_factory,
        config=config,
        email_service=email_service or EmailService(config),
    )

    app = FastAPI(
        title="Cursilho Inscrições API",
        version="0.1.0",
        description="Verificação de CPF, inscrição e painel administrativo do Cursilho.",
    )
    app.state.config = config
    app.state.service = service

    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins_list,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(EnrollmentError)
    async def enrollment_error_handler(request: Request, exc: EnrollmentError):
        return _error(exc.status_code, exc.user_message)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        location = ".".join(str(part) for part in errors[0].get("loc", ())) if errors else ""
        logger.warning(f"Requisição malformada: path={request.url.path}, loc={location}")
        return _error(400, f"Requisição inválida: {location}" if location else "Requisição inválida")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    def run_guarded(request: Request, operation: str, func, *args):
        """
        Executa a operação logando duração. Erros da inscrição seguem para o
        handler; qualquer outro vira 500 genérico, sem expor detalhes.
        """
        request_id = getattr(request.state, "request_id", "unknown")
        start_time = time.time()
        try:
            result = func(*args)
        except EnrollmentError as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.info(
                f"{operation} recusado: request_id={request_id}, status={e.status_code}, "
                f"error={e.user_message}, duration_ms={duration_ms:.2f}"
            )
            raise
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Erro em {operation}: request_id={request_id}, duration_ms={duration_ms:.2f}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True,
            )
            raise EnrollmentError() from e
        duration_ms = (time.time() - start_time) * 1000
        logger.info(f"{operation} concluído: request_id={request_id}, duration_ms={duration_ms:.2f}")
        return result

    @app.get("/health")
    def health_check():
        """
        Endpoint de health check para monitoramento e Docker healthchecks.
        """
        db_ok = True
        db = db_session_factory()
        try:
            db.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning(f"Database health check falhou: {e}")
            db_ok = False
        finally:
            db.close()

        return JSONResponse(
            status_code=200 if db_ok else 503,
            content={
                "status": "healthy" if db_ok else "degraded",
                "database": "ok" if db_ok else "error",
            },
        )

    @app.get("/event")
    def event_info():
        event = get_event_info(config.event_key, config.price_pix, config.price_card)
        return event.to_dict()

    @app.get("/check-cpf")
    def check_cpf(request: Request, cpf: str = ""):
        """
        Verificação consultiva usada pelo assistente enquanto o CPF é digitado.
        """
        logger.info(
            f"Recebida requisição /check-cpf: request_id={getattr(request.state, 'request_id', 'unknown')}, "
            f"cpf={mask_cpf_for_log(cpf)}"
        )
        verdict = run_guarded(request, "check-cpf", service.check_cpf, cpf)
        return verdict.to_dict()

    @app.post("/submit-inscricao", status_code=201)
    def submit_inscricao(payload: SubmitInscricaoRequest, request: Request):
        logger.info(
            f"Recebida requisição /submit-inscricao: request_id={getattr(request.state, 'request_id', 'unknown')}, "
            f"cpf={mask_cpf_for_log(payload.cpf)}"
        )
        enrollment = run_guarded(
            request, "submit-inscricao", lambda: service.enroll(submit_to_request(payload))
        )
        return JSONResponse(status_code=201, content={"ok": True, "data": enrollment.to_dict()})

    @app.post("/enroll", status_code=201)
    def enroll(payload: LegacyEnrollRequest, request: Request):
        logger.info(
            f"Recebida requisição /enroll: request_id={getattr(request.state, 'request_id', 'unknown')}, "
            f"cpf={mask_cpf_for_log(payload.cpf)}"
        )
        enrollment = run_guarded(
            request, "enroll", lambda: service.enroll(legacy_to_request(payload))
        )
        return JSONResponse(status_code=201, content={"success": True, "enrollment": enrollment.to_dict()})

    # -----------------------
    # Painel administrativo
    # -----------------------

    @app.get("/enrollments")
    def list_enrollments(
        request: Request,
        status: Optional[str] = None,
        event_key: Optional[str] = None,
        x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
    ):
        require_api_key(config, x_api_key)
        items = run_guarded(request, "list-enrollments", service.list_enrollments, status, event_key)
        return {"items": items, "count": len(items)}

    @app.patch("/enrollments/{enrollment_id}/status")
    def update_enrollment_status(
        enrollment_id: int,
        payload: StatusUpdateRequest,
        request: Request,
        x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
    ):
        require_api_key(config, x_api_key)
        enrollment = run_guarded(
            request, "update-status", service.set_status, enrollment_id, payload.status
        )
        return {"ok": True, "enrollment": enrollment.to_dict()}

    @app.get("/dashboard/summary")
    def dashboard_summary(
        request: Request,
        event_key: Optional[str] = None,
        x_api_key: Optional[str] = Header(default=None, alias="X-API-KEY"),
    ):
        require_api_key(config, x_api_key)
        return run_guarded(request, "dashboard-summary", service.summary, event_key or config.event_key)

    return app
