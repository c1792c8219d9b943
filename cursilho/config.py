from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List
import os
import logging
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


def _decimal_env(name: str, default: str) -> Decimal:
    raw = os.getenv(name, default)
    try:
        return Decimal(raw)
    except InvalidOperation:
        raise RuntimeError(f"Variável de ambiente {name} inválida: {raw!r}")


@dataclass(frozen=True)
class AppConfig:
    """
    Configurações principais da aplicação de inscrição.

    Centraliza parâmetros críticos (preços, chave do evento, banco)
    para facilitar revisão, testes e mudanças futuras.
    """
    database_url: str = "sqlite:///./cursilho.db"
    env: str = "dev"  # "dev" ou "prod"
    admin_api_key: str = ""
    event_key: str = "14-cursilho-2026"
    price_pix: Decimal = Decimal("700.08")
    price_card: Decimal = Decimal("750.08")
    functions_base_url: str = "http://localhost:8000"
    cpf_debounce_ms: int = 450  # janela de debounce da verificação de CPF
    http_timeout_ms: int = 10000
    viacep_url: str = "https://viacep.com.br/ws"
    smtp_host: str = "dev-log"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "inscricao@cursilho.org.br"
    create_tables: bool = False
    cors_origins: str = "*"  # lista separada por vírgula

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Carrega configuração a partir de variáveis de ambiente.
        Primeiro tenta carregar do arquivo .env, depois do ambiente do sistema.
        Levanta erro explícito se algo crítico faltar.
        """
        load_dotenv()

        env = os.getenv("ENV", "dev").lower()
        if env not in ("dev", "prod"):
            logger.warning(f"ENV inválido '{env}', usando 'dev' como padrão")
            env = "dev"

        admin_api_key = os.getenv("ADMIN_API_KEY", "")

        # Em produção, os endpoints administrativos precisam de chave
        if env == "prod":
            if not admin_api_key.strip():
                raise RuntimeError(
                    "ENV=prod requer ADMIN_API_KEY definida. "
                    "Configure ADMIN_API_KEY no ambiente de produção."
                )
            logger.info("Modo PRODUÇÃO: ADMIN_API_KEY validada")
        elif not admin_api_key.strip():
            logger.warning(
                "MODO DEV: ADMIN_API_KEY não configurada. "
                "Endpoints administrativos aceitarão requisições sem autenticação."
            )

        price_pix = _decimal_env("PRICE_PIX", "700.08")
        price_card = _decimal_env("PRICE_CARD", "750.08")
        if price_card <= price_pix:
            logger.warning(
                f"PRICE_CARD ({price_card}) não é maior que PRICE_PIX ({price_pix})"
            )

        create_tables_raw = os.getenv("CREATE_TABLES", "0").lower()

        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./cursilho.db"),
            env=env,
            admin_api_key=admin_api_key,
            event_key=os.getenv("EVENT_KEY", "14-cursilho-2026"),
            price_pix=price_pix,
            price_card=price_card,
            functions_base_url=os.getenv("FUNCTIONS_BASE_URL", "http://localhost:8000"),
            cpf_debounce_ms=int(os.getenv("CPF_DEBOUNCE_MS", "450")),
            http_timeout_ms=int(os.getenv("HTTP_TIMEOUT_MS", "10000")),
            viacep_url=os.getenv("VIACEP_URL", "https://viacep.com.br/ws"),
            smtp_host=os.getenv("SMTP_HOST", "dev-log"),
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_user=os.getenv("SMTP_USER", ""),
            smtp_password=os.getenv("SMTP_PASSWORD", ""),
            smtp_from=os.getenv("SMTP_FROM", "inscricao@cursilho.org.br"),
            create_tables=create_tables_raw in ("1", "true", "yes", "y"),
            cors_origins=os.getenv("CORS_ORIGINS", "*"),
        )
