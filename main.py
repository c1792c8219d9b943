import logging
import uvicorn
import os
from logging.handlers import RotatingFileHandler

from cursilho.api.http import create_app
from cursilho.config import AppConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO", log_dir: str = "logs") -> str:
    """
    Configura o root logger com saída no terminal e arquivo rotativo
    (10MB por arquivo, 5 backups). Retorna o caminho do arquivo de log.
    """
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, "app.log")
    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # httpx loga cada requisição em INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return log_file


log_file = configure_logging(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    log_dir=os.getenv("LOG_DIR", "logs"),
)
logger = logging.getLogger("cursilho")

config = AppConfig.load_from_env()
app = create_app(config)
logger.info(
    f"Inscrições do Cursilho iniciadas: env={config.env}, event_key={config.event_key}, "
    f"log_file={log_file}"
)

if __name__ == "__main__":
    # Em produção, quem sobe isso é o process manager (systemd, docker, etc.)
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        log_level="info",
    )
