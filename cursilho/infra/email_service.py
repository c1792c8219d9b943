import logging
import smtplib
import ssl
from decimal import Decimal
from email.message import EmailMessage
from smtplib import SMTPException, SMTPServerDisconnected
from ..config import AppConfig
from ..domain.event_info import TERMOS_COMPROVANTE, format_brl

logger = logging.getLogger(__name__)

PAYMENT_METHOD_LABELS = {
    "pix": "PIX/dinheiro",
    "cartao": "cartão",
}


class EmailService:
    """
    Serviço para envio de e-mails.
    Em desenvolvimento (SMTP_HOST=dev-log), apenas loga.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config

    def build_enrollment_received(
        self,
        to_email: str,
        full_name: str,
        event_name: str,
        amount: Decimal,
        payment_method: str,
    ) -> EmailMessage:
        if not to_email or not to_email.strip():
            raise ValueError("to_email não pode estar vazio")
        if not full_name or not full_name.strip():
            raise ValueError("full_name não pode estar vazio")

        method_label = PAYMENT_METHOD_LABELS.get(payment_method, payment_method)
        body = f"""Olá, {full_name}!

Recebemos sua inscrição no {event_name}.

Valor: {format_brl(amount)} ({method_label})
Status: aguardando pagamento

{TERMOS_COMPROVANTE}

Equipe do Cursilho
"""

        msg = EmailMessage()
        msg["Subject"] = f"Inscrição recebida - {event_name}"
        msg["From"] = self._config.smtp_from
        msg["To"] = to_email
        msg.set_content(body)
        return msg

    def send_enrollment_received(
        self,
        to_email: str,
        full_name: str,
        event_name: str,
        amount: Decimal,
        payment_method: str,
    ) -> None:
        """
        Envia e-mail avisando que a inscrição foi recebida e está pendente.
        """
        msg = self.build_enrollment_received(to_email, full_name, event_name, amount, payment_method)

        if self._config.smtp_host == "dev-log":
            logger.warning(
                f"MODO DEV: E-mail NÃO foi enviado (apenas simulado). "
                f"Para enviar e-mails reais, configure SMTP_HOST no .env. "
                f"Destinatário: {to_email}"
            )
            logger.debug(f"Conteúdo do e-mail simulado:\n{msg.get_content()}")
            return

        try:
            logger.info(
                f"Iniciando conexão SMTP: host={self._config.smtp_host}, "
                f"port={self._config.smtp_port}, from={self._config.smtp_from}"
            )
            ssl_context = ssl.create_default_context()

            if self._config.smtp_port == 465:
                # SSL direto
                server = smtplib.SMTP_SSL(
                    self._config.smtp_host,
                    self._config.smtp_port,
                    timeout=30,
                    context=ssl_context,
                )
            else:
                # STARTTLS (porta 587 ou outras)
                server = smtplib.SMTP(self._config.smtp_host, self._config.smtp_port, timeout=30)
                if self._config.smtp_user:
                    server.starttls(context=ssl_context)

            with server:
                if self._config.smtp_user:
                    logger.debug(f"Autenticando SMTP: user={self._config.smtp_user}")
                    server.login(self._config.smtp_user, self._config.smtp_password)
                server.send_message(msg)

            logger.info(
                f"E-mail enviado via SMTP: to={to_email}, "
                f"host={self._config.smtp_host}, port={self._config.smtp_port}"
            )
        except SMTPServerDisconnected:
            logger.error(
                f"Erro SMTP: Conexão fechada durante autenticação. "
                f"Verifique: host={self._config.smtp_host}, port={self._config.smtp_port}, "
                f"user={self._config.smtp_user}"
            )
            raise
        except SMTPException as e:
            logger.error(
                f"Erro SMTP ao enviar e-mail: to={to_email}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True,
            )
            raise
