"""
Hierarquia de erros da inscrição.

Cada erro carrega uma mensagem segura para exibir ao usuário
(`user_message`) e o status HTTP correspondente no servidor.
"""
from typing import Optional


class EnrollmentError(Exception):
    status_code = 500
    default_message = "Erro interno ao processar a inscrição. Tente novamente mais tarde."

    def __init__(self, user_message: Optional[str] = None) -> None:
        self.user_message = user_message or self.default_message
        super().__init__(self.user_message)


class ValidationError(EnrollmentError):
    """Dado malformado ou ausente (CPF inválido, campo obrigatório, data)."""
    status_code = 400
    default_message = "Dados inválidos."


class DuplicateError(EnrollmentError):
    """CPF já possui inscrição confirmada ou participação."""
    status_code = 409
    default_message = (
        "Este CPF já participou de um Cursilho e agora pertence ao grupo de Obreiros. "
        "Cursilhistas só podem se inscrever uma única vez."
    )


class ConflictError(EnrollmentError):
    """Violação de unicidade detectada pelo banco (ex: inscrições concorrentes)."""
    status_code = 409
    default_message = "Conflito ao gravar a inscrição. Tente novamente."


class NotFoundError(EnrollmentError):
    status_code = 404
    default_message = "Registro não encontrado."


class TransportError(EnrollmentError):
    """Falha de rede ou do servidor. Pode ser repetida sem alterar os dados."""
    status_code = 500
    default_message = "Falha de comunicação com o servidor. Tente novamente."


class LookupFailedError(TransportError):
    default_message = "Falha ao verificar CPF"


class ServerRejection(EnrollmentError):
    """Erro estruturado devolvido pelo backend (400/409/500)."""

    def __init__(self, status_code: int, user_message: Optional[str] = None) -> None:
        self.status_code = status_code
        super().__init__(user_message)

    @property
    def is_duplicate(self) -> bool:
        return self.status_code == 409
