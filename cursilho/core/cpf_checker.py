"""
Validação assíncrona do CPF digitado no assistente.

Cada alteração do campo volta o estado para neutro e reinicia a janela
de debounce. Quando o valor fica estável, o CPF é validado localmente e,
se válido, consultado no backend.

Cada consulta remota leva o token de geração vigente no momento do envio.
A resposta só é aplicada se esse token ainda for o mais recente; respostas
superadas são descartadas em silêncio. Nenhuma requisição é abortada de
fato, o cancelamento é apenas lógico.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Set

from .eligibility import EligibilityGateway
from .errors import DuplicateError, EnrollmentError, LookupFailedError
from .normalizers import mask_cpf_for_log, only_digits, validate_cpf

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.45


class CpfCheckState(str, Enum):
    EMPTY = "empty"
    INCOMPLETE = "incomplete"
    INVALID = "invalid"
    CHECKING = "checking"
    VALID = "valid"
    DUPLICATE = "duplicate"
    ERROR = "error"


@dataclass(frozen=True)
class CpfVerdict:
    state: CpfCheckState
    cpf: str = ""
    message: Optional[str] = None


EMPTY_VERDICT = CpfVerdict(CpfCheckState.EMPTY)


class DebouncedCpfValidator:
    """
    Transforma a sequência de valores digitados em uma sequência de veredictos.

    Args:
        gateway: consulta remota de elegibilidade (só chamada para CPF válido)
        on_verdict: callback chamado a cada mudança de veredicto
        debounce_seconds: tempo de estabilidade antes da consulta remota
    """

    def __init__(
        self,
        gateway: EligibilityGateway,
        on_verdict: Optional[Callable[[CpfVerdict], None]] = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ) -> None:
        self._gateway = gateway
        self._on_verdict = on_verdict
        self._debounce_seconds = debounce_seconds
        self._generation = 0
        self._timer: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        self._closed = False
        self._last_digits = ""
        self.verdict = EMPTY_VERDICT

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def closed(self) -> bool:
        return self._closed

    def feed(self, raw: str) -> None:
        """Recebe o valor bruto do campo. Precisa de um event loop rodando."""
        if self._closed:
            return

        digits = only_digits(raw)
        self._last_digits = digits
        self._generation += 1
        self._cancel_timer()

        self._publish(CpfVerdict(
            CpfCheckState.EMPTY if not digits else CpfCheckState.INCOMPLETE,
            cpf=digits,
        ))
        if not digits:
            return

        self._timer = asyncio.get_running_loop().create_task(
            self._debounced(self._generation, digits)
        )

    def retry(self) -> bool:
        """
        Refaz a consulta do último valor após uma falha de comunicação,
        sem esperar o debounce. Retorna False se não havia o que repetir.
        """
        if self._closed or self.verdict.state != CpfCheckState.ERROR:
            return False
        self._generation += 1
        logger.info(f"Nova tentativa de verificação: cpf={mask_cpf_for_log(self._last_digits)}")
        self._start_check(self._generation, self._last_digits)
        return True

    async def settle(self) -> CpfVerdict:
        """Aguarda o debounce pendente e as consultas em andamento."""
        while True:
            timer = self._timer
            if timer is not None and not timer.done():
                try:
                    await timer
                except asyncio.CancelledError:
                    pass
                continue
            if self._in_flight:
                await asyncio.gather(*self._in_flight, return_exceptions=True)
                continue
            return self.verdict

    def close(self) -> None:
        """Desliga o validador. Respostas ainda em voo viram no-op."""
        self._closed = True
        self._generation += 1
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def _publish(self, verdict: CpfVerdict) -> None:
        if verdict == self.verdict:
            return
        self.verdict = verdict
        if self._on_verdict is not None:
            self._on_verdict(verdict)

    async def _debounced(self, generation: int, digits: str) -> None:
        await asyncio.sleep(self._debounce_seconds)
        if self._closed or generation != self._generation:
            return
        self._timer = None
        self._start_check(generation, digits)

    def _start_check(self, generation: int, digits: str) -> None:
        if len(digits) != 11:
            self._publish(CpfVerdict(CpfCheckState.INCOMPLETE, cpf=digits))
            return

        if not validate_cpf(digits):
            self._publish(CpfVerdict(CpfCheckState.INVALID, cpf=digits, message="CPF inválido."))
            return

        self._publish(CpfVerdict(CpfCheckState.CHECKING, cpf=digits))
        task = asyncio.get_running_loop().create_task(self._remote_check(generation, digits))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _remote_check(self, generation: int, digits: str) -> None:
        logger.debug(
            f"Consulta remota de CPF: cpf={mask_cpf_for_log(digits)}, token={generation}"
        )
        try:
            eligibility = await self._gateway.check(digits)
        except EnrollmentError as e:
            result = CpfVerdict(CpfCheckState.ERROR, cpf=digits, message=e.user_message)
        except Exception as e:
            logger.error(
                f"Erro inesperado na verificação de CPF: cpf={mask_cpf_for_log(digits)}, "
                f"error={type(e).__name__}: {e}",
                exc_info=True,
            )
            result = CpfVerdict(
                CpfCheckState.ERROR, cpf=digits, message=LookupFailedError.default_message
            )
        else:
            if eligibility.participated:
                result = CpfVerdict(
                    CpfCheckState.DUPLICATE, cpf=digits, message=DuplicateError.default_message
                )
            else:
                result = CpfVerdict(CpfCheckState.VALID, cpf=digits)

        # Resposta superada ou validador desligado: descarta sem barulho
        if self._closed or generation != self._generation:
            return
        self._publish(result)
