import logging
from dataclasses import fields as dataclass_fields, replace
from typing import Any, Callable, Dict, Mapping, Optional

from .cpf_checker import CpfCheckState, CpfVerdict, DebouncedCpfValidator, DEFAULT_DEBOUNCE_SECONDS
from .eligibility import EligibilityGateway
from .errors import EnrollmentError, TransportError
from .normalizers import normalize_phone, only_digits, parse_birth_date, validate_name
from .registration_state import (
    AcceptTerms,
    AddressResolved,
    Back,
    CloseConfirmation,
    CpfChanged,
    CpfVerdictReceived,
    DismissError,
    FinanceChanged,
    FinanceData,
    HealthChanged,
    Next,
    OpenConfirmation,
    PaymentMethod,
    PaymentMethodSelected,
    PersonalChanged,
    PersonalData,
    SubmitFailed,
    SubmitStarted,
    SubmitSucceeded,
    WizardState,
    WizardStep,
)
from ..domain.event_info import TERMS_VERSION

logger = logging.getLogger(__name__)

_PERSONAL_FIELDS = {f.name for f in dataclass_fields(PersonalData)}
# Forma de pagamento e valor só mudam via PaymentMethodSelected
_FINANCE_FIELDS = {f.name for f in dataclass_fields(FinanceData)} - {"metodo", "amount"}


# -----------------------
# Guardas de cada passo
# -----------------------

def _cpf_guard(state: WizardState) -> Optional[str]:
    verdict = state.cpf_check
    if verdict.state == CpfCheckState.VALID:
        return None
    if verdict.state == CpfCheckState.CHECKING:
        return "Aguarde a verificação do CPF."
    if verdict.state == CpfCheckState.DUPLICATE:
        return "CPF já participou como cursilhista. Use a inscrição de Obreiros."
    if verdict.state == CpfCheckState.ERROR:
        return verdict.message or TransportError.default_message
    return "CPF inválido."


def _personal_guard(state: WizardState) -> Optional[str]:
    personal = state.personal
    if not validate_name(personal.nome) or normalize_phone(personal.whatsapp) is None:
        return "Preencha nome e WhatsApp corretamente."
    if personal.nascimento.strip() and parse_birth_date(personal.nascimento) is None:
        return "Data de nascimento inválida."
    return None


def _financial_responsible_guard(state: WizardState) -> Optional[str]:
    finance = state.finance
    if not finance.responsavel_proprio and (
        not finance.resp_nome.strip() or not finance.resp_whatsapp.strip()
    ):
        return "Preencha dados do responsável financeiro."
    return None


def _payment_guard(state: WizardState) -> Optional[str]:
    if state.finance.metodo not in state.prices:
        return "Selecione a forma de pagamento."
    return None


STEP_GUARDS: Dict[WizardStep, Callable[[WizardState], Optional[str]]] = {
    WizardStep.TERMS: lambda s: None if s.agreement else "Você precisa concordar com os termos.",
    WizardStep.CPF: _cpf_guard,
    WizardStep.PERSONAL: _personal_guard,
    WizardStep.FINANCIAL_RESPONSIBLE: _financial_responsible_guard,
    WizardStep.PAYMENT: _payment_guard,
}


def step_error(state: WizardState, step: Optional[WizardStep] = None) -> Optional[str]:
    """Mensagem que impede avançar do passo, ou None se pode avançar."""
    guard = STEP_GUARDS.get(state.step if step is None else step)
    return guard(state) if guard else None


def first_blocking_error(state: WizardState) -> Optional[str]:
    for step in STEP_GUARDS:
        message = step_error(state, step)
        if message:
            return message
    return None


def _checked_fields(given: Mapping[str, Any], allowed: set, kind: str) -> Dict[str, Any]:
    unknown = set(given) - allowed
    if unknown:
        raise ValueError(f"Campos desconhecidos em {kind}: {sorted(unknown)}")
    return dict(given)


# -----------------------
# Redutor
# -----------------------

def reduce(state: WizardState, action: Any) -> WizardState:
    """
    Transição pura (estado, ação) -> estado.
    Ações que não se aplicam ao passo atual devolvem o estado sem mudanças.
    """
    if isinstance(action, AcceptTerms):
        return replace(state, agreement=bool(action.accepted), error=None)

    if isinstance(action, CpfChanged):
        return replace(state, cpf=action.raw, error=None)

    if isinstance(action, CpfVerdictReceived):
        verdict = action.verdict
        if verdict.state in (CpfCheckState.DUPLICATE, CpfCheckState.ERROR):
            error = verdict.message
        elif state.error is not None and state.error in (state.cpf_check.message, _cpf_guard(state)):
            error = None
        else:
            # Mensagem de outro passo continua visível
            error = state.error
        changes = dict(cpf_check=verdict, error=error)
        if state.step < WizardStep.REVIEW:
            changes["loading"] = verdict.state == CpfCheckState.CHECKING
        return replace(state, **changes)

    if isinstance(action, PersonalChanged):
        fields = _checked_fields(action.fields, _PERSONAL_FIELDS, "dados pessoais")
        return replace(state, personal=replace(state.personal, **fields))

    if isinstance(action, AddressResolved):
        found = {
            name: value for name, value in (
                ("logradouro", action.logradouro),
                ("cidade", action.cidade),
                ("uf", action.uf),
            ) if value
        }
        if not found:
            return state
        return replace(state, personal=replace(state.personal, **found))

    if isinstance(action, HealthChanged):
        return replace(state, saude=action.text)

    if isinstance(action, FinanceChanged):
        fields = _checked_fields(action.fields, _FINANCE_FIELDS, "responsável financeiro")
        return replace(state, finance=replace(state.finance, **fields))

    if isinstance(action, PaymentMethodSelected):
        method = PaymentMethod(action.method)
        # Valor fixo por forma de pagamento, nunca calculado
        amount = state.prices[method]
        return replace(state, finance=replace(state.finance, metodo=method, amount=amount))

    if isinstance(action, Next):
        if state.step >= WizardStep.REVIEW:
            return state
        message = step_error(state)
        if message:
            return replace(state, error=message)
        return replace(state, step=WizardStep(state.step + 1), error=None)

    if isinstance(action, Back):
        if state.step in (WizardStep.TERMS, WizardStep.SUCCESS):
            return state
        # Não volta enquanto o envio está em andamento
        if state.step == WizardStep.REVIEW and state.loading:
            return state
        return replace(state, step=WizardStep(state.step - 1), error=None, confirm_open=False)

    if isinstance(action, OpenConfirmation):
        if state.step != WizardStep.REVIEW:
            return state
        # Revalida tudo antes de abrir a confirmação
        message = first_blocking_error(state)
        if message:
            return replace(state, error=message, confirm_open=False)
        return replace(state, confirm_open=True, error=None)

    if isinstance(action, CloseConfirmation):
        return replace(state, confirm_open=False)

    if isinstance(action, SubmitStarted):
        if state.step != WizardStep.REVIEW or not state.confirm_open or state.loading:
            return state
        return replace(state, loading=True, error=None)

    if isinstance(action, SubmitSucceeded):
        if not state.loading:
            return state
        return replace(
            state,
            step=WizardStep.SUCCESS,
            loading=False,
            confirm_open=False,
            submission_result=action.result,
            error=None,
        )

    if isinstance(action, SubmitFailed):
        if not state.loading:
            return state
        return replace(state, loading=False, error=action.message)

    if isinstance(action, DismissError):
        return replace(state, error=None)

    raise TypeError(f"Ação desconhecida: {type(action).__name__}")


def build_payload(state: WizardState) -> Dict[str, Any]:
    """
    Monta o corpo de POST /submit-inscricao a partir de todos os grupos de campos.
    """
    personal = state.personal
    finance = state.finance
    whatsapp = normalize_phone(personal.whatsapp) or only_digits(personal.whatsapp)
    birth_date = parse_birth_date(personal.nascimento)

    if finance.responsavel_proprio:
        responsible = {"nome": personal.nome, "relacao": "Próprio", "whatsapp": whatsapp}
    else:
        responsible = {
            "nome": finance.resp_nome,
            "relacao": finance.resp_relacao,
            "whatsapp": normalize_phone(finance.resp_whatsapp) or only_digits(finance.resp_whatsapp),
        }

    return {
        "cpf": only_digits(state.cpf),
        "email": personal.email or None,
        "termos": {"aceite": state.agreement, "versao": TERMS_VERSION},
        "dadosPessoais": {
            "nome": personal.nome.strip(),
            "whatsapp": whatsapp,
            "nascimento": birth_date.isoformat() if birth_date else None,
            "contatoAltern": personal.contato_altern or None,
            "email": personal.email or None,
            "cep": only_digits(personal.cep) or None,
            "logradouro": personal.logradouro or None,
            "cidade": personal.cidade or None,
            "uf": personal.uf or None,
            "igreja": personal.igreja or None,
            "camiseta": personal.camiseta or None,
            "restricaoAlimentar": personal.restricao_alimentar or None,
            "restricaoMedica": personal.restricao_medica or None,
        },
        "contato": {
            "whatsapp": whatsapp,
            "contatoAltern": personal.contato_altern or None,
        },
        "saude": state.saude or None,
        "financeiro": {
            "responsavelProprio": finance.responsavel_proprio,
            "metodo": finance.metodo.value,
            "amount": float(finance.amount),
        },
        "responsavelFinanceiro": responsible,
        "observacoes": None,
    }


class WizardController:
    """
    Liga o redutor aos colaboradores assíncronos: validador de CPF,
    envio da inscrição e consulta de CEP.

    Erros exibidos ao usuário terminam aqui, gravados em `state.error`.
    """

    def __init__(
        self,
        gateway: EligibilityGateway,
        submitter,
        address_lookup=None,
        prices=None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        on_change: Optional[Callable[[WizardState], None]] = None,
        on_step_change: Optional[Callable[[WizardStep], None]] = None,
    ) -> None:
        initial = WizardState()
        if prices:
            prices = {PaymentMethod(k): v for k, v in prices.items()}
            initial = replace(
                initial,
                prices=prices,
                finance=replace(initial.finance, amount=prices[initial.finance.metodo]),
            )
        self.state = initial
        self._submitter = submitter
        self._address_lookup = address_lookup
        self._on_change = on_change
        self._on_step_change = on_step_change
        self._validator = DebouncedCpfValidator(
            gateway,
            on_verdict=self._on_verdict,
            debounce_seconds=debounce_seconds,
        )

    @property
    def validator(self) -> DebouncedCpfValidator:
        return self._validator

    def dispatch(self, action: Any) -> WizardState:
        previous = self.state
        self.state = reduce(previous, action)
        if self.state.step != previous.step:
            logger.debug(f"Passo do assistente: {previous.step.name} -> {self.state.step.name}")
            # Rolagem para o topo na interface
            if self._on_step_change is not None:
                self._on_step_change(self.state.step)
        if self._on_change is not None and self.state is not previous:
            self._on_change(self.state)
        return self.state

    def _on_verdict(self, verdict: CpfVerdict) -> None:
        self.dispatch(CpfVerdictReceived(verdict))

    def accept_terms(self, accepted: bool = True) -> WizardState:
        return self.dispatch(AcceptTerms(accepted))

    def set_cpf(self, raw: str) -> WizardState:
        state = self.dispatch(CpfChanged(raw))
        self._validator.feed(raw)
        return state

    def retry_cpf_check(self) -> bool:
        return self._validator.retry()

    async def settle(self) -> WizardState:
        await self._validator.settle()
        return self.state

    def update_personal(self, **fields: Any) -> WizardState:
        return self.dispatch(PersonalChanged(fields))

    def set_health(self, text: str) -> WizardState:
        return self.dispatch(HealthChanged(text))

    def update_finance(self, **fields: Any) -> WizardState:
        return self.dispatch(FinanceChanged(fields))

    def select_payment_method(self, method) -> WizardState:
        return self.dispatch(PaymentMethodSelected(PaymentMethod(method)))

    def next(self) -> WizardState:
        return self.dispatch(Next())

    def back(self) -> WizardState:
        return self.dispatch(Back())

    def submit_form(self) -> WizardState:
        """
        Equivalente ao Enter no formulário: avança nos passos 0-4
        e abre a confirmação no resumo.
        """
        if self.state.loading:
            return self.state
        if self.state.step < WizardStep.REVIEW:
            return self.next()
        return self.dispatch(OpenConfirmation())

    def cancel_confirmation(self) -> WizardState:
        return self.dispatch(CloseConfirmation())

    async def lookup_address(self, cep: str) -> WizardState:
        """Preenche endereço a partir do CEP. Nunca bloqueia o envio."""
        self.dispatch(PersonalChanged({"cep": cep}))
        if self._address_lookup is None:
            return self.state
        address = await self._address_lookup.lookup(cep)
        if address is None:
            return self.state
        return self.dispatch(AddressResolved(
            logradouro=address.street,
            cidade=address.city,
            uf=address.state,
        ))

    async def confirm_and_submit(self) -> WizardState:
        """
        Envia a inscrição após a confirmação. Em caso de falha o
        assistente continua no resumo e pode tentar de novo.
        """
        state = self.dispatch(SubmitStarted())
        if not state.loading:
            return state

        payload = build_payload(state)
        try:
            result = await self._submitter.submit(payload)
        except EnrollmentError as e:
            logger.warning(f"Falha ao enviar inscrição: error={type(e).__name__}: {e.user_message}")
            return self.dispatch(SubmitFailed(e.user_message))
        except Exception as e:
            logger.error(
                f"Erro inesperado ao enviar inscrição: error={type(e).__name__}: {e}",
                exc_info=True,
            )
            return self.dispatch(SubmitFailed(EnrollmentError.default_message))

        state = self.dispatch(SubmitSucceeded(result))
        self._validator.close()
        return state

    def close(self) -> None:
        self._validator.close()
