from enum import Enum, IntEnum
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional

from .cpf_checker import CpfCheckState, CpfVerdict, EMPTY_VERDICT


class WizardStep(IntEnum):
    """
    Passos do assistente de inscrição, estritamente lineares.
    """
    TERMS = 0
    CPF = 1
    PERSONAL = 2
    FINANCIAL_RESPONSIBLE = 3
    PAYMENT = 4
    REVIEW = 5
    SUCCESS = 6


class PaymentMethod(str, Enum):
    PIX = "pix"
    CARD = "cartao"


DEFAULT_PRICES = {
    PaymentMethod.PIX: Decimal("700.08"),
    PaymentMethod.CARD: Decimal("750.08"),
}


@dataclass(frozen=True)
class PersonalData:
    """
    Dados pessoais coletados no passo 2.
    """
    nome: str = ""
    whatsapp: str = ""
    nascimento: str = ""
    contato_altern: str = ""
    email: str = ""
    cep: str = ""
    logradouro: str = ""
    cidade: str = ""
    uf: str = ""
    igreja: str = ""
    camiseta: str = ""
    restricao_alimentar: str = ""
    restricao_medica: str = ""


@dataclass(frozen=True)
class FinanceData:
    """
    Responsável financeiro (passo 3) e forma de pagamento (passo 4).
    """
    responsavel_proprio: bool = True
    resp_nome: str = ""
    resp_relacao: str = ""
    resp_whatsapp: str = ""
    metodo: PaymentMethod = PaymentMethod.PIX
    amount: Decimal = DEFAULT_PRICES[PaymentMethod.PIX]


@dataclass(frozen=True)
class WizardState:
    """
    Estado completo do assistente. Nunca é alterado no lugar:
    cada transição devolve uma nova instância.
    """
    step: WizardStep = WizardStep.TERMS
    agreement: bool = False
    cpf: str = ""
    cpf_check: CpfVerdict = EMPTY_VERDICT
    personal: PersonalData = field(default_factory=PersonalData)
    saude: str = ""
    finance: FinanceData = field(default_factory=FinanceData)
    prices: Mapping[PaymentMethod, Decimal] = field(default_factory=lambda: dict(DEFAULT_PRICES))
    loading: bool = False
    error: Optional[str] = None
    confirm_open: bool = False
    submission_result: Optional[Dict[str, Any]] = None

    @property
    def cpf_valid(self) -> Optional[bool]:
        """True/False após a validação local, None enquanto neutro."""
        state = self.cpf_check.state
        if state == CpfCheckState.INVALID:
            return False
        if state in (CpfCheckState.EMPTY, CpfCheckState.INCOMPLETE):
            return None
        return True

    @property
    def cpf_duplicate(self) -> bool:
        return self.cpf_check.state == CpfCheckState.DUPLICATE


# -----------------------
# Ações
# -----------------------

@dataclass(frozen=True)
class AcceptTerms:
    accepted: bool


@dataclass(frozen=True)
class CpfChanged:
    raw: str


@dataclass(frozen=True)
class CpfVerdictReceived:
    verdict: CpfVerdict


@dataclass(frozen=True)
class PersonalChanged:
    fields: Mapping[str, Any]


@dataclass(frozen=True)
class AddressResolved:
    logradouro: Optional[str] = None
    cidade: Optional[str] = None
    uf: Optional[str] = None


@dataclass(frozen=True)
class HealthChanged:
    text: str


@dataclass(frozen=True)
class FinanceChanged:
    fields: Mapping[str, Any]


@dataclass(frozen=True)
class PaymentMethodSelected:
    method: PaymentMethod


@dataclass(frozen=True)
class Next:
    pass


@dataclass(frozen=True)
class Back:
    pass


@dataclass(frozen=True)
class OpenConfirmation:
    pass


@dataclass(frozen=True)
class CloseConfirmation:
    pass


@dataclass(frozen=True)
class SubmitStarted:
    pass


@dataclass(frozen=True)
class SubmitSucceeded:
    result: Dict[str, Any]


@dataclass(frozen=True)
class SubmitFailed:
    message: str


@dataclass(frozen=True)
class DismissError:
    pass
