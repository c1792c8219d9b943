import asyncio
from dataclasses import replace
from decimal import Decimal

import pytest

from cursilho.core.cpf_checker import CpfCheckState, CpfVerdict
from cursilho.core.eligibility import EligibilityVerdict
from cursilho.core.errors import ServerRejection, TransportError
from cursilho.core.registration_manager import WizardController, build_payload, reduce
from cursilho.core.registration_state import (
    AcceptTerms,
    Back,
    CpfVerdictReceived,
    FinanceChanged,
    FinanceData,
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
from cursilho.infra.address_lookup import Address

VALID_CPF = "11144477735"
PRICES = {PaymentMethod.PIX: Decimal("700.08"), PaymentMethod.CARD: Decimal("750.08")}


def filled_state(**overrides) -> WizardState:
    state = WizardState(
        step=WizardStep.REVIEW,
        agreement=True,
        cpf="111.444.777-35",
        cpf_check=CpfVerdict(CpfCheckState.VALID, cpf=VALID_CPF),
        personal=PersonalData(nome="João da Silva", whatsapp="(11) 98765-4321", email="joao@example.com"),
        finance=FinanceData(),
        prices=dict(PRICES),
    )
    return replace(state, **overrides)


# -----------------------
# Redutor
# -----------------------

def test_terms_must_be_accepted_before_advancing():
    state = reduce(WizardState(), Next())
    assert state.step == WizardStep.TERMS
    assert state.error

    state = reduce(reduce(state, AcceptTerms(True)), Next())
    assert state.step == WizardStep.CPF
    assert state.error is None


@pytest.mark.parametrize("check_state", [
    CpfCheckState.EMPTY,
    CpfCheckState.INCOMPLETE,
    CpfCheckState.INVALID,
    CpfCheckState.CHECKING,
    CpfCheckState.DUPLICATE,
    CpfCheckState.ERROR,
])
def test_cpf_step_blocks_unless_valid(check_state):
    state = filled_state(step=WizardStep.CPF, cpf_check=CpfVerdict(check_state, cpf=VALID_CPF))
    state = reduce(state, Next())
    assert state.step == WizardStep.CPF
    assert state.error


def test_duplicate_cpf_points_to_workers_enrollment():
    state = filled_state(step=WizardStep.CPF, cpf_check=CpfVerdict(CpfCheckState.DUPLICATE, cpf=VALID_CPF))
    assert "Obreiros" in reduce(state, Next()).error


def test_valid_cpf_advances():
    state = filled_state(step=WizardStep.CPF)
    assert reduce(state, Next()).step == WizardStep.PERSONAL


def test_checking_verdict_marks_loading():
    state = filled_state(step=WizardStep.CPF)
    state = reduce(state, CpfVerdictReceived(CpfVerdict(CpfCheckState.CHECKING, cpf=VALID_CPF)))
    assert state.loading is True
    state = reduce(state, CpfVerdictReceived(CpfVerdict(CpfCheckState.VALID, cpf=VALID_CPF)))
    assert state.loading is False


@pytest.mark.parametrize("fields,ok", [
    ({}, True),
    ({"nome": "Jo "}, False),
    ({"whatsapp": "98765-432"}, False),
    ({"nascimento": "31/02/2000"}, False),
    ({"nascimento": "01/01/1899"}, False),
    ({"nascimento": "29/02/2000"}, True),
    ({"nascimento": ""}, True),
])
def test_personal_step_guard(fields, ok):
    state = filled_state(step=WizardStep.PERSONAL)
    state = reduce(state, PersonalChanged(fields))
    state = reduce(state, Next())
    assert (state.step == WizardStep.FINANCIAL_RESPONSIBLE) is ok


def test_other_payer_requires_name_and_phone():
    state = filled_state(step=WizardStep.FINANCIAL_RESPONSIBLE)
    state = reduce(state, FinanceChanged({"responsavel_proprio": False}))
    blocked = reduce(state, Next())
    assert blocked.step == WizardStep.FINANCIAL_RESPONSIBLE
    assert blocked.error == "Preencha dados do responsável financeiro."

    state = reduce(state, FinanceChanged({"resp_nome": "Maria", "resp_whatsapp": "11912345678"}))
    assert reduce(state, Next()).step == WizardStep.PAYMENT


def test_finance_update_cannot_set_amount():
    with pytest.raises(ValueError):
        reduce(filled_state(), FinanceChanged({"amount": Decimal("1.00")}))


@pytest.mark.parametrize("method,expected", [
    (PaymentMethod.CARD, Decimal("750.08")),
    (PaymentMethod.PIX, Decimal("700.08")),
])
def test_payment_method_sets_exact_amount(method, expected):
    state = filled_state(step=WizardStep.PAYMENT)
    state = reduce(state, PaymentMethodSelected(method))
    assert state.finance.metodo == method
    assert state.finance.amount == expected


def test_switching_payment_method_back_restores_price():
    state = filled_state(step=WizardStep.PAYMENT)
    state = reduce(state, PaymentMethodSelected(PaymentMethod.CARD))
    state = reduce(state, PaymentMethodSelected(PaymentMethod.PIX))
    assert state.finance.amount == Decimal("700.08")


def test_back_is_a_no_op_on_first_step():
    state = WizardState()
    assert reduce(state, Back()) == state


def test_back_returns_to_previous_step():
    state = filled_state(step=WizardStep.PERSONAL)
    assert reduce(state, Back()).step == WizardStep.CPF


def test_next_never_leaves_review():
    state = filled_state()
    assert reduce(state, Next()).step == WizardStep.REVIEW


def test_confirmation_revalidates_every_step():
    state = filled_state(agreement=False)
    state = reduce(state, OpenConfirmation())
    assert state.confirm_open is False
    assert state.error == "Você precisa concordar com os termos."

    state = filled_state(cpf_check=CpfVerdict(CpfCheckState.DUPLICATE, cpf=VALID_CPF))
    assert reduce(state, OpenConfirmation()).confirm_open is False


def test_submit_requires_open_confirmation():
    state = filled_state()
    assert reduce(state, SubmitStarted()).loading is False

    state = reduce(state, OpenConfirmation())
    state = reduce(state, SubmitStarted())
    assert state.loading is True
    # Envio em andamento: voltar não tem efeito
    assert reduce(state, Back()).step == WizardStep.REVIEW


def test_submit_outcomes():
    started = reduce(reduce(filled_state(), OpenConfirmation()), SubmitStarted())

    failed = reduce(started, SubmitFailed("CPF já participou de um Cursilho"))
    assert failed.step == WizardStep.REVIEW
    assert failed.loading is False
    assert failed.error == "CPF já participou de um Cursilho"

    done = reduce(started, SubmitSucceeded({"ok": True}))
    assert done.step == WizardStep.SUCCESS
    assert done.submission_result == {"ok": True}
    assert reduce(done, Back()).step == WizardStep.SUCCESS


def test_unknown_action_is_rejected():
    with pytest.raises(TypeError):
        reduce(WizardState(), object())


def test_build_payload_with_own_payer():
    state = reduce(filled_state(), PaymentMethodSelected(PaymentMethod.CARD))
    payload = build_payload(state)

    assert payload["cpf"] == VALID_CPF
    assert payload["termos"]["aceite"] is True
    assert payload["dadosPessoais"]["whatsapp"] == "11987654321"
    assert payload["financeiro"] == {"responsavelProprio": True, "metodo": "cartao", "amount": 750.08}
    assert payload["responsavelFinanceiro"] == {
        "nome": "João da Silva", "relacao": "Próprio", "whatsapp": "11987654321",
    }


def test_build_payload_with_other_payer():
    state = reduce(filled_state(), FinanceChanged({
        "responsavel_proprio": False,
        "resp_nome": "Maria da Silva",
        "resp_relacao": "Esposa",
        "resp_whatsapp": "(11) 91234-5678",
    }))
    payload = build_payload(state)
    assert payload["financeiro"]["responsavelProprio"] is False
    assert payload["responsavelFinanceiro"] == {
        "nome": "Maria da Silva", "relacao": "Esposa", "whatsapp": "11912345678",
    }


# -----------------------
# Controlador
# -----------------------

class FakeGateway:
    def __init__(self, participants=()):
        self.participants = set(participants)
        self.gate = None

    async def check(self, cpf):
        if self.gate is not None:
            await self.gate.wait()
        participated = cpf in self.participants
        return EligibilityVerdict(exists=participated, participated=participated)


class FakeSubmitter:
    def __init__(self, errors=()):
        self.errors = list(errors)
        self.payloads = []

    async def submit(self, payload):
        self.payloads.append(payload)
        if self.errors:
            raise self.errors.pop(0)
        return {"ok": True, "data": {"id": 1, "status": "pending"}}


class FakeAddressLookup:
    def __init__(self, address=None):
        self.address = address

    async def lookup(self, cep):
        return self.address


def make_controller(gateway=None, submitter=None, address_lookup=None):
    steps = []
    controller = WizardController(
        gateway=gateway or FakeGateway(),
        submitter=submitter or FakeSubmitter(),
        address_lookup=address_lookup,
        prices={"pix": Decimal("700.08"), "cartao": Decimal("750.08")},
        debounce_seconds=0.01,
        on_step_change=steps.append,
    )
    return controller, steps


async def fill_until_review(controller, method="pix"):
    controller.accept_terms(True)
    controller.submit_form()
    controller.set_cpf("111.444.777-35")
    await controller.settle()
    controller.submit_form()
    controller.update_personal(nome="João da Silva", whatsapp="(11) 98765-4321", email="joao@example.com")
    controller.submit_form()
    controller.update_finance(responsavel_proprio=True)
    controller.submit_form()
    controller.select_payment_method(method)
    controller.submit_form()


@pytest.mark.asyncio
async def test_full_flow_reaches_success():
    submitter = FakeSubmitter()
    controller, steps = make_controller(submitter=submitter)

    await fill_until_review(controller, method="cartao")
    assert controller.state.step == WizardStep.REVIEW

    state = controller.submit_form()
    assert state.confirm_open is True
    state = await controller.confirm_and_submit()

    assert state.step == WizardStep.SUCCESS
    assert steps == [
        WizardStep.CPF,
        WizardStep.PERSONAL,
        WizardStep.FINANCIAL_RESPONSIBLE,
        WizardStep.PAYMENT,
        WizardStep.REVIEW,
        WizardStep.SUCCESS,
    ]
    assert submitter.payloads[0]["financeiro"]["metodo"] == "cartao"
    assert submitter.payloads[0]["financeiro"]["amount"] == 750.08
    assert controller.validator.closed


@pytest.mark.asyncio
async def test_duplicate_cpf_blocks_the_wizard():
    controller, _ = make_controller(gateway=FakeGateway(participants={VALID_CPF}))
    controller.accept_terms(True)
    controller.next()
    controller.set_cpf(VALID_CPF)
    await controller.settle()

    state = controller.next()
    assert state.step == WizardStep.CPF
    assert state.cpf_duplicate is True
    controller.close()


@pytest.mark.asyncio
async def test_next_is_blocked_while_cpf_check_is_pending():
    gateway = FakeGateway()
    gateway.gate = asyncio.Event()
    controller, _ = make_controller(gateway=gateway)
    controller.accept_terms(True)
    controller.next()
    controller.set_cpf(VALID_CPF)

    for _ in range(200):
        if controller.state.cpf_check.state == CpfCheckState.CHECKING:
            break
        await asyncio.sleep(0.005)
    assert controller.state.loading is True
    assert controller.next().step == WizardStep.CPF

    gateway.gate.set()
    await controller.settle()
    assert controller.next().step == WizardStep.PERSONAL
    controller.close()


@pytest.mark.asyncio
async def test_failed_submission_stays_on_review_and_can_retry():
    submitter = FakeSubmitter(errors=[ServerRejection(409, "CPF já participou de um Cursilho"), TransportError()])
    controller, _ = make_controller(submitter=submitter)
    await fill_until_review(controller)

    controller.submit_form()
    state = await controller.confirm_and_submit()
    assert state.step == WizardStep.REVIEW
    assert state.loading is False
    assert state.error == "CPF já participou de um Cursilho"

    controller.submit_form()
    state = await controller.confirm_and_submit()
    assert state.error == TransportError.default_message

    controller.submit_form()
    state = await controller.confirm_and_submit()
    assert state.step == WizardStep.SUCCESS
    assert len(submitter.payloads) == 3


@pytest.mark.asyncio
async def test_submit_without_confirmation_does_nothing():
    submitter = FakeSubmitter()
    controller, _ = make_controller(submitter=submitter)
    await fill_until_review(controller)

    state = await controller.confirm_and_submit()
    assert state.step == WizardStep.REVIEW
    assert submitter.payloads == []
    controller.close()


@pytest.mark.asyncio
async def test_address_lookup_fills_city_and_state():
    lookup = FakeAddressLookup(Address(
        postal_code="08710000", street="Rua Dr. Deodato Wertheimer", district="Centro",
        city="Mogi das Cruzes", state="SP",
    ))
    controller, _ = make_controller(address_lookup=lookup)

    state = await controller.lookup_address("08710-000")
    assert state.personal.cep == "08710-000"
    assert state.personal.cidade == "Mogi das Cruzes"
    assert state.personal.uf == "SP"
    controller.close()


@pytest.mark.asyncio
async def test_address_not_found_keeps_fields():
    controller, _ = make_controller(address_lookup=FakeAddressLookup(None))
    controller.update_personal(cidade="Suzano")

    state = await controller.lookup_address("99999-999")
    assert state.personal.cidade == "Suzano"
    controller.close()


# -----------------------
# Telefone com DDI, mensagens de erro e estado do CPF
# -----------------------

def test_phone_with_country_code_is_sent_without_it():
    state = filled_state(step=WizardStep.PERSONAL)
    state = reduce(state, PersonalChanged({"whatsapp": "+55 (11) 98765-4321"}))

    assert reduce(state, Next()).step == WizardStep.FINANCIAL_RESPONSIBLE
    payload = build_payload(state)
    assert payload["dadosPessoais"]["whatsapp"] == "11987654321"
    assert payload["contato"]["whatsapp"] == "11987654321"
    assert payload["responsavelFinanceiro"]["whatsapp"] == "11987654321"


def test_other_payer_phone_with_country_code_is_normalized():
    state = reduce(filled_state(), FinanceChanged({
        "responsavel_proprio": False,
        "resp_nome": "Maria da Silva",
        "resp_whatsapp": "+55 11 91234-5678",
    }))
    assert build_payload(state)["responsavelFinanceiro"]["whatsapp"] == "11912345678"


def test_too_long_phone_is_blocked():
    state = filled_state(step=WizardStep.PERSONAL)
    state = reduce(state, PersonalChanged({"whatsapp": "(11) 98765-43210"}))
    assert reduce(state, Next()).error == "Preencha nome e WhatsApp corretamente."


def test_late_cpf_verdict_keeps_message_from_other_step():
    state = filled_state(step=WizardStep.PERSONAL, cpf_check=CpfVerdict(CpfCheckState.CHECKING, cpf=VALID_CPF))
    state = reduce(state, PersonalChanged({"nome": "Jo"}))
    state = reduce(state, Next())
    assert state.error == "Preencha nome e WhatsApp corretamente."

    state = reduce(state, CpfVerdictReceived(CpfVerdict(CpfCheckState.VALID, cpf=VALID_CPF)))
    assert state.error == "Preencha nome e WhatsApp corretamente."


def test_cpf_verdict_clears_message_from_cpf_check():
    state = filled_state(step=WizardStep.CPF, cpf_check=CpfVerdict(CpfCheckState.CHECKING, cpf=VALID_CPF))
    state = reduce(state, Next())
    assert state.error == "Aguarde a verificação do CPF."

    state = reduce(state, CpfVerdictReceived(CpfVerdict(CpfCheckState.VALID, cpf=VALID_CPF)))
    assert state.error is None


def test_cpf_error_is_cleared_by_the_next_verdict():
    state = filled_state(step=WizardStep.CPF)
    state = reduce(state, CpfVerdictReceived(
        CpfVerdict(CpfCheckState.ERROR, cpf=VALID_CPF, message="Falha ao verificar CPF")
    ))
    assert state.error == "Falha ao verificar CPF"

    state = reduce(state, CpfVerdictReceived(CpfVerdict(CpfCheckState.CHECKING, cpf=VALID_CPF)))
    assert state.error is None


@pytest.mark.parametrize("check_state,expected", [
    (CpfCheckState.EMPTY, None),
    (CpfCheckState.INCOMPLETE, None),
    (CpfCheckState.INVALID, False),
    (CpfCheckState.CHECKING, True),
    (CpfCheckState.VALID, True),
    (CpfCheckState.DUPLICATE, True),
    (CpfCheckState.ERROR, True),
])
def test_cpf_valid_reflects_local_validation(check_state, expected):
    state = reduce(WizardState(), CpfVerdictReceived(CpfVerdict(check_state, cpf=VALID_CPF)))
    assert state.cpf_valid is expected
