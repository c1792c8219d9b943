"""
Assistente de inscrição no terminal, falando com a API em FUNCTIONS_BASE_URL.

Digite "voltar" em qualquer pergunta para retornar ao passo anterior
e "sair" para encerrar.
"""
import asyncio
import sys

import httpx

from cursilho.config import AppConfig
from cursilho.core.cpf_checker import CpfCheckState
from cursilho.core.eligibility import HttpEligibilityGateway
from cursilho.core.registration_manager import WizardController
from cursilho.core.registration_state import PaymentMethod, WizardStep
from cursilho.core.submitter import EnrollmentSubmitter
from cursilho.domain.event_info import format_brl, get_terms_paragraphs
from cursilho.infra.address_lookup import ViaCepAddressLookup

STEP_TITLES = {
    WizardStep.TERMS: "Termos",
    WizardStep.CPF: "CPF",
    WizardStep.PERSONAL: "Dados pessoais",
    WizardStep.FINANCIAL_RESPONSIBLE: "Responsável financeiro",
    WizardStep.PAYMENT: "Forma de pagamento",
    WizardStep.REVIEW: "Resumo",
    WizardStep.SUCCESS: "Inscrição enviada",
}

YES = ("s", "sim", "y", "yes")


class GoBack(Exception):
    pass


async def ask(prompt: str) -> str:
    answer = (await asyncio.to_thread(input, prompt)).strip()
    if answer.lower() in ("sair", "exit"):
        sys.exit(0)
    if answer.lower() == "voltar":
        raise GoBack()
    return answer


async def fill_step(controller: WizardController, config: AppConfig) -> None:
    step = controller.state.step

    if step == WizardStep.TERMS:
        for paragraph in get_terms_paragraphs(config.price_pix, config.price_card):
            print(f"\n{paragraph}")
        controller.accept_terms((await ask("\nConcorda com os termos? (s/n) ")).lower() in YES)

    elif step == WizardStep.CPF:
        controller.set_cpf(await ask("CPF: "))
        print("Verificando CPF...")
        state = await controller.settle()
        while state.cpf_check.state == CpfCheckState.ERROR:
            print(state.cpf_check.message)
            if (await ask("Tentar novamente? (s/n) ")).lower() not in YES:
                break
            controller.retry_cpf_check()
            state = await controller.settle()

    elif step == WizardStep.PERSONAL:
        controller.update_personal(
            nome=await ask("Nome completo: "),
            whatsapp=await ask("WhatsApp com DDD: "),
            nascimento=await ask("Data de nascimento (dd/mm/aaaa, opcional): "),
            email=await ask("E-mail: "),
        )
        cep = await ask("CEP (opcional): ")
        if cep:
            state = await controller.lookup_address(cep)
            if state.personal.cidade:
                print(f"Endereço: {state.personal.logradouro or '-'}, {state.personal.cidade}/{state.personal.uf}")
        if not controller.state.personal.cidade:
            controller.update_personal(cidade=await ask("Cidade: "), uf=await ask("UF: "))
        controller.update_personal(
            igreja=await ask("Igreja: "),
            camiseta=await ask("Tamanho da camiseta: "),
            restricao_alimentar=await ask("Restrição alimentar: "),
            restricao_medica=await ask("Restrição médica: "),
        )
        controller.set_health(await ask("Observações de saúde: "))

    elif step == WizardStep.FINANCIAL_RESPONSIBLE:
        own = (await ask("Você mesmo é o responsável financeiro? (s/n) ")).lower() in YES
        if own:
            controller.update_finance(responsavel_proprio=True)
        else:
            controller.update_finance(
                responsavel_proprio=False,
                resp_nome=await ask("Nome do responsável: "),
                resp_relacao=await ask("Relação com você: "),
                resp_whatsapp=await ask("WhatsApp do responsável: "),
            )

    elif step == WizardStep.PAYMENT:
        prices = controller.state.prices
        choice = await ask(
            f"Pagamento: [1] PIX {format_brl(prices[PaymentMethod.PIX])}  [2] Cartão {format_brl(prices[PaymentMethod.CARD])}: "
        )
        controller.select_payment_method("cartao" if choice == "2" else "pix")

    elif step == WizardStep.REVIEW:
        state = controller.state
        print(f"CPF: {state.cpf}")
        print(f"Nome: {state.personal.nome}")
        print(f"WhatsApp: {state.personal.whatsapp}")
        print(f"Pagamento: {state.finance.metodo.value}")
        print(f"Valor: {format_brl(state.finance.amount)}")
        state = controller.submit_form()
        if not state.confirm_open:
            return
        if (await ask("Confirmar envio da inscrição? (s/n) ")).lower() not in YES:
            controller.cancel_confirmation()
            return
        await controller.confirm_and_submit()
        return

    controller.submit_form()


async def main() -> None:
    config = AppConfig.load_from_env()
    timeout = config.http_timeout_ms / 1000

    async with httpx.AsyncClient(timeout=timeout) as client:
        controller = WizardController(
            gateway=HttpEligibilityGateway(client, config.functions_base_url),
            submitter=EnrollmentSubmitter(client, config.functions_base_url),
            address_lookup=ViaCepAddressLookup(client, config.viacep_url),
            prices={"pix": config.price_pix, "cartao": config.price_card},
            debounce_seconds=config.cpf_debounce_ms / 1000,
            on_step_change=lambda step: print(f"\n== {STEP_TITLES[step]} =="),
        )
        print(f"\n== {STEP_TITLES[controller.state.step]} ==")
        try:
            while controller.state.step != WizardStep.SUCCESS:
                try:
                    await fill_step(controller, config)
                except GoBack:
                    controller.back()
                    continue
                if controller.state.error:
                    print(f"! {controller.state.error}")
        finally:
            controller.close()

        data = (controller.state.submission_result or {}).get("data", {})
        print(f"Inscrição nº {data.get('id')} registrada com status {data.get('status')}.")


if __name__ == "__main__":
    asyncio.run(main())
