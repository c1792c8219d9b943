"""
Informações da edição do Cursilho e textos oficiais dos termos.

Tudo aqui é fixo; preços e chave do evento vêm da configuração.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List

TERMS_PDF_FILENAME = "TERMO_CURSILHO_14_PIB_MOGI.pdf"
TERMS_PDF_PATH = f"/docs/{TERMS_PDF_FILENAME}"
TERMS_VERSION = TERMS_PDF_FILENAME

TERMOS_PERMANENCIA = (
    "Estou ciente e de acordo de que o Cursilho é um evento imersivo e que, para participação, "
    "o interessado deve permanecer no local do evento durante toda sua realização "
    "(de quinta-feira à noite a domingo à noite). Declaro estar ciente também que a eventual "
    "não disponibilidade integral de presença no evento inviabilizará a participação."
)

TERMOS_TRANSPORTE = (
    "O transporte para o evento é realizado através de ônibus fretado "
    "(partindo do centro de Mogi das Cruzes - SP). Por questões de organização, não é permitida "
    "a chegada diretamente no local da realização do evento, salvo exceções previamente "
    "autorizadas pela comissão organizadora."
)

TERMOS_DESISTENCIA = (
    "Política de desistência:\n"
    "- Até 7 dias antes do início: devolução de 100% do valor;\n"
    "- Após esse prazo: devolução de 30% do valor;\n"
    "- Transferência de vaga/valor para próxima edição: permitida uma única vez, sujeita a "
    "diferença de valores e análise da organização."
)

TERMOS_COMPROVANTE = (
    "Após efetuar o pagamento, envie o comprovante (imagem/PDF) para o contato da organização "
    "via WhatsApp: 11 91756-1108. O comprovante é necessário para confirmar a vaga no evento."
)

TERMOS_DECLARACAO_FINAL = (
    "Declaro que li atentamente todas as informações, termos e perguntas do formulário, "
    "estou de acordo com as condições do evento e assumo compromisso de cumprir as normas "
    "e horários estabelecidos."
)


def format_brl(value: Decimal) -> str:
    """Ex: Decimal("700.08") -> "R$700,08" """
    return "R$" + f"{value:.2f}".replace(".", ",")


def payment_terms(price_pix: Decimal, price_card: Decimal) -> str:
    return (
        f"O valor da inscrição é {format_brl(price_pix)} para pagamento por PIX/dinheiro "
        f"ou {format_brl(price_card)} para pagamento por cartão. A participação só estará "
        "garantida mediante formulário preenchido e pagamento INTEGRAL do valor dentro do "
        "prazo informado (normalmente até 15 dias após a inscrição)."
    )


def get_terms_paragraphs(price_pix: Decimal, price_card: Decimal) -> List[str]:
    """
    Parágrafos dos termos na ordem em que aparecem no primeiro passo.
    """
    return [
        TERMOS_PERMANENCIA,
        TERMOS_TRANSPORTE,
        payment_terms(price_pix, price_card),
        TERMOS_DESISTENCIA,
        TERMOS_COMPROVANTE,
        TERMOS_DECLARACAO_FINAL,
    ]


@dataclass(frozen=True)
class EventInfo:
    """Edição do evento aberta para inscrições."""
    name: str
    event_key: str
    location: str
    departure: str
    price_pix: Decimal
    price_card: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "event_key": self.event_key,
            "location": self.location,
            "departure": self.departure,
            "prices": {
                "pix": float(self.price_pix),
                "cartao": float(self.price_card),
            },
            "terms": {
                "version": TERMS_VERSION,
                "pdf_path": TERMS_PDF_PATH,
                "paragraphs": get_terms_paragraphs(self.price_pix, self.price_card),
            },
        }


def get_event_info(event_key: str, price_pix: Decimal, price_card: Decimal) -> EventInfo:
    return EventInfo(
        name="14º Cursilho Masculino",
        event_key=event_key,
        location="Mogi das Cruzes - SP",
        departure="Ônibus fretado partindo do centro de Mogi das Cruzes - SP",
        price_pix=price_pix,
        price_card=price_card,
    )
