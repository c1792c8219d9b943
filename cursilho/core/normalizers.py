"""
Funções para normalizar e validar dados de entrada do formulário.

O validador de CPF é usado tanto pelo assistente (feedback imediato)
quanto pelo servidor (validação autoritativa), por isso não depende
de nada além da biblioteca padrão.
"""
import calendar
import re
import unicodedata
from datetime import date
from typing import Optional


# Mapeamento de UFs brasileiras
UF_MAP = {
    "AC": "Acre", "AL": "Alagoas", "AP": "Amapá", "AM": "Amazonas",
    "BA": "Bahia", "CE": "Ceará", "DF": "Distrito Federal",
    "ES": "Espírito Santo", "GO": "Goiás", "MA": "Maranhão",
    "MT": "Mato Grosso", "MS": "Mato Grosso do Sul", "MG": "Minas Gerais",
    "PA": "Pará", "PB": "Paraíba", "PR": "Paraná", "PE": "Pernambuco",
    "PI": "Piauí", "RJ": "Rio de Janeiro", "RN": "Rio Grande do Norte",
    "RS": "Rio Grande do Sul", "RO": "Rondônia", "RR": "Roraima",
    "SC": "Santa Catarina", "SP": "São Paulo", "SE": "Sergipe",
    "TO": "Tocantins",
}

_ISO_DATE = re.compile(r"^\s*(\d{4})-(\d{2})-(\d{2})\s*$")


def strip_accents(text: str) -> str:
    """
    Remove acentos de uma string.
    """
    return "".join(
        ch for ch in unicodedata.normalize("NFD", text)
        if unicodedata.category(ch) != "Mn"
    )


def only_digits(raw: Optional[str]) -> str:
    return re.sub(r"\D", "", raw or "")


def _check_digit(digits: str, target: int) -> int:
    # Peso do dígito i é (target + 1 - i), somado para i em [0, target)
    total = sum(int(digits[i]) * (target + 1 - i) for i in range(target))
    remainder = total % 11
    return 0 if remainder < 2 else 11 - remainder


def validate_cpf(raw: Optional[str]) -> bool:
    """
    Valida estrutura e dígitos verificadores de um CPF.

    Aceita formatos como "111.444.777-35" ou "11144477735".
    Rejeita tamanhos diferentes de 11 e sequências repetidas (111.111.111-11).
    """
    digits = only_digits(raw)

    if len(digits) != 11:
        return False

    if len(set(digits)) == 1:
        return False

    return (
        _check_digit(digits, 9) == int(digits[9])
        and _check_digit(digits, 10) == int(digits[10])
    )


def normalize_cpf(raw: Optional[str]) -> Optional[str]:
    """
    Normaliza CPF removendo caracteres não numéricos.
    Retorna apenas os 11 dígitos ou None se inválido.

    Exemplo: "111.444.777-35" → "11144477735"
    """
    digits = only_digits(raw)
    if not validate_cpf(digits):
        return None
    return digits


def mask_cpf_for_log(cpf: Optional[str]) -> str:
    """
    Retorna CPF parcialmente oculto para logs.
    Ex: "11144477735" -> "111.***.***-35"
    """
    digits = only_digits(cpf)
    if len(digits) != 11:
        return "***"
    return f"{digits[:3]}.***.***-{digits[9:]}"


def validate_name(raw: Optional[str]) -> bool:
    """Nome precisa de ao menos 3 caracteres que não sejam espaço."""
    return len(re.sub(r"\s", "", raw or "")) >= 3


def normalize_phone(raw: Optional[str]) -> Optional[str]:
    """
    Extrai dígitos de um telefone brasileiro com DDD.

    Aceita fixo (10 dígitos) ou celular (11 dígitos).
    Retorna None se não tiver tamanho plausível.

    Exemplos:
        "(11) 98765-4321" → "11987654321"
        "11 3456-7890" → "1134567890"
    """
    digits = only_digits(raw)

    # Remove DDI se vier com 55 na frente
    if digits.startswith("55") and len(digits) in (12, 13):
        digits = digits[2:]

    if len(digits) not in (10, 11):
        return None
    return digits


def parse_birth_date(raw: Optional[str], today: Optional[date] = None) -> Optional[date]:
    """
    Converte data de nascimento para date.

    Aceita "dd/mm/aaaa", "ddmmaaaa" ou ISO "aaaa-mm-dd".
    Retorna None se não for uma data real de calendário com ano
    entre 1900 e o ano corrente.
    """
    if not raw or not raw.strip():
        return None

    iso = _ISO_DATE.match(raw)
    if iso:
        year, month, day = (int(part) for part in iso.groups())
    else:
        digits = only_digits(raw)
        if len(digits) != 8:
            return None
        day, month, year = int(digits[:2]), int(digits[2:4]), int(digits[4:])

    current_year = (today or date.today()).year
    if year < 1900 or year > current_year:
        return None
    if month < 1 or month > 12:
        return None
    if day < 1 or day > calendar.monthrange(year, month)[1]:
        return None
    return date(year, month, day)


def normalize_uf(raw: Optional[str]) -> Optional[str]:
    """
    Normaliza estado para a sigla (UF).

    Aceita "PR", "pr" ou o nome completo com ou sem acento ("Paraná").
    """
    text = strip_accents((raw or "").strip()).upper()
    if not text:
        return None
    if text in UF_MAP:
        return text
    for uf, name in UF_MAP.items():
        if strip_accents(name).upper() == text:
            return uf
    return None


def normalize_cep(raw: Optional[str]) -> Optional[str]:
    """CEP com exatamente 8 dígitos, ou None."""
    digits = only_digits(raw)
    if len(digits) != 8:
        return None
    return digits
