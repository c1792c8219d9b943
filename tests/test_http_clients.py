"""
Clientes HTTP do assistente contra um transporte simulado do httpx.
"""
import httpx
import pytest

from cursilho.core.cpf_checker import CpfCheckState, DebouncedCpfValidator
from cursilho.core.eligibility import HttpEligibilityGateway
from cursilho.core.errors import LookupFailedError, ServerRejection, TransportError
from cursilho.core.submitter import EnrollmentSubmitter
from cursilho.infra.address_lookup import ViaCepAddressLookup

BASE_URL = "http://functions.test"


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def failing_handler(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


# -----------------------
# GET /check-cpf
# -----------------------

@pytest.mark.asyncio
async def test_check_cpf_parses_verdict():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={
            "exists": True,
            "participated": True,
            "person": {"id": 7, "nome": "João da Silva", "whatsapp": "11987654321", "email": None},
        })

    async with mock_client(handler) as client:
        verdict = await HttpEligibilityGateway(client, BASE_URL + "/").check("11144477735")

    assert seen[0].url.path == "/check-cpf"
    assert seen[0].url.params["cpf"] == "11144477735"
    assert verdict.exists and verdict.participated
    assert verdict.person.id == 7
    assert verdict.person.nome == "João da Silva"


@pytest.mark.asyncio
async def test_check_cpf_unknown_person():
    async with mock_client(lambda r: httpx.Response(200, json={"exists": False, "participated": False})) as client:
        verdict = await HttpEligibilityGateway(client, BASE_URL).check("52998224725")

    assert verdict.exists is False
    assert verdict.participated is False
    assert verdict.person is None


@pytest.mark.asyncio
async def test_check_cpf_server_error_uses_server_message():
    async with mock_client(lambda r: httpx.Response(500, json={"error": "Falha ao verificar CPF"})) as client:
        with pytest.raises(LookupFailedError) as exc_info:
            await HttpEligibilityGateway(client, BASE_URL).check("11144477735")

    assert exc_info.value.user_message == "Falha ao verificar CPF"


@pytest.mark.parametrize("content", [
    {"text": "<html>proxy</html>"},
    {"json": ["exists", False]},
    {"json": {}},
])
@pytest.mark.asyncio
async def test_check_cpf_unexpected_ok_body_is_a_failure(content):
    async with mock_client(lambda r: httpx.Response(200, **content)) as client:
        with pytest.raises(LookupFailedError) as exc_info:
            await HttpEligibilityGateway(client, BASE_URL).check("11144477735")

    assert exc_info.value.user_message == "Falha ao verificar CPF"


@pytest.mark.asyncio
async def test_garbled_check_response_surfaces_as_error_in_validator():
    handler = lambda r: httpx.Response(200, text="<html>proxy</html>")
    async with mock_client(handler) as client:
        validator = DebouncedCpfValidator(HttpEligibilityGateway(client, BASE_URL), debounce_seconds=0.01)
        validator.feed("11144477735")
        verdict = await validator.settle()

    assert verdict.state == CpfCheckState.ERROR
    assert verdict.message == "Falha ao verificar CPF"


@pytest.mark.asyncio
async def test_check_cpf_network_failure():
    async with mock_client(failing_handler) as client:
        with pytest.raises(LookupFailedError):
            await HttpEligibilityGateway(client, BASE_URL).check("11144477735")


# -----------------------
# POST /submit-inscricao
# -----------------------

@pytest.mark.asyncio
async def test_submit_returns_server_body():
    def handler(request):
        assert request.method == "POST"
        assert request.url.path == "/submit-inscricao"
        return httpx.Response(201, json={"ok": True, "data": {"id": 3, "status": "pending"}})

    async with mock_client(handler) as client:
        body = await EnrollmentSubmitter(client, BASE_URL).submit({"cpf": "11144477735"})

    assert body["data"]["status"] == "pending"


@pytest.mark.asyncio
async def test_submit_duplicate_rejection_keeps_server_message():
    handler = lambda r: httpx.Response(409, json={"error": "CPF já participou de um Cursilho"})

    async with mock_client(handler) as client:
        with pytest.raises(ServerRejection) as exc_info:
            await EnrollmentSubmitter(client, BASE_URL).submit({"cpf": "11144477735"})

    assert exc_info.value.is_duplicate
    assert exc_info.value.user_message == "CPF já participou de um Cursilho"


@pytest.mark.asyncio
async def test_submit_server_failure_is_generic():
    handler = lambda r: httpx.Response(500, json={"error": "Traceback interno"})

    async with mock_client(handler) as client:
        with pytest.raises(TransportError) as exc_info:
            await EnrollmentSubmitter(client, BASE_URL).submit({"cpf": "11144477735"})

    assert exc_info.value.user_message == TransportError.default_message


@pytest.mark.asyncio
async def test_submit_other_client_error_without_message():
    async with mock_client(lambda r: httpx.Response(422, text="nope")) as client:
        with pytest.raises(ServerRejection) as exc_info:
            await EnrollmentSubmitter(client, BASE_URL).submit({"cpf": "11144477735"})

    assert exc_info.value.status_code == 422
    assert not exc_info.value.is_duplicate


@pytest.mark.asyncio
async def test_submit_network_failure():
    async with mock_client(failing_handler) as client:
        with pytest.raises(TransportError):
            await EnrollmentSubmitter(client, BASE_URL).submit({"cpf": "11144477735"})


# -----------------------
# ViaCEP
# -----------------------

@pytest.mark.asyncio
async def test_viacep_lookup_found():
    def handler(request):
        assert request.url.path == "/ws/08710000/json/"
        return httpx.Response(200, json={
            "cep": "08710-000",
            "logradouro": "Rua Dr. Deodato Wertheimer",
            "bairro": "Centro",
            "localidade": "Mogi das Cruzes",
            "uf": "SP",
        })

    async with mock_client(handler) as client:
        address = await ViaCepAddressLookup(client, "https://viacep.test/ws").lookup("08710-000")

    assert address.city == "Mogi das Cruzes"
    assert address.state == "SP"
    assert address.district == "Centro"


@pytest.mark.asyncio
async def test_viacep_unknown_cep_returns_none():
    async with mock_client(lambda r: httpx.Response(200, json={"erro": True})) as client:
        assert await ViaCepAddressLookup(client, "https://viacep.test/ws").lookup("99999999") is None


@pytest.mark.asyncio
async def test_viacep_failure_returns_none():
    async with mock_client(failing_handler) as client:
        assert await ViaCepAddressLookup(client, "https://viacep.test/ws").lookup("08710000") is None


@pytest.mark.asyncio
async def test_viacep_malformed_cep_skips_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={})

    async with mock_client(handler) as client:
        assert await ViaCepAddressLookup(client, "https://viacep.test/ws").lookup("0871") is None
    assert calls == []
