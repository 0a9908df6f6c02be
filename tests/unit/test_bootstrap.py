"""Tests for scenario setup."""

import json

import httpx
import pytest

from pixload.engine.bootstrap import ScenarioBootstrapper
from pixload.engine.errors import SetupFailure


def _wallet_service(overrides: dict[str, httpx.Response] | None = None):
    """Handler that answers the three setup endpoints, with optional overrides."""
    overrides = overrides or {}
    calls: list[httpx.Request] = []
    counter = {"wallet": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        path = request.url.path
        if path.endswith("/pix-keys"):
            step = "pix_key"
        elif path.endswith("/deposit"):
            step = "deposit"
        else:
            step = "wallet"
        if step in overrides:
            return overrides[step]
        if step == "wallet":
            counter["wallet"] += 1
            return httpx.Response(201, json={"id": f"w-{counter['wallet']}"})
        if step == "pix_key":
            return httpx.Response(
                201, json={"id": "k-1", "type": "RANDOM", "value": "rand-key", "status": "ACTIVE"}
            )
        return httpx.Response(200, json={"balance": "200000.00"})

    return handler, calls


class TestScenarioBootstrapper:
    @pytest.mark.asyncio
    async def test_setup_builds_context(self, mock_service) -> None:
        handler, calls = _wallet_service()
        ctx = await ScenarioBootstrapper(mock_service(handler), "200000.00").setup()

        assert ctx.source_account_id == "w-1"
        assert ctx.destination_account_id == "w-2"
        assert ctx.destination_key == "rand-key"
        assert [c.url.path for c in calls] == [
            "/wallets",
            "/wallets",
            "/wallets/w-2/pix-keys",
            "/wallets/w-1/deposit",
        ]
        assert json.loads(calls[2].content) == {"type": "RANDOM", "value": ""}
        assert json.loads(calls[3].content) == {"amount": "200000.00"}
        assert calls[3].headers["Idempotency-Key"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("step", "response", "failed_at"),
        [
            ("wallet", httpx.Response(500, json={"message": "boom"}), "create_wallet"),
            ("wallet", httpx.Response(201, json={}), "create_wallet"),
            ("pix_key", httpx.Response(409, json={"code": "CONFLICT"}), "create_pix_key"),
            ("pix_key", httpx.Response(201, json={"id": "k-1"}), "create_pix_key"),
            ("deposit", httpx.Response(400, json={"code": "BAD_REQUEST"}), "deposit"),
        ],
    )
    async def test_failure_raises_setup_failure(
        self, mock_service, step: str, response: httpx.Response, failed_at: str
    ) -> None:
        handler, _ = _wallet_service({step: response})
        with pytest.raises(SetupFailure) as exc_info:
            await ScenarioBootstrapper(mock_service(handler), "200000.00").setup()
        assert exc_info.value.step == failed_at
        assert exc_info.value.status == response.status_code

    @pytest.mark.asyncio
    async def test_unreachable_service(self, mock_service) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(SetupFailure) as exc_info:
            await ScenarioBootstrapper(mock_service(handler), "1.00").setup()
        assert exc_info.value.status == 503
        assert "create_wallet" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_undecodable_response_is_setup_failure(self, mock_service) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                201,
                headers={"Content-Encoding": "gzip"},
                stream=httpx.ByteStream(b"garbage"),
            )

        with pytest.raises(SetupFailure) as exc_info:
            await ScenarioBootstrapper(mock_service(handler), "1.00").setup()
        assert exc_info.value.step == "create_wallet"
        assert exc_info.value.status == 503

    @pytest.mark.asyncio
    async def test_deposit_returns_fresh_key(self, mock_service) -> None:
        handler, _ = _wallet_service()
        boot = ScenarioBootstrapper(mock_service(handler), "1.00")
        assert await boot.deposit("w-1", "1.00") != await boot.deposit("w-1", "1.00")
