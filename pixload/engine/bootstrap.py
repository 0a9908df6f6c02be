"""One-time scenario setup: two wallets, a destination key, seed funding."""

import structlog

from pixload.engine.client import ServiceClient, ServiceResponse
from pixload.engine.errors import SetupFailure
from pixload.engine.models import ScenarioContext

logger = structlog.get_logger()


class ScenarioBootstrapper:
    """Creates the shared ``ScenarioContext`` every iteration reads.

    The source wallet is seeded with ``initial_balance`` so iterations never
    trip insufficient-funds rejections. Any unexpected status or missing field
    raises ``SetupFailure``.
    """

    def __init__(self, client: ServiceClient, initial_balance: str) -> None:
        self.client = client
        self.initial_balance = initial_balance

    @staticmethod
    def _require(resp: ServiceResponse, step: str, expected: int, field: str | None = None) -> str:
        if resp.status != expected:
            detail = resp.body.get("message") or resp.transport_error or ""
            logger.error("setup_step_failed", step=step, status=resp.status, expected=expected)
            raise SetupFailure(step, resp.status, str(detail))
        if field is None:
            return ""
        value = resp.body.get(field)
        if value is None or value == "":
            logger.error("setup_step_failed", step=step, status=resp.status, missing=field)
            raise SetupFailure(step, resp.status, f"response body missing '{field}'")
        return str(value)

    async def create_wallet(self) -> str:
        resp = await self.client.post("/wallets", endpoint="wallet_create")
        self.client.check("create wallet status 201", resp.status == 201, "wallet_create")
        return self._require(resp, "create_wallet", 201, "id")

    async def create_random_pix_key(self, wallet_id: str) -> str:
        resp = await self.client.post(
            f"/wallets/{wallet_id}/pix-keys",
            endpoint="pix_key_create",
            payload={"type": "RANDOM", "value": ""},
        )
        self.client.check("pix key created 201", resp.status == 201, "pix_key_create")
        return self._require(resp, "create_pix_key", 201, "value")

    async def deposit(self, wallet_id: str, amount: str) -> str:
        idempotency_key = self.client.ids.idempotency_key()
        resp = await self.client.post(
            f"/wallets/{wallet_id}/deposit",
            endpoint="wallet_deposit",
            payload={"amount": amount},
            idempotency_key=idempotency_key,
        )
        self.client.check("deposit ok 200", resp.status == 200, "wallet_deposit")
        self._require(resp, "deposit", 200)
        return idempotency_key

    async def setup(self) -> ScenarioContext:
        logger.info("scenario_setup_started", initial_balance=self.initial_balance)
        source = await self.create_wallet()
        destination = await self.create_wallet()
        destination_key = await self.create_random_pix_key(destination)
        await self.deposit(source, self.initial_balance)
        ctx = ScenarioContext(
            source_account_id=source,
            destination_account_id=destination,
            destination_key=destination_key,
        )
        logger.info(
            "scenario_setup_complete",
            source_account_id=source,
            destination_account_id=destination,
        )
        return ctx
