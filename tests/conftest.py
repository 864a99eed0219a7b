import json

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from userop_builder.exceptions import ChainDataUnavailable, SimulationFailed
from userop_builder.typing import Address
from userop_builder.user_operation.user_operation import UserOperation

SENDER = Address("0x1111111111111111111111111111111111111111")
FACTORY = Address("0x9406cc6185a346906296840746125a0e44976454")


class FakeChainData:
    """
    In memory ChainDataClient recording every simulation request.
    """

    def __init__(
        self,
        base_fee=0x16,
        max_priority_fee_per_gas=0x1000000000,
        gas_estimates=None,
        nonce=0,
        chain_id=1,
        reverts=None,
        unavailable=False,
    ):
        self.base_fee = base_fee
        self.max_priority_fee_per_gas = max_priority_fee_per_gas
        self.gas_estimates = gas_estimates or {}
        self.nonce = nonce
        self.chain_id = chain_id
        self.reverts = reverts or {}
        self.unavailable = unavailable
        self.estimate_gas_calls = []
        self.nonce_calls = []

    def _check_available(self):
        if self.unavailable:
            raise ChainDataUnavailable("node unreachable")

    async def get_base_fee(self) -> int:
        self._check_available()
        return self.base_fee

    async def get_max_priority_fee_per_gas(self) -> int:
        self._check_available()
        return self.max_priority_fee_per_gas

    async def estimate_gas(self, from_address, to_address, data, gas=None):
        self._check_available()
        self.estimate_gas_calls.append(
            {"from": from_address, "to": to_address, "data": data, "gas": gas}
        )
        if to_address.lower() in self.reverts:
            raise SimulationFailed(
                "execution reverted", self.reverts[to_address.lower()]
            )
        return self.gas_estimates[to_address.lower()]

    async def get_nonce(self, sender, key=0) -> int:
        self._check_available()
        self.nonce_calls.append((sender, key))
        return self.nonce

    async def get_chain_id(self) -> int:
        self._check_available()
        return self.chain_id


@pytest.fixture
def user_operation() -> UserOperation:
    return UserOperation(
        sender_address=SENDER,
        nonce=0,
        init_code=b"",
        call_data=b"",
        call_gas_limit=0x83074,
        verification_gas_limit=0x100000,
        pre_verification_gas=0x21000,
        max_fee_per_gas=0x1000000016,
        max_priority_fee_per_gas=0x1000000000,
        paymaster_and_data=b"",
        signature=b"",
    )


@pytest.fixture
def chain_data() -> FakeChainData:
    return FakeChainData(gas_estimates={SENDER: 30_000, FACTORY: 250_000})


class FakeEthNode:
    """
    Minimal JSON-RPC node answering from a method -> response table.
    """

    def __init__(self, responses):
        self.responses = responses
        self.requests = []

    async def handle(self, request: web.Request) -> web.Response:
        json_request = await request.json()
        self.requests.append(json_request)
        response = self.responses[json_request["method"]]
        if callable(response):
            response = response(json_request)
        if isinstance(response, str):
            return web.Response(text=response)
        return web.Response(
            text=json.dumps({"jsonrpc": "2.0", "id": 1, **response}),
            content_type="application/json",
        )


@pytest_asyncio.fixture
async def eth_node():
    servers = []

    async def start(responses):
        node = FakeEthNode(responses)
        app = web.Application()
        app.router.add_post("/", node.handle)
        server = TestServer(app)
        await server.start_server()
        servers.append(server)
        return node, str(server.make_url("/"))

    yield start
    for server in servers:
        await server.close()
