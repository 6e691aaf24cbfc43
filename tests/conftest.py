"""
Shared pytest fixtures for the feedback authorization tests.

Chain access is faked with MagicMock/AsyncMock; keys are real so that
signatures can be produced and recovered.
"""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account
from web3 import Web3

from feedback_auth.abi import REPUTATION_REGISTRY_ABI
from feedback_auth.config import Settings
from feedback_auth.context import ChainContext
from feedback_auth.issuer import FeedbackAuthIssuer


AGENT_KEY = '0x' + '11' * 32
CLIENT_KEY = '0x' + '22' * 32
OTHER_KEY = '0x' + '33' * 32

AGENT_ADDRESS = Account.from_key(AGENT_KEY).address
CLIENT_ADDRESS = Account.from_key(CLIENT_KEY).address
OTHER_ADDRESS = Account.from_key(OTHER_KEY).address

REPUTATION_REGISTRY = Web3.to_checksum_address('0x' + 'aa' * 20)
IDENTITY_REGISTRY = Web3.to_checksum_address('0x' + 'bb' * 20)
ZERO_ADDRESS = '0x' + '00' * 20

CHAIN_ID = 11155111
AGENT_ID = 11
TX_HASH = bytes.fromhex('ab' * 32)
FIXED_NOW = 1_700_000_000


class FakeEth:
    """Async ``w3.eth`` stand-in; properties hand out a fresh coroutine per access."""

    def __init__(self, reputation: MagicMock, identity: MagicMock) -> None:
        self.rpc_chain_id = CHAIN_ID
        self.rpc_gas_price = 1_000_000_000
        self.get_transaction_count = AsyncMock(return_value=7)
        self.send_raw_transaction = AsyncMock(return_value=TX_HASH)
        self.wait_for_transaction_receipt = AsyncMock(return_value={'status': 1, 'blockNumber': 123})
        self._reputation = reputation
        self._identity = identity

    async def _value(self, value: Any) -> Any:
        return value

    @property
    def chain_id(self):
        return self._value(self.rpc_chain_id)

    @property
    def gas_price(self):
        return self._value(self.rpc_gas_price)

    def contract(self, address: str, abi: list) -> MagicMock:
        return self._reputation if abi is REPUTATION_REGISTRY_ABI else self._identity


class FakeChain:
    def __init__(self) -> None:
        self.reputation = MagicMock()
        self.identity = MagicMock()
        self.eth = FakeEth(self.reputation, self.identity)
        self.w3 = MagicMock()
        self.w3.eth = self.eth

        self.set_last_index(0)
        self.set_view(self.reputation, 'getIdentityRegistry', IDENTITY_REGISTRY)
        self.set_view(self.identity, 'ownerOf', AGENT_ADDRESS)
        self.set_view(self.identity, 'isApprovedForAll', False)
        self.set_view(self.identity, 'getApproved', ZERO_ADDRESS)
        self.set_view(self.identity, 'tokenURI', '')

        give = self.reputation.functions.giveFeedback.return_value
        give.call = AsyncMock(return_value=[])
        give.estimate_gas = AsyncMock(return_value=100_000)
        give.build_transaction = AsyncMock(side_effect=self._build_transaction)

    @staticmethod
    def set_view(contract: MagicMock, name: str, result: Any = None, side_effect: Any = None) -> AsyncMock:
        call = AsyncMock(return_value=result, side_effect=side_effect)
        getattr(contract.functions, name).return_value.call = call
        return call

    def set_last_index(self, value: int = 0, side_effect: Any = None) -> AsyncMock:
        return self.set_view(self.reputation, 'getLastIndex', value, side_effect)

    @property
    def give_feedback(self) -> MagicMock:
        return self.reputation.functions.giveFeedback.return_value

    @staticmethod
    def _build_transaction(params: dict) -> dict:
        return {**params, 'to': REPUTATION_REGISTRY, 'data': '0x', 'value': 0}


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        rpc_url='http://rpc.test',
        reputation_registry=REPUTATION_REGISTRY,
        identity_registry=IDENTITY_REGISTRY,
        chain_id=CHAIN_ID,
        discovery_url='https://discovery.test',
        discovery_api_key='discovery-key',
        agent_id=AGENT_ID,
        signer_private_key=AGENT_KEY,
        client_private_key=CLIENT_KEY,
    )


@pytest.fixture
def context(settings: Settings, chain: FakeChain) -> ChainContext:
    return ChainContext(settings, w3=chain.w3)


@pytest.fixture
def issuer(context: ChainContext) -> FeedbackAuthIssuer:
    return FeedbackAuthIssuer(context, clock=lambda: FIXED_NOW)
