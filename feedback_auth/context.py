import asyncio
import logging

from typing import Any, Awaitable, Optional, TypeVar

from web3 import AsyncWeb3, Web3

from feedback_auth.abi import IDENTITY_REGISTRY_ABI, REPUTATION_REGISTRY_ABI
from feedback_auth.config import Settings
from feedback_auth.errors import FeedbackAuthError, UpstreamError, UpstreamTimeout


logger = logging.getLogger(__name__)

T = TypeVar('T')


async def bounded(awaitable: Awaitable[T], timeout: float, label: str) -> T:
    """Await with an explicit bound; a timeout becomes UpstreamTimeout."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        raise UpstreamTimeout(f'{label} timed out after {timeout:g}s') from None


class ChainContext:
    """Chain clients shared by every operation of one process.

    Built once at startup and passed by reference; holds the web3 client and
    the registry contract handles. Nothing here is mutated after
    construction except the identity registry address, which is resolved at
    most once from the reputation registry when it is not configured.
    """

    def __init__(self, settings: Settings, w3: Optional[AsyncWeb3] = None) -> None:
        settings.require('rpc_url', 'reputation_registry')
        self.settings = settings
        if w3 is None:
            w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(settings.rpc_url))
            logger.info('ERC-8004 AsyncWeb3 client initialized (rpc=%s)', settings.rpc_url)
        self.w3 = w3
        self.reputation_registry_address = Web3.to_checksum_address(settings.reputation_registry)
        self.reputation = self.w3.eth.contract(
            address=self.reputation_registry_address, abi=REPUTATION_REGISTRY_ABI
        )
        self._identity_registry_address: Optional[str] = (
            Web3.to_checksum_address(settings.identity_registry)
            if settings.identity_registry
            else None
        )
        self._identity_contract: Any = None

    async def read(self, awaitable: Awaitable[T], label: str, timeout: Optional[float] = None) -> T:
        """Bounded contract read; any failure surfaces as UpstreamError."""
        try:
            return await bounded(awaitable, timeout or self.settings.rpc_timeout_sec, label)
        except FeedbackAuthError:
            raise
        except Exception as e:
            raise UpstreamError(f'{label} failed: {e}') from e

    async def get_last_index(self, agent_id: int, client_address: str) -> int:
        fn = self.reputation.functions.getLastIndex(
            int(agent_id), Web3.to_checksum_address(client_address)
        )
        last_index = await self.read(fn.call(), 'getLastIndex')
        return int(last_index)

    async def get_summary(self, agent_id: int) -> tuple[int, int]:
        """(count, averageScore) over every client and tag."""
        zero = b'\x00' * 32
        fn = self.reputation.functions.getSummary(int(agent_id), [], zero, zero)
        count, average_score = await self.read(fn.call(), 'getSummary')
        return int(count), int(average_score)

    async def identity_registry_address(self) -> str:
        if self._identity_registry_address is None:
            address = await self.read(
                self.reputation.functions.getIdentityRegistry().call(),
                'getIdentityRegistry',
            )
            self._identity_registry_address = Web3.to_checksum_address(address)
            logger.info('ERC-8004: identity registry resolved on-chain: %s', self._identity_registry_address)
        return self._identity_registry_address

    async def identity_contract(self) -> Any:
        if self._identity_contract is None:
            address = await self.identity_registry_address()
            self._identity_contract = self.w3.eth.contract(address=address, abi=IDENTITY_REGISTRY_ABI)
        return self._identity_contract
