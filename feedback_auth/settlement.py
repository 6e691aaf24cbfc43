import logging

from typing import Any, Optional, Union

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from feedback_auth.context import ChainContext, bounded
from feedback_auth.errors import (
    ConfigurationError,
    FeedbackAuthError,
    OnChainRejection,
    UpstreamError,
    ValidationError,
)
from feedback_auth.models import FeedbackRecord, SettlementResult, SettlementStatus


logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5
ZERO_BYTES32 = b'\x00' * 32


def score_from_rating(rating: Union[int, str]) -> int:
    """Map a 1..5 rating onto the registry's 0..100 score."""
    if isinstance(rating, bool):
        raise ValidationError('rating must be an integer between 1 and 5')
    try:
        value = int(rating)
    except (TypeError, ValueError):
        raise ValidationError(f'rating must be an integer between 1 and 5, got {rating!r}') from None
    if value < MIN_RATING or value > MAX_RATING:
        raise ValidationError(f'rating must be between {MIN_RATING} and {MAX_RATING}, got {value}')
    return max(0, min(100, value * 20))


def tag_to_bytes32(tag: Optional[str]) -> bytes:
    raw = (tag or '').encode('utf-8')
    if len(raw) > 32:
        raise ValidationError(f'tag {tag!r} is longer than 32 bytes')
    return raw.ljust(32, b'\x00')


def hex_to_bytes(value: Optional[str], name: str) -> bytes:
    if not isinstance(value, str) or not value.startswith('0x') or len(value) <= 2 or len(value) % 2:
        raise ValidationError(f'{name} must be a non-empty 0x-prefixed hex string')
    try:
        return bytes.fromhex(value[2:])
    except ValueError:
        raise ValidationError(f'{name} is not valid hex') from None


def evidence_hash_to_bytes32(value: Optional[str]) -> bytes:
    if not value:
        return ZERO_BYTES32
    raw = hex_to_bytes(value, 'feedbackHash')
    if len(raw) != 32:
        raise ValidationError('feedbackHash must be 32 bytes')
    return raw


class SettlementSubmitter:
    """Redeems a feedback authorization with ``giveFeedback``.

    Signs with the client's own wallet key. Nothing is retried here: a
    revert is terminal, and a transaction that was sent but not seen within
    the inclusion timeout is reported as ``unknown`` so the caller does not
    resubmit it.
    """

    def __init__(self, context: ChainContext) -> None:
        self.context = context
        self.settings = context.settings
        self._account = None

    @property
    def account(self) -> Any:
        if self._account is None:
            self.settings.require('client_private_key')
            try:
                self._account = Account.from_key(self.settings.client_private_key)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f'Invalid client key: {e}') from None
        return self._account

    @property
    def client_address(self) -> str:
        return self.account.address

    async def _ensure_chain(self) -> None:
        w3 = self.context.w3
        rpc_chain = await self.context.read(w3.eth.chain_id, 'eth_chainId')
        if int(rpc_chain) != self.settings.chain_id:
            raise ConfigurationError(
                f'RPC chain id {rpc_chain} does not match configured ERC8004_CHAIN_ID {self.settings.chain_id}'
            )

    async def _preflight_call(self, awaitable: Any, label: str) -> Any:
        try:
            return await bounded(awaitable, self.settings.submit_timeout_sec, label)
        except ContractLogicError as e:
            raise OnChainRejection(e.message or str(e)) from e
        except FeedbackAuthError:
            raise
        except Exception as e:
            raise UpstreamError(str(e)) from e

    async def submit(
        self,
        agent_id: Union[int, str],
        rating: Union[int, str],
        authorization: str,
        tag1: str = '',
        tag2: str = '',
        evidence_uri: str = '',
        evidence_hash: Optional[str] = None,
    ) -> SettlementResult:
        score = score_from_rating(rating)
        auth_bytes = hex_to_bytes(authorization, 'feedbackAuth')
        tag1_bytes = tag_to_bytes32(tag1)
        tag2_bytes = tag_to_bytes32(tag2)
        hash_bytes = evidence_hash_to_bytes32(evidence_hash)
        try:
            agent = int(agent_id)
        except (TypeError, ValueError):
            raise ValidationError(f'agentId must be an integer, got {agent_id!r}') from None
        if agent < 0:
            raise ValidationError('agentId must be non-negative')
        account = self.account
        sender = account.address

        await self._ensure_chain()

        w3 = self.context.w3
        fn = self.context.reputation.functions.giveFeedback(
            agent,
            score,
            tag1_bytes,
            tag2_bytes,
            evidence_uri or '',
            hash_bytes,
            auth_bytes,
        )
        await self._preflight_call(fn.call({'from': sender}), 'giveFeedback simulation')
        gas_est = await self._preflight_call(fn.estimate_gas({'from': sender}), 'giveFeedback gas estimation')
        gas_limit = min(max(int(gas_est * self.settings.gas_mult), self.settings.min_gas), self.settings.gas_cap)

        gas_price = await self.context.read(w3.eth.gas_price, 'eth_gasPrice')
        gas_price = int(gas_price * self.settings.gas_price_mult)
        nonce = await self.context.read(w3.eth.get_transaction_count(sender, 'pending'), 'eth_getTransactionCount')

        tx = await self.context.read(
            fn.build_transaction(
                {
                    'from': sender,
                    'nonce': nonce,
                    'gas': gas_limit,
                    'gasPrice': gas_price,
                    'chainId': self.settings.chain_id,
                }
            ),
            'giveFeedback build',
        )
        logger.info(
            'ERC-8004: giveFeedback gas_limit=%s gas_price=%s wei (est=%s, agentId=%s, score=%s)',
            gas_limit,
            gas_price,
            gas_est,
            agent,
            score,
        )
        signed = account.sign_transaction(tx)
        tx_hash = await self.context.read(
            w3.eth.send_raw_transaction(signed.raw_transaction),
            'eth_sendRawTransaction',
            timeout=self.settings.submit_timeout_sec,
        )
        tx_ref = Web3.to_hex(tx_hash)
        logger.info('ERC-8004: giveFeedback tx sent: %s', tx_ref)

        record = FeedbackRecord(
            agent_id=agent,
            client_address=sender,
            score=score,
            tag1=tag1 or '',
            tag2=tag2 or '',
            evidence_uri=evidence_uri or '',
            evidence_hash=Web3.to_hex(hash_bytes),
            authorization=authorization,
            transaction_ref=tx_ref,
        )

        try:
            receipt = await w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.settings.tx_timeout_sec
            )
        except TimeExhausted:
            logger.warning('ERC-8004: giveFeedback tx not mined within %ss: %s', self.settings.tx_timeout_sec, tx_ref)
            return SettlementResult(transaction_ref=tx_ref, status=SettlementStatus.UNKNOWN, record=record)
        except Exception as e:
            raise UpstreamError(f'Waiting for receipt of {tx_ref} failed: {e}') from e

        block_number = receipt.get('blockNumber')
        logger.info('ERC-8004: giveFeedback tx mined: %s (status=%s, block=%s)', tx_ref, receipt.get('status'), block_number)
        if receipt.get('status', 0) != 1:
            raise OnChainRejection(f'giveFeedback reverted in block {block_number}', transaction_ref=tx_ref)
        return SettlementResult(
            transaction_ref=tx_ref,
            status=SettlementStatus.CONFIRMED,
            block_number=block_number,
            record=record,
        )
