import logging
import math
import time

from typing import Callable, Optional, Union

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from feedback_auth.context import ChainContext
from feedback_auth.errors import ConfigurationError, ValidationError
from feedback_auth.models import U64_MAX, FeedbackAuthorization, canonical_auth_hash
from feedback_auth.session import SessionDelegation, load_session_delegation


logger = logging.getLogger(__name__)


def _to_int(value: Union[int, float, str], name: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f'{name} must be an integer')
    # JSON 1e400 and Infinity decode to float('inf')
    if isinstance(value, float):
        if math.isnan(value):
            raise ValidationError(f'{name} must be a number, got NaN')
        if math.isinf(value):
            return U64_MAX if value > 0 else -U64_MAX
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f'{name} must be an integer, got {value!r}') from None


class FeedbackAuthIssuer:
    """Issues feedback authorizations for the agent this process runs as.

    The signing key is loaded once from ``ERC8004_PRIVATE_KEY`` or from a
    session delegation package and never leaves the process.
    """

    def __init__(
        self,
        context: ChainContext,
        clock: Callable[[], float] = time.time,
    ) -> None:
        settings = context.settings
        self.context = context
        self._clock = clock
        self.session: Optional[SessionDelegation] = None

        if settings.session_package_json:
            self.session = load_session_delegation(settings.session_package_json)
            private_key = self.session.session_key.private_key
        elif settings.signer_private_key:
            private_key = settings.signer_private_key
        else:
            raise ConfigurationError(
                'Missing required configuration: ERC8004_PRIVATE_KEY or ERC8004_SESSION_PACKAGE_JSON'
            )
        try:
            self._account = Account.from_key(private_key)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f'Invalid signer key: {e}') from None

        if self.session is not None:
            self.signer_address = Web3.to_checksum_address(self.session.signer_address)
        else:
            self.signer_address = self._account.address

        agent_id = settings.agent_id
        if self.session is not None:
            if agent_id is not None and agent_id != self.session.agent_id:
                raise ConfigurationError(
                    f'ERC8004_AGENT_ID={agent_id} does not match session package agentId={self.session.agent_id}'
                )
            agent_id = self.session.agent_id
        if agent_id is None:
            raise ConfigurationError('Missing required configuration: ERC8004_AGENT_ID')
        self.agent_id = int(agent_id)
        self._signer_checked = False
        logger.info('ERC-8004: issuer ready (agentId=%s, signer=%s)', self.agent_id, self.signer_address)

    def sign_text(self, text: str) -> str:
        """EIP-191 personal signature over ``text``, e.g. the agent domain for the card."""
        signed = self._account.sign_message(encode_defunct(text=text))
        return Web3.to_hex(signed.signature)

    async def ensure_signer_authorized(self) -> None:
        """Signer must own the agent or be approved for it in the identity registry."""
        if self._signer_checked or not self.context.settings.verify_signer:
            return
        identity = await self.context.identity_contract()
        read = self.context.read
        owner = await read(identity.functions.ownerOf(self.agent_id).call(), 'ownerOf')
        signer = self.signer_address.lower()
        authorized = str(owner).lower() == signer
        if not authorized:
            authorized = bool(
                await read(
                    identity.functions.isApprovedForAll(
                        Web3.to_checksum_address(owner), self.signer_address
                    ).call(),
                    'isApprovedForAll',
                )
            )
        if not authorized:
            approved = await read(identity.functions.getApproved(self.agent_id).call(), 'getApproved')
            authorized = str(approved).lower() == signer
        logger.info(
            'ERC-8004: identity registry approvals (agentId=%s, owner=%s, signer=%s, authorized=%s)',
            self.agent_id,
            owner,
            self.signer_address,
            authorized,
        )
        if not authorized:
            raise ConfigurationError(
                f'Signer {self.signer_address} is not authorized for agent {self.agent_id}: '
                'neither owner, operator nor approved address'
            )
        self._signer_checked = True

    async def issue(
        self,
        client_address: str,
        agent_id: Optional[Union[int, str]] = None,
        task_ref: Optional[str] = None,
        expiry_seconds: Optional[Union[int, str]] = None,
        chain_id: Optional[Union[int, str]] = None,
        index_count: Optional[Union[int, str]] = None,
    ) -> FeedbackAuthorization:
        settings = self.context.settings

        if not isinstance(client_address, str) or not Web3.is_address(client_address):
            raise ValidationError(f'clientAddress must be a 0x-prefixed 20-byte address, got {client_address!r}')
        client_address = Web3.to_checksum_address(client_address)

        if agent_id is not None and str(agent_id).strip() != '':
            requested_agent = _to_int(agent_id, 'agentId')
            if requested_agent != self.agent_id:
                raise ConfigurationError(
                    f'Requested agentId {requested_agent} does not match this agent ({self.agent_id})'
                )

        ttl = settings.feedback_ttl_sec if expiry_seconds is None else _to_int(expiry_seconds, 'expirySeconds')
        if ttl <= 0:
            raise ValidationError(f'expirySeconds must be positive, got {ttl}')

        chain = settings.chain_id if chain_id is None else _to_int(chain_id, 'chainId')
        if chain != settings.chain_id:
            raise ValidationError(f'chainId {chain} is not served by this agent (expected {settings.chain_id})')

        batch = settings.feedback_batch_size
        if index_count is not None:
            requested = _to_int(index_count, 'indexLimit')
            if requested < 1:
                raise ValidationError(f'indexLimit must be at least 1, got {requested}')
            batch = min(requested, batch)

        if self.session is not None:
            self.session.ensure_active(self._clock())

        await self.ensure_signer_authorized()
        identity_registry = await self.context.identity_registry_address()

        last_index = await self.context.get_last_index(self.agent_id, client_address)
        index_limit = min(last_index + batch, U64_MAX)
        if index_limit <= last_index:
            raise ValidationError(
                f'Feedback index exhausted for agent {self.agent_id} and client {client_address}'
            )

        now = int(self._clock())
        expiry = now + ttl
        if expiry > U64_MAX:
            logger.warning('ERC-8004: computed expiry exceeds uint64; clamping to max')
            expiry = U64_MAX

        digest = canonical_auth_hash(
            self.agent_id,
            client_address,
            index_limit,
            expiry,
            chain,
            identity_registry,
            self.signer_address,
        )
        signed = self._account.sign_message(encode_defunct(primitive=digest))
        signature = Web3.to_hex(signed.signature)

        logger.info(
            'ERC-8004: feedbackAuth issued (agentId=%s, client=%s, lastIndex=%s, indexLimit=%s, expiry=%s, taskRef=%s, sig=%s...)',
            self.agent_id,
            client_address,
            last_index,
            index_limit,
            expiry,
            task_ref,
            signature[:18],
        )
        return FeedbackAuthorization(
            agent_id=self.agent_id,
            client_address=client_address,
            index_limit=index_limit,
            expiry=expiry,
            chain_id=chain,
            identity_registry_address=identity_registry,
            signer_address=self.signer_address,
            signature=signature,
            task_ref=task_ref,
        )
