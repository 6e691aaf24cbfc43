from enum import Enum
from typing import Optional

from eth_abi import encode
from eth_account import Account
from eth_account.messages import encode_defunct
from pydantic import BaseModel, ConfigDict
from web3 import Web3


U64_MAX = 2**64 - 1

# (agentId, clientAddress, indexLimit, expiry, chainId, identityRegistry, signerAddress)
CANONICAL_AUTH_TYPES = [
    'uint256',
    'address',
    'uint256',
    'uint256',
    'uint256',
    'address',
    'address',
]


def canonical_auth_hash(
    agent_id: int,
    client_address: str,
    index_limit: int,
    expiry: int,
    chain_id: int,
    identity_registry: str,
    signer_address: str,
) -> bytes:
    """keccak256 of the ABI-encoded authorization tuple."""
    encoded = encode(
        CANONICAL_AUTH_TYPES,
        [
            int(agent_id),
            Web3.to_checksum_address(client_address),
            int(index_limit),
            int(expiry),
            int(chain_id),
            Web3.to_checksum_address(identity_registry),
            Web3.to_checksum_address(signer_address),
        ],
    )
    return bytes(Web3.keccak(encoded))


class AgentIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent_id: int
    display_name: str
    endpoint_url: str
    identity_registry_address: Optional[str] = None


class FeedbackAuthorization(BaseModel):
    """Signed grant letting one client submit bounded feedback for one agent.

    ``signature`` is the opaque token the client later hands to
    ``giveFeedback``. ``task_ref`` is kept for audit only and is not part of
    the signed tuple.
    """

    model_config = ConfigDict(frozen=True)

    agent_id: int
    client_address: str
    index_limit: int
    expiry: int
    chain_id: int
    identity_registry_address: str
    signer_address: str
    signature: str
    task_ref: Optional[str] = None

    def canonical_hash(self) -> bytes:
        return canonical_auth_hash(
            self.agent_id,
            self.client_address,
            self.index_limit,
            self.expiry,
            self.chain_id,
            self.identity_registry_address,
            self.signer_address,
        )

    def recover_signer(self) -> str:
        message = encode_defunct(primitive=self.canonical_hash())
        return Account.recover_message(message, signature=self.signature)

    def to_response(self) -> dict[str, str]:
        """Wire shape returned by the issuance skill."""
        return {
            'feedbackAuthId': self.signature,
            'signature': self.signature,
            'signerAddress': self.signer_address,
        }


class RequestedAuthorization(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    agent: AgentIdentity
    signer_address: Optional[str] = None
    task_ref: str


class FeedbackRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent_id: int
    client_address: str
    score: int
    tag1: str
    tag2: str
    evidence_uri: str
    evidence_hash: str
    authorization: str
    transaction_ref: Optional[str] = None


class SettlementStatus(str, Enum):
    CONFIRMED = 'confirmed'
    # Inclusion timed out; the transaction may still land. Do not resubmit.
    UNKNOWN = 'unknown'


class SettlementResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    transaction_ref: str
    status: SettlementStatus
    block_number: Optional[int] = None
    record: FeedbackRecord


class ReputationSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent_id: int
    count: int
    average_score: int


class FeedbackEntry(BaseModel):
    """One indexed ``NewFeedback`` row, with the evidence comment when readable."""

    model_config = ConfigDict(frozen=True)

    agent_id: int
    client_address: Optional[str] = None
    score: int
    tag1: str = ''
    tag2: str = ''
    feedback_uri: str = ''
    feedback_hash: Optional[str] = None
    transaction_ref: Optional[str] = None
    block_number: Optional[int] = None
    timestamp: Optional[int] = None
    notes: str = ''
