"""Session delegation packages.

A session package is a pre-signed credential that lets a delegated session
key sign feedback authorizations on behalf of the agent for a bounded time
window. It is produced elsewhere and supplied through configuration, either
as raw JSON or base64-encoded JSON (optionally prefixed with ``base64:``).
Everything beyond the fields needed to sign is carried through untouched.
"""

import base64
import binascii
import json
import logging
import time

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from feedback_auth.errors import ConfigurationError


logger = logging.getLogger(__name__)


class SessionKey(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    private_key: str = Field(alias='privateKey', repr=False)
    address: str
    valid_after: int = Field(default=0, alias='validAfter')
    valid_until: int = Field(default=0, alias='validUntil')


class SessionDelegation(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra='allow')

    agent_id: int = Field(alias='agentId')
    chain_id: int = Field(alias='chainId')
    aa: Optional[str] = None
    session_aa: Optional[str] = Field(default=None, alias='sessionAA')
    reputation_registry: Optional[str] = Field(default=None, alias='reputationRegistry')
    session_key: SessionKey = Field(alias='sessionKey')
    signed_delegation: Optional[dict[str, Any]] = Field(default=None, alias='signedDelegation')

    @property
    def signer_address(self) -> str:
        # The delegate smart account verifies signatures via ERC-1271 when present.
        return self.session_aa or self.session_key.address

    def is_active(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        if self.session_key.valid_after and now < self.session_key.valid_after:
            return False
        if self.session_key.valid_until and now > self.session_key.valid_until:
            return False
        return True

    def ensure_active(self, now: Optional[float] = None) -> None:
        if not self.is_active(now):
            raise ConfigurationError(
                'Session delegation is outside its validity window '
                f'[{self.session_key.valid_after}, {self.session_key.valid_until}]'
            )


def _decode_package(raw: str) -> dict[str, Any]:
    trimmed = (raw or '').strip()
    try:
        return json.loads(trimmed)
    except ValueError as e1:
        b64 = trimmed[len('base64:'):].strip() if trimmed.startswith('base64:') else trimmed
        try:
            decoded = base64.b64decode(b64, validate=True).decode('utf-8')
            return json.loads(decoded)
        except (binascii.Error, UnicodeDecodeError, ValueError) as e2:
            raise ConfigurationError(
                f'Invalid ERC8004_SESSION_PACKAGE_JSON: {e1}. '
                f'Also tried base64 decoding but failed: {e2}'
            ) from None


def load_session_delegation(raw: str) -> SessionDelegation:
    data = _decode_package(raw)
    if not isinstance(data, dict):
        raise ConfigurationError('ERC8004_SESSION_PACKAGE_JSON must decode to a JSON object')
    try:
        session = SessionDelegation.model_validate(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f'Invalid session package: {e}') from None
    logger.info(
        'ERC-8004: session delegation loaded (agentId=%s, signer=%s)',
        session.agent_id,
        session.signer_address,
    )
    return session
