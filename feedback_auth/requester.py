import logging

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from web3 import Web3

from feedback_auth.config import Settings
from feedback_auth.context import bounded
from feedback_auth.errors import ProtocolError, UpstreamError, ValidationError
from feedback_auth.identity import IdentityResolver
from feedback_auth.models import AgentIdentity, RequestedAuthorization


logger = logging.getLogger(__name__)

FEEDBACK_SKILL_ID = 'agent.feedback.requestAuth'
MANIFEST_PATH = '/.well-known/agent-card.json'
LEGACY_MANIFEST_PATH = '/.well-known/agent.json'

# Order matters: agents in the wild answer with any of these.
TOKEN_RESPONSE_FIELDS = ('feedbackAuthId', 'signature', 'feedbackAuth')


def extract_token(payload: Any) -> Optional[str]:
    """First non-empty token alias in a skill response, returned untouched."""
    if not isinstance(payload, dict):
        return None
    for key in TOKEN_RESPONSE_FIELDS:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def has_feedback_skill(manifest: dict[str, Any]) -> bool:
    skills = manifest.get('skills')
    if not isinstance(skills, list):
        return False
    return any(
        isinstance(s, dict) and (s.get('id') == FEEDBACK_SKILL_ID or s.get('name') == FEEDBACK_SKILL_ID)
        for s in skills
    )


def operation_url(manifest: dict[str, Any], base_url: str) -> str:
    endpoint = manifest.get('endpoint')
    if isinstance(endpoint, str) and endpoint.strip():
        root = endpoint.strip().rstrip('/')
    else:
        root = f'{base_url.rstrip("/")}/a2a'
    return f'{root}/skills/{FEEDBACK_SKILL_ID}'


class FeedbackAuthRequester:
    """Client side of the issuance skill: resolve, negotiate, request."""

    def __init__(
        self,
        settings: Settings,
        resolver: IdentityResolver,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self.resolver = resolver
        self._http = http_client

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
        else:
            async with httpx.AsyncClient() as client:
                yield client

    async def fetch_manifest(self, client: httpx.AsyncClient, base_url: str) -> dict[str, Any]:
        timeout = self.settings.auth_request_timeout_sec
        last_error = ''
        for path in (MANIFEST_PATH, LEGACY_MANIFEST_PATH):
            url = f'{base_url}{path}'
            try:
                response = await bounded(client.get(url), timeout, 'Agent card fetch')
            except httpx.HTTPError as e:
                raise UpstreamError(f'Failed to load agent card from {base_url}: {e}') from e
            if response.status_code == 404:
                last_error = f'HTTP 404 at {url}'
                continue
            if response.status_code >= 400:
                raise UpstreamError(
                    f'Failed to load agent card from {base_url}: HTTP {response.status_code}',
                    status_code=response.status_code,
                    body=response.text,
                )
            try:
                manifest = response.json()
            except ValueError:
                raise ProtocolError(f'Agent card at {url} is not JSON') from None
            if not isinstance(manifest, dict):
                raise ProtocolError(f'Agent card at {url} is not a JSON object')
            return manifest
        raise UpstreamError(f'Failed to load agent card from {base_url}: {last_error}', status_code=404)

    async def request(
        self,
        agent_name: str,
        client_address: str,
        task_ref: str,
        expiry_seconds: Optional[int] = None,
        index_count: int = 1,
    ) -> RequestedAuthorization:
        if not isinstance(client_address, str) or not Web3.is_address(client_address):
            raise ValidationError(f'clientAddress must be a 0x-prefixed 20-byte address, got {client_address!r}')
        if not task_ref:
            raise ValidationError('taskRef is required')
        ttl = self.settings.feedback_ttl_sec if expiry_seconds is None else expiry_seconds
        if isinstance(ttl, bool) or not isinstance(ttl, int) or ttl <= 0:
            raise ValidationError(f'expirySeconds must be a positive integer, got {ttl!r}')

        agent: AgentIdentity = await self.resolver.resolve(agent_name)
        async with self._client() as client:
            manifest = await self.fetch_manifest(client, agent.endpoint_url)
            if not has_feedback_skill(manifest):
                raise ProtocolError(f'Agent does not advertise {FEEDBACK_SKILL_ID}')

            url = operation_url(manifest, agent.endpoint_url)
            body = {
                'clientAddress': client_address,
                'chainId': self.settings.chain_id,
                'indexLimit': index_count,
                'expirySeconds': ttl,
                'agentId': str(agent.agent_id),
                'taskRef': task_ref,
            }
            logger.info('Calling feedbackAuth skill at %s (agentId=%s, taskRef=%s)', url, agent.agent_id, task_ref)
            try:
                response = await bounded(
                    client.post(url, json=body),
                    self.settings.auth_request_timeout_sec,
                    'Feedback authorization request',
                )
            except httpx.HTTPError as e:
                raise UpstreamError(f'Feedback authorization request failed: {e}') from e

        if response.status_code < 200 or response.status_code >= 300:
            raise UpstreamError(
                f'Agent responded with {response.status_code}: {response.text}',
                status_code=response.status_code,
                body=response.text,
            )
        try:
            payload = response.json()
        except ValueError:
            raise ProtocolError('Agent returned a non-JSON authorization response') from None
        token = extract_token(payload)
        if token is None:
            raise ProtocolError('No feedbackAuth returned by agent')

        logger.info('Received feedbackAuth from agent %s: %s...', agent.agent_id, token[:18])
        return RequestedAuthorization(
            token=token,
            agent=agent,
            signer_address=payload.get('signerAddress'),
            task_ref=task_ref,
        )
