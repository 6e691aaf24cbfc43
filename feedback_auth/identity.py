"""Agent display name -> AgentIdentity.

Resolution goes through the discovery service first, then the on-chain
registration document, then the statically configured ``AGENT_URL``.
Nothing is cached: every call re-resolves.
"""

import base64
import json
import logging

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional
from urllib.parse import unquote_to_bytes

import httpx

from feedback_auth.config import Settings
from feedback_auth.context import ChainContext, bounded
from feedback_auth.errors import (
    FeedbackAuthError,
    ProtocolError,
    ResolutionError,
    UpstreamError,
)
from feedback_auth.models import AgentIdentity


logger = logging.getLogger(__name__)

A2A_PROTOCOL_LABEL = 'A2A'
WELL_KNOWN_SUFFIXES = ('/.well-known/agent-card.json', '/.well-known/agent.json')


def strip_name_suffix(name: str, suffixes: tuple[str, ...]) -> str:
    for suffix in suffixes:
        if suffix and name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def normalize_base_url(url: str) -> str:
    """Drop a trailing well-known manifest path and trailing slashes."""
    base = url.strip().rstrip('/')
    for suffix in WELL_KNOWN_SUFFIXES:
        if base.endswith(suffix):
            base = base[: -len(suffix)]
            break
    return base.rstrip('/')


def find_protocol_endpoint(endpoints: Any, label: str = A2A_PROTOCOL_LABEL) -> Optional[str]:
    if not isinstance(endpoints, list):
        return None
    for entry in endpoints:
        if isinstance(entry, dict) and entry.get('name') == label and entry.get('endpoint'):
            return str(entry['endpoint'])
    return None


def endpoint_from_detail(detail: dict[str, Any]) -> Optional[str]:
    endpoint = find_protocol_endpoint(detail.get('endpoints'))
    if endpoint:
        return endpoint
    registration = (detail.get('identityRegistration') or {}).get('registration') or {}
    endpoint = find_protocol_endpoint(registration.get('endpoints'))
    if endpoint:
        return endpoint
    direct = detail.get('a2aEndpoint')
    return str(direct) if direct else None


def _decode_data_uri(uri: str) -> dict[str, Any]:
    header, _, payload = uri.partition(',')
    if ';base64' in header:
        raw = base64.b64decode(payload)
    else:
        raw = unquote_to_bytes(payload)
    return json.loads(raw.decode('utf-8'))


class IdentityResolver:
    def __init__(
        self,
        settings: Settings,
        context: Optional[ChainContext] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings
        self.context = context
        self._http = http_client

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
        else:
            async with httpx.AsyncClient() as client:
                yield client

    def _headers(self) -> dict[str, str]:
        headers = {'Accept': 'application/json'}
        if self.settings.discovery_api_key:
            headers['Authorization'] = f'Bearer {self.settings.discovery_api_key}'
        return headers

    async def _get_json(self, client: httpx.AsyncClient, url: str, label: str, **kwargs: Any) -> Any:
        timeout = self.settings.auth_request_timeout_sec
        try:
            response = await bounded(client.get(url, **kwargs), timeout, label)
        except httpx.HTTPError as e:
            raise UpstreamError(f'{label} failed: {e}') from e
        if response.status_code >= 400:
            raise UpstreamError(
                f'{label} failed with HTTP {response.status_code}',
                status_code=response.status_code,
                body=response.text,
            )
        try:
            return response.json()
        except ValueError:
            raise ProtocolError(f'{label} returned a non-JSON body') from None

    async def _search(self, client: httpx.AsyncClient, base: str, name: str, stripped: str) -> int:
        candidates = {name, stripped}
        matched: dict[int, dict[str, Any]] = {}
        for query in dict.fromkeys((name, stripped)):
            result = await self._get_json(
                client,
                f'{base}/agents/search',
                'Agent discovery',
                params={'query': query, 'page': 1, 'pageSize': 10},
                headers=self._headers(),
            )
            agents = result.get('agents') if isinstance(result, dict) else None
            logger.info(
                'Agent discovery for %r: %s candidate(s)', query, len(agents) if isinstance(agents, list) else 0
            )
            for agent in agents or []:
                if not isinstance(agent, dict):
                    continue
                if agent.get('agentName') not in candidates and agent.get('name') not in candidates:
                    continue
                raw_id = agent.get('agentId')
                try:
                    matched[int(str(raw_id))] = agent
                except (TypeError, ValueError):
                    logger.warning('Discovery returned a non-numeric agentId for %s: %r', name, raw_id)

        if not matched:
            raise ResolutionError(f'Agent not found in discovery: {name}')
        if len(matched) > 1:
            raise ResolutionError(
                f'Agent name {name} is ambiguous: matches agent ids {sorted(matched)}'
            )
        agent_id = next(iter(matched))
        logger.info('Found agent ID from discovery: %s -> %s', name, agent_id)
        return agent_id

    async def _endpoint_from_registration(self, client: httpx.AsyncClient, agent_id: int) -> Optional[str]:
        """A2A endpoint from the registration document behind ``tokenURI``."""
        try:
            identity = await self.context.identity_contract()
            uri = await self.context.read(identity.functions.tokenURI(agent_id).call(), 'tokenURI')
        except FeedbackAuthError as e:
            logger.warning('ERC-8004: tokenURI lookup failed for agentId=%s: %s', agent_id, e)
            return None
        uri = (uri or '').strip()
        if not uri:
            return None
        try:
            if uri.startswith('data:'):
                document = _decode_data_uri(uri)
            else:
                if uri.startswith('ipfs://'):
                    uri = f'{self.settings.ipfs_gateway_base}/{uri[len("ipfs://"):]}'
                document = await self._get_json(client, uri, 'Registration document')
        except (FeedbackAuthError, ValueError) as e:
            logger.warning('ERC-8004: registration document unreadable for agentId=%s: %s', agent_id, e)
            return None
        if not isinstance(document, dict):
            return None
        return find_protocol_endpoint(document.get('endpoints'))

    async def resolve(self, name: str) -> AgentIdentity:
        self.settings.require('discovery_url')
        if not name or not name.strip():
            raise ResolutionError('Agent name is required')
        name = name.strip()
        stripped = strip_name_suffix(name, self.settings.name_suffixes)
        base = self.settings.discovery_url.rstrip('/')

        async with self._client() as client:
            agent_id = await self._search(client, base, name, stripped)

            endpoint: Optional[str] = None
            display_name = name
            try:
                detail = await self._get_json(
                    client, f'{base}/agents/{agent_id}', 'Agent detail', headers=self._headers()
                )
            except (UpstreamError, ProtocolError) as e:
                logger.warning('Agent detail lookup failed for %s (agentId=%s): %s', name, agent_id, e)
                detail = None
            if isinstance(detail, dict):
                display_name = detail.get('agentName') or detail.get('name') or name
                endpoint = endpoint_from_detail(detail)
                logger.info('Agent detail: agentId=%s, endpoint=%s', agent_id, endpoint)

            if not endpoint and self.context is not None:
                endpoint = await self._endpoint_from_registration(client, agent_id)

        if endpoint:
            endpoint = normalize_base_url(endpoint)
        elif self.settings.fallback_agent_url:
            endpoint = normalize_base_url(self.settings.fallback_agent_url)
            logger.info('Using AGENT_URL fallback for %s: %s', name, endpoint)
        else:
            raise ResolutionError(
                f'Could not resolve an endpoint for {name} and no AGENT_URL fallback configured'
            )
        registry = self.settings.identity_registry
        if self.context is not None:
            try:
                registry = await self.context.identity_registry_address()
            except UpstreamError as e:
                logger.warning('Identity registry lookup failed for %s: %s', name, e)
        return AgentIdentity(
            agent_id=agent_id,
            display_name=display_name,
            endpoint_url=endpoint,
            identity_registry_address=registry,
        )
