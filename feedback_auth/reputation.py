"""Read side of the reputation registry.

Aggregates come straight from the registry's ``getSummary``. Individual
feedback rows come from a GraphQL indexer of ``NewFeedback`` events, and the
comment of each row is read back from its evidence document when the feedback
URI points at IPFS.
"""

import asyncio
import logging
import re

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from feedback_auth.config import Settings
from feedback_auth.context import ChainContext, bounded
from feedback_auth.errors import FeedbackAuthError, ProtocolError, UpstreamError
from feedback_auth.models import FeedbackEntry, ReputationSummary


logger = logging.getLogger(__name__)

FEEDBACKS_QUERY = """query Feedbacks($first: Int!, $agentId: String!) {
  repFeedbacks(first: $first, orderBy: timestamp, orderDirection: desc, where: { agentId: $agentId }) {
    id
    agentId
    clientAddress
    score
    tag1
    tag2
    feedbackUri
    feedbackHash
    txHash
    blockNumber
    timestamp
  }
}"""

IPFS_CID_RE = re.compile(r'(?:ipfs://|/ipfs/)([^/?#]+)')
NOTE_FIELDS = ('comment', 'comments', 'note')


def bytes32_to_tag(value: Any) -> str:
    """Indexers return tags as bytes32 hex; undo the zero padding."""
    if not isinstance(value, str):
        return ''
    if value.startswith('0x') and len(value) == 66:
        try:
            return bytes.fromhex(value[2:]).rstrip(b'\x00').decode('utf-8', errors='replace')
        except ValueError:
            return value
    return value


def _optional_int(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class ReputationReader:
    def __init__(
        self,
        settings: Settings,
        context: ChainContext,
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

    async def summary(self, agent_id: int) -> ReputationSummary:
        count, average_score = await self.context.get_summary(agent_id)
        logger.info('ERC-8004: reputation summary (agentId=%s, count=%s, average=%s)', agent_id, count, average_score)
        return ReputationSummary(agent_id=int(agent_id), count=count, average_score=average_score)

    async def _notes(self, client: httpx.AsyncClient, uri: str) -> str:
        if not uri:
            return ''
        match = IPFS_CID_RE.search(uri)
        if match is None:
            # Unpinned feedback carries the comment as its URI.
            return '' if uri.startswith(('http://', 'https://')) else uri
        url = f'{self.settings.ipfs_gateway_base}/{match.group(1)}'
        try:
            response = await bounded(client.get(url), self.settings.auth_request_timeout_sec, 'Evidence fetch')
            response.raise_for_status()
            document = response.json()
        except (FeedbackAuthError, httpx.HTTPError, ValueError) as e:
            logger.warning('Could not read feedback evidence at %s: %s', url, e)
            return ''
        if not isinstance(document, dict):
            return ''
        for key in NOTE_FIELDS:
            if document.get(key):
                return str(document[key])
        return ''

    async def list_feedback(self, agent_id: int) -> list[FeedbackEntry]:
        url = self.settings.reputation_graphql_url
        if not url:
            logger.warning('REPUTATION_GRAPHQL_URL not configured; returning empty feedback list')
            return []

        body = {
            'query': FEEDBACKS_QUERY,
            'variables': {'first': self.settings.feedback_query_limit, 'agentId': str(agent_id)},
        }
        async with self._client() as client:
            try:
                response = await bounded(
                    client.post(url, json=body, headers={'Accept': 'application/json'}),
                    self.settings.auth_request_timeout_sec,
                    'Feedback query',
                )
            except httpx.HTTPError as e:
                raise UpstreamError(f'Feedback query failed: {e}') from e
            if response.status_code >= 400:
                raise UpstreamError(
                    f'Feedback query failed with HTTP {response.status_code}',
                    status_code=response.status_code,
                    body=response.text,
                )
            try:
                payload = response.json()
            except ValueError:
                raise ProtocolError('Feedback query returned a non-JSON body') from None
            if not isinstance(payload, dict):
                raise ProtocolError('Feedback query returned an unexpected body')
            if payload.get('errors'):
                raise ProtocolError(f'Feedback query failed: {payload["errors"]}')

            rows = [row for row in ((payload.get('data') or {}).get('repFeedbacks') or []) if isinstance(row, dict)]
            uris = [str(row.get('feedbackUri') or '').strip() for row in rows]
            notes = await asyncio.gather(*(self._notes(client, uri) for uri in uris))

        logger.info('ERC-8004: %s feedback rows indexed for agentId=%s', len(rows), agent_id)
        return [
            FeedbackEntry(
                agent_id=_optional_int(row.get('agentId')) or int(agent_id),
                client_address=row.get('clientAddress'),
                score=_optional_int(row.get('score')) or 0,
                tag1=bytes32_to_tag(row.get('tag1')),
                tag2=bytes32_to_tag(row.get('tag2')),
                feedback_uri=uri,
                feedback_hash=row.get('feedbackHash'),
                transaction_ref=row.get('txHash'),
                block_number=_optional_int(row.get('blockNumber')),
                timestamp=_optional_int(row.get('timestamp')),
                notes=note,
            )
            for row, uri, note in zip(rows, uris, notes)
        ]
