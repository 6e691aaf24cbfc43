"""Off-chain evidence for a feedback entry.

The evidence document is pinned to IPFS through Pinata when credentials are
configured; the registry then stores ``ipfs://<cid>`` and the keccak hash of
the pinned JSON. Without credentials the comment itself, truncated, is used
as the feedback URI and no hash is committed.
"""

import json
import logging
import time

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx

from pydantic import BaseModel, ConfigDict
from web3 import Web3

from feedback_auth.config import Settings
from feedback_auth.context import bounded
from feedback_auth.errors import UpstreamError, ValidationError


logger = logging.getLogger(__name__)

MAX_INLINE_URI_CHARS = 280


class Evidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    uri: str
    hash: Optional[str] = None
    document: dict[str, Any]


def build_evidence_document(
    comment: str,
    rating: int,
    agent_id: int,
    task_ref: Optional[str] = None,
    client_address: Optional[str] = None,
    created_at: Optional[int] = None,
) -> dict[str, Any]:
    document = {
        'agentId': str(agent_id),
        'rating': int(rating),
        'comment': comment,
        'createdAt': int(time.time()) if created_at is None else created_at,
    }
    if task_ref:
        document['taskRef'] = task_ref
    if client_address:
        document['clientAddress'] = client_address
    return document


def evidence_hash(document: dict[str, Any]) -> str:
    encoded = json.dumps(document, sort_keys=True, separators=(',', ':')).encode('utf-8')
    return Web3.to_hex(Web3.keccak(encoded))


class EvidenceStore:
    def __init__(self, settings: Settings, http_client: Optional[httpx.AsyncClient] = None) -> None:
        self.settings = settings
        self._http = http_client

    @property
    def pinning_enabled(self) -> bool:
        s = self.settings
        return bool(s.pinata_jwt or (s.pinata_api_key and s.pinata_api_secret))

    def _headers(self) -> dict[str, str]:
        s = self.settings
        headers = {'Content-Type': 'application/json'}
        if s.pinata_jwt:
            headers['Authorization'] = f'Bearer {s.pinata_jwt}'
        else:
            headers['pinata_api_key'] = s.pinata_api_key or ''
            headers['pinata_secret_api_key'] = s.pinata_api_secret or ''
        return headers

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http is not None:
            yield self._http
        else:
            async with httpx.AsyncClient() as client:
                yield client

    async def pin_json(self, document: dict[str, Any], filename: str = 'feedback.json') -> str:
        """Pin a JSON document and return its CID."""
        url = f'{self.settings.pinata_api_base}/pinning/pinJSONToIPFS'
        body = {
            'pinataOptions': {'cidVersion': 1},
            'pinataMetadata': {'name': filename},
            'pinataContent': document,
        }
        async with self._client() as client:
            try:
                response = await bounded(
                    client.post(url, json=body, headers=self._headers()),
                    self.settings.submit_timeout_sec,
                    'Pinata upload',
                )
            except httpx.HTTPError as e:
                raise UpstreamError(f'Pinata upload failed: {e}') from e
        if response.status_code >= 400:
            raise UpstreamError(
                f'Pinata upload failed: {response.status_code}',
                status_code=response.status_code,
                body=response.text,
            )
        try:
            out = response.json()
        except ValueError:
            raise UpstreamError('Pinata returned a non-JSON body') from None
        cid = out.get('IpfsHash') or out.get('ipfsHash') if isinstance(out, dict) else None
        if not cid:
            raise UpstreamError('Pinata returned no CID')
        logger.info('Evidence pinned: %s/%s', self.settings.ipfs_gateway_base, cid)
        return cid

    async def publish(
        self,
        comment: str,
        rating: int,
        agent_id: int,
        task_ref: Optional[str] = None,
        client_address: Optional[str] = None,
    ) -> Evidence:
        comment = (comment or '').strip()
        if not comment:
            raise ValidationError('comment is required')
        document = build_evidence_document(comment, rating, agent_id, task_ref, client_address)
        if not self.pinning_enabled:
            return Evidence(uri=comment[:MAX_INLINE_URI_CHARS], hash=None, document=document)
        cid = await self.pin_json(document)
        return Evidence(uri=f'ipfs://{cid}', hash=evidence_hash(document), document=document)
