"""
Name -> token -> settlement, with the real agent app served in-process.
"""

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from feedback_auth.identity import IdentityResolver
from feedback_auth.models import FeedbackAuthorization, SettlementStatus
from feedback_auth.requester import FeedbackAuthRequester
from feedback_auth.settlement import SettlementSubmitter
from movie_agent.card import get_agent_card_dict
from movie_agent.server import build_app

from conftest import (
    AGENT_ADDRESS,
    AGENT_ID,
    CHAIN_ID,
    CLIENT_ADDRESS,
    FIXED_NOW,
    IDENTITY_REGISTRY,
)


AGENT_BASE = 'http://movieagent.example'


def discovery(request: httpx.Request) -> httpx.Response:
    if request.url.path == '/agents/search':
        return httpx.Response(200, json={'agents': [{'agentId': '11', 'agentName': 'movies.agent.eth'}]})
    return httpx.Response(
        200,
        json={
            'agentId': '11',
            'agentName': 'movies.agent.eth',
            'endpoints': [{'name': 'A2A', 'endpoint': f'{AGENT_BASE}/.well-known/agent-card.json'}],
        },
    )


class TestFeedbackFlow:
    @pytest.mark.asyncio
    async def test_token_reaches_registry_unchanged(self, settings, context, issuer, chain):
        chain.set_last_index(4)
        agent_app = build_app(issuer, get_agent_card_dict(AGENT_BASE, AGENT_ID, AGENT_ADDRESS, CHAIN_ID))

        async with AsyncClient(transport=httpx.MockTransport(discovery)) as discovery_client, AsyncClient(
            transport=ASGITransport(app=agent_app)
        ) as agent_client:
            resolver = IdentityResolver(settings, http_client=discovery_client)
            requester = FeedbackAuthRequester(settings, resolver, http_client=agent_client)
            requested = await requester.request('movies.agent.eth', CLIENT_ADDRESS, 'task-1')

        assert requested.agent.endpoint_url == AGENT_BASE
        assert requested.signer_address == AGENT_ADDRESS

        # The token verifies against the tuple the issuer committed to.
        auth = FeedbackAuthorization(
            agent_id=AGENT_ID,
            client_address=CLIENT_ADDRESS,
            index_limit=5,
            expiry=FIXED_NOW + 3600,
            chain_id=CHAIN_ID,
            identity_registry_address=IDENTITY_REGISTRY,
            signer_address=AGENT_ADDRESS,
            signature=requested.token,
        )
        assert auth.recover_signer() == AGENT_ADDRESS

        result = await SettlementSubmitter(context).submit(
            requested.agent.agent_id, 5, requested.token, evidence_uri='Great pick'
        )

        assert result.status == SettlementStatus.CONFIRMED
        assert result.record.authorization == requested.token
        args = chain.reputation.functions.giveFeedback.call_args.args
        assert args[0] == AGENT_ID
        assert args[1] == 100
        assert args[6] == bytes.fromhex(requested.token[2:])
