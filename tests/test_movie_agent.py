"""
Tests for the Movie Agent HTTP surface, exercised in-process.
"""

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from httpx import ASGITransport, AsyncClient

from feedback_auth.models import FeedbackAuthorization
from feedback_auth.requester import FEEDBACK_SKILL_ID, has_feedback_skill
from movie_agent.card import ERC8004_EXTENSION_URI, get_agent_card_dict
from movie_agent.server import build_app

from conftest import AGENT_ADDRESS, AGENT_ID, CHAIN_ID, CLIENT_ADDRESS, IDENTITY_REGISTRY


APP_URL = 'http://agent.test'


@pytest.fixture
def card():
    return get_agent_card_dict(APP_URL, AGENT_ID, AGENT_ADDRESS, CHAIN_ID)


@pytest.fixture
def app(issuer, card):
    return build_app(issuer, card)


def agent_client(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url=APP_URL)


class TestAgentCard:
    def test_card_advertises_feedback_skill(self, card):
        assert has_feedback_skill(card)
        assert card['url'] == APP_URL
        assert card['registrations'] == [
            {'agentId': AGENT_ID, 'agentAddress': f'eip155:{CHAIN_ID}:{AGENT_ADDRESS}'}
        ]
        assert card['trustModels'] == ['feedback']
        assert 'endpoint' not in card

    def test_registration_signed_over_domain(self, issuer):
        signature = issuer.sign_text('movieagent.example')

        card = get_agent_card_dict(APP_URL, AGENT_ID, AGENT_ADDRESS, CHAIN_ID, signature=signature)

        [registration] = card['registrations']
        assert registration['signature'] == signature
        recovered = Account.recover_message(encode_defunct(text='movieagent.example'), signature=signature)
        assert recovered == AGENT_ADDRESS
        assert card['capabilities']['extensions'][0]['params']['registrations'][0]['signature'] == signature

    def test_card_carries_erc8004_extension(self, card):
        extensions = card['capabilities']['extensions']

        assert extensions[0]['uri'] == ERC8004_EXTENSION_URI
        assert extensions[0]['params']['registrations'][0]['agentId'] == AGENT_ID

    def test_explicit_endpoint(self, monkeypatch):
        monkeypatch.setenv('A2A_ENDPOINT', 'https://rpc.example/a2a/')

        card = get_agent_card_dict(APP_URL, AGENT_ID, AGENT_ADDRESS, CHAIN_ID)

        assert card['endpoint'] == 'https://rpc.example/a2a'

    @pytest.mark.asyncio
    @pytest.mark.parametrize('path', ['/.well-known/agent-card.json', '/.well-known/agent.json'])
    async def test_served_at_well_known_paths(self, app, card, path):
        async with agent_client(app) as client:
            response = await client.get(path)

        assert response.status_code == 200
        assert response.json() == card


class TestRequestAuthSkill:
    @pytest.mark.asyncio
    async def test_issues_token(self, app, chain):
        chain.set_last_index(4)
        body = {
            'clientAddress': CLIENT_ADDRESS,
            'chainId': CHAIN_ID,
            'indexLimit': 1,
            'expirySeconds': 3600,
            'agentId': '11',
            'taskRef': 'task-1',
        }

        async with agent_client(app) as client:
            response = await client.post(f'/a2a/skills/{FEEDBACK_SKILL_ID}', json=body)

        assert response.status_code == 200
        data = response.json()
        assert data['feedbackAuthId'] == data['signature']
        assert data['feedbackAuthId'].startswith('0x')
        assert data['signerAddress'] == AGENT_ADDRESS

    @pytest.mark.asyncio
    @pytest.mark.parametrize('missing', ['clientAddress', 'taskRef'])
    async def test_required_fields(self, app, missing):
        body = {'clientAddress': CLIENT_ADDRESS, 'taskRef': 'task-1'}
        del body[missing]

        async with agent_client(app) as client:
            response = await client.post(f'/a2a/skills/{FEEDBACK_SKILL_ID}', json=body)

        assert response.status_code == 400
        assert missing in response.json()['error']

    @pytest.mark.asyncio
    async def test_invalid_json(self, app):
        async with agent_client(app) as client:
            response = await client.post(
                f'/a2a/skills/{FEEDBACK_SKILL_ID}',
                content=b'{not json',
                headers={'Content-Type': 'application/json'},
            )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_overflowing_expiry_is_clamped(self, app, chain):
        chain.set_last_index(4)
        raw = f'{{"clientAddress": "{CLIENT_ADDRESS}", "taskRef": "task-1", "expirySeconds": 1e400}}'

        async with agent_client(app) as client:
            response = await client.post(
                f'/a2a/skills/{FEEDBACK_SKILL_ID}',
                content=raw.encode(),
                headers={'Content-Type': 'application/json'},
            )

        assert response.status_code == 200
        auth = FeedbackAuthorization(
            agent_id=AGENT_ID,
            client_address=CLIENT_ADDRESS,
            index_limit=5,
            expiry=2**64 - 1,
            chain_id=CHAIN_ID,
            identity_registry_address=IDENTITY_REGISTRY,
            signer_address=AGENT_ADDRESS,
            signature=response.json()['feedbackAuthId'],
        )
        assert auth.recover_signer() == AGENT_ADDRESS

    @pytest.mark.asyncio
    async def test_nan_expiry_is_rejected(self, app):
        raw = f'{{"clientAddress": "{CLIENT_ADDRESS}", "taskRef": "task-1", "expirySeconds": NaN}}'

        async with agent_client(app) as client:
            response = await client.post(
                f'/a2a/skills/{FEEDBACK_SKILL_ID}',
                content=raw.encode(),
                headers={'Content-Type': 'application/json'},
            )

        assert response.status_code == 400
        assert 'expirySeconds' in response.json()['error']

    @pytest.mark.asyncio
    async def test_registry_failure_is_bad_gateway(self, app, chain):
        chain.set_last_index(side_effect=ConnectionError('rpc down'))

        async with agent_client(app) as client:
            response = await client.post(
                f'/a2a/skills/{FEEDBACK_SKILL_ID}',
                json={'clientAddress': CLIENT_ADDRESS, 'taskRef': 'task-1'},
            )

        assert response.status_code == 502
        assert 'getLastIndex failed' in response.json()['error']

    @pytest.mark.asyncio
    async def test_wrong_agent_is_server_error(self, app):
        async with agent_client(app) as client:
            response = await client.post(
                f'/a2a/skills/{FEEDBACK_SKILL_ID}',
                json={'clientAddress': CLIENT_ADDRESS, 'taskRef': 'task-1', 'agentId': '99'},
            )

        assert response.status_code == 500


class TestConveniences:
    @pytest.mark.asyncio
    async def test_feedback_auth_by_path(self, app):
        async with agent_client(app) as client:
            response = await client.get(f'/api/feedback-auth/{CLIENT_ADDRESS}')

        assert response.status_code == 200
        assert response.json()['feedbackAuthId'].startswith('0x')

    @pytest.mark.asyncio
    async def test_feedback_auth_by_path_bad_address(self, app):
        async with agent_client(app) as client:
            response = await client.get('/api/feedback-auth/0x1234')

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_envelope(self, app):
        envelope = {
            'skillId': FEEDBACK_SKILL_ID,
            'payload': {'clientAddress': CLIENT_ADDRESS, 'agentId': '11'},
            'metadata': {'agentId': '11', 'chainId': CHAIN_ID},
        }

        async with agent_client(app) as client:
            response = await client.post('/api', json=envelope)

        assert response.status_code == 200
        data = response.json()
        assert data['success'] is True
        assert data['signerAddress'] == AGENT_ADDRESS

    @pytest.mark.asyncio
    async def test_envelope_unknown_skill(self, app):
        async with agent_client(app) as client:
            response = await client.post('/api', json={'skillId': 'other'})

        assert response.status_code == 404
        assert response.json() == {'success': False, 'error': 'Not Found'}

    @pytest.mark.asyncio
    async def test_envelope_missing_client(self, app):
        async with agent_client(app) as client:
            response = await client.post('/api', json={'skillId': FEEDBACK_SKILL_ID, 'payload': {}})

        assert response.status_code == 400
        assert response.json()['success'] is False

    @pytest.mark.asyncio
    async def test_health(self, app):
        async with agent_client(app) as client:
            response = await client.get('/health')

        assert response.json() == {'status': 'ok', 'agentId': '11', 'signerAddress': AGENT_ADDRESS}

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        'envelope',
        [
            {'skillId': FEEDBACK_SKILL_ID, 'payload': [CLIENT_ADDRESS]},
            {'skillId': FEEDBACK_SKILL_ID, 'payload': 'clientAddress'},
            {'skillId': FEEDBACK_SKILL_ID, 'payload': {'clientAddress': CLIENT_ADDRESS}, 'metadata': ['11']},
        ],
    )
    async def test_envelope_non_object_parts(self, app, envelope):
        async with agent_client(app) as client:
            response = await client.post('/api', json=envelope)

        assert response.status_code == 400
        assert response.json() == {'success': False, 'error': 'payload and metadata must be JSON objects'}
