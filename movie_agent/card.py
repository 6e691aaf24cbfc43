import os

from typing import Any, Optional

from a2a.types import (
    AgentCapabilities,
    AgentCard,
    AgentExtension,
    AgentSkill,
)

from feedback_auth.requester import FEEDBACK_SKILL_ID


ERC8004_EXTENSION_URI = 'https://eips.ethereum.org/EIPS/eip-8004'
SUPPORTED_INPUT_MODES = ['text/plain']
SUPPORTED_OUTPUT_MODES = ['text/plain', 'application/json']


def _registration(
    agent_id: Optional[int],
    agent_address: Optional[str],
    chain_id: int,
    signature: Optional[str] = None,
) -> dict[str, Any]:
    registration: dict[str, Any] = {
        'agentId': agent_id or 0,
        # CAIP-10 account id
        'agentAddress': f'eip155:{chain_id}:{agent_address}' if agent_address else '',
    }
    # Ownership signature over the agent domain
    if signature:
        registration['signature'] = signature
    return registration


def get_agent_card(
    app_url: str,
    agent_id: Optional[int] = None,
    agent_address: Optional[str] = None,
    chain_id: int = 11155111,
    signature: Optional[str] = None,
) -> AgentCard:
    """Returns the Agent Card for the Movie Agent."""
    extension = AgentExtension(
        uri=ERC8004_EXTENSION_URI,
        description='ERC-8004 feedbackAuth issuance metadata',
        required=False,
        params={
            'trustModels': ['feedback'],
            'feedbackDataURI': '',
            'registrations': [_registration(agent_id, agent_address, chain_id, signature)],
        },
    )
    capabilities = AgentCapabilities(streaming=False, push_notifications=False, extensions=[extension])
    chat_skill = AgentSkill(
        id='general_movie_chat',
        name='General Movie Chat',
        description='Answer general questions or chat about movies, actors, directors.',
        tags=['movies', 'actors', 'directors'],
        examples=['Recommend a good sci-fi movie.', 'Who directed The Matrix?'],
    )
    feedback_skill = AgentSkill(
        id=FEEDBACK_SKILL_ID,
        name=FEEDBACK_SKILL_ID,
        description='Issue a signed ERC-8004 feedbackAuth for a client to submit feedback',
        tags=['erc8004', 'feedback', 'auth', 'a2a'],
        examples=['Client requests feedbackAuth after receiving results'],
        input_modes=SUPPORTED_INPUT_MODES,
        output_modes=SUPPORTED_OUTPUT_MODES,
    )
    return AgentCard(
        name=os.getenv('AGENT_NAME', 'movie-agent'),
        description='Movie Agent: answers movie questions and issues ERC-8004 feedback authorizations',
        url=app_url,
        version='1.0.0',
        default_input_modes=SUPPORTED_INPUT_MODES,
        default_output_modes=SUPPORTED_OUTPUT_MODES,
        capabilities=capabilities,
        skills=[chat_skill, feedback_skill],
    )


def get_agent_card_dict(
    app_url: str,
    agent_id: Optional[int] = None,
    agent_address: Optional[str] = None,
    chain_id: int = 11155111,
    signature: Optional[str] = None,
) -> dict[str, Any]:
    """Build AgentCard dict and augment with ERC-8004 registration and trust models."""
    card = get_agent_card(app_url, agent_id, agent_address, chain_id, signature)
    card_dict = card.model_dump(mode='json', by_alias=True, exclude_none=True)
    card_dict['registrations'] = [_registration(agent_id, agent_address, chain_id, signature)]

    trust_models_env = os.getenv('ERC8004_TRUST_MODELS', 'feedback')
    trust_models = [m.strip() for m in trust_models_env.split(',') if m.strip()]
    if trust_models:
        card_dict['trustModels'] = trust_models

    endpoint = os.getenv('A2A_ENDPOINT')
    if endpoint:
        card_dict['endpoint'] = endpoint.rstrip('/')
    return card_dict
