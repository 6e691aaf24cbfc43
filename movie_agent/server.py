import logging
import time

from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from feedback_auth.errors import FeedbackAuthError, ValidationError, http_status
from feedback_auth.issuer import FeedbackAuthIssuer
from feedback_auth.requester import FEEDBACK_SKILL_ID


logger = logging.getLogger(__name__)


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError('Request body must be JSON') from None
    if not isinstance(body, dict):
        raise ValidationError('Request body must be a JSON object')
    return body


async def feedback_auth_error_handler(request: Request, exc: FeedbackAuthError) -> JSONResponse:
    status = http_status(exc)
    log = logger.error if status >= 500 else logger.warning
    log('%s %s failed (%s): %s', request.method, request.url.path, status, exc.message)
    return JSONResponse({'error': exc.message}, status_code=status)


def build_app(issuer: FeedbackAuthIssuer, card: dict[str, Any]) -> Starlette:
    """Starlette app exposing the agent card and the feedbackAuth skill."""

    async def agent_card(request: Request) -> JSONResponse:
        return JSONResponse(card)

    async def request_auth(request: Request) -> JSONResponse:
        body = await _json_body(request)
        logger.info(
            'ERC-8004: %s requested (client=%s, agentId=%s, taskRef=%s)',
            FEEDBACK_SKILL_ID,
            body.get('clientAddress'),
            body.get('agentId'),
            body.get('taskRef'),
        )
        if not body.get('clientAddress'):
            raise ValidationError('clientAddress is required')
        if not body.get('taskRef'):
            raise ValidationError('taskRef is required')
        expiry_seconds = body.get('expirySeconds', body.get('expiry'))
        auth = await issuer.issue(
            body['clientAddress'],
            agent_id=body.get('agentId'),
            task_ref=str(body['taskRef']),
            expiry_seconds=expiry_seconds,
            chain_id=body.get('chainId'),
            index_count=body.get('indexLimit'),
        )
        return JSONResponse(auth.to_response())

    async def feedback_auth_for_client(request: Request) -> JSONResponse:
        auth = await issuer.issue(
            request.path_params['client_address'],
            task_ref=f'api-{int(time.time() * 1000)}',
        )
        return JSONResponse({'feedbackAuthId': auth.signature})

    async def envelope(request: Request) -> JSONResponse:
        try:
            body = await _json_body(request)
        except ValidationError as e:
            return JSONResponse({'success': False, 'error': e.message}, status_code=400)
        logger.info(
            'A2A envelope hit (skillId=%s, metadata=%s)', body.get('skillId'), body.get('metadata')
        )
        if body.get('skillId') != FEEDBACK_SKILL_ID:
            return JSONResponse({'success': False, 'error': 'Not Found'}, status_code=404)
        payload = body.get('payload') or {}
        metadata = body.get('metadata') or {}
        if not isinstance(payload, dict) or not isinstance(metadata, dict):
            return JSONResponse(
                {'success': False, 'error': 'payload and metadata must be JSON objects'}, status_code=400
            )
        agent_id = payload.get('agentId', metadata.get('agentId'))
        try:
            if not payload.get('clientAddress'):
                raise ValidationError('clientAddress missing/invalid')
            auth = await issuer.issue(
                str(payload['clientAddress']).strip(),
                agent_id=agent_id,
                task_ref=f'api-{int(time.time() * 1000)}',
                chain_id=metadata.get('chainId'),
                index_count=1,
            )
        except FeedbackAuthError as e:
            logger.warning('A2A envelope %s failed: %s', FEEDBACK_SKILL_ID, e.message)
            return JSONResponse({'success': False, 'error': e.message}, status_code=http_status(e))
        return JSONResponse({'success': True, **auth.to_response()})

    async def health(request: Request) -> JSONResponse:
        return JSONResponse(
            {'status': 'ok', 'agentId': str(issuer.agent_id), 'signerAddress': issuer.signer_address}
        )

    routes = [
        Route('/.well-known/agent-card.json', agent_card, methods=['GET']),
        Route('/.well-known/agent.json', agent_card, methods=['GET']),
        Route(f'/a2a/skills/{FEEDBACK_SKILL_ID}', request_auth, methods=['POST']),
        Route('/api/feedback-auth/{client_address}', feedback_auth_for_client, methods=['GET']),
        Route('/api', envelope, methods=['POST']),
        Route('/health', health, methods=['GET']),
    ]
    return Starlette(
        routes=routes,
        exception_handlers={FeedbackAuthError: feedback_auth_error_handler},
    )
