import logging
import time

from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from feedback_auth.errors import FeedbackAuthError, ResolutionError, ValidationError, http_status
from feedback_auth.evidence import EvidenceStore
from feedback_auth.identity import IdentityResolver
from feedback_auth.models import SettlementStatus
from feedback_auth.reputation import ReputationReader
from feedback_auth.requester import FeedbackAuthRequester
from feedback_auth.settlement import (
    SettlementSubmitter,
    hex_to_bytes,
    score_from_rating,
    tag_to_bytes32,
)


logger = logging.getLogger(__name__)


class FeedbackSubmission(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_name: str = Field(alias='agentName')
    rating: int
    comment: str = ''
    feedback_auth_id: Optional[str] = Field(default=None, alias='feedbackAuthId')
    agent_id: Optional[str] = Field(default=None, alias='agentId')
    task_ref: Optional[str] = Field(default=None, alias='taskRef')
    tag1: str = ''
    tag2: str = ''


def _task_ref() -> str:
    return f'task-{int(time.time() * 1000)}'


def build_app(
    resolver: IdentityResolver,
    requester: FeedbackAuthRequester,
    submitter: SettlementSubmitter,
    evidence: EvidenceStore,
    reputation: ReputationReader,
) -> FastAPI:
    """Client backend: obtains feedback authorizations and settles feedback."""
    app = FastAPI(title='Movie Client')

    @app.exception_handler(FeedbackAuthError)
    async def feedback_auth_error_handler(request: Request, exc: FeedbackAuthError) -> JSONResponse:
        status = http_status(exc)
        log = logger.error if status >= 500 else logger.warning
        log('%s %s failed (%s): %s', request.method, request.url.path, status, exc.message)
        content: dict[str, Any] = {'error': exc.message}
        transaction_ref = getattr(exc, 'transaction_ref', None)
        if transaction_ref:
            content['txHash'] = transaction_ref
        return JSONResponse(content, status_code=status)

    @app.get('/api/health')
    async def health() -> dict[str, Any]:
        return {'status': 'ok'}

    @app.get('/api/config/client-address')
    async def config_client_address() -> dict[str, str]:
        try:
            return {'clientAddress': submitter.client_address}
        except FeedbackAuthError:
            return {'clientAddress': ''}

    @app.get('/api/feedback-auth')
    async def feedback_auth(
        agent_name: str = Query(alias='agentName'),
        client_address: Optional[str] = Query(default=None, alias='clientAddress'),
        task_ref: Optional[str] = Query(default=None, alias='taskRef'),
    ) -> dict[str, Any]:
        address = client_address or submitter.client_address
        result = await requester.request(agent_name, address, task_ref or _task_ref())
        return {
            'feedbackAuthId': result.token,
            'agentId': str(result.agent.agent_id),
            'agentName': result.agent.display_name,
            'signerAddress': result.signer_address,
            'taskRef': result.task_ref,
        }

    @app.get('/api/feedback')
    async def list_feedback(agent_name: str = Query(default='', alias='agentName')) -> list[dict[str, Any]]:
        name = agent_name.strip()
        if not name:
            return []
        try:
            agent = await resolver.resolve(name)
        except ResolutionError as e:
            logger.info('No feedback listed for %s: %s', name, e.message)
            return []
        entries = await reputation.list_feedback(agent.agent_id)
        return [
            {
                'id': i,
                'domain': name,
                'agentId': str(entry.agent_id),
                'rating': entry.score,
                'notes': entry.notes,
                'clientAddress': entry.client_address,
                'feedbackUri': entry.feedback_uri,
                'txHash': entry.transaction_ref,
                'createdAt': (
                    datetime.fromtimestamp(entry.timestamp, tz=timezone.utc).isoformat()
                    if entry.timestamp is not None
                    else None
                ),
            }
            for i, entry in enumerate(entries, start=1)
        ]

    @app.get('/api/reputation/summary')
    async def reputation_summary(agent_name: str = Query(default='', alias='agentName')) -> dict[str, Any]:
        name = agent_name.strip()
        if not name:
            raise ValidationError('agentName is required')
        agent = await resolver.resolve(name)
        summary = await reputation.summary(agent.agent_id)
        return {
            'agentId': str(summary.agent_id),
            'count': str(summary.count),
            'averageScore': summary.average_score,
        }

    @app.post('/api/feedback')
    async def submit_feedback(body: FeedbackSubmission) -> dict[str, Any]:
        score_from_rating(body.rating)
        tag_to_bytes32(body.tag1)
        tag_to_bytes32(body.tag2)
        comment = body.comment.strip()
        if not comment:
            raise ValidationError('comment is required')
        token = (body.feedback_auth_id or '').strip()
        if token:
            hex_to_bytes(token, 'feedbackAuthId')
        if body.agent_id and not body.agent_id.isdigit():
            raise ValidationError(f'agentId must be an integer, got {body.agent_id!r}')
        client_address = submitter.client_address
        task_ref = body.task_ref or _task_ref()

        if token:
            if body.agent_id:
                agent_id = int(body.agent_id)
            else:
                agent_id = (await resolver.resolve(body.agent_name)).agent_id
        else:
            requested = await requester.request(body.agent_name, client_address, task_ref)
            token = requested.token
            agent_id = requested.agent.agent_id

        published = await evidence.publish(
            comment, body.rating, agent_id, task_ref=task_ref, client_address=client_address
        )
        result = await submitter.submit(
            agent_id,
            body.rating,
            token,
            tag1=body.tag1,
            tag2=body.tag2,
            evidence_uri=published.uri,
            evidence_hash=published.hash,
        )
        return {
            'status': 'ok' if result.status == SettlementStatus.CONFIRMED else result.status.value,
            'agentId': str(agent_id),
            'agentName': body.agent_name,
            'rating': body.rating,
            'score': result.record.score,
            'comment': comment,
            'feedbackUri': published.uri,
            'txHash': result.transaction_ref,
            'blockNumber': result.block_number,
        }

    return app
