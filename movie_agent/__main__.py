import asyncio
import logging
import os
import sys

from urllib.parse import urlparse

import click
import uvicorn

from dotenv import load_dotenv

from feedback_auth.config import Settings
from feedback_auth.context import ChainContext
from feedback_auth.errors import ConfigurationError
from feedback_auth.issuer import FeedbackAuthIssuer
from movie_agent.card import get_agent_card_dict
from movie_agent.server import build_app


logger = logging.getLogger(__name__)

DEFAULT_HOST = '0.0.0.0'
DEFAULT_PORT = 10002
DEFAULT_LOG_LEVEL = 'info'


def main(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, log_level: str = DEFAULT_LOG_LEVEL):
    """Start the Movie Agent server."""
    load_dotenv(override=True)
    logging.basicConfig(level=logging.INFO, format='%(levelname)s:%(name)s:%(message)s')

    try:
        settings = Settings.from_env()
        issuer = FeedbackAuthIssuer(ChainContext(settings))
    except ConfigurationError as e:
        logger.error('Configuration error: %s', e.message)
        sys.exit(1)

    app_url = os.environ.get('APP_URL', f'http://{host}:{port}')
    domain = os.environ.get('AGENT_DOMAIN') or urlparse(app_url).netloc
    card = get_agent_card_dict(
        app_url,
        issuer.agent_id,
        issuer.signer_address,
        settings.chain_id,
        signature=issuer.sign_text(domain),
    )
    app = build_app(issuer, card)

    config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_level=log_level.lower(),
        lifespan='auto',
    )
    server = uvicorn.Server(config)
    logger.info('Starting Movie Agent at http://%s:%s (agentId=%s)', host, port, issuer.agent_id)
    asyncio.run(server.serve())


@click.command()
@click.option('--host', 'host', default=DEFAULT_HOST, help='Hostname to bind the server to.')
@click.option('--port', 'port', default=DEFAULT_PORT, type=int, help='Port to bind the server to.')
@click.option('--log-level', 'log_level', default=DEFAULT_LOG_LEVEL, help='Uvicorn log level.')
def cli(host: str, port: int, log_level: str):
    main(host, port, log_level)


if __name__ == '__main__':
    cli()
