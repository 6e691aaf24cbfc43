import asyncio
import logging
import sys

import click
import uvicorn

from dotenv import load_dotenv

from feedback_auth.config import Settings
from feedback_auth.context import ChainContext
from feedback_auth.errors import ConfigurationError
from feedback_auth.evidence import EvidenceStore
from feedback_auth.identity import IdentityResolver
from feedback_auth.reputation import ReputationReader
from feedback_auth.requester import FeedbackAuthRequester
from feedback_auth.settlement import SettlementSubmitter
from movie_client.backend import build_app


logger = logging.getLogger(__name__)

DEFAULT_HOST = '0.0.0.0'
DEFAULT_PORT = 3001
DEFAULT_LOG_LEVEL = 'info'


def main(host: str = DEFAULT_HOST, port: int = DEFAULT_PORT, log_level: str = DEFAULT_LOG_LEVEL):
    """Start the Movie Client backend."""
    load_dotenv(override=True)
    logging.basicConfig(level=logging.INFO, format='%(levelname)s:%(name)s:%(message)s')

    try:
        settings = Settings.from_env()
        context = ChainContext(settings)
    except ConfigurationError as e:
        logger.error('Configuration error: %s', e.message)
        sys.exit(1)

    resolver = IdentityResolver(settings, context)
    app = build_app(
        resolver=resolver,
        requester=FeedbackAuthRequester(settings, resolver),
        submitter=SettlementSubmitter(context),
        evidence=EvidenceStore(settings),
        reputation=ReputationReader(settings, context),
    )

    config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        log_level=log_level.lower(),
    )
    server = uvicorn.Server(config)
    logger.info('Starting Movie Client backend at http://%s:%s', host, port)
    asyncio.run(server.serve())


@click.command()
@click.option('--host', 'host', default=DEFAULT_HOST, help='Hostname to bind the server to.')
@click.option('--port', 'port', default=DEFAULT_PORT, type=int, help='Port to bind the server to.')
@click.option('--log-level', 'log_level', default=DEFAULT_LOG_LEVEL, help='Uvicorn log level.')
def cli(host: str, port: int, log_level: str):
    main(host, port, log_level)


if __name__ == '__main__':
    cli()
