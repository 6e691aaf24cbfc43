import json
import logging
import os

from dataclasses import dataclass, field, replace
from typing import Mapping, Optional

from feedback_auth.errors import ConfigurationError


logger = logging.getLogger(__name__)

DEFAULT_CHAIN_ID = 11155111  # Sepolia
DEFAULT_TTL_SEC = 3600
DEFAULT_NAME_SUFFIXES = ('.8004-agent.eth',)
DEFAULT_IPFS_GATEWAY = 'https://gateway.pinata.cloud/ipfs'
DEFAULT_PINATA_API_BASE = 'https://api.pinata.cloud'

# Maps Settings field -> environment variable, used for error messages.
ENV_NAMES = {
    'rpc_url': 'ERC8004_RPC_URL',
    'reputation_registry': 'ERC8004_REPUTATION_REGISTRY',
    'identity_registry': 'ERC8004_IDENTITY_REGISTRY',
    'discovery_url': 'ERC8004_DISCOVERY_URL',
    'discovery_api_key': 'ERC8004_DISCOVERY_API_KEY',
    'fallback_agent_url': 'AGENT_URL',
    'agent_id': 'ERC8004_AGENT_ID',
    'signer_private_key': 'ERC8004_PRIVATE_KEY',
    'session_package_json': 'ERC8004_SESSION_PACKAGE_JSON',
    'client_private_key': 'ERC8004_CLIENT_PRIVATE_KEY',
    'reputation_graphql_url': 'REPUTATION_GRAPHQL_URL',
}


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = (env.get(key) or '').strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f'{key} must be an integer, got {raw!r}') from None


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or '').strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f'{key} must be a number, got {raw!r}') from None


def _env_str(env: Mapping[str, str], key: str) -> Optional[str]:
    value = (env.get(key) or '').strip()
    return value or None


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, read once at startup.

    Values come from environment variables (``.env`` is loaded by the entry
    points). Registry addresses missing from the environment are hydrated
    from a ``deployment.json`` file shaped like
    ``{"contracts": {"identity_registry": ..., "reputation_registry": ...}}``.
    """

    rpc_url: Optional[str] = None
    reputation_registry: Optional[str] = None
    identity_registry: Optional[str] = None
    chain_id: int = DEFAULT_CHAIN_ID
    feedback_ttl_sec: int = DEFAULT_TTL_SEC
    feedback_batch_size: int = 1

    discovery_url: Optional[str] = None
    discovery_api_key: Optional[str] = None
    name_suffixes: tuple[str, ...] = DEFAULT_NAME_SUFFIXES
    fallback_agent_url: Optional[str] = None

    agent_id: Optional[int] = None
    signer_private_key: Optional[str] = None
    session_package_json: Optional[str] = None
    verify_signer: bool = True

    client_private_key: Optional[str] = None

    gas_mult: float = 1.5
    min_gas: int = 200000
    gas_cap: int = 2000000
    gas_price_mult: float = 1.2

    auth_request_timeout_sec: float = 10.0
    rpc_timeout_sec: float = 20.0
    submit_timeout_sec: float = 30.0
    tx_timeout_sec: float = 180.0

    ipfs_gateway_base: str = DEFAULT_IPFS_GATEWAY
    pinata_api_base: str = DEFAULT_PINATA_API_BASE
    pinata_jwt: Optional[str] = field(default=None, repr=False)
    pinata_api_key: Optional[str] = field(default=None, repr=False)
    pinata_api_secret: Optional[str] = field(default=None, repr=False)

    reputation_graphql_url: Optional[str] = None
    feedback_query_limit: int = 50

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'Settings':
        env = os.environ if env is None else env

        suffixes_raw = env.get('ERC8004_NAME_SUFFIXES')
        if suffixes_raw is None:
            suffixes = DEFAULT_NAME_SUFFIXES
        else:
            suffixes = tuple(s.strip() for s in suffixes_raw.split(',') if s.strip())

        agent_id_raw = _env_str(env, 'ERC8004_AGENT_ID')
        agent_id = None
        if agent_id_raw is not None:
            try:
                agent_id = int(agent_id_raw)
            except ValueError:
                raise ConfigurationError(
                    f'ERC8004_AGENT_ID must be an integer, got {agent_id_raw!r}'
                ) from None

        settings = cls(
            rpc_url=_env_str(env, 'ERC8004_RPC_URL'),
            reputation_registry=_env_str(env, 'ERC8004_REPUTATION_REGISTRY'),
            identity_registry=_env_str(env, 'ERC8004_IDENTITY_REGISTRY'),
            chain_id=_env_int(env, 'ERC8004_CHAIN_ID', DEFAULT_CHAIN_ID),
            feedback_ttl_sec=_env_int(env, 'ERC8004_FEEDBACKAUTH_TTL_SEC', DEFAULT_TTL_SEC),
            feedback_batch_size=_env_int(env, 'ERC8004_FEEDBACK_BATCH_SIZE', 1),
            discovery_url=_env_str(env, 'ERC8004_DISCOVERY_URL'),
            discovery_api_key=_env_str(env, 'ERC8004_DISCOVERY_API_KEY'),
            name_suffixes=suffixes,
            fallback_agent_url=_env_str(env, 'AGENT_URL'),
            agent_id=agent_id,
            signer_private_key=_env_str(env, 'ERC8004_PRIVATE_KEY'),
            session_package_json=_env_str(env, 'ERC8004_SESSION_PACKAGE_JSON'),
            verify_signer=(env.get('ERC8004_VERIFY_SIGNER', 'true').strip().lower() != 'false'),
            client_private_key=_env_str(env, 'ERC8004_CLIENT_PRIVATE_KEY'),
            gas_mult=_env_float(env, 'ERC8004_GAS_MULT', 1.5),
            min_gas=_env_int(env, 'ERC8004_MIN_GAS', 200000),
            gas_cap=_env_int(env, 'ERC8004_GAS_CAP', 2000000),
            gas_price_mult=_env_float(env, 'ERC8004_GAS_PRICE_MULT', 1.2),
            rpc_timeout_sec=_env_float(env, 'ERC8004_RPC_TIMEOUT_SEC', 20.0),
            tx_timeout_sec=_env_float(env, 'ERC8004_TX_TIMEOUT_SEC', 180.0),
            ipfs_gateway_base=(_env_str(env, 'IPFS_GATEWAY_BASE') or DEFAULT_IPFS_GATEWAY).rstrip('/'),
            pinata_api_base=(_env_str(env, 'PINATA_API_BASE') or DEFAULT_PINATA_API_BASE).rstrip('/'),
            pinata_jwt=_env_str(env, 'PINATA_JWT'),
            pinata_api_key=_env_str(env, 'PINATA_API_KEY'),
            pinata_api_secret=_env_str(env, 'PINATA_API_SECRET'),
            reputation_graphql_url=_env_str(env, 'REPUTATION_GRAPHQL_URL') or _env_str(env, 'GRAPHQL_URL'),
            feedback_query_limit=_env_int(env, 'FEEDBACK_QUERY_LIMIT', 50),
        )
        if settings.feedback_batch_size < 1:
            raise ConfigurationError('ERC8004_FEEDBACK_BATCH_SIZE must be at least 1')

        if not (settings.reputation_registry and settings.identity_registry):
            deployment_path = env.get('ERC8004_DEPLOYMENT_FILE', 'deployment.json')
            settings = settings.with_deployment(deployment_path)
        return settings

    def with_deployment(self, path: str) -> 'Settings':
        """Fill registry addresses still unset from a deployment file."""
        try:
            with open(path, 'r') as f:
                deployment = json.load(f)
        except FileNotFoundError:
            return self
        except (OSError, ValueError) as e:
            logger.debug('ERC-8004: could not load %s: %s', path, e)
            return self
        contracts = deployment.get('contracts', {}) if isinstance(deployment, dict) else {}
        return replace(
            self,
            identity_registry=self.identity_registry or contracts.get('identity_registry'),
            reputation_registry=self.reputation_registry or contracts.get('reputation_registry'),
        )

    def require(self, *names: str) -> None:
        """Fail fast, before any network call, if settings are missing."""
        missing = [ENV_NAMES.get(n, n) for n in names if getattr(self, n) in (None, '')]
        if missing:
            raise ConfigurationError('Missing required configuration: ' + ', '.join(missing))
