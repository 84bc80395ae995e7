# Relay endpoints and env-driven settings
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from mev_share.errors import ConfigError


@dataclass(frozen=True)
class Network:
    name: str
    chain_id: int
    stream_url: str
    api_url: str

    @property
    def history_url(self):
        return self.stream_url.rstrip('/') + '/api/v1'


MAINNET = Network('mainnet', 1, 'https://mev-share.flashbots.net', 'https://relay.flashbots.net')
GOERLI = Network('goerli', 5, 'https://mev-share-goerli.flashbots.net', 'https://relay-goerli.flashbots.net')
SEPOLIA = Network('sepolia', 11155111, 'https://mev-share-sepolia.flashbots.net', 'https://relay-sepolia.flashbots.net')

NETWORKS = {network.name: network for network in (MAINNET, GOERLI, SEPOLIA)}


def get_network(name_or_chain_id):
    """Looks up a network by name ('mainnet') or chain id (1)."""
    if isinstance(name_or_chain_id, int):
        for network in NETWORKS.values():
            if network.chain_id == name_or_chain_id:
                return network
    elif name_or_chain_id.lower() in NETWORKS:
        return NETWORKS[name_or_chain_id.lower()]
    raise ConfigError(f'Unsupported MEV-Share network: {name_or_chain_id!r}')


def _env_float(name, default):
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f'{name} must be a number, got {raw!r}') from None


def _env_int(name, default):
    raw = os.getenv(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f'{name} must be an integer, got {raw!r}') from None


@dataclass(frozen=True)
class Settings:
    network: Network = MAINNET
    provider_url: Optional[str] = None
    auth_privkey: Optional[str] = None
    sender_privkey: Optional[str] = None
    poll_interval: float = 2.0
    stall_blocks: int = 256
    stream_buffer_size: int = 256
    stream_max_retries: int = 8
    stream_max_downtime: Optional[float] = None
    log_level: str = 'INFO'

    @classmethod
    def from_env(cls, dotenv_path=None):
        """Builds settings from the environment, after loading a .env file if there is one."""
        load_dotenv(dotenv_path)
        downtime = _env_float('STREAM_MAX_DOWNTIME', None)
        settings = cls(
            network=get_network(os.getenv('MEV_SHARE_NETWORK', 'mainnet')),
            provider_url=os.getenv('PROVIDER_URL') or None,
            auth_privkey=os.getenv('AUTH_PRIVKEY') or None,
            sender_privkey=os.getenv('SENDER_PRIVKEY') or None,
            poll_interval=_env_float('POLL_INTERVAL', cls.poll_interval),
            stall_blocks=_env_int('STALL_BLOCKS', cls.stall_blocks),
            stream_buffer_size=_env_int('STREAM_BUFFER_SIZE', cls.stream_buffer_size),
            stream_max_retries=_env_int('STREAM_MAX_RETRIES', cls.stream_max_retries),
            stream_max_downtime=downtime,
            log_level=os.getenv('LOG_LEVEL', cls.log_level).upper(),
        )
        if settings.poll_interval < 0:
            raise ConfigError('POLL_INTERVAL must not be negative')
        if settings.stall_blocks < 1:
            raise ConfigError('STALL_BLOCKS must be at least 1')
        if settings.stream_buffer_size < 1:
            raise ConfigError('STREAM_BUFFER_SIZE must be at least 1')
        if settings.stream_max_retries < 0:
            raise ConfigError('STREAM_MAX_RETRIES must not be negative')
        return settings

    def require(self, *fields):
        missing = [field for field in fields if getattr(self, field) is None]
        if missing:
            raise ConfigError('Missing settings: ' + ', '.join(name.upper() for name in missing))
        return self
