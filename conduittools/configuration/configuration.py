from dataclasses import dataclass
from typing import Optional
from loguru import logger
import json
from pathlib import Path
import conduittools.configuration.constants as global_constants

@dataclass
class LedgerConfig:
    """Configuration for the payment ledger"""
    # None keeps the unlimited reject/resubmit loop; an int escalates to a refund at the cap
    max_rejections: Optional[int] = None

    def __post_init__(self):
        if self.max_rejections is not None and self.max_rejections < 1:
            raise ValueError(f"max_rejections must be at least 1, got {self.max_rejections}")

@dataclass
class ReconcilerConfig:
    """Configuration for the ledger -> mirror reconciler"""
    poll_interval: float = global_constants.POLL_INTERVAL_SECONDS
    lookback_events: int = global_constants.LOOKBACK_EVENTS
    batch_size: int = global_constants.EVENT_BATCH_SIZE
    dedup_capacity: int = global_constants.DEDUP_CAPACITY
    max_event_attempts: int = global_constants.MAX_EVENT_ATTEMPTS
    mirror_timeout: float = global_constants.MIRROR_TIMEOUT_SECONDS
    cursor_name: str = global_constants.DEFAULT_CURSOR_NAME

@dataclass
class VerifierAgentConfig:
    """Configuration for the automated verifier agent"""
    verifier_address: str
    poll_interval: float = global_constants.POLL_INTERVAL_SECONDS
    review_batch_size: int = global_constants.DEFAULT_LIST_LIMIT
    min_confidence: float = global_constants.DEFAULT_MIN_CONFIDENCE
    min_proof_length: int = global_constants.MIN_PROOF_LENGTH
    mirror_timeout: float = global_constants.MIRROR_TIMEOUT_SECONDS

    def __post_init__(self):
        if not self.verifier_address:
            raise ValueError("verifier_address is required")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be within [0, 1], got {self.min_confidence}")

@dataclass
class AgentNodeConfig:
    """Configuration for a conduit agent node (verifier + reconciler)"""
    node_name: str
    verifier_address: str
    oracle_model: str = global_constants.DEFAULT_OPENROUTER_MODEL
    oracle_key_prefix: str = global_constants.ORACLE_KEY_PREFIX
    mirror_url: Optional[str] = None  # falls back to the {node_name}_postgresconnstring credential
    max_rejections: Optional[int] = None
    min_confidence: float = global_constants.DEFAULT_MIN_CONFIDENCE
    poll_interval: float = global_constants.POLL_INTERVAL_SECONDS

    @property
    def mirror_credential_key(self) -> str:
        return f"{self.node_name}{global_constants.MIRROR_CONNSTRING_SUFFIX}"

    def ledger_config(self) -> LedgerConfig:
        return LedgerConfig(max_rejections=self.max_rejections)

    def reconciler_config(self) -> ReconcilerConfig:
        return ReconcilerConfig(poll_interval=self.poll_interval)

    def verifier_agent_config(self) -> VerifierAgentConfig:
        return VerifierAgentConfig(
            verifier_address=self.verifier_address,
            poll_interval=self.poll_interval,
            min_confidence=self.min_confidence
        )

class RuntimeConfig:
    """Runtime configuration settings"""
    USE_OPENROUTER: bool = True
    # Skip the LLM entirely and use the length heuristic (no API keys needed)
    USE_HEURISTIC_ORACLE: bool = False

def get_agent_config() -> AgentNodeConfig:
    """Get the agent node configuration from the config directory"""
    config_dir = global_constants.CONFIG_DIR
    config_dir.mkdir(exist_ok=True)
    config_file = config_dir / global_constants.AGENT_CONFIG_FILENAME

    if not config_file.exists():
        raise FileNotFoundError(
            f"No configuration file found at {config_file}. "
            f"Create one with at least 'node_name' and 'verifier_address'."
        )

    return load_agent_config(config_file)

def load_agent_config(config_path: str | Path) -> AgentNodeConfig:
    """Load agent node configuration from JSON file"""
    with open(config_path, 'r') as file:
        config_data = json.load(file)

    logger.debug(f"load_agent_config: Loaded configuration from {config_path}")

    return AgentNodeConfig(
        node_name=config_data['node_name'],
        verifier_address=config_data['verifier_address'],
        oracle_model=config_data.get('oracle_model', global_constants.DEFAULT_OPENROUTER_MODEL),
        oracle_key_prefix=config_data.get('oracle_key_prefix', global_constants.ORACLE_KEY_PREFIX),
        mirror_url=config_data.get('mirror_url'),
        max_rejections=config_data.get('max_rejections'),
        min_confidence=config_data.get('min_confidence', global_constants.DEFAULT_MIN_CONFIDENCE),
        poll_interval=config_data.get('poll_interval', global_constants.POLL_INTERVAL_SECONDS)
    )
