from enum import Enum
from decimal import Decimal
from pathlib import Path

CONFIG_DIR = Path.home().joinpath("conduitcreds")
AGENT_CONFIG_FILENAME = "conduit_agent_config.json"

# AI MODELS
DEFAULT_OPENROUTER_MODEL = 'anthropic/claude-3.5-sonnet:beta'
DEFAULT_OPEN_AI_MODEL = 'gpt-4o-mini'

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# Credential keys
ORACLE_KEY_PREFIX = 'oracle_api_key_'  # oracle_api_key_1, oracle_api_key_2, ...
MIRROR_CONNSTRING_SUFFIX = '_postgresconnstring'

# LEDGER CONSTANTS
ZERO_ADDRESS = '0x0000000000000000000000000000000000000000'
DIGEST_PREFIX = '0x'
DIGEST_HEX_LENGTH = 64  # 32-byte fingerprints
MIN_PAYMENT_AMOUNT = Decimal('0')  # amounts must be strictly greater

# RECONCILER CONSTANTS
POLL_INTERVAL_SECONDS = 10
LOOKBACK_EVENTS = 5000  # bounded recent window on first poll
EVENT_BATCH_SIZE = 500
DEDUP_CAPACITY = 10_000
MAX_EVENT_ATTEMPTS = 5
MIRROR_TIMEOUT_SECONDS = 30
DEFAULT_CURSOR_NAME = 'mirror_reconciler'

# VERIFIER CONSTANTS
MIN_PROOF_LENGTH = 5  # shorter proofs are rejected without consulting the oracle
HEURISTIC_MIN_PROOF_LENGTH = 10
ORACLE_MAX_KEY_FAILURES = 3
ORACLE_MAX_TOKENS = 800
DEFAULT_MIN_CONFIDENCE = 0.0

# MIRROR CONSTANTS
DEFAULT_LIST_LIMIT = 50

class RefundReason(Enum):
    TIMEOUT = 'timeout'
    CANCELLED = 'cancelled'
    REJECTION_LIMIT = 'rejection_limit'
