import re
from hashlib import sha256
from typing import Optional

from conduittools.configuration.constants import DIGEST_PREFIX, DIGEST_HEX_LENGTH

DIGEST_PATTERN = re.compile(fr'^{DIGEST_PREFIX}[0-9a-fA-F]{{{DIGEST_HEX_LENGTH}}}$')

def compute_digest(content: str | bytes) -> str:
    """Fixed-size fingerprint of condition or proof content, as stored by the ledger"""
    if isinstance(content, str):
        content = content.encode('utf-8')
    return DIGEST_PREFIX + sha256(content).hexdigest()

def is_valid_digest(digest: Optional[str]) -> bool:
    if not isinstance(digest, str):
        return False
    return DIGEST_PATTERN.match(digest) is not None

def digest_matches(content: str | bytes, digest: str) -> bool:
    """Check that content hashes to the committed digest (case-insensitive hex)"""
    if not is_valid_digest(digest):
        return False
    return compute_digest(content).lower() == digest.lower()
