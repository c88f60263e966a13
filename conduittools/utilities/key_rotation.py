from typing import List, Dict, Optional, Callable, Awaitable, TypeVar
import asyncio
import openai
from loguru import logger
from conduittools.configuration.constants import ORACLE_MAX_KEY_FAILURES
from conduittools.protocols.credentials import CredentialManager
from conduittools.utilities.exceptions import OracleUnavailableError

T = TypeVar('T')

class CredentialRotator:
    """
    Round-robin selector over several API keys for the same provider.

    Only quota exhaustion (openai.RateLimitError) moves the rotation forward and counts
    against the key. Every other error propagates to the caller unchanged.
    """

    def __init__(self, keys: List[str], max_failures: int = ORACLE_MAX_KEY_FAILURES):
        keys = [key for key in keys if key]
        if not keys:
            raise ValueError("CredentialRotator needs at least one key")
        if max_failures < 1:
            raise ValueError(f"max_failures must be at least 1, got {max_failures}")
        self.keys = keys
        self.max_failures = max_failures
        self._failures: Dict[int, int] = {index: 0 for index in range(len(keys))}
        self._index = 0
        self._lock = asyncio.Lock()

    @classmethod
    def from_credentials(
            cls,
            credential_manager: CredentialManager,
            prefix: str,
            max_failures: int = ORACLE_MAX_KEY_FAILURES
        ) -> 'CredentialRotator':
        """Build a rotator from every stored credential whose key starts with prefix"""
        names = credential_manager.list_credentials(prefix=prefix)
        keys = [credential_manager.get_credential(name) for name in names]
        logger.debug(f"CredentialRotator.from_credentials: Found {len(names)} keys with prefix {prefix}")
        return cls(keys, max_failures=max_failures)

    def __len__(self) -> int:
        return len(self.keys)

    @property
    def available_count(self) -> int:
        return sum(1 for count in self._failures.values() if count < self.max_failures)

    def failure_count(self, index: int) -> int:
        return self._failures[index]

    def _next_available(self, start: int) -> Optional[int]:
        """First usable key index at or after start, wrapping around"""
        for offset in range(len(self.keys)):
            index = (start + offset) % len(self.keys)
            if self._failures[index] < self.max_failures:
                return index
        return None

    def current(self) -> tuple[int, str]:
        """Index and value of the key the next call should use"""
        index = self._next_available(self._index)
        if index is None:
            raise OracleUnavailableError(len(self.keys))
        self._index = index
        return index, self.keys[index]

    def record_success(self, index: int):
        self._failures[index] = 0

    def record_quota_failure(self, index: int):
        """Count a quota failure against the key and move the rotation to the next one"""
        self._failures[index] += 1
        self._index = (index + 1) % len(self.keys)
        logger.warning(
            f"CredentialRotator.record_quota_failure: Key {index + 1}/{len(self.keys)} hit its quota "
            f"({self._failures[index]}/{self.max_failures}); rotating"
        )

    async def call(self, request: Callable[[str], Awaitable[T]]) -> T:
        """
        Run request(key) with the current key, rotating on quota errors until one
        succeeds or every key is exhausted.

        Raises:
            OracleUnavailableError: if all keys have reached max_failures
        """
        while True:
            async with self._lock:
                index, key = self.current()
            try:
                result = await request(key)
            except openai.RateLimitError:
                async with self._lock:
                    self.record_quota_failure(index)
                continue
            async with self._lock:
                self.record_success(index)
            return result
