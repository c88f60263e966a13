import unittest

import httpx
import openai

from conduittools.utilities.exceptions import OracleUnavailableError
from conduittools.utilities.key_rotation import CredentialRotator

def rate_limit_error() -> openai.RateLimitError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return openai.RateLimitError("quota exceeded", response=httpx.Response(429, request=request), body=None)

class StubCredentialManager:
    def __init__(self, credentials):
        self.credentials = credentials

    def list_credentials(self, prefix=None):
        return sorted(key for key in self.credentials if not prefix or key.startswith(prefix))

    def get_credential(self, credential_key):
        return self.credentials.get(credential_key)

class TestCredentialRotator(unittest.TestCase):
    def test_requires_keys(self):
        with self.assertRaises(ValueError):
            CredentialRotator([])
        with self.assertRaises(ValueError):
            CredentialRotator(['', None])
        with self.assertRaises(ValueError):
            CredentialRotator(['key-a'], max_failures=0)

    def test_quota_failures_advance_rotation(self):
        rotator = CredentialRotator(['key-a', 'key-b', 'key-c'], max_failures=2)
        self.assertEqual(rotator.current(), (0, 'key-a'))

        rotator.record_quota_failure(0)
        self.assertEqual(rotator.current(), (1, 'key-b'))

        rotator.record_quota_failure(1)
        rotator.record_quota_failure(2)
        self.assertEqual(rotator.current(), (0, 'key-a'))
        self.assertEqual(rotator.available_count, 3)

        rotator.record_quota_failure(0)
        self.assertEqual(rotator.available_count, 2)
        self.assertEqual(rotator.current(), (1, 'key-b'))

    def test_success_resets_failures(self):
        rotator = CredentialRotator(['key-a'], max_failures=3)
        rotator.record_quota_failure(0)
        rotator.record_quota_failure(0)
        rotator.record_success(0)
        self.assertEqual(rotator.failure_count(0), 0)

    def test_exhausted_rotator_raises(self):
        rotator = CredentialRotator(['key-a', 'key-b'], max_failures=1)
        rotator.record_quota_failure(0)
        rotator.record_quota_failure(1)

        self.assertEqual(rotator.available_count, 0)
        with self.assertRaises(OracleUnavailableError):
            rotator.current()

    def test_from_credentials_uses_prefix(self):
        credentials = StubCredentialManager({
            'oracle_api_key_2': 'sk-two',
            'oracle_api_key_1': 'sk-one',
            'conduitnode_postgresconnstring': 'postgresql://localhost/conduit',
        })
        rotator = CredentialRotator.from_credentials(credentials, 'oracle_api_key_')

        self.assertEqual(len(rotator), 2)
        self.assertEqual(rotator.keys, ['sk-one', 'sk-two'])

class TestCredentialRotatorCall(unittest.IsolatedAsyncioTestCase):
    async def test_call_retries_on_quota_errors_only(self):
        rotator = CredentialRotator(['key-a', 'key-b'])
        attempts = []

        async def request(key):
            attempts.append(key)
            if key == 'key-a':
                raise rate_limit_error()
            return f"answer from {key}"

        self.assertEqual(await rotator.call(request), "answer from key-b")
        self.assertEqual(attempts, ['key-a', 'key-b'])

    async def test_other_errors_propagate_without_rotation(self):
        rotator = CredentialRotator(['key-a', 'key-b'])

        async def request(key):
            raise openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1"))

        with self.assertRaises(openai.APIConnectionError):
            await rotator.call(request)
        self.assertEqual(rotator.failure_count(0), 0)
        self.assertEqual(rotator.current(), (0, 'key-a'))

    async def test_call_gives_up_when_every_key_is_exhausted(self):
        rotator = CredentialRotator(['key-a', 'key-b'], max_failures=2)
        attempts = []

        async def request(key):
            attempts.append(key)
            raise rate_limit_error()

        with self.assertRaises(OracleUnavailableError):
            await rotator.call(request)
        self.assertEqual(len(attempts), 4)

if __name__ == '__main__':
    unittest.main()
