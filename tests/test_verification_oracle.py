import unittest
from types import SimpleNamespace

import httpx
import openai

from conduittools.ai.verification_oracle import (
    LLMVerificationOracle,
    LengthHeuristicOracle,
    parse_verification_output,
)
from conduittools.utilities.exceptions import OracleResponseError, OracleUnavailableError
from conduittools.utilities.key_rotation import CredentialRotator

APPROVED_REPLY = '{"approved": true, "confidence": 0.92, "reason": "The PR adds the toggle", "issues": []}'

def rate_limit_error() -> openai.RateLimitError:
    request = httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions")
    return openai.RateLimitError(
        "Rate limit reached",
        response=httpx.Response(429, request=request),
        body=None
    )

class FakeCompletions:
    def __init__(self, client):
        self.client = client

    async def create(self, **kwargs):
        self.client.requests.append(kwargs)
        outcome = self.client.outcomes.get(self.client.api_key, APPROVED_REPLY)
        if isinstance(outcome, Exception):
            raise outcome
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=outcome))])

class FakeClientFactory:
    """Stands in for AsyncOpenAI: one fake client per key, with scripted replies per key"""

    def __init__(self, outcomes=None):
        self.outcomes = outcomes or {}
        self.created = []
        self.requests = []

    def __call__(self, base_url=None, api_key=None):
        self.created.append((base_url, api_key))
        client = SimpleNamespace(api_key=api_key, outcomes=self.outcomes, requests=self.requests)
        client.chat = SimpleNamespace(completions=FakeCompletions(client))
        return client

class TestParseVerificationOutput(unittest.TestCase):
    def test_plain_json(self):
        result = parse_verification_output(APPROVED_REPLY)
        self.assertTrue(result.approved)
        self.assertAlmostEqual(result.confidence, 0.92)
        self.assertEqual(result.reason, "The PR adds the toggle")
        self.assertEqual(result.issues, [])

    def test_json_inside_code_fence_and_prose(self):
        raw = 'Here is my decision:\n```json\n{"approved": false, "reason": "No link", "issues": "missing link"}\n```'
        result = parse_verification_output(raw)
        self.assertFalse(result.approved)
        self.assertEqual(result.confidence, 0.0)
        self.assertEqual(result.issues, ["missing link"])

    def test_confidence_is_clamped(self):
        self.assertEqual(parse_verification_output('{"approved": true, "confidence": 1.7}').confidence, 1.0)
        self.assertEqual(parse_verification_output('{"approved": true, "confidence": -3}').confidence, 0.0)

    def test_unusable_output_raises(self):
        for raw in (None, '', 'I approve this proof', '{"approved": "yes"}', '{"confidence": 0.5}',
                    '{"approved": true, "confidence": "high"}', '{approved: true}'):
            with self.subTest(raw=raw):
                with self.assertRaises(OracleResponseError):
                    parse_verification_output(raw)

class TestLLMVerificationOracle(unittest.IsolatedAsyncioTestCase):
    async def test_verify_sends_condition_and_proof(self):
        factory = FakeClientFactory()
        oracle = LLMVerificationOracle(
            rotator=CredentialRotator(['key-a']),
            model='test/model',
            client_factory=factory
        )

        result = await oracle.verify("Add dark mode", "https://example.com/pr/1")

        self.assertTrue(result.approved)
        request = factory.requests[0]
        self.assertEqual(request['model'], 'test/model')
        self.assertEqual(request['temperature'], 0)
        self.assertEqual(request['extra_headers'], {"HTTP-Referer": "conduit.local"})
        user_message = request['messages'][1]['content']
        self.assertIn("Add dark mode", user_message)
        self.assertIn("https://example.com/pr/1", user_message)
        self.assertNotIn("REPLACEMENT_STRING", user_message)
        self.assertEqual(factory.created, [("https://openrouter.ai/api/v1", 'key-a')])

    async def test_rotates_to_next_key_on_quota_error(self):
        factory = FakeClientFactory({'key-a': rate_limit_error()})
        rotator = CredentialRotator(['key-a', 'key-b'])
        oracle = LLMVerificationOracle(rotator=rotator, client_factory=factory)

        result = await oracle.verify("Add dark mode", "https://example.com/pr/1")

        self.assertTrue(result.approved)
        self.assertEqual(rotator.failure_count(0), 1)
        self.assertEqual(rotator.failure_count(1), 0)
        self.assertEqual([key for _, key in factory.created], ['key-a', 'key-b'])

    async def test_all_keys_exhausted(self):
        factory = FakeClientFactory({'key-a': rate_limit_error(), 'key-b': rate_limit_error()})
        oracle = LLMVerificationOracle(rotator=CredentialRotator(['key-a', 'key-b'], max_failures=1), client_factory=factory)

        with self.assertRaises(OracleUnavailableError):
            await oracle.verify("Add dark mode", "https://example.com/pr/1")

    async def test_unparseable_reply_raises(self):
        factory = FakeClientFactory({'key-a': "Looks good to me!"})
        oracle = LLMVerificationOracle(rotator=CredentialRotator(['key-a']), client_factory=factory)

        with self.assertRaises(OracleResponseError):
            await oracle.verify("Add dark mode", "https://example.com/pr/1")

class TestLengthHeuristicOracle(unittest.IsolatedAsyncioTestCase):
    async def test_approves_only_proofs_longer_than_threshold(self):
        oracle = LengthHeuristicOracle()

        self.assertFalse((await oracle.verify("cond", "short")).approved)
        self.assertFalse((await oracle.verify("cond", "x" * 10)).approved)
        approved = await oracle.verify("cond", "x" * 11)
        self.assertTrue(approved.approved)
        self.assertEqual(approved.confidence, 1.0)

if __name__ == '__main__':
    unittest.main()
