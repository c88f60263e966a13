from typing import Optional, Dict, Any
import json
import re
import traceback
from openai import AsyncOpenAI
from loguru import logger
import conduittools.configuration.constants as global_constants
from conduittools.models.models import VerificationResult
from conduittools.prompts.verification import verification_system_prompt, verification_user_prompt
from conduittools.utilities.exceptions import OracleResponseError
from conduittools.utilities.key_rotation import CredentialRotator

JSON_OBJECT_PATTERN = re.compile(r'\{.*\}', re.DOTALL)

def parse_verification_output(raw_output: Optional[str]) -> VerificationResult:
    """
    Parse the model's reply into a VerificationResult.
    Tolerates prose or code fences around the JSON object.

    Raises:
        OracleResponseError: if no usable decision is present
    """
    if not raw_output:
        raise OracleResponseError(raw_output)

    match = JSON_OBJECT_PATTERN.search(raw_output)
    if match is None:
        raise OracleResponseError(raw_output)
    try:
        payload: Dict[str, Any] = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise OracleResponseError(raw_output) from e

    approved = payload.get('approved')
    if not isinstance(approved, bool):
        raise OracleResponseError(raw_output)

    try:
        confidence = float(payload.get('confidence', 1.0 if approved else 0.0))
    except (TypeError, ValueError) as e:
        raise OracleResponseError(raw_output) from e

    issues = payload.get('issues') or []
    if not isinstance(issues, list):
        issues = [str(issues)]

    return VerificationResult(
        approved=approved,
        confidence=confidence,
        reason=str(payload.get('reason', '')),
        issues=[str(issue) for issue in issues]
    )

class LLMVerificationOracle:
    """
    Verification oracle backed by an OpenAI-compatible chat completion API
    (OpenRouter by default), rotating across API keys when quotas run out.
    """

    def __init__(
            self,
            rotator: CredentialRotator,
            model: str = global_constants.DEFAULT_OPENROUTER_MODEL,
            base_url: Optional[str] = global_constants.OPENROUTER_BASE_URL,
            http_referer: str = "conduit.local",
            max_tokens: int = global_constants.ORACLE_MAX_TOKENS,
            client_factory=AsyncOpenAI
        ):
        self.rotator = rotator
        self.model = model
        self.base_url = base_url
        self.http_referer = http_referer
        self.max_tokens = max_tokens
        self._client_factory = client_factory
        self._clients: Dict[str, Any] = {}

    def _client_for(self, api_key: str):
        if api_key not in self._clients:
            self._clients[api_key] = self._client_factory(base_url=self.base_url, api_key=api_key)
        return self._clients[api_key]

    def _prepare_headers(self) -> Dict[str, str]:
        """Prepare headers required for OpenRouter API"""
        return {"HTTP-Referer": self.http_referer}

    @staticmethod
    def build_messages(condition_text: str, proof_content: str) -> list[dict]:
        user_prompt = verification_user_prompt.replace(
            '___CONDITION_REPLACEMENT_STRING___', condition_text
        ).replace(
            '___PROOF_REPLACEMENT_STRING___', proof_content
        )
        return [
            {"role": "system", "content": verification_system_prompt},
            {"role": "user", "content": user_prompt}
        ]

    async def verify(self, condition_text: str, proof_content: str) -> VerificationResult:
        messages = self.build_messages(condition_text, proof_content)

        async def request(api_key: str) -> str:
            completion = await self._client_for(api_key).chat.completions.create(
                extra_headers=self._prepare_headers(),
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=0
            )
            return completion.choices[0].message.content

        try:
            raw_output = await self.rotator.call(request)
        except Exception as e:
            logger.error(f"LLMVerificationOracle.verify: Completion failed: {e}")
            logger.error(traceback.format_exc())
            raise

        logger.debug(f"LLMVerificationOracle.verify: Raw output: {raw_output!r:.300}")
        result = parse_verification_output(raw_output)
        logger.info(
            f"LLMVerificationOracle.verify: {'approved' if result.approved else 'rejected'} "
            f"(confidence={result.confidence:.2f}): {result.reason}"
        )
        return result

class LengthHeuristicOracle:
    """Fallback oracle used when no API key is configured: approves any sufficiently long proof"""

    def __init__(self, min_length: int = global_constants.HEURISTIC_MIN_PROOF_LENGTH):
        self.min_length = min_length

    async def verify(self, condition_text: str, proof_content: str) -> VerificationResult:
        approved = len(proof_content or '') > self.min_length
        logger.debug(f"LengthHeuristicOracle.verify: Proof length {len(proof_content or '')}, approved={approved}")
        return VerificationResult(
            approved=approved,
            confidence=1.0 if approved else 0.0,
            reason=(
                f"Proof is longer than {self.min_length} characters" if approved
                else f"Proof is not longer than {self.min_length} characters"
            )
        )
