"""
Shared LLM helper for the generative stages.

Used by:
  - semantic_enricher.py  (Step 3)
  - answer_key.py         (Step 4, both passes)
  - image_classifier.py   (Step 5, vision fallback)

Groq exposes an OpenAI-compatible API, so the official AsyncOpenAI client is
pointed at it via base_url.

Contract: generate() returns a validated pydantic object or None.
None means "no usable output" (empty reply, no JSON, schema mismatch) and
every caller has an explicit fallback for it. Transport errors are retried a
bounded number of times and then raised as LLMError.
"""

import asyncio
import json
import logging
import os
import re
from typing import Optional, Type, TypeVar

from dotenv import load_dotenv
from openai import (
    APIConnectionError,
    APITimeoutError,
    AsyncOpenAI,
    BadRequestError,
    InternalServerError,
    RateLimitError,
)
from pydantic import BaseModel, ValidationError

load_dotenv()

log = logging.getLogger(__name__)

# ── Model config ───────────────────────────────────────────────────────────────
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://api.groq.com/openai/v1")
ENRICHMENT_MODEL = os.getenv("ENRICHMENT_MODEL", "openai/gpt-oss-120b")
ANSWER_KEY_MODEL = os.getenv("ANSWER_KEY_MODEL", "moonshotai/kimi-k2-instruct-0905")
VISION_MODEL = os.getenv("VISION_MODEL", "meta-llama/llama-4-maverick-17b-128e-instruct")
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "3"))
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "8192"))

TRANSIENT_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError, InternalServerError)

DEFAULT_SYSTEM = "You are a precise document analysis assistant. Output only JSON."

T = TypeVar("T", bound=BaseModel)


class LLMError(Exception):
    """LLM call failed after exhausting the retry budget."""


def _extract_json_obj(raw: str) -> dict:
    raw = raw.strip()
    raw = re.sub(r"^```(?:json)?\s*", "", raw, flags=re.MULTILINE)
    raw = re.sub(r"\s*```$", "", raw, flags=re.MULTILINE)
    start = raw.find("{")
    end = raw.rfind("}") + 1
    if start == -1 or end == 0:
        raise ValueError(f"No JSON object found: {raw[:200]}")
    return json.loads(raw[start:end])


def _schema_instruction(schema: Type[BaseModel]) -> str:
    return (
        "\n\nRespond with a single JSON object that conforms to this JSON schema:\n"
        + json.dumps(schema.model_json_schema(), ensure_ascii=False)
    )


class LLMClient:
    """
    Schema-constrained generation over an OpenAI-compatible endpoint.
    The underlying client is created lazily so tests and imports need no key.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = LLM_BASE_URL,
        max_retries: int = LLM_MAX_RETRIES,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.max_retries = max(1, max_retries)
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = self.api_key or os.getenv("GROQ_API_KEY")
            if not api_key:
                raise RuntimeError(
                    "GROQ_API_KEY is not set. Add it to your .env file."
                )
            # retries are handled here, not inside the SDK
            self._client = AsyncOpenAI(api_key=api_key, base_url=self.base_url, max_retries=0)
        return self._client

    async def generate(
        self,
        prompt: str,
        schema: Type[T],
        system: Optional[str] = None,
        model: str = ENRICHMENT_MODEL,
        image_data_url: Optional[str] = None,
        temperature: float = 0.1,
    ) -> Optional[T]:
        """
        One schema-constrained call.

        Args:
            prompt:         User-turn instruction
            schema:         Pydantic model the reply must validate against
            system:         System prompt
            model:          Model id on the provider
            image_data_url: Optional 'data:<mime>;base64,...' image for vision models
            temperature:    Sampling temperature

        Returns:
            schema instance, or None when the reply is unusable
        """
        client = self._get_client()
        user_text = prompt + _schema_instruction(schema)
        if image_data_url:
            user_content = [
                {"type": "text", "text": user_text},
                {"type": "image_url", "image_url": {"url": image_data_url}},
            ]
        else:
            user_content = user_text

        messages = [
            {"role": "system", "content": system or DEFAULT_SYSTEM},
            {"role": "user", "content": user_content},
        ]

        content = None
        for attempt in range(self.max_retries):
            try:
                response = await client.chat.completions.create(
                    model=model,
                    messages=messages,
                    temperature=temperature,
                    max_tokens=LLM_MAX_TOKENS,
                    response_format={"type": "json_object"},
                )
                content = response.choices[0].message.content if response.choices else None
                break
            except BadRequestError as e:
                # provider-side JSON validation failure counts as no output
                log.warning("LLM %s rejected request for %s: %s", model, schema.__name__, e)
                return None
            except TRANSIENT_ERRORS as e:
                if attempt < self.max_retries - 1:
                    log.warning("LLM %s attempt %s/%s failed: %s", model, attempt + 1, self.max_retries, e)
                    await asyncio.sleep(1.0 * (attempt + 1))
                else:
                    raise LLMError(f"{model} failed after {self.max_retries} attempts: {e}") from e

        if not content or not content.strip():
            log.warning("LLM %s returned empty output for %s", model, schema.__name__)
            return None

        try:
            return schema.model_validate(_extract_json_obj(content))
        except (ValueError, ValidationError) as e:
            log.warning("LLM %s output did not match %s: %s", model, schema.__name__, str(e)[:300])
            return None


# Lazy singleton
_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    global _client
    if _client is None:
        _client = LLMClient()
    return _client
