"""OpenAI-compatible client for product enhancement requests."""

import json
import logging
from typing import Optional

import openai
from openai import AsyncOpenAI

from automate_pos.agent.prompts import (
    BUSINESS_CATEGORIES_PROMPT,
    DEFAULT_BUSINESS_CATEGORIES,
    DEFAULT_CATEGORY,
    ENHANCE_PRODUCT_PROMPT,
    SYSTEM_PROMPT,
)
from automate_pos.config import Config
from automate_pos.sync.retry import RETRYABLE_STATUSES, RetryPolicy

logger = logging.getLogger(__name__)


def is_retryable_ai_error(error: BaseException) -> bool:
    """Rate limits, dropped connections, timeouts, 503 and 504 are transient."""
    if isinstance(error, (openai.RateLimitError, openai.APIConnectionError)):
        return True
    if isinstance(error, openai.APIStatusError):
        return error.status_code in RETRYABLE_STATUSES
    return False


class EnhancementClient:
    """Async AI calls, each wrapped in the shared retry policy."""

    def __init__(self, client: Optional[AsyncOpenAI] = None,
                 retry_policy: Optional[RetryPolicy] = None,
                 model: Optional[str] = None):
        self.model = model or Config.AI_MODEL
        if client is None and Config.AI_API_KEY:
            # Retries belong to our policy, not the SDK's
            client = AsyncOpenAI(
                base_url=Config.AI_BASE_URL,
                api_key=Config.AI_API_KEY,
                timeout=Config.AI_TIMEOUT,
                max_retries=0,
            )
        self.client = client
        policy = retry_policy or RetryPolicy.from_config()
        self.retry = policy.with_classifier(is_retryable_ai_error)

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    async def _complete_json(self, prompt: str) -> dict:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            response_format={"type": "json_object"},
        )
        content = response.choices[0].message.content or "{}"
        return json.loads(content)

    async def enhance_product_details(self, product_name: str) -> dict:
        """Suggested category and three marketing descriptions."""
        if not self.is_configured:
            return {"category": DEFAULT_CATEGORY, "descriptions": []}

        data = await self.retry.call(
            self._complete_json,
            ENHANCE_PRODUCT_PROMPT.format(product_name=product_name),
        )
        descriptions = data.get("descriptions") or []
        return {
            "category": str(data.get("category") or DEFAULT_CATEGORY),
            "descriptions": [str(d) for d in descriptions if d],
        }

    async def generate_business_categories(self, business_name: str,
                                           business_type: str) -> list[str]:
        if not self.is_configured:
            return list(DEFAULT_BUSINESS_CATEGORIES)

        data = await self.retry.call(
            self._complete_json,
            BUSINESS_CATEGORIES_PROMPT.format(
                business_name=business_name, business_type=business_type,
            ),
        )
        categories = [str(c) for c in data.get("categories") or [] if c]
        if not categories:
            logger.warning("AI returned no categories for %s", business_name)
            return list(DEFAULT_BUSINESS_CATEGORIES)
        return categories

    async def aclose(self):
        if self.client is not None:
            await self.client.close()
