"""
OpenAI-backed inference service.

Implements the InferenceService interface used by budget-gated enrichment.
Each call is priced with the fixed pricing table; OpenAI errors are mapped
onto the monitor's error taxonomy so the retry policy can classify them.
"""

from typing import Any, Optional

import openai
from openai import OpenAI
from structlog import get_logger

from ..core.errors import DeadlineExceededError, PermanentInfrastructureError, TransientInfrastructureError
from ..core.interfaces import InferenceResponse
from ..core.pricing import PRICING_TABLE, calculate_cost
from ..core.token_counter import TokenUsage

logger = get_logger(__name__)

SYSTEM_PROMPT = (
    "You are a cloud cost analyst. Answer only with the JSON object requested by the user."
)

_TRANSIENT_ERRORS = (openai.RateLimitError, openai.InternalServerError, openai.APIConnectionError)
_PERMANENT_ERRORS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.BadRequestError,
    openai.NotFoundError,
)


class OpenAIInferenceService:
    """InferenceService over OpenAI chat completions.

    Failures are loud: every OpenAI error is re-raised as a monitor error
    with the original attached as its cause.
    """

    def __init__(self, model: str, client: Optional[Any] = None, retry_on_timeout: bool = True):
        """Initialize the service.

        Args:
            model: OpenAI model name; must be in the pricing table
            client: Pre-built OpenAI client (defaults to OpenAI())
            retry_on_timeout: Whether a request timeout may be retried

        Raises:
            ValueError: If model is missing/empty or has no pricing
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if not PRICING_TABLE.supports(model):
            raise ValueError(f"Unsupported model: {model}")

        self.model = model
        self.retry_on_timeout = retry_on_timeout
        self.client = client or OpenAI()

    def invoke(
        self,
        prompt: str,
        max_tokens: int,
        temperature: float,
        timeout: Optional[float] = None,
    ) -> InferenceResponse:
        """Run one chat completion for `prompt`.

        Args:
            prompt: User prompt (required)
            max_tokens: Completion token cap
            temperature: Sampling temperature
            timeout: Request deadline in seconds

        Returns:
            InferenceResponse with the completion text, its cost and tokens

        Raises:
            ValueError: If prompt is empty
            DeadlineExceededError: If the request timed out
            TransientInfrastructureError: On throttling, connection or 5xx errors
            PermanentInfrastructureError: On auth, bad request or not-found errors
        """
        if not prompt:
            raise ValueError("prompt is required and cannot be empty")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=max_tokens,
                temperature=temperature,
                timeout=timeout,
            )
        except openai.APITimeoutError as e:
            raise DeadlineExceededError(
                f"Inference request timed out after {timeout}s",
                retry_on_expiry=self.retry_on_timeout,
                context={"model": self.model},
            ) from e
        except _TRANSIENT_ERRORS as e:
            raise TransientInfrastructureError(
                f"Inference request failed: {e}",
                context={"model": self.model, "status_code": getattr(e, "status_code", None)},
            ) from e
        except _PERMANENT_ERRORS as e:
            raise PermanentInfrastructureError(
                f"Inference request rejected: {e}",
                context={"model": self.model, "status_code": getattr(e, "status_code", None)},
            ) from e

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""

        usage = response.usage
        if usage:
            token_usage = TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
            )
        else:
            token_usage = TokenUsage.from_text(SYSTEM_PROMPT + prompt, text)

        cost = calculate_cost(self.model, token_usage)
        logger.debug(
            "Inference call completed",
            model=self.model,
            tokens=token_usage.total_tokens,
            cost=str(cost),
            request_id=getattr(response, "id", None),
        )
        return InferenceResponse(text=text, estimated_cost=cost, tokens_used=token_usage.total_tokens)
