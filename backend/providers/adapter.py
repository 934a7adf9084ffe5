"""
Completion Provider Adapter - Production Ready
Drives a CompletionProvider through one generation: constrained prompt,
bounded retries with exponential backoff, and a stricter regeneration pass
when the model keeps returning output that does not parse as a plan.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional, Sequence

from core.logging import get_logger, get_provider_logger
from core.exceptions import ProviderError, ProviderTimeoutError, SchemaViolationError
from catalog.models import CatalogItem
from providers.base import Completion, CompletionProvider, PromptContext
from providers.output import OutputParseError, RawModelOutput, parse_model_output
from providers.prompts import build_prompt
from schemas.generation import GenerationRequest
from utils.cost_calculator import CostCalculator

# Initialize logger
logger = get_logger("provider")
provider_logger = get_provider_logger()

# Failure classes for the retry loop
FAILURE_TIMEOUT = "timeout"
FAILURE_TRANSIENT = "transient"
FAILURE_SCHEMA = "schema"


class CompletionProviderAdapter:
    """
    Retrying front end to a completion provider.

    Features:
    - Explicit attempt counter (1 + max_retries per pass)
    - Per-call wall clock budget via asyncio.wait_for
    - Exponential backoff between attempts
    - Non-transient provider errors are raised immediately
    - One stricter pass (fewer candidates, error feedback) after repeated
      schema violations
    - Token and cost accounting across every attempt
    """

    def __init__(
        self,
        provider: CompletionProvider,
        provider_config,
        generation_config,
        cost_calculator: Optional[CostCalculator] = None
    ):
        self.provider = provider
        self.provider_config = provider_config
        self.generation_config = generation_config
        self.cost_calculator = cost_calculator or CostCalculator(
            prompt_cost_per_1k=provider_config.prompt_cost_per_1k,
            completion_cost_per_1k=provider_config.completion_cost_per_1k
        )

        self.stats = {
            "generations": 0,
            "calls": 0,
            "retries": 0,
            "timeouts": 0,
            "transient_errors": 0,
            "schema_violations": 0,
            "strict_passes": 0,
            "failures": 0
        }

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def generate(
        self,
        request: GenerationRequest,
        candidates: Sequence[CatalogItem],
        entries: Optional[int] = None
    ) -> RawModelOutput:
        """
        Produce raw model output for a request.

        Raises:
            ProviderTimeoutError: Last attempt timed out
            ProviderError: Non-transient failure, or transient failures
                outlasted the retry budget
            SchemaViolationError: Output stayed unparsable after the
                stricter pass
        """
        self.stats["generations"] += 1
        entries = entries or self.generation_config.default_entries
        usage = {"prompt_tokens": 0, "completion_tokens": 0, "cost_usd": 0.0}

        prompt = self._prompt(request, candidates, entries)
        output, failure, last_error, errors, attempts = await self._run_pass(prompt, usage, start_attempt=1)
        if output is not None:
            return self._finish(output, usage, attempts, strict=False)

        if failure != FAILURE_SCHEMA:
            self.stats["failures"] += 1
            raise last_error

        # Stricter regeneration pass
        self.stats["strict_passes"] += 1
        logger.warning(
            "provider_escalating_to_strict_pass",
            attempts=attempts,
            errors=errors
        )

        strict_prompt = self._prompt(
            request,
            list(candidates)[:self.generation_config.strict_candidates],
            entries,
            feedback=errors,
            strict=True
        )
        output, failure, last_error, strict_errors, total_attempts = await self._run_pass(
            strict_prompt, usage, start_attempt=attempts + 1, max_attempts=1
        )
        if output is not None:
            return self._finish(output, usage, total_attempts, strict=True)

        self.stats["failures"] += 1
        if failure != FAILURE_SCHEMA:
            raise last_error

        raise SchemaViolationError(attempts=total_attempts, last_error=strict_errors[-1])

    def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, **self.cost_calculator.get_stats()}

    # ========================================================================
    # RETRY LOOP
    # ========================================================================

    async def _run_pass(
        self,
        prompt: PromptContext,
        usage: Dict[str, Any],
        start_attempt: int,
        max_attempts: Optional[int] = None
    ):
        """
        Run one bounded pass of attempts.

        Returns (output, failure_kind, last_error, parse_errors, last_attempt).
        """
        max_attempts = max_attempts or (1 + self.provider_config.max_retries)
        failure = None
        last_error: Optional[Exception] = None
        errors: List[str] = []
        attempt = start_attempt - 1

        for n in range(max_attempts):
            attempt = start_attempt + n
            if n > 0:
                self.stats["retries"] += 1
                await self._backoff(n)

            start_time = time.time()
            try:
                completion = await self._call(prompt)
                self._account(prompt, completion, usage)
                output = parse_model_output(completion.text)
            except ProviderTimeoutError as e:
                self.stats["timeouts"] += 1
                failure, last_error = FAILURE_TIMEOUT, e
                self._log_attempt(prompt, attempt, start_time, error="timeout")
                continue
            except ProviderError as e:
                self._log_attempt(prompt, attempt, start_time, error=e.detail)
                if not e.transient:
                    self.stats["failures"] += 1
                    raise
                self.stats["transient_errors"] += 1
                failure, last_error = FAILURE_TRANSIENT, e
                continue
            except OutputParseError as e:
                self.stats["schema_violations"] += 1
                failure, last_error = FAILURE_SCHEMA, e
                errors.append(str(e))
                self._log_attempt(prompt, attempt, start_time, error=f"unparsable output: {e}")
                continue

            output.model = completion.model
            self._log_attempt(prompt, attempt, start_time, completion=completion)
            return output, None, None, errors, attempt

        return None, failure, last_error, errors, attempt

    async def _call(self, prompt: PromptContext) -> Completion:
        self.stats["calls"] += 1
        timeout = self.provider_config.timeout_seconds
        try:
            return await asyncio.wait_for(self.provider.complete(prompt), timeout=timeout)
        except asyncio.TimeoutError:
            raise ProviderTimeoutError(timeout_seconds=timeout)

    async def _backoff(self, retry: int):
        delay = self.provider_config.retry_backoff_seconds * (
            self.provider_config.retry_backoff_factor ** (retry - 1)
        )
        if delay > 0:
            await asyncio.sleep(delay)

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _prompt(self, request, candidates, entries, feedback=None, strict=False) -> PromptContext:
        return build_prompt(
            request,
            candidates,
            entries=entries,
            max_prompt_tokens=self.generation_config.max_prompt_tokens,
            feedback=feedback,
            strict=strict,
            temperature=self.provider_config.temperature,
            max_output_tokens=self.provider_config.max_output_tokens
        )

    def _account(self, prompt: PromptContext, completion: Completion, usage: Dict[str, Any]):
        accounted = self.cost_calculator.account(
            prompt.text,
            completion.text,
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens
        )
        usage["prompt_tokens"] += accounted["prompt_tokens"]
        usage["completion_tokens"] += accounted["completion_tokens"]
        usage["cost_usd"] += accounted["cost_usd"]

    def _finish(self, output: RawModelOutput, usage: Dict[str, Any], attempts: int, strict: bool) -> RawModelOutput:
        output.prompt_tokens = usage["prompt_tokens"]
        output.completion_tokens = usage["completion_tokens"]
        output.cost_usd = round(usage["cost_usd"], 6)
        output.attempts = attempts
        output.strict = strict
        return output

    def _log_attempt(self, prompt: PromptContext, attempt: int, start_time: float,
                     completion: Optional[Completion] = None, error: Optional[str] = None):
        provider_logger.log_completion(
            model=completion.model if completion else getattr(self.provider, "model", self.provider.name),
            attempt=attempt,
            latency_ms=(time.time() - start_time) * 1000,
            prompt_tokens=completion.prompt_tokens if completion else None,
            completion_tokens=completion.completion_tokens if completion else None,
            success=error is None,
            error=error,
            strict=prompt.strict
        )


__all__ = ["CompletionProviderAdapter"]
