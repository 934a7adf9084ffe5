"""
Completion Provider Interface
Abstract boundary to an external LLM. Concrete providers turn a PromptContext
into raw completion text; parsing and validation happen elsewhere.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class PromptContext:
    """Everything a provider needs for one call."""

    system: str
    user: str
    schema: Dict[str, Any]
    candidate_ids: List[str] = field(default_factory=list)
    strict: bool = False
    temperature: float = 0.4
    max_output_tokens: int = 2000

    @property
    def text(self) -> str:
        return f"{self.system}\n\n{self.user}"


@dataclass
class Completion:
    """Raw provider response, not yet trusted."""

    text: str
    model: str
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


class CompletionProvider(ABC):
    """
    An LLM endpoint.

    Implementations raise ProviderTimeoutError on timeouts and
    ProviderError (with ``transient`` set appropriately) on any other
    failure.
    """

    name: str = "provider"

    @abstractmethod
    async def complete(self, prompt: PromptContext) -> Completion:
        raise NotImplementedError

    async def close(self):
        """Release network resources."""
        return None


__all__ = ["PromptContext", "Completion", "CompletionProvider"]
