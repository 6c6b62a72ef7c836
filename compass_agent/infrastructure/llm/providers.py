"""
Chat completion and embedding providers.

Any OpenAI-compatible endpoint works (DeepSeek by default). Without an API
key the service streams a canned demo answer so the chat surface stays
usable end to end.
"""

import asyncio
from typing import AsyncIterator, List, Optional, Sequence

import structlog
from langchain_core.messages import BaseMessage
from langchain_openai import ChatOpenAI, OpenAIEmbeddings

from compass_agent.domain.interfaces import CompletionProvider, EmbeddingProvider

logger = structlog.get_logger(__name__)


DEMO_RESPONSE = (
    "I'm running in demo mode without a language model, so I can't compose a full answer. "
    "Your question and the information I found for it have been recorded in this conversation."
)


class OpenAICompatibleChatProvider(CompletionProvider):
    """Streams deltas from a ChatOpenAI model"""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000
    ):
        self.llm = ChatOpenAI(
            api_key=api_key,
            model=model,
            base_url=base_url,
            temperature=temperature,
            max_tokens=max_tokens,
            streaming=True,
        )
        self.model = model

    async def stream_chat(self, messages: Sequence[BaseMessage]) -> AsyncIterator[str]:
        async for chunk in self.llm.astream(list(messages)):
            content = chunk.content
            if isinstance(content, str) and content:
                yield content


class DemoCompletionProvider(CompletionProvider):
    """Streams a fixed answer word by word"""

    def __init__(self, response: str = DEMO_RESPONSE, delay: float = 0.0):
        self.response = response
        self.delay = delay

    async def stream_chat(self, messages: Sequence[BaseMessage]) -> AsyncIterator[str]:
        words = self.response.split(" ")
        for index, word in enumerate(words):
            if self.delay:
                await asyncio.sleep(self.delay)
            yield word if index == len(words) - 1 else word + " "


class OpenAIEmbeddingProvider(EmbeddingProvider):

    def __init__(self, api_key: str, model: str = "text-embedding-3-small", base_url: Optional[str] = None):
        self.embeddings = OpenAIEmbeddings(api_key=api_key, model=model, base_url=base_url)

    async def embed(self, text: str) -> List[float]:
        return await self.embeddings.aembed_query(text)


def build_completion_provider(
    api_key: Optional[str],
    model: str,
    base_url: Optional[str] = None,
    temperature: float = 0.7,
    max_tokens: int = 1000
) -> CompletionProvider:
    if not api_key:
        logger.warning("LLM_API_KEY not set, streaming demo responses")
        return DemoCompletionProvider()
    return OpenAICompatibleChatProvider(
        api_key=api_key,
        model=model,
        base_url=base_url,
        temperature=temperature,
        max_tokens=max_tokens,
    )
