"""
LLM client abstraction supporting OpenAI and Anthropic.
Returns completion text together with the provider's token accounting.
"""

from dataclasses import dataclass
from typing import Optional
from enum import Enum

from openai import AsyncOpenAI
from anthropic import AsyncAnthropic

from ragchat.shared.config import settings
from ragchat.shared.exceptions import GenerationError


SYSTEM_PROMPT = """You are an intelligent assistant for a retail company.
You are designed to provide helpful answers to user questions about products, customers and sales orders.
Only answer questions related to the information provided below, which is a list of records in JSON format.
If you are asked a question that is not in the list, respond with "I don't know."

List of records:"""

SUMMARIZE_PROMPT = """Summarize this prompt in one or two words to use as a label in a button on a web page.
Do not use any punctuation."""


class LLMProvider(str, Enum):
    """Supported LLM providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


@dataclass
class Completion:
    """Completion text and token usage for one generation call."""
    text: str
    prompt_tokens: int
    completion_tokens: int


class LLMClient:
    """Unified LLM client supporting multiple providers."""

    def __init__(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None
    ):
        self.provider = provider or settings.llm.provider
        self.model = model or settings.llm.completion_model
        self.summarize_model = settings.llm.summarize_model
        self.temperature = temperature if temperature is not None else settings.llm.temperature
        self.max_tokens = max_tokens or settings.llm.max_response_tokens

        if self.provider == LLMProvider.OPENAI:
            api_key = api_key or settings.llm.openai_api_key
            if not api_key:
                raise GenerationError("OpenAI API key not configured")
            self.client = AsyncOpenAI(api_key=api_key, base_url=settings.llm.base_url)
        elif self.provider == LLMProvider.ANTHROPIC:
            api_key = api_key or settings.llm.anthropic_api_key
            if not api_key:
                raise GenerationError("Anthropic API key not configured")
            self.client = AsyncAnthropic(api_key=api_key)
        else:
            raise GenerationError(f"Unsupported provider: {self.provider}")

    async def complete(
        self,
        system_context: str,
        conversation_and_prompt: str,
        session_id: Optional[str] = None
    ) -> Completion:
        """
        Generate a grounded completion.

        Args:
            system_context: Retrieved documents, appended to the system prompt
            conversation_and_prompt: Conversation window followed by the user prompt
            session_id: Passed to the provider as the end-user id where supported

        Returns:
            Completion with text, prompt tokens and completion tokens
        """
        system_prompt = SYSTEM_PROMPT + "\n" + system_context
        try:
            return await self._create(
                system_prompt=system_prompt,
                prompt=conversation_and_prompt,
                model=self.model,
                max_tokens=self.max_tokens,
                user=session_id
            )
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"LLM completion failed: {str(e)}") from e

    async def summarize(self, prompt: str, session_id: Optional[str] = None) -> str:
        """Produce a one or two word label for a conversation."""
        try:
            completion = await self._create(
                system_prompt=SUMMARIZE_PROMPT,
                prompt=prompt,
                model=self.summarize_model,
                max_tokens=200,
                user=session_id
            )
        except GenerationError:
            raise
        except Exception as e:
            raise GenerationError(f"LLM summarize failed: {str(e)}") from e
        return completion.text.strip()

    async def _create(
        self,
        system_prompt: str,
        prompt: str,
        model: str,
        max_tokens: int,
        user: Optional[str]
    ) -> Completion:
        if self.provider == LLMProvider.OPENAI:
            return await self._openai_completion(system_prompt, prompt, model, max_tokens, user)
        return await self._anthropic_completion(system_prompt, prompt, model, max_tokens)

    async def _openai_completion(
        self,
        system_prompt: str,
        prompt: str,
        model: str,
        max_tokens: int,
        user: Optional[str]
    ) -> Completion:
        """OpenAI-specific completion."""
        completion_kwargs = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": max_tokens,
        }
        if user:
            completion_kwargs["user"] = user

        response = await self.client.chat.completions.create(**completion_kwargs)
        usage = response.usage
        return Completion(
            text=response.choices[0].message.content or "",
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
        )

    async def _anthropic_completion(
        self,
        system_prompt: str,
        prompt: str,
        model: str,
        max_tokens: int
    ) -> Completion:
        """Anthropic-specific completion."""
        # Anthropic uses system parameter, not system message
        response = await self.client.messages.create(
            model=model,
            max_tokens=max_tokens,
            temperature=self.temperature,
            system=system_prompt,
            messages=[{"role": "user", "content": prompt}],
        )
        return Completion(
            text=response.content[0].text,
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
        )
