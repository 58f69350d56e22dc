import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence

import google.generativeai as genai

from common.config import AppSettings
from common.contracts.models import ConversationTurn
from common.errors import ConfigurationError


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroundingSource:
    uri: str
    title: str = ""


@dataclass(frozen=True)
class GroundedText:
    text: str
    sources: List[GroundingSource] = field(default_factory=list)


def grounding_sources(response: Any) -> List[GroundingSource]:
    """Web sources the search tool attached to the first candidate, in order."""
    candidates = list(getattr(response, "candidates", None) or [])
    if not candidates:
        return []
    meta = getattr(candidates[0], "grounding_metadata", None)
    if meta is None:
        return []

    out: List[GroundingSource] = []
    for key in ("grounding_chunks", "grounding_attributions"):
        for entry in getattr(meta, key, None) or []:
            web = getattr(entry, "web", None)
            uri = (getattr(web, "uri", "") or "").strip()
            title = (getattr(web, "title", "") or "").strip()
            if uri and title:
                out.append(GroundingSource(uri=uri, title=title))
    return out


class LLM(Protocol):
    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        history: Optional[Sequence[ConversationTurn]] = None,
    ) -> str: ...

    def stream(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        history: Optional[Sequence[ConversationTurn]] = None,
    ) -> AsyncIterator[str]: ...


class GeminiLLM:
    """Gemini backend. With history the call is a continuation of a chat
    session seeded with it, otherwise a single-shot generation."""

    def __init__(
        self,
        api_key: Optional[str],
        model_name: str,
        temperature: float,
        top_p: float,
        top_k: int,
        max_tokens: int,
        timeout_s: float,
        search_tool: Optional[str] = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("GEMINI_API_KEY is not set")

        genai.configure(api_key=api_key)
        self._model_name = model_name
        self._generation_config = genai.GenerationConfig(
            temperature=temperature,
            top_p=top_p,
            top_k=top_k,
            max_output_tokens=max_tokens,
        )
        self._request_options = {"timeout": timeout_s}
        self._search_tool = search_tool

    @staticmethod
    def _to_history(history: Sequence[ConversationTurn]) -> List[Dict[str, Any]]:
        out = []
        for t in history:
            parts = [p.text for p in t.parts if p.text.strip()]
            # Gemini rejects contents without parts
            if parts:
                out.append({"role": t.role, "parts": parts})
        return out

    def _model(self, system_instruction: Optional[str], tools: Optional[str] = None):
        return genai.GenerativeModel(
            self._model_name,
            system_instruction=system_instruction or None,
            generation_config=self._generation_config,
            tools=tools,
        )

    async def _send(self, prompt: str, system_instruction: Optional[str], history, stream: bool):
        model = self._model(system_instruction)
        turns = self._to_history(history or [])
        if turns:
            chat = model.start_chat(history=turns)
            return await chat.send_message_async(prompt, stream=stream, request_options=self._request_options)
        return await model.generate_content_async(prompt, stream=stream, request_options=self._request_options)

    async def search(self, prompt: str, system_instruction: Optional[str] = None) -> GroundedText:
        """Single-shot generation with the web search tool enabled."""
        if not self._search_tool:
            raise ConfigurationError("GEMINI_SEARCH_TOOL is not set")
        model = self._model(system_instruction, tools=self._search_tool)
        response = await model.generate_content_async(prompt, request_options=self._request_options)
        return GroundedText(text=(response.text or "").strip(), sources=grounding_sources(response))

    async def generate(self, prompt, system_instruction=None, history=None) -> str:
        response = await self._send(prompt, system_instruction, history, stream=False)
        return (response.text or "").strip()

    async def stream(self, prompt, system_instruction=None, history=None) -> AsyncIterator[str]:
        response = await self._send(prompt, system_instruction, history, stream=True)
        async for chunk in response:
            # trailing chunks may carry only a finish reason and no parts
            if not chunk.parts:
                continue
            if chunk.text:
                yield chunk.text


class LlamaCppLLM:
    def __init__(
        self,
        model_path: str,
        n_ctx: int,
        max_tokens: int,
        temperature: float,
        top_p: float,
        top_k: int,
        n_gpu_layers: int,
    ) -> None:
        try:
            from llama_cpp import Llama
        except ImportError as e:
            raise ConfigurationError("LLM_PROVIDER=llamacpp requires the 'llamacpp' extra") from e

        if not os.path.exists(model_path):
            raise ConfigurationError(f"LLM model file not found: {model_path}")

        self._max_tokens = max_tokens
        self._temperature = temperature
        self._top_p = top_p
        self._top_k = top_k

        # One Llama instance = one context; calls are serialized
        self._llm = Llama(
            model_path=model_path,
            n_ctx=n_ctx,
            n_gpu_layers=n_gpu_layers,
            verbose=False,
        )
        self._lock = asyncio.Lock()

    @staticmethod
    def _messages(prompt: str, system_instruction: Optional[str], history) -> List[Dict[str, str]]:
        messages = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        for turn in history or []:
            if not turn.text():
                continue
            role = "assistant" if turn.role == "model" else "user"
            messages.append({"role": role, "content": turn.text()})
        messages.append({"role": "user", "content": prompt})
        return messages

    def _complete(self, messages: List[Dict[str, str]], stream: bool):
        return self._llm.create_chat_completion(
            messages=messages,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            top_p=self._top_p,
            top_k=self._top_k,
            stream=stream,
        )

    async def generate(self, prompt, system_instruction=None, history=None) -> str:
        messages = self._messages(prompt, system_instruction, history)
        async with self._lock:
            out = await asyncio.to_thread(self._complete, messages, False)
        return (out["choices"][0]["message"]["content"] or "").strip()

    async def stream(self, prompt, system_instruction=None, history=None) -> AsyncIterator[str]:
        messages = self._messages(prompt, system_instruction, history)
        async with self._lock:
            chunks = await asyncio.to_thread(self._complete, messages, True)
            while True:
                chunk = await asyncio.to_thread(next, chunks, None)
                if chunk is None:
                    break
                delta = chunk["choices"][0].get("delta", {}).get("content")
                if delta:
                    yield delta


def build_llm(settings: AppSettings) -> LLM:
    provider = settings.llm_provider.strip().lower()
    if provider == "gemini":
        llm: LLM = GeminiLLM(
            api_key=settings.gemini_api_key,
            model_name=settings.gemini_model,
            temperature=settings.llm_temperature,
            top_p=settings.llm_top_p,
            top_k=settings.llm_top_k,
            max_tokens=settings.llm_max_tokens,
            timeout_s=settings.llm_timeout_s,
            search_tool=settings.gemini_search_tool,
        )
    elif provider == "llamacpp":
        llm = LlamaCppLLM(
            model_path=settings.llm_model_path,
            n_ctx=settings.llm_n_ctx,
            max_tokens=settings.llm_max_tokens,
            temperature=settings.llm_temperature,
            top_p=settings.llm_top_p,
            top_k=settings.llm_top_k,
            n_gpu_layers=settings.llm_n_gpu_layers,
        )
    else:
        raise ConfigurationError(f"Unknown LLM_PROVIDER: {settings.llm_provider}")

    logger.info("LLM backend ready", extra={"trace_id": "", "provider": provider})
    return llm
