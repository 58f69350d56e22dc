import logging
from typing import AsyncIterator, Sequence, Union

from common.contracts.models import AskResponse, ConversationTurn, StreamFrame
from common.llm import LLM
from answer_service.domain import PromptParts
from answer_service.entities import extract_entities
from answer_service.mapper import ContractMapper


logger = logging.getLogger(__name__)

STREAM_ERROR = "AI service error: the answer stream was interrupted"


class EmptyAnswerError(RuntimeError):
    pass


class AnswerStreamer:
    """Runs the model on an assembled prompt, buffered or streamed.

    Sources always come from `parts.articles`, the list the prompt was
    numbered from. Model failures are never retried here.
    """

    def __init__(self, llm: LLM, mapper: ContractMapper) -> None:
        self._llm = llm
        self._mapper = mapper

    async def answer(
        self,
        parts: PromptParts,
        history: Sequence[ConversationTurn],
        stream: bool,
        known_entities: Sequence[str] = (),
        trace_id: str = "",
    ) -> Union[AskResponse, AsyncIterator[StreamFrame]]:
        if stream:
            return self._stream(parts, history, known_entities, trace_id)
        return await self._buffered(parts, history, known_entities)

    async def _buffered(self, parts: PromptParts, history, known_entities) -> AskResponse:
        text = await self._llm.generate(parts.user_message, parts.system_instruction, list(history) or None)
        if not text:
            raise EmptyAnswerError("model returned an empty answer")
        return self._mapper.to_contract(text, parts.articles, extract_entities(text, known_entities))

    async def _stream(self, parts: PromptParts, history, known_entities, trace_id: str) -> AsyncIterator[StreamFrame]:
        sources = self._mapper.sources(parts.articles)
        chunks = []
        try:
            async for delta in self._llm.stream(parts.user_message, parts.system_instruction, list(history) or None):
                chunks.append(delta)
                yield StreamFrame(text=delta)
        except Exception:
            logger.exception("Answer stream failed", extra={"trace_id": trace_id, "frames_sent": len(chunks)})
            yield StreamFrame(error=STREAM_ERROR, done=True)
            return

        full_text = "".join(chunks)
        yield StreamFrame(
            done=True,
            full_text=full_text,
            sources=sources,
            entities=extract_entities(full_text, known_entities),
        )
