import logging
from typing import Any, AsyncIterator, Dict, Optional, Union

from pydantic import ValidationError

from common.contracts.models import AskRequest, ErrorReply, StreamFrame
from answer_service.mapper import DocumentAdapter
from answer_service.news_cache import NewsCache
from answer_service.prompt_builder import PromptBuilder
from answer_service.ranker import RelevanceRanker
from answer_service.streamer import AnswerStreamer


logger = logging.getLogger(__name__)


def validation_detail(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}" for err in e.errors()
    )


class AnswerService:
    def __init__(
        self,
        ranker: RelevanceRanker,
        prompt_builder: PromptBuilder,
        streamer: Optional[AnswerStreamer],
        news_cache: Optional[NewsCache] = None,
        config_error: Optional[str] = None,
        adapter: Optional[DocumentAdapter] = None,
    ) -> None:
        self._ranker = ranker
        self._prompt_builder = prompt_builder
        self._streamer = streamer
        self._news_cache = news_cache
        self._config_error = config_error
        self._adapter = adapter or DocumentAdapter()

    @staticmethod
    async def _to_wire(frames: AsyncIterator[StreamFrame]) -> AsyncIterator[Dict[str, Any]]:
        async for frame in frames:
            yield frame.to_wire()

    async def ask(self, payload: Dict[str, Any], trace_id: str = "") -> Union[Dict[str, Any], AsyncIterator[Dict[str, Any]]]:
        """Answer one question.

        Payload contract:
          {"question": "...", "newsData": {category: [article]}, "opinions": [...],
           "conversationHistory": [...], "previousEntities": [...], "stream": false}

        Returns a reply dict, or an async iterator of stream frames when
        `stream` is true.
        """
        try:
            req = AskRequest.model_validate(payload)
        except ValidationError as e:
            detail = validation_detail(e)
            logger.warning("Validation error", extra={"trace_id": trace_id, "err": detail})
            return ErrorReply(error=f"Invalid request: {detail}", code="invalid_request").model_dump()

        if self._streamer is None:
            logger.error("Answering is not configured", extra={"trace_id": trace_id, "err": self._config_error})
            return ErrorReply(
                error=f"AI service is not configured: {self._config_error or 'no model backend'}",
                code="configuration_error",
            ).model_dump()

        corpus = self._adapter.articles(req.news_data)
        if not any(corpus.values()) and self._news_cache is not None:
            corpus = await self._news_cache.corpus()

        ranked = self._ranker.rank(req.question, corpus)
        parts = self._prompt_builder.build(
            req.question,
            ranked,
            req.opinions,
            req.conversation_history,
            req.previous_entities,
        )
        logger.info(
            "Context assembled",
            extra={
                "trace_id": trace_id,
                "categories": len(corpus),
                "articles": len(parts.articles),
                "opinions": len(parts.opinions),
                "history_turns": len(req.conversation_history),
                "stream": req.stream,
            },
        )

        if req.stream:
            frames = await self._streamer.answer(
                parts, req.conversation_history, stream=True, known_entities=req.previous_entities, trace_id=trace_id
            )
            return self._to_wire(frames)

        try:
            resp = await self._streamer.answer(
                parts, req.conversation_history, stream=False, known_entities=req.previous_entities, trace_id=trace_id
            )
        except Exception:
            logger.exception("Answer generation failed", extra={"trace_id": trace_id})
            return ErrorReply(error="AI service error: no answer could be generated", code="service_error").model_dump()
        return resp.model_dump()
