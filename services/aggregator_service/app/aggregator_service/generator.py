import logging
from typing import List, Sequence

from common.llm import LLM, GroundingSource
from aggregator_service.domain import GeneratedItem
from aggregator_service.normalizer import parse_items


logger = logging.getLogger(__name__)


SEARCH_HINTS = {
    "local": "latest local news {country} today",
    "business": "{country} business news economy today",
    "african focus": "latest news Africa today",
    "global": "world news headlines today",
    "sports": "sports news today",
    "tech": "technology news today",
    "general": "breaking news today",
}


class CategoryNewsGenerator:
    """Asks the model for a strict JSON array of headlines for one category.

    With `grounded` the model runs with its web search tool (`llm.search`) and
    items without a URL take the search source at the same position.
    """

    def __init__(self, llm: LLM, articles_per_category: int, grounded: bool = False) -> None:
        self._llm = llm
        self._n = articles_per_category
        self._grounded = grounded

    @staticmethod
    def search_hint(category: str, country: str) -> str:
        template = SEARCH_HINTS.get(category.strip().lower(), "{category} news today")
        return template.format(country=country.title(), category=category)

    def build_prompt(self, category: str, country: str) -> str:
        return f"""Find the {self._n} most important and recent news stories for the category: {category} (audience: {country.title()}).
Search for: {self.search_hint(category, country)}

For each story provide:
1. A clear, concise headline (max 100 characters)
2. A detailed summary (2-3 sentences)
3. The source/publication name
4. The URL of the article, or an empty string if you do not know it

Respond with ONLY a JSON array, no commentary, in exactly this shape:
[
  {{"headline": "...", "detail": "...", "source": "...", "url": "https://..."}}
]
"""

    @staticmethod
    def backfill_urls(items: List[GeneratedItem], sources: Sequence[GroundingSource]) -> List[GeneratedItem]:
        out = []
        for i, item in enumerate(items):
            if not item.url and i < len(sources) and sources[i].uri.lower().startswith(("http://", "https://")):
                item = item.model_copy(update={"url": sources[i].uri})
            out.append(item)
        return out

    async def fetch(self, category: str, country: str, trace_id: str = "") -> List[GeneratedItem]:
        prompt = self.build_prompt(category, country)
        sources: Sequence[GroundingSource] = ()
        if self._grounded:
            result = await self._llm.search(prompt)
            text, sources = result.text, result.sources
        else:
            text = await self._llm.generate(prompt)

        items = self.backfill_urls(parse_items(text), sources)
        logger.info(
            "Category generated",
            extra={
                "trace_id": trace_id,
                "category": category,
                "items": len(items),
                "grounding_sources": len(sources),
            },
        )
        return items[: self._n]
