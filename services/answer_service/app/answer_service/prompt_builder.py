from dataclasses import dataclass
from typing import Callable, List, Sequence

from common.contracts.models import Article, ConversationTurn, Opinion
from answer_service.domain import PromptParts
from answer_service.ranker import as_utc


PERSONA_RULES = (
    'You are "Pulse AI", the news assistant of Morning Pulse. You help readers understand '
    "the day's stories by answering questions about specific articles, people, events and topics.\n"
    "Rules:\n"
    "- Answer from the reader's intent, not from category labels: a question about a person, place "
    "or event is answered from every article that mentions it.\n"
    "- Use ONLY the articles and opinion pieces provided in the message. Do not add outside facts, "
    "speculation or your own opinions.\n"
    "- Cite every claim with the bracket number of its source, e.g. [1] or [OPINION 2]. When a "
    "sentence combines sources, cite each of them.\n"
    "- Track the conversation: resolve he/she/they/it from earlier turns. If a reference is "
    "ambiguous, ask which one the reader means.\n"
    "- Quote people exactly, with quotation marks, and keep names, titles, numbers and dates as "
    "written in the source.\n"
    "- Present opinion pieces as opinion and attribute the view to the author.\n"
    "- If sources disagree, say so and cite both.\n"
    "- If the material does not contain the answer, say that Morning Pulse's recent reporting does "
    "not cover it and mention what the available articles do cover. Never invent information.\n"
    "- Keep a conversational, professional tone; plain paragraphs, lists only when they help."
)

ARTICLE_ANALYSIS = (
    "ARTICLE ANALYSIS INSTRUCTIONS:\n"
    "Before answering, go through each article and note:\n"
    "1. People: names, titles or roles, what they said or did, affiliations.\n"
    "2. Organizations: names, their role in the story, their statements.\n"
    "3. Locations: places and their relevance to the story.\n"
    "4. Key facts: numbers, dates, exact quotes, policy and financial details.\n"
    "5. Main events: what, when, where, who, and why or how if stated.\n"
    "6. Themes: primary topic, secondary topics, related issues.\n"
    "Use this analysis to answer accurately and completely."
)

RESPONSE_INSTRUCTIONS = (
    "RESPONSE INSTRUCTIONS:\n"
    "1. Identify the question type (who, what, where, when, why, how) and answer that directly.\n"
    "2. Search ALL articles and opinion pieces above, not only the first one.\n"
    "3. Cite every claim with [n] for articles and [OPINION n] for opinion pieces, using the numbers shown above.\n"
    "4. Resolve pronouns and follow-up references using the recent conversation.\n"
    "5. If the information is not in the material, say so explicitly instead of inventing it.\n"
    "6. Match breadth to scope: summarize across articles for broad questions, go deep into the relevant article for specific ones."
)


@dataclass(frozen=True)
class PromptContext:
    query: str
    articles: Sequence[Article]
    opinions: Sequence[Opinion]
    history: Sequence[ConversationTurn]
    excerpt_chars: int


def truncate(text: str, limit: int) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def article_date(article: Article) -> str:
    if article.date:
        return article.date
    if article.timestamp is not None:
        return as_utc(article.timestamp).date().isoformat()
    return "Recent"


def conversation_section(ctx: PromptContext) -> str:
    if not ctx.history:
        return ""
    lines = [f"{turn.role}: {turn.text()}" for turn in ctx.history]
    return "RECENT CONVERSATION:\n" + "\n".join(lines)


def articles_section(ctx: PromptContext) -> str:
    if not ctx.articles:
        return "AVAILABLE ARTICLES:\nNo articles matched this question."
    blocks = []
    for i, a in enumerate(ctx.articles, start=1):
        lines = [f"[{i}] {a.headline}", f"Category: {a.category or 'General'}"]
        if a.source:
            lines.append(f"Source: {a.source}")
        lines.append(f"Detail: {a.detail}")
        lines.append(f"Date: {article_date(a)}")
        blocks.append("\n".join(lines))
    return "AVAILABLE ARTICLES:\n" + "\n\n".join(blocks)


def opinions_section(ctx: PromptContext) -> str:
    if not ctx.opinions:
        return ""
    blocks = []
    for i, o in enumerate(ctx.opinions, start=1):
        author = o.author_name or "Editorial Team"
        if o.author_title:
            author = f"{author}, {o.author_title}"
        summary = o.sub_headline or truncate(o.body or "", 150)
        lines = [
            f"[OPINION {i}] {o.headline}",
            f"Category: {o.category or 'Opinion'}",
            f"Summary: {summary}",
            f"Author: {author}",
            f"Published: {as_utc(o.published_at).date().isoformat()}",
            f"Excerpt: {truncate(o.body or '', ctx.excerpt_chars)}",
        ]
        blocks.append("\n".join(lines))
    return "OPINION PIECES:\n" + "\n\n".join(blocks)


def question_section(ctx: PromptContext) -> str:
    return f"USER QUESTION:\n{ctx.query}"


def instructions_section(ctx: PromptContext) -> str:
    return RESPONSE_INSTRUCTIONS


USER_MESSAGE_SECTIONS: Sequence[Callable[[PromptContext], str]] = (
    conversation_section,
    articles_section,
    opinions_section,
    question_section,
    instructions_section,
)


class PromptBuilder:
    def __init__(self, history_window: int = 3, max_opinions: int = 3, excerpt_chars: int = 500) -> None:
        self._history_window = history_window
        self._max_opinions = max_opinions
        self._excerpt_chars = excerpt_chars

    def select_opinions(self, opinions: Sequence[Opinion]) -> List[Opinion]:
        eligible = [o for o in opinions if o.is_published and o.published_at is not None]
        eligible.sort(key=lambda o: as_utc(o.published_at), reverse=True)
        return eligible[: self._max_opinions]

    def build_system_instruction(self, known_entities: Sequence[str]) -> str:
        parts = [PERSONA_RULES, ARTICLE_ANALYSIS]
        entities = [e.strip() for e in known_entities if e and e.strip()]
        if entities:
            parts.append(
                "Entities mentioned earlier in this conversation (use them to resolve pronouns): "
                + ", ".join(entities)
            )
        return "\n\n".join(parts)

    def build(
        self,
        query: str,
        articles: Sequence[Article],
        opinions: Sequence[Opinion] = (),
        history: Sequence[ConversationTurn] = (),
        known_entities: Sequence[str] = (),
    ) -> PromptParts:
        window = list(history)[-self._history_window:] if self._history_window > 0 else []
        ctx = PromptContext(
            query=query,
            articles=list(articles),
            opinions=self.select_opinions(opinions),
            history=window,
            excerpt_chars=self._excerpt_chars,
        )
        sections = [build(ctx) for build in USER_MESSAGE_SECTIONS]
        return PromptParts(
            system_instruction=self.build_system_instruction(known_entities),
            user_message="\n\n".join(s for s in sections if s),
            articles=list(ctx.articles),
            opinions=list(ctx.opinions),
        )
