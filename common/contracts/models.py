from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from typing import Any, Dict, List, Literal, Optional


class Article(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str
    category: str = ""
    headline: str
    detail: str = ""
    source: str = ""
    url: Optional[str] = None
    date: Optional[str] = None  # YYYY-MM-DD
    timestamp: Optional[datetime] = None  # epoch s/ms or ISO-8601


class Opinion(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    headline: str
    sub_headline: Optional[str] = Field(None, alias="subHeadline")
    body: Optional[str] = None
    author_name: Optional[str] = Field(None, alias="authorName")
    author_title: Optional[str] = Field(None, alias="authorTitle")
    category: Optional[str] = None
    is_published: bool = Field(False, alias="isPublished")
    published_at: Optional[datetime] = Field(None, alias="publishedAt")


class TurnPart(BaseModel):
    text: str = ""


class ConversationTurn(BaseModel):
    role: Literal["user", "model"]
    parts: List[TurnPart] = Field(default_factory=list)

    def text(self) -> str:
        return " ".join(p.text.strip() for p in self.parts if p.text.strip())


class AskRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question: str = Field(..., min_length=1)
    # raw {category: [article]}, loaded per article by DocumentAdapter.articles
    news_data: Dict[str, Any] = Field(default_factory=dict, alias="newsData")
    opinions: List[Opinion] = Field(default_factory=list)
    conversation_history: List[ConversationTurn] = Field(default_factory=list, alias="conversationHistory")
    previous_entities: List[str] = Field(default_factory=list, alias="previousEntities")
    stream: bool = False

    @field_validator("question")
    @classmethod
    def _question_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("question must not be blank")
        return v

    @field_validator("news_data", "opinions", "conversation_history", "previous_entities", mode="before")
    @classmethod
    def _null_as_empty(cls, v, info: ValidationInfo):
        if v is None:
            return {} if info.field_name == "news_data" else []
        return v


class SourceItem(BaseModel):
    title: str
    url: str
    index: int


class AskResponse(BaseModel):
    text: str
    sources: List[SourceItem] = Field(default_factory=list)
    entities: List[str] = Field(default_factory=list)


class StreamFrame(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str = ""
    done: bool = False
    full_text: Optional[str] = Field(None, alias="fullText")
    sources: Optional[List[SourceItem]] = None
    entities: Optional[List[str]] = None
    error: Optional[str] = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class ErrorReply(BaseModel):
    error: str
    code: Literal["invalid_request", "configuration_error", "service_error", "unauthorized"]


class AggregationRun(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    date: str  # YYYY-MM-DD
    country: str
    categories: Dict[str, List[Article]] = Field(default_factory=dict)
    created_at: Optional[datetime] = Field(None, alias="createdAt")

    def total_articles(self) -> int:
        return sum(len(items) for items in self.categories.values())


class AggregateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    date: Optional[str] = None
    categories: Optional[List[str]] = None
    total_articles: Optional[int] = Field(None, alias="totalArticles")
    message: str
    error: Optional[str] = None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
