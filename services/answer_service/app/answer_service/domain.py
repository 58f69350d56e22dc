from pydantic import BaseModel, Field
from typing import List

from common.contracts.models import Article, Opinion


class ScoredCandidate(BaseModel):
    article: Article
    score: int
    category: str


class PromptParts(BaseModel):
    system_instruction: str
    user_message: str
    # in citation order: articles[0] is [1], opinions[0] is [OPINION 1]
    articles: List[Article] = Field(default_factory=list)
    opinions: List[Opinion] = Field(default_factory=list)
