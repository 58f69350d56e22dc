from pydantic import BaseModel


class GeneratedItem(BaseModel):
    """One cleaned news item as returned by the model, before it is tagged."""

    headline: str
    detail: str = ""
    source: str = ""
    url: str = ""
