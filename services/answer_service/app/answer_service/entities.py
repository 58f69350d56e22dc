import re
from typing import List, Sequence


_NAME = re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+\b")


def extract_entities(answer: str, known: Sequence[str] = (), limit: int = 10) -> List[str]:
    """Known entities followed by capitalised two-word names found in `answer`,
    de-duplicated, keeping the `limit` most recent."""
    out: List[str] = []
    for name in list(known) + _NAME.findall(answer or ""):
        name = name.strip()
        if not name:
            continue
        if name in out:
            out.remove(name)
        out.append(name)
    return out[-limit:]
