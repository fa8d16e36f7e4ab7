
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .models import RetrievedPassage

CONTEXT_SEPARATOR = "\n\n"


def _skill(meta: Dict[str, Any]) -> Optional[str]:
    name = meta.get("name") or meta.get("skill_name")
    if not name:
        return None
    category = meta.get("category")
    return f"{name} ({category})" if category else str(name)


def _experience(meta: Dict[str, Any]) -> Optional[str]:
    if not (meta.get("position") and meta.get("company")):
        return None
    return f"{meta['position']} at {meta['company']}"


def _project(meta: Dict[str, Any]) -> Optional[str]:
    if not meta.get("name"):
        return None
    status = meta.get("status")
    return f"Project: {meta['name']} ({status})" if status else f"Project: {meta['name']}"


def _education(meta: Dict[str, Any]) -> Optional[str]:
    if not (meta.get("degree") and meta.get("institution")):
        return None
    field = meta.get("field_of_study") or meta.get("field")
    if field:
        return f"{meta['degree']} in {field} from {meta['institution']}"
    return f"{meta['degree']} from {meta['institution']}"


def _content(meta: Dict[str, Any]) -> Optional[str]:
    title = meta.get("title")
    return str(title) if title else None


# metadata["type"] -> one-line renderer used when a passage has no raw text
FALLBACK_TEMPLATES: Dict[str, Callable[[Dict[str, Any]], Optional[str]]] = {
    "skill": _skill,
    "experience": _experience,
    "project": _project,
    "education": _education,
    "content": _content,
}


def passage_text(passage: RetrievedPassage) -> Optional[str]:
    """Raw text if present, else the metadata fallback line (None when neither works)."""
    if passage.text and passage.text.strip():
        return passage.text.strip()
    render = FALLBACK_TEMPLATES.get(str(passage.metadata.get("type", "")))
    if render is None:
        return None
    line = render(passage.metadata)
    return line.strip() if line and line.strip() else None


class ContextAssembler:
    """
    Turns retrieved passages into the context block handed to the model.

    Only passages scoring at or above ``relevance_floor`` survive. An empty
    block is a valid result; the generator is instructed to admit it does
    not know rather than guess.
    """

    def __init__(self, relevance_floor: float = 0.6) -> None:
        self.relevance_floor = relevance_floor

    def select(self, passages: Iterable[RetrievedPassage]) -> List[Tuple[RetrievedPassage, str]]:
        selected = []
        for passage in passages:
            if passage.score < self.relevance_floor:
                continue
            text = passage_text(passage)
            if text:
                selected.append((passage, text))
        return selected

    def assemble(self, passages: Iterable[RetrievedPassage]) -> str:
        return CONTEXT_SEPARATOR.join(text for _, text in self.select(passages))
