"""Assembly of grounded-answer instructions from a query and search hits."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from prompts.loader import load_prompt
from rag.retriever import RetrievedDocument

GROUNDED_TEMPLATE = load_prompt("rag_grounded.txt")
GENERAL_TEMPLATE = load_prompt("rag_general.txt")

DEFAULT_MAX_DOCUMENTS = 5
DEFAULT_MAX_DOCUMENT_CHARS = 1500
DEFAULT_CONTEXT_CHAR_BUDGET = 6000
TRUNCATION_MARKER = "..."


@dataclass(frozen=True)
class RagPrompt:
    query: str
    context: str
    text: str
    used_fallback: bool
    documents_used: int = 0


def _clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: max(0, limit - len(TRUNCATION_MARKER))].rstrip() + TRUNCATION_MARKER


def format_context(
    documents: Sequence[RetrievedDocument],
    *,
    max_documents: int = DEFAULT_MAX_DOCUMENTS,
    max_document_chars: int = DEFAULT_MAX_DOCUMENT_CHARS,
    char_budget: int = DEFAULT_CONTEXT_CHAR_BUDGET,
) -> tuple[str, int]:
    """Render documents in retrieval order within the character budget.

    Returns the context block and the number of documents it contains.
    """

    blocks: list[str] = []
    remaining = char_budget
    for doc in documents[:max_documents]:
        header = f"Source: {doc.source}\nContent: "
        separator = 2 if blocks else 0
        room = remaining - len(header) - separator
        if room <= len(TRUNCATION_MARKER):
            break
        content = _clip(_clip(doc.content.strip(), max_document_chars), room)
        block = header + content
        blocks.append(block)
        remaining -= len(block) + separator
    return "\n\n".join(blocks), len(blocks)


def build_rag_prompt(
    query: str,
    documents: Sequence[RetrievedDocument] | None,
    *,
    max_documents: int = DEFAULT_MAX_DOCUMENTS,
    max_document_chars: int = DEFAULT_MAX_DOCUMENT_CHARS,
    char_budget: int = DEFAULT_CONTEXT_CHAR_BUDGET,
) -> RagPrompt:
    """Pure function: identical inputs always yield identical prompt text."""

    query = query.strip()
    context, used = format_context(
        documents or (),
        max_documents=max_documents,
        max_document_chars=max_document_chars,
        char_budget=char_budget,
    )
    if not used:
        return RagPrompt(
            query=query,
            context="",
            text=GENERAL_TEMPLATE.format(query=query),
            used_fallback=True,
        )

    return RagPrompt(
        query=query,
        context=context,
        text=GROUNDED_TEMPLATE.format(context=context, query=query),
        used_fallback=False,
        documents_used=used,
    )
