"""Code retrieval interface consumed by workers and the researcher."""

import re
from typing import Protocol, runtime_checkable

from pydantic import BaseModel

DEFAULT_TOP_K = 10


class CodeChunk(BaseModel):
    """A contiguous slice of a source file."""

    content: str
    filepath: str
    start_line: int = 1
    end_line: int = 1
    language: str = ""
    symbol_name: str | None = None
    score: float = 0.0

    def render(self) -> str:
        return f"// {self.filepath} (lines {self.start_line}-{self.end_line})\n{self.content}"


@runtime_checkable
class Retriever(Protocol):
    """Anything that can return the chunks most relevant to a query."""

    async def search(self, query: str, top_k: int = DEFAULT_TOP_K) -> list[CodeChunk]: ...


def format_chunks(chunks: list[CodeChunk]) -> str:
    return "\n\n".join(chunk.render() for chunk in chunks)


class StaticRetriever:
    """
    Keyword retriever over a fixed list of chunks.

    Scores a chunk by how many distinct query terms appear in its content or
    path. Useful for tests and for running workflows without an index.
    """

    def __init__(self, chunks: list[CodeChunk] | None = None):
        self.chunks = list(chunks or [])
        self.queries: list[str] = []

    async def search(self, query: str, top_k: int = DEFAULT_TOP_K) -> list[CodeChunk]:
        self.queries.append(query)
        terms = {t for t in re.findall(r"\w+", query.lower()) if len(t) > 2}
        scored = []
        for chunk in self.chunks:
            haystack = f"{chunk.filepath}\n{chunk.content}".lower()
            hits = sum(1 for term in terms if term in haystack)
            if hits or not terms:
                scored.append(chunk.model_copy(update={"score": float(hits)}))
        scored.sort(key=lambda c: c.score, reverse=True)
        return scored[:top_k]
