"""
Structure-aware document chunker.

Chunk boundaries depend only on the input text and the token budget, so
re-chunking unchanged content yields byte-identical chunks and ids.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import tiktoken

from config.settings import config
from utils.chunk_utils import SectionParser


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclass
class TextChunk:
    text: str
    chunk_id: str
    section_title: str = ""
    section_level: int = 0
    is_table: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


class StructureAwareChunker:
    """Chunks documents while preserving structural boundaries."""

    def __init__(self, chunk_size: Optional[int] = None):
        self.chunk_size = chunk_size or config.chunk_size_tokens
        self.tokenizer = tiktoken.get_encoding("cl100k_base")
        self.section_parser = SectionParser()

    def chunk_text(self, content: str, doc_type: str = "txt") -> List[TextChunk]:
        """
        Split cleaned text into token-bounded chunks.

        Sections (headings, tables) are detected first; each section is
        packed paragraph by paragraph up to ``chunk_size`` tokens.  A
        paragraph larger than the budget is split on token boundaries.
        """
        if not content.strip():
            return []

        chunks: List[TextChunk] = []
        for section in self._parse_sections(content, doc_type):
            if section.get("type") == "table":
                chunks.extend(self._table_chunks(section))
            else:
                chunks.extend(self._chunk_section(section))
        return [c for c in chunks if c.text.strip()]

    def count_tokens(self, text: str) -> int:
        return len(self.tokenizer.encode(text))

    def _parse_sections(self, content: str, doc_type: str) -> List[Dict[str, Any]]:
        sections = self.section_parser.parse_sections(content, doc_type)
        if not sections:
            sections = [{"type": "section", "title": "", "content": content, "level": 0}]
        return sections

    def _chunk_section(self, section: Dict[str, Any]) -> List[TextChunk]:
        """
        Split a section into chunks based on token size.

        Splits on paragraph boundaries (double newlines) to maintain
        semantic coherence within chunks.
        """
        paragraphs = section.get("content", "").split("\n\n")
        parts: List[str] = []
        current = ""
        current_tokens = 0

        for para in paragraphs:
            para = para.strip()
            if not para:
                continue
            para_tokens = self.count_tokens(para)

            # A single paragraph over budget is split on its own
            if para_tokens > self.chunk_size:
                if current:
                    parts.append(current)
                    current, current_tokens = "", 0
                parts.extend(self._split_oversized_text(para))
                continue

            if current and current_tokens + para_tokens > self.chunk_size:
                parts.append(current)
                current, current_tokens = para, para_tokens
            elif current:
                current += "\n\n" + para
                current_tokens += para_tokens + 2
            else:
                current, current_tokens = para, para_tokens

        if current:
            parts.append(current)
        return [self._make_chunk(p, section) for p in parts]

    def _split_oversized_text(self, text: str) -> List[str]:
        """Split text that exceeds chunk_size into token-bounded pieces."""
        tokens = self.tokenizer.encode(text)
        return [
            self.tokenizer.decode(tokens[i : i + self.chunk_size]).strip()
            for i in range(0, len(tokens), self.chunk_size)
        ]

    def _table_chunks(self, section: Dict[str, Any]) -> List[TextChunk]:
        """Small tables stay whole; large ones are split on token boundaries."""
        text = section.get("content", "").strip()
        parts = [text] if self.count_tokens(text) <= self.chunk_size else self._split_oversized_text(text)
        chunks = []
        for part in parts:
            chunk = self._make_chunk(part, section, is_table=True)
            if "description" in section:
                chunk.metadata["table_description"] = section["description"]
            chunks.append(chunk)
        return chunks

    @staticmethod
    def _make_chunk(text: str, section: Dict[str, Any], is_table: bool = False) -> TextChunk:
        return TextChunk(
            text=text,
            chunk_id=content_hash(text),
            section_title=section.get("title", ""),
            section_level=section.get("level", 0),
            is_table=is_table,
        )
