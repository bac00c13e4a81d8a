"""
Content normalizer — raw fetched documents to cleaned, chunked, tagged text.

    raw bytes ─► extract_text ─► StructureAwareChunker ─► ContentTagger
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from connectors.fetchers.base import RawDocument
from document_pipeline.chunker import StructureAwareChunker, content_hash
from document_pipeline.parser import safe_extract
from document_pipeline.tagger import ContentTagger

logger = logging.getLogger(__name__)

TAG_CONCURRENCY = 4


@dataclass
class NormalizedChunk:
    chunk_index: int
    chunk_id: str
    document_id: str
    title: str
    origin_url: Optional[str]
    text: str
    content_hash: str
    tags: List[str] = field(default_factory=list)
    section_title: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_record(self, object_key: Optional[str] = None) -> Dict[str, Any]:
        """Row shape accepted by ``database.helpers.replace_chunks``."""
        return {
            "chunk_index": self.chunk_index,
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "title": self.title,
            "origin_url": self.origin_url,
            "text": self.text,
            "content_hash": self.content_hash,
            "tags": list(self.tags),
            "metadata": dict(self.metadata),
            "object_key": object_key,
        }


@dataclass
class NormalizedDocument:
    document_id: str
    title: str
    cleaned_text: str
    url: Optional[str] = None
    chunks: List[NormalizedChunk] = field(default_factory=list)

    @property
    def text_hash(self) -> str:
        return content_hash(self.cleaned_text)


class ContentNormalizer:
    """Cleans, chunks and tags fetched content."""

    def __init__(
        self,
        chunker: Optional[StructureAwareChunker] = None,
        tagger: Optional[ContentTagger] = None,
    ):
        self.chunker = chunker or StructureAwareChunker()
        self.tagger = tagger or ContentTagger()

    async def ingest(
        self,
        source: Mapping[str, Any],
        raw: RawDocument,
        *,
        start_index: int = 0,
        tag_cache: Optional[Mapping[str, List[str]]] = None,
    ) -> NormalizedDocument:
        """
        Normalize one fetched document.

        Parameters
        ----------
        source      : public view of the owning data source
        raw         : the fetched document
        start_index : chunk index of this document's first chunk
        tag_cache   : content hash -> tags from the previous run; a chunk
                      whose hash is cached and non-empty is not re-tagged

        Returns
        -------
        NormalizedDocument whose ``chunks`` are numbered from ``start_index``.
        Unreadable documents come back with no text and no chunks.
        """
        extracted = safe_extract(raw.content, raw.mime_type, raw.title)
        if extracted is None or not extracted.text:
            return NormalizedDocument(raw.document_id, raw.title, "", raw.url)

        pieces = self.chunker.chunk_text(extracted.text, extracted.doc_type)
        tags = await self._tag_all([p.text for p in pieces], tag_cache or {})

        chunks = [
            NormalizedChunk(
                chunk_index=start_index + i,
                chunk_id=piece.chunk_id,
                document_id=raw.document_id,
                title=extracted.title or raw.title,
                origin_url=raw.url,
                text=piece.text,
                content_hash=content_hash(piece.text),
                tags=piece_tags,
                section_title=piece.section_title,
                metadata=dict(raw.metadata),
            )
            for i, (piece, piece_tags) in enumerate(zip(pieces, tags))
        ]
        return NormalizedDocument(
            document_id=raw.document_id,
            title=extracted.title or raw.title,
            cleaned_text=extracted.text,
            url=raw.url,
            chunks=chunks,
        )

    async def ingest_all(
        self,
        source: Mapping[str, Any],
        raws: Sequence[RawDocument],
        *,
        tag_cache: Optional[Mapping[str, List[str]]] = None,
    ) -> List[NormalizedDocument]:
        """
        Normalize every document of one sync run.

        Documents are processed in ``document_id`` order and chunk indices
        run across the whole source, so identical input always produces
        the same ordered chunk set.
        """
        documents: List[NormalizedDocument] = []
        next_index = 0
        for raw in sorted(raws, key=lambda r: r.document_id):
            doc = await self.ingest(source, raw, start_index=next_index, tag_cache=tag_cache)
            next_index += len(doc.chunks)
            documents.append(doc)
        logger.info(
            "Normalized %d document(s) into %d chunk(s) for source %s",
            len(documents),
            next_index,
            source.get("id"),
        )
        return documents

    async def _tag_all(self, texts: List[str], tag_cache: Mapping[str, List[str]]) -> List[List[str]]:
        semaphore = asyncio.Semaphore(TAG_CONCURRENCY)

        async def _one(text: str) -> List[str]:
            cached = tag_cache.get(content_hash(text))
            if cached:
                return list(cached)
            async with semaphore:
                return await self.tagger.tag(text)

        return list(await asyncio.gather(*(_one(t) for t in texts)))
