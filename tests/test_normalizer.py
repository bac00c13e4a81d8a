"""
Tests for text extraction, tagging and ContentNormalizer.
"""

import asyncio
import io

import openpyxl
import pandas as pd
import pytest
from unittest.mock import AsyncMock, patch

from connectors.fetchers.base import RawDocument
from document_pipeline.chunker import StructureAwareChunker, content_hash
from document_pipeline.normalizer import ContentNormalizer
from document_pipeline.parser import extract_text, normalize_whitespace, safe_extract
from document_pipeline.tagger import MAX_TAGS, ContentTagger, normalize_tags


HTML_PAGE = b"""<html><head><title>Trust Center</title><script>var x = 1;</script></head>
<body>
<nav><a href="/">Home</a> | <a href="/pricing">Pricing</a></nav>
<main>
<h1>Security overview</h1>
<p>We are   SOC 2 certified.</p>
<ul><li>SSO</li><li>MFA</li></ul>
</main>
<footer>Copyright Acme</footer>
</body></html>"""


def raw(document_id, text, mime="text/plain", title=None):
    return RawDocument(
        document_id=document_id,
        title=title or document_id,
        content=text.encode("utf-8"),
        mime_type=mime,
        url=f"https://files.test/{document_id}",
    )


class StaticProvider:
    """LLM provider double returning a fixed payload (or raising)."""

    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = 0

    async def generate(self, prompt, **kwargs):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class TestExtraction:
    def test_html_boilerplate_is_stripped(self):
        extracted = extract_text(HTML_PAGE, "text/html; charset=utf-8")

        assert extracted.title == "Trust Center"
        assert extracted.doc_type == "html"
        assert "# Security overview" in extracted.text
        assert "We are SOC 2 certified." in extracted.text
        assert "- SSO" in extracted.text
        for noise in ("var x", "Home", "Copyright"):
            assert noise not in extracted.text

    def test_markdown_keeps_doc_type(self):
        extracted = extract_text(b"# Title\n\nBody", "text/markdown", "notes.md")

        assert extracted.doc_type == "md"
        assert extracted.title == "notes.md"

    def test_csv_is_rendered_as_csv(self):
        extracted = extract_text(b"name,value\nsso,yes\n", "text/csv", "controls.csv")

        assert extracted.text == "name,value\nsso,yes"

    def test_xlsx_is_rendered_as_csv(self):
        workbook = openpyxl.Workbook()
        sheet = workbook.active
        sheet.append(["control", "status"])
        sheet.append(["sso", "yes"])
        buffer = io.BytesIO()
        workbook.save(buffer)

        extracted = extract_text(
            buffer.getvalue(), "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "controls.xlsx"
        )

        assert extracted.text == "control,status\nsso,yes"
        assert extracted.doc_type == "xlsx"

    def test_legacy_xls_is_read_as_a_spreadsheet(self):
        with patch("document_pipeline.parser.pd.read_excel", return_value=pd.DataFrame({"control": ["sso"]})) as read:
            extracted = extract_text(b"\xd0\xcf\x11\xe0", "application/vnd.ms-excel", "controls.xls")

        read.assert_called_once()
        assert extracted.text == "control\nsso"

    def test_unknown_mime_yields_empty_text(self):
        assert extract_text(b"\x00\x01", "application/octet-stream", "blob").text == ""

    def test_corrupt_pdf_is_logged_not_raised(self):
        assert safe_extract(b"not a pdf", "application/pdf", "broken.pdf") is None

    def test_normalize_whitespace(self):
        assert normalize_whitespace("a  \t b\r\n\n\n\nc  d  ") == "a b\n\nc d"


class TestTagger:
    def test_normalize_tags(self):
        assert normalize_tags([" SOC 2 ", "soc 2", "", "GDPR!", 7, "iso/27001"]) == ["gdpr", "iso/27001", "soc 2"]

    @pytest.mark.asyncio
    async def test_tags_are_normalized_and_capped(self):
        provider = StaticProvider({"tags": [f"Tag{i}" for i in range(12)]})
        tagger = ContentTagger(provider, enabled=True)

        tags = await tagger.tag("Some passage")

        assert len(tags) == MAX_TAGS
        assert tags == sorted(tags)

    @pytest.mark.asyncio
    async def test_provider_failure_yields_no_tags(self):
        tagger = ContentTagger(StaticProvider(error=RuntimeError("rate limited")), enabled=True)

        assert await tagger.tag("Some passage") == []

    @pytest.mark.asyncio
    async def test_timeout_yields_no_tags(self):
        tagger = ContentTagger(StaticProvider({"tags": ["x"]}, delay=1.0), enabled=True, timeout_seconds=0.01)

        assert await tagger.tag("Some passage") == []

    @pytest.mark.asyncio
    async def test_malformed_response_yields_no_tags(self):
        tagger = ContentTagger(StaticProvider({"labels": "x"}), enabled=True)

        assert await tagger.tag("Some passage") == []

    @pytest.mark.asyncio
    async def test_disabled_tagger_never_calls_provider(self):
        provider = StaticProvider({"tags": ["x"]})

        assert await ContentTagger(provider, enabled=False).tag("Some passage") == []
        assert provider.calls == 0


class TestContentNormalizer:
    @pytest.fixture
    def normalizer(self):
        return ContentNormalizer(
            chunker=StructureAwareChunker(chunk_size=64),
            tagger=ContentTagger(StaticProvider({"tags": ["security"]}), enabled=True),
        )

    @pytest.mark.asyncio
    async def test_indices_run_across_documents_in_id_order(self, normalizer):
        docs = [raw("b", "Second document."), raw("a", "First document.")]

        result = await normalizer.ingest_all({"id": "s1"}, docs)

        assert [d.document_id for d in result] == ["a", "b"]
        indices = [c.chunk_index for d in result for c in d.chunks]
        assert indices == list(range(len(indices)))
        assert result[0].chunks[0].origin_url == "https://files.test/a"
        assert result[0].chunks[0].tags == ["security"]

    @pytest.mark.asyncio
    async def test_document_metadata_is_kept_on_every_chunk(self, normalizer):
        doc = raw("a", "First document.")
        doc.metadata = {"section": "Trust Center / Retention"}

        result = await normalizer.ingest_all({"id": "s1"}, [doc])

        assert result[0].chunks
        for chunk in result[0].chunks:
            assert chunk.to_record()["metadata"] == {"section": "Trust Center / Retention"}

    @pytest.mark.asyncio
    async def test_failed_tagging_still_produces_chunks(self):
        normalizer = ContentNormalizer(
            tagger=ContentTagger(StaticProvider(error=RuntimeError("down")), enabled=True)
        )

        [doc] = await normalizer.ingest_all({"id": "s1"}, [raw("a", "Data is encrypted at rest.")])

        assert doc.chunks
        assert all(c.tags == [] for c in doc.chunks)

    @pytest.mark.asyncio
    async def test_cached_tags_skip_the_tagger(self):
        text = "Data is encrypted at rest."
        tagger = ContentTagger(StaticProvider({"tags": ["fresh"]}), enabled=True)
        tagger.tag = AsyncMock(return_value=["fresh"])
        normalizer = ContentNormalizer(tagger=tagger)

        [doc] = await normalizer.ingest_all(
            {"id": "s1"}, [raw("a", text)], tag_cache={content_hash(text): ["cached"]}
        )

        assert doc.chunks[0].tags == ["cached"]
        tagger.tag.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unreadable_document_has_no_chunks(self, normalizer):
        doc = await normalizer.ingest({"id": "s1"}, raw("x", "garbage", mime="application/pdf"))

        assert doc.cleaned_text == ""
        assert doc.chunks == []

    @pytest.mark.asyncio
    async def test_html_document_title_comes_from_page(self, normalizer):
        doc = await normalizer.ingest(
            {"id": "s1"},
            RawDocument("https://acme.test/", "https://acme.test/", HTML_PAGE, "text/html"),
        )

        assert doc.title == "Trust Center"
        assert all("Copyright" not in c.text for c in doc.chunks)
