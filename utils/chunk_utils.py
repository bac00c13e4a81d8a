"""
Chunking utilities for regex-based section detection.

Markup-derived text (HTML, Markdown, Notion, Confluence) only trusts
Markdown headings; text extracted from office documents and PDFs also
tries numbered, ALL CAPS, underlined and Roman-numeral headings.
Tabular sources are treated as one table.
"""

from __future__ import annotations

import re
from typing import Any, Dict, List, Tuple

MARKUP_DOC_TYPES = ("html", "md")
TABULAR_DOC_TYPES = ("csv", "xls", "xlsx")


class SectionParser:
    """Regex-based section detection for structured documents."""

    PATTERNS = {
        # Markdown-style headers: # Header, ## Subheader
        "markdown": re.compile(r"^(#{1,6})\s+(.+)$", re.MULTILINE),
        # "1. Introduction", "1.1 Background", "Section 2.3: Methods"
        "numbered": re.compile(
            r"^(?:(?:Section|Chapter|Part|Article)\s+)?"
            r"(\d+(?:\.\d+)*)\s*[:\-\.]?\s*(.+)$",
            re.MULTILINE | re.IGNORECASE,
        ),
        # ALL CAPS headers (minimum 3 chars to avoid false positives)
        "caps": re.compile(r"^([A-Z][A-Z\s]{2,}[A-Z])$", re.MULTILINE),
        # Underlined headers (text followed by === or ---)
        "underlined": re.compile(r"^(.+)\n([=\-]{3,})$", re.MULTILINE),
        # "I. Introduction", "II. Methods"
        "roman": re.compile(r"^([IVXLCDM]+)\.\s+(.+)$", re.MULTILINE),
    }

    TABLE_PATTERNS = {
        # | col1 | col2 |
        "pipe": re.compile(r"(?:^\s*\|.+\|\s*$\n?){3,}", re.MULTILINE),
        # at least 3 tab-delimited rows
        "tab": re.compile(r"(?:^.+\t.+$\n?){3,}", re.MULTILINE),
    }

    @classmethod
    def parse_sections(cls, content: str, doc_type: str = "txt") -> List[Dict[str, Any]]:
        """
        Parse document content into sections.

        Returns a list of
        ``{"type": "section", "title", "content", "level"}`` and
        ``{"type": "table", "content", "description"}`` dicts in document
        order.
        """
        if doc_type in TABULAR_DOC_TYPES:
            return cls._parse_tabular_content(content)

        tables = cls._extract_tables(content)
        headers = cls._find_all_headers(content, markdown_only=doc_type in MARKUP_DOC_TYPES)

        if headers:
            sections = cls._build_sections_from_headers(content, headers, tables)
        else:
            clean = cls._remove_tables(content, tables).strip()
            sections = [(0, {"type": "section", "title": "", "content": clean, "level": 0})] if clean else []

        for table in tables:
            sections.append(
                (
                    table["start"],
                    {
                        "type": "table",
                        "content": table["content"],
                        "description": cls._generate_table_description(table["content"]),
                    },
                )
            )
        sections.sort(key=lambda pair: pair[0])
        return [section for _, section in sections]

    @classmethod
    def _find_all_headers(cls, content: str, markdown_only: bool = False) -> List[Tuple[int, str, int]]:
        """Return (position, title, level) tuples sorted by position."""
        headers = []

        for match in cls.PATTERNS["markdown"].finditer(content):
            headers.append((match.start(), match.group(2).strip(), len(match.group(1))))

        if not markdown_only:
            for match in cls.PATTERNS["numbered"].finditer(content):
                # 1 -> level 1, 1.1 -> level 2
                headers.append((match.start(), match.group(2).strip(), match.group(1).count(".") + 1))

            caps_matches = list(cls.PATTERNS["caps"].finditer(content))
            if len(caps_matches) < 50:
                for match in caps_matches:
                    title = match.group(1).strip()
                    if len(title) >= 8:
                        headers.append((match.start(), title, 1))

            for match in cls.PATTERNS["underlined"].finditer(content):
                level = 1 if match.group(2)[0] == "=" else 2
                headers.append((match.start(), match.group(1).strip(), level))

            for match in cls.PATTERNS["roman"].finditer(content):
                headers.append((match.start(), match.group(2).strip(), 1))

        # One header per position; the lowest level wins for determinism
        by_position: Dict[int, Tuple[int, str, int]] = {}
        for header in sorted(headers, key=lambda h: (h[0], h[2], h[1])):
            by_position.setdefault(header[0], header)
        return [by_position[pos] for pos in sorted(by_position)]

    @classmethod
    def _build_sections_from_headers(
        cls,
        content: str,
        headers: List[Tuple[int, str, int]],
        tables: List[Dict[str, Any]],
    ) -> List[Tuple[int, Dict[str, Any]]]:
        sections = []

        preamble = cls._remove_tables(content[: headers[0][0]], tables).strip()
        if preamble:
            sections.append((0, {"type": "section", "title": "", "content": preamble, "level": 0}))

        for i, (pos, title, level) in enumerate(headers):
            end_pos = headers[i + 1][0] if i < len(headers) - 1 else len(content)
            # Drop the header line itself
            body = content[pos:end_pos].split("\n", 1)
            section_content = body[1] if len(body) > 1 else ""
            section_content = cls._remove_tables(section_content, tables).strip()
            if section_content:
                sections.append(
                    (pos, {"type": "section", "title": title, "content": section_content, "level": level})
                )
        return sections

    @classmethod
    def _extract_tables(cls, content: str) -> List[Dict[str, Any]]:
        tables = []
        for pattern in cls.TABLE_PATTERNS.values():
            for match in pattern.finditer(content):
                tables.append({"content": match.group(0), "start": match.start(), "end": match.end()})
        return cls._remove_overlapping_tables(tables)

    @staticmethod
    def _remove_overlapping_tables(tables: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Remove overlapping table matches, keeping the longest."""
        if not tables:
            return []
        tables = sorted(tables, key=lambda t: (t["start"], -t["end"]))
        kept = [tables[0]]
        for table in tables[1:]:
            last = kept[-1]
            if table["start"] < last["end"]:
                if (table["end"] - table["start"]) > (last["end"] - last["start"]):
                    kept[-1] = table
            else:
                kept.append(table)
        return kept

    @staticmethod
    def _remove_tables(content: str, tables: List[Dict[str, Any]]) -> str:
        for table in tables:
            content = content.replace(table["content"], "")
        return content

    @staticmethod
    def _generate_table_description(table_content: str) -> str:
        lines = table_content.strip().split("\n")
        first_line = lines[0] if lines else ""
        if "|" in first_line:
            num_cols = first_line.count("|") - 1
        elif "\t" in first_line:
            num_cols = first_line.count("\t") + 1
        elif "," in first_line:
            num_cols = first_line.count(",") + 1
        else:
            num_cols = 1
        return f"Table with approximately {len(lines)} rows and {num_cols} columns"

    @classmethod
    def _parse_tabular_content(cls, content: str) -> List[Dict[str, Any]]:
        """CSV/Excel content becomes a single table when it looks tabular."""
        lines = content.strip().split("\n")
        first_line = lines[0] if lines else ""
        if len(lines) >= 2 and ("," in first_line or "\t" in first_line or "|" in first_line):
            return [
                {
                    "type": "table",
                    "content": content.strip(),
                    "description": cls._generate_table_description(content),
                }
            ]
        return [{"type": "section", "title": "", "content": content, "level": 0}] if content.strip() else []
