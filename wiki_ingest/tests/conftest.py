"""Shared fixtures: small synthetic dumps built in tmp_path."""
from __future__ import annotations

import bz2
from dataclasses import dataclass, field
from pathlib import Path
from xml.sax.saxutils import escape

import pytest

DUMP_HEADER = (
    '<mediawiki xmlns="http://www.mediawiki.org/xml/export-0.11/" version="0.11" xml:lang="en">\n'
    "  <siteinfo>\n    <sitename>Wikipedia</sitename>\n  </siteinfo>\n"
)
DUMP_FOOTER = "</mediawiki>\n"


def page_xml(title: str, page_id: str, text: str, redirect: str | None = None) -> str:
    """Render one <page> element the way MediaWiki exports it."""
    redirect_tag = f'    <redirect title="{escape(redirect)}" />\n' if redirect else ""
    return (
        "  <page>\n"
        f"    <title>{escape(title)}</title>\n"
        "    <ns>0</ns>\n"
        f"    <id>{page_id}</id>\n"
        f"{redirect_tag}"
        "    <revision>\n"
        f"      <id>9{page_id}</id>\n"
        f'      <text bytes="{len(text)}" xml:space="preserve">{escape(text)}</text>\n'
        "    </revision>\n"
        "  </page>\n"
    )


def article_text(title: str) -> str:
    """Intro paragraph plus a History section with two paragraphs."""
    return (
        f"'''{title}''' is an article about [[Topic|topics]].\n\n"
        "== History ==\n"
        f"The history of {title} is long.{{{{cite web|url=x}}}}\n\n"
        f"Later {title} became famous.<ref>Source</ref>"
    )


def article_pages(article_ids: list[str]) -> list[str]:
    return [page_xml(f"Article {aid}", aid, article_text(f"Article {aid}")) for aid in article_ids]


@dataclass
class MultistreamDump:
    dump_file: Path
    index_file: Path
    block_offsets: list[int] = field(default_factory=list)
    article_ids: list[str] = field(default_factory=list)


@pytest.fixture
def write_xml_dump(tmp_path: Path):
    """Write a plain (or bz2) dump from page elements."""

    def _write(pages: list[str], name: str = "dump.xml") -> Path:
        content = DUMP_HEADER + "".join(pages) + DUMP_FOOTER
        path = tmp_path / name
        if name.endswith(".bz2"):
            path.write_bytes(bz2.compress(content.encode("utf-8")))
        else:
            path.write_text(content, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def build_multistream(tmp_path: Path):
    """
    Build a multistream dump and its index.

    Each inner list of article ids becomes one bz2 stream. The header and
    footer live in their own streams, like in real dumps.
    """

    def _build(
        blocks: list[list[str]],
        name: str = "wiki-multistream",
        compress_index: bool = False,
    ) -> MultistreamDump:
        dump_file = tmp_path / f"{name}.xml.bz2"
        offsets: list[int] = []
        index_lines: list[str] = []

        with open(dump_file, "wb") as f:
            f.write(bz2.compress(DUMP_HEADER.encode("utf-8")))
            for article_ids in blocks:
                offset = f.tell()
                offsets.append(offset)
                f.write(bz2.compress("".join(article_pages(article_ids)).encode("utf-8")))
                index_lines.extend(f"{offset}:{aid}:Article {aid}" for aid in article_ids)
            f.write(bz2.compress(DUMP_FOOTER.encode("utf-8")))

        index_content = "\n".join(index_lines) + "\n"
        if compress_index:
            index_file = tmp_path / f"{name}-index.txt.bz2"
            index_file.write_bytes(bz2.compress(index_content.encode("utf-8")))
        else:
            index_file = tmp_path / f"{name}-index.txt"
            index_file.write_text(index_content, encoding="utf-8")

        return MultistreamDump(
            dump_file=dump_file,
            index_file=index_file,
            block_offsets=offsets,
            article_ids=[aid for ids in blocks for aid in ids],
        )

    return _build
