"""Render selected chunks as LLM-ready context text."""

import re
from typing import Any, Protocol
from xml.sax.saxutils import escape, quoteattr

from ragkit.errors import ConfigError, RegistryError
from ragkit.models.chunk import Chunk
from ragkit.models.context import SourceAttribution
from ragkit.registry import Registry

_NON_DIGITS = re.compile(r"\D+")


class ContextFormatter(Protocol):
    """Turns chunks and their attributions (1:1, same order) into text."""

    name: str

    def format(self, chunks: list[Chunk], sources: list[SourceAttribution]) -> str: ...


class XMLFormatter:
    """Wraps each chunk in a ``<source>`` element with citation attributes.

    Example output::

        <sources>
          <source id="1" file="guide.pdf" location="page 3">
            content
          </source>
        </sources>
    """

    name = "xml"

    def __init__(
        self,
        root_tag: str = "sources",
        source_tag: str = "source",
        include_file_path: bool = True,
        include_location: bool = True,
        include_scores: bool = False,
        pretty_print: bool = True,
    ):
        self.root_tag = root_tag
        self.source_tag = source_tag
        self.include_file_path = include_file_path
        self.include_location = include_location
        self.include_scores = include_scores
        self.pretty_print = pretty_print

    def format(self, chunks: list[Chunk], sources: list[SourceAttribution]) -> str:
        newline = "\n" if self.pretty_print else ""
        indent = "  " if self.pretty_print else ""

        if not chunks:
            return f"<{self.root_tag}>{newline}</{self.root_tag}>"

        elements = [
            f"{indent}<{self.source_tag}{self._attributes(source)}>{newline}"
            f"{indent}{indent}{escape(chunk.content)}{newline}"
            f"{indent}</{self.source_tag}>"
            for chunk, source in zip(chunks, sources)
        ]
        return newline.join([f"<{self.root_tag}>", *elements, f"</{self.root_tag}>"])

    def _attributes(self, source: SourceAttribution) -> str:
        attrs = [f'id="{source.index}"']
        if self.include_file_path and source.source:
            attrs.append(f"file={quoteattr(source.source)}")
        if self.include_location and source.location:
            attrs.append(f"location={quoteattr(source.location)}")
        if source.section:
            attrs.append(f"section={quoteattr(source.section)}")
        if self.include_scores:
            attrs.append(f'score="{source.score:.3f}"')
        return " " + " ".join(attrs)


CITATION_STYLES = ("inline", "footnote", "header")


class MarkdownFormatter:
    """Markdown context with inline, footnote or header citations."""

    name = "markdown"

    def __init__(
        self,
        citation_style: str = "inline",
        chunk_separator: str = "\n\n---\n\n",
        include_section_headers: bool = True,
        include_source_attribution: bool = True,
        include_scores: bool = False,
    ):
        """Initialize formatter.

        Args:
            citation_style: 'inline' (``**[1]** text *(source)*``), 'footnote'
                (``text [1]`` plus a sources list) or 'header' (``### Source 1``)
            chunk_separator: Text placed between chunks
            include_section_headers: Show chunk section names
            include_source_attribution: Show source info after inline chunks
            include_scores: Show relevance percentages

        Raises:
            ConfigError: If citation_style is unknown
        """
        if citation_style not in CITATION_STYLES:
            raise ConfigError(
                f"Unknown citation style '{citation_style}', expected one of {CITATION_STYLES}"
            )
        self.citation_style = citation_style
        self.chunk_separator = chunk_separator
        self.include_section_headers = include_section_headers
        self.include_source_attribution = include_source_attribution
        self.include_scores = include_scores

    def format(self, chunks: list[Chunk], sources: list[SourceAttribution]) -> str:
        if not chunks:
            return ""
        if self.citation_style == "footnote":
            return self._format_footnote(chunks, sources)
        if self.citation_style == "header":
            return self._format_header(chunks, sources)
        return self._format_inline(chunks, sources)

    def _format_inline(self, chunks: list[Chunk], sources: list[SourceAttribution]) -> str:
        formatted = []
        for chunk, source in zip(chunks, sources):
            parts = [f"**[{source.index}]**"]
            if self.include_section_headers and source.section:
                parts.append(f"*{source.section}*")
            parts.append(chunk.content)
            if self.include_source_attribution:
                info = _source_info(source)
                if info:
                    parts.append(f"*({info})*")
            if self.include_scores:
                parts.append(f"[relevance: {source.score * 100:.1f}%]")
            formatted.append(" ".join(parts))
        return self.chunk_separator.join(formatted)

    def _format_footnote(self, chunks: list[Chunk], sources: list[SourceAttribution]) -> str:
        content = []
        for chunk, source in zip(chunks, sources):
            section = ""
            if self.include_section_headers and source.section:
                section = f"**{source.section}**\n"
            content.append(f"{section}{chunk.content} [{source.index}]")

        footnotes = []
        for source in sources:
            info = _source_info(source) or f"source {source.index}"
            score = f" ({source.score * 100:.1f}% relevance)" if self.include_scores else ""
            footnotes.append(f"[{source.index}]: {info}{score}")

        return "\n".join(
            [self.chunk_separator.join(content), "", "---", "", "**Sources:**", *footnotes]
        )

    def _format_header(self, chunks: list[Chunk], sources: list[SourceAttribution]) -> str:
        formatted = []
        for chunk, source in zip(chunks, sources):
            header = f"### Source {source.index}"
            if source.source:
                header += f": {source.source}"
            if source.location:
                header += f" ({source.location})"
            lines = [header]
            if self.include_section_headers and source.section:
                lines.append(f"> Section: {source.section}")
            if self.include_scores:
                lines.append(f"> Relevance: {source.score * 100:.1f}%")
            lines.append("")
            lines.append(chunk.content)
            formatted.append("\n".join(lines))
        return self.chunk_separator.join(formatted)


def _source_info(source: SourceAttribution) -> str | None:
    """``guide.pdf:3`` style reference, or just the location or source name."""
    if source.source and source.location:
        return f"{source.source}:{_NON_DIGITS.sub('', source.location)}"
    return source.source or source.location


formatter_registry: Registry[type] = Registry("formatter")
formatter_registry.register("xml", XMLFormatter)
formatter_registry.register("markdown", MarkdownFormatter)


def create_formatter(name: str, **kwargs: Any) -> ContextFormatter:
    """Instantiate a registered formatter.

    Raises:
        ConfigError: If no formatter is registered under name
    """
    try:
        formatter_cls = formatter_registry.get_or_raise(name)
    except RegistryError as e:
        raise ConfigError(
            f"Unknown output format '{name}', expected one of {formatter_registry.names()}"
        ) from e
    return formatter_cls(**kwargs)
