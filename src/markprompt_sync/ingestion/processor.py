"""Turn raw file content (markdown, html, rst, text) into file sections."""

import json
import re
from dataclasses import dataclass

import yaml
from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from markprompt_sync.config import Settings, get_settings
from markprompt_sync.models.content import FileSectionData, ProcessedFile
from markprompt_sync.utils import SUPPORTED_EXTENSIONS, get_file_extension


@dataclass
class Heading:
    """A heading with its depth and text."""

    depth: int
    text: str


class ContentProcessor:
    """
    Split files into heading-delimited sections.

    Strategy:
    1. Convert the file to markdown-like text (html and rst are converted)
    2. Split by headings outside fenced code blocks
    3. Split sections longer than the approximate token cutoff by lines,
       then by words
    4. Drop sections shorter than the minimum content length
    """

    FRONT_MATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)
    HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
    FENCE_PATTERN = re.compile(r"^\s*(```|~~~)")
    MDX_ESM_PATTERN = re.compile(r"^(import|export)\s.*$", re.MULTILINE)
    MARKDOC_TAG_PATTERN = re.compile(r"\{%.*?%\}", re.DOTALL)
    RST_ADORNMENT_PATTERN = re.compile(r"^([=\-~^\"'`#*+<>:._])\1+\s*$")

    HTML_EXCLUDE_TAGS = ("head", "script", "style", "nav", "footer", "aside")
    HTML_BLOCK_TAGS = frozenset(
        {"p", "div", "section", "article", "header", "main", "ul", "ol", "table", "tr", "blockquote"}
    )

    DEFAULT_TITLE = "Untitled"

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        # 1 token ~= 4 characters, with some headroom below the cutoff.
        self.max_chunk_length = int(
            settings.context_tokens_cutoff * 0.8 * settings.approx_chars_per_token
        )
        self.min_content_length = settings.min_content_length

    def process(self, path: str, content: str, content_type: str | None = None) -> ProcessedFile:
        """
        Process a file into sections.

        Args:
            path: File path, used to pick the format and infer a title
            content: Raw file content
            content_type: Optional format hint ("html", "text/html", "md", ...)
                that takes precedence over the path's extension

        Returns:
            ProcessedFile; empty content yields zero sections
        """
        extension = self._detect_format(path, content_type)

        if extension in ("html", "htm"):
            meta, sections = self._process_html(content)
        elif extension == "rst":
            meta, sections = {}, self._process_markdown(self._rst_to_markdown(content))[1]
        elif extension in ("txt", "text"):
            meta, sections = {}, [FileSectionData(content=content.strip())]
        else:
            if extension == "mdoc":
                content = self.MARKDOC_TAG_PATTERN.sub("", content)
            meta, sections = self._process_markdown(content, mdx=extension == "mdx")

        lead_file_heading = sections[0].lead_heading if sections else None

        split_sections: list[FileSectionData] = []
        for section in sections:
            for i, chunk in enumerate(self._split_within_cutoff(section.content)):
                chunk = chunk.strip()
                if len(chunk) < self.min_content_length:
                    continue
                split_sections.append(
                    FileSectionData(
                        content=chunk,
                        lead_heading=section.lead_heading if i == 0 else None,
                        heading_depth=section.heading_depth if i == 0 else None,
                        heading_path=section.heading_path,
                    )
                )

        title = self._infer_title(meta, lead_file_heading, path)
        return ProcessedFile(
            path=path,
            title=title,
            meta={**meta, "title": title},
            sections=split_sections,
        )

    def _detect_format(self, path: str, content_type: str | None) -> str | None:
        if content_type:
            hint = content_type.split(";", 1)[0].strip().lower()
            hint = hint.rsplit("/", 1)[-1]
            if hint in ("html", "htm", "xhtml+xml"):
                return "html"
            if hint in ("markdown", "x-markdown"):
                return "md"
            if hint == "plain":
                return "txt"
            if hint in SUPPORTED_EXTENSIONS:
                return hint
        return get_file_extension(path)

    def _extract_front_matter(self, content: str) -> tuple[dict, str]:
        match = self.FRONT_MATTER_PATTERN.match(content)
        if not match:
            return {}, content
        try:
            parsed = yaml.safe_load(match.group(1)) or {}
        except yaml.YAMLError:
            parsed = {}
        meta = parsed if isinstance(parsed, dict) else {}
        # YAML dates and timestamps become ISO strings so meta stays JSON.
        meta = json.loads(json.dumps(meta, default=_json_default))
        return meta, content[match.end():]

    def _process_markdown(
        self, content: str, mdx: bool = False
    ) -> tuple[dict, list[FileSectionData]]:
        meta, body = self._extract_front_matter(content)
        if mdx:
            body = self.MDX_ESM_PATTERN.sub("", body)

        sections: list[FileSectionData] = []
        heading_stack: list[Heading] = []
        current_lines: list[str] = []
        current_heading: Heading | None = None
        in_fence = False

        def flush():
            text = "\n".join(current_lines).strip()
            if text:
                sections.append(
                    FileSectionData(
                        content=text,
                        lead_heading=current_heading.text if current_heading else None,
                        heading_depth=current_heading.depth if current_heading else None,
                        heading_path=" > ".join(h.text for h in heading_stack) or None,
                    )
                )

        for line in body.split("\n"):
            if self.FENCE_PATTERN.match(line):
                in_fence = not in_fence
            match = None if in_fence else self.HEADING_PATTERN.match(line)
            if match:
                flush()
                current_heading = Heading(depth=len(match.group(1)), text=match.group(2).strip())
                while heading_stack and heading_stack[-1].depth >= current_heading.depth:
                    heading_stack.pop()
                heading_stack.append(current_heading)
                current_lines = [line]
            else:
                current_lines.append(line)
        flush()

        return meta, sections

    def _process_html(self, content: str) -> tuple[dict, list[FileSectionData]]:
        soup = BeautifulSoup(content, "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else ""

        for tag_name in self.HTML_EXCLUDE_TAGS:
            for tag in soup.find_all(tag_name):
                tag.decompose()

        root = soup.find("main") or soup.find("body") or soup
        markdown = re.sub(r"\n{3,}", "\n\n", self._html_to_markdown(root)).strip()
        _, sections = self._process_markdown(markdown)

        return ({"title": title} if title else {}), sections

    def _html_to_markdown(self, node: Tag) -> str:
        parts: list[str] = []
        for child in node.children:
            if isinstance(child, PreformattedString):
                continue
            if isinstance(child, NavigableString):
                parts.append(re.sub(r"\s+", " ", str(child)))
                continue
            if not isinstance(child, Tag):
                continue

            name = child.name
            if name in ("h1", "h2", "h3", "h4", "h5", "h6"):
                parts.append(f"\n\n{'#' * int(name[1])} {child.get_text(' ', strip=True)}\n\n")
            elif name == "pre":
                code = child.find("code")
                lang = child.get("data-language") or ""
                text = (code or child).get_text().strip("\n")
                parts.append(f"\n\n```{lang}\n{text}\n```\n\n")
            elif name == "li":
                parts.append(f"\n- {self._html_to_markdown(child).strip()}")
            elif name == "br":
                parts.append("\n")
            elif name in self.HTML_BLOCK_TAGS:
                parts.append(f"\n\n{self._html_to_markdown(child).strip()}\n\n")
            else:
                parts.append(self._html_to_markdown(child))
        return "".join(parts)

    def _rst_to_markdown(self, content: str) -> str:
        """Rewrite reStructuredText section titles as markdown headings."""
        lines = content.split("\n")
        styles: list[tuple[str, bool]] = []
        output: list[str] = []
        i = 0

        while i < len(lines):
            line = lines[i]
            # Overlined title: adornment, title, adornment
            if (
                i + 2 < len(lines)
                and self.RST_ADORNMENT_PATTERN.match(line)
                and lines[i + 1].strip()
                and lines[i + 2].strip() == line.strip()
            ):
                style = (line.strip()[0], True)
                output.append(self._rst_heading(styles, style, lines[i + 1].strip()))
                i += 3
                continue
            # Underlined title
            if (
                i + 1 < len(lines)
                and line.strip()
                and not self.RST_ADORNMENT_PATTERN.match(line)
                and self.RST_ADORNMENT_PATTERN.match(lines[i + 1])
                and len(lines[i + 1].strip()) >= len(line.strip())
            ):
                style = (lines[i + 1].strip()[0], False)
                output.append(self._rst_heading(styles, style, line.strip()))
                i += 2
                continue
            output.append(line)
            i += 1

        return "\n".join(output)

    def _rst_heading(self, styles: list[tuple[str, bool]], style: tuple[str, bool], text: str) -> str:
        # Depth follows the order in which adornment styles first appear.
        if style not in styles:
            styles.append(style)
        depth = min(styles.index(style) + 1, 6)
        return f"{'#' * depth} {text}"

    def _split_within_cutoff(self, section: str) -> list[str]:
        if len(section) < self.max_chunk_length:
            return [section]

        chunks: list[str] = []

        def push(accumulated: str):
            if len(accumulated) < self.max_chunk_length:
                chunks.append(accumulated)
            else:
                # A single line longer than the cutoff is split by words.
                chunks.extend(split_into_substrings(accumulated, self.max_chunk_length))

        accumulated = ""
        for line in section.split("\n"):
            if len(accumulated) + len(line) >= self.max_chunk_length:
                push(accumulated)
                accumulated = line
            else:
                accumulated = f"{accumulated}\n{line}" if accumulated else line

        if accumulated:
            push(accumulated)

        return [chunk for chunk in chunks if chunk.strip()]

    def _infer_title(self, meta: dict, lead_file_heading: str | None, path: str) -> str:
        if meta.get("title"):
            return str(meta["title"])
        if lead_file_heading:
            return lead_file_heading
        name = path.rstrip("/").rsplit("/", 1)[-1]
        if "." in name:
            name = name.rsplit(".", 1)[0]
        return name or self.DEFAULT_TITLE


def split_into_substrings(text: str, max_length: int) -> list[str]:
    """Greedily pack space-separated words into substrings of at most ``max_length``."""
    result = []
    current = ""
    for word in text.split(" "):
        if len(current) + len(word) <= max_length:
            current = f"{current} {word}" if current else word
        else:
            if current:
                result.append(current)
            current = word
    if current:
        result.append(current)
    return result


def _json_default(value):
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
