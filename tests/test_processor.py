"""Tests for the content processor."""

from markprompt_sync.ingestion.processor import ContentProcessor, split_into_substrings

from conftest import make_settings


def test_markdown_sections_follow_headings(settings):
    content = (
        "# Guide\n\n"
        "Intro paragraph here.\n\n"
        "## Install\n\n"
        "Run the installer.\n\n"
        "```bash\n"
        "# not a heading\n"
        "```\n"
    )
    processed = ContentProcessor(settings).process("/docs/guide.md", content)

    assert processed.title == "Guide"
    assert len(processed.sections) == 2

    first, second = processed.sections
    assert first.content == "# Guide\n\nIntro paragraph here."
    assert first.lead_heading == "Guide"
    assert first.heading_depth == 1
    assert second.lead_heading == "Install"
    assert second.heading_path == "Guide > Install"
    assert "# not a heading" in second.content


def test_front_matter_title_wins(settings):
    content = "---\ntitle: From Front Matter\ndescription: Short\n---\n# Heading\n\nBody text here."
    processed = ContentProcessor(settings).process("/a.md", content)

    assert processed.title == "From Front Matter"
    assert processed.meta == {"title": "From Front Matter", "description": "Short"}
    assert "title:" not in processed.sections[0].content


def test_front_matter_dates_become_iso_strings(settings):
    content = "---\ndate: 2024-01-01\nupdated: 2024-02-03 10:30:00\ntags: [a, b]\n---\n# Post\n\nBody."
    processed = ContentProcessor(settings).process("/post.md", content)

    assert processed.meta == {
        "date": "2024-01-01",
        "updated": "2024-02-03T10:30:00",
        "tags": ["a", "b"],
    }


def test_title_falls_back_to_file_name(settings):
    processed = ContentProcessor(settings).process("/docs/getting-started.md", "Just some text.")
    assert processed.title == "getting-started"


def test_empty_content_has_no_sections(settings):
    processed = ContentProcessor(settings).process("/empty.md", "")
    assert processed.sections == []
    assert processed.title == "empty"


def test_mdx_imports_are_stripped(settings):
    content = "import Callout from './callout'\n\n# Hello\n\nBody text here."
    processed = ContentProcessor(settings).process("/page.mdx", content)

    assert all("import" not in section.content for section in processed.sections)
    assert processed.sections[0].lead_heading == "Hello"


def test_markdoc_tags_are_stripped(settings):
    content = "# Hello\n\n{% callout %}Body text here.{% /callout %}"
    processed = ContentProcessor(settings).process("/page.mdoc", content)

    assert processed.sections[0].content == "# Hello\n\nBody text here."


def test_html_is_converted_without_chrome(settings):
    content = (
        "<html><head><title>Page Title</title><script>var x = 1;</script></head>"
        "<body><nav>Menu links</nav><main>"
        "<h1>Welcome</h1><p>First paragraph text.</p>"
        "<h2>Details</h2><p>More details here.</p><!-- a comment -->"
        "</main><footer>Footer text</footer></body></html>"
    )
    processed = ContentProcessor(settings).process("/index.html", content)

    assert processed.title == "Page Title"
    assert [s.lead_heading for s in processed.sections] == ["Welcome", "Details"]
    assert processed.sections[0].content == "# Welcome\n\nFirst paragraph text."

    text = "\n".join(s.content for s in processed.sections)
    for unwanted in ("Menu links", "var x", "Footer text", "a comment"):
        assert unwanted not in text


def test_content_type_hint_overrides_extension(settings):
    processed = ContentProcessor(settings).process(
        "https://example.com/page", "<h1>Hi</h1><p>Some body text</p>", content_type="text/html"
    )
    assert processed.sections[0].content == "# Hi\n\nSome body text"


def test_rst_titles_become_headings(settings):
    content = (
        "=====\n"
        "Title\n"
        "=====\n"
        "\n"
        "Intro text for rst.\n"
        "\n"
        "Section A\n"
        "---------\n"
        "\n"
        "Body of section A.\n"
    )
    processed = ContentProcessor(settings).process("/index.rst", content)

    assert [s.lead_heading for s in processed.sections] == ["Title", "Section A"]
    assert processed.sections[1].heading_depth == 2
    assert processed.sections[1].heading_path == "Title > Section A"


def test_plain_text_is_a_single_section(settings):
    processed = ContentProcessor(settings).process("/notes.txt", "Just some plain text.\n\n# not a heading")

    assert len(processed.sections) == 1
    assert processed.sections[0].lead_heading is None
    assert processed.title == "notes"


def test_long_sections_are_split_below_the_cutoff(tmp_path):
    # 10 tokens * 0.8 * 4 chars = 32 characters
    processor = ContentProcessor(make_settings(tmp_path, context_tokens_cutoff=10))
    content = "# Long\nline number one here\nline number two here\nline number three here"

    sections = processor.process("/long.md", content).sections

    assert len(sections) == 3
    assert all(len(s.content) < 32 for s in sections)
    assert sections[0].lead_heading == "Long"
    assert sections[1].lead_heading is None
    assert {s.heading_path for s in sections} == {"Long"}


def test_short_sections_are_dropped(tmp_path):
    processor = ContentProcessor(make_settings(tmp_path, min_content_length=20))
    content = "# Big heading\n\nThis section is long enough.\n\n## Tiny\n\nx"

    sections = processor.process("/a.md", content).sections

    assert [s.lead_heading for s in sections] == ["Big heading"]


def test_split_into_substrings_packs_words():
    assert split_into_substrings("a bb ccc dddd", 6) == ["a bb", "ccc", "dddd"]
