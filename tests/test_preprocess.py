"""Tests for the synchronous preprocessing stages and pipeline."""

import pytest

from vellum.preprocess import (
    MARKER_RE,
    CalloutStage,
    EmbedKind,
    FrontmatterStage,
    HorizontalRuleStage,
    PreprocessingPipeline,
    PreprocessingResult,
    PreprocessOptions,
    TransformStage,
    WikilinkStage,
    classify,
    sanitize_file_path,
    slugify_heading,
)
from vellum.preprocess.callouts import CALLOUT_STYLES, escape_typst_string, normalize_unicode, render_email_block
from vellum.preprocess.embeds import build_marker
from vellum.preprocess.frontmatter import extract_content_tags, format_frontmatter_display
from vellum.preprocess.links import filter_unnecessary_links
from vellum.preprocess.title import word_count


def _run(stage: TransformStage, content: str) -> tuple[str, PreprocessingResult]:
    result = PreprocessingResult(content=content)
    return stage.apply(content, result), result


# ── Frontmatter ────────────────────────────────────────────────────


class TestFrontmatter:
    def test_tags_from_list_and_content(self):
        text = "---\ntitle: Doc\ntags: [alpha, '#beta']\n---\nBody with #gamma and a [link](#anchor).\n"
        _, result = _run(FrontmatterStage(), text)
        assert result.metadata.tags == {"alpha", "beta", "gamma"}
        assert result.metadata.title == "Doc"

    def test_tags_from_string(self):
        _, result = _run(FrontmatterStage(include_metadata=False), "---\ntags: one, two three\n---\n")
        assert result.metadata.tags == {"one", "two", "three"}

    def test_headings_and_code_are_not_tags(self):
        body = "# Heading\n\n```\n#not-a-tag\n```\nissue#12 and #real\n"
        assert extract_content_tags(body) == ["real"]

    def test_note_title_overrides(self):
        out, result = _run(FrontmatterStage(note_title="file-stem"), "---\ntitle: Old\n---\nText\n")
        assert result.metadata.title == "file-stem"
        assert out.startswith("---\ntitle: file-stem\n---\n")

    def test_title_block_added_without_frontmatter(self):
        out, _ = _run(FrontmatterStage(note_title="Stem"), "Just text\n")
        assert out == "---\ntitle: Stem\n---\nJust text\n"

    def test_dropped_when_not_preserved(self):
        out, result = _run(FrontmatterStage(preserve_frontmatter=False), "---\nauthor: Ann\n---\nText\n")
        assert out == "Text\n"
        assert result.metadata.frontmatter == {"author": "Ann"}

    def test_malformed_yaml_falls_back_to_line_scan(self):
        out, result = _run(FrontmatterStage(), "---\ntitle: \"unterminated\nauthor: Ann: Lee\n---\nBody\n")
        assert result.warnings
        assert result.metadata.frontmatter["author"] == "Ann: Lee"
        assert out.endswith("Body\n")

    def test_print_frontmatter(self):
        out, _ = _run(FrontmatterStage(print_frontmatter=True), "---\nproject_lead: Ann\n---\nBody\n")
        assert "**Document Information**" in out
        assert "**Project lead:**\nAnn" in out

    def test_display_long_list_becomes_bullets(self):
        display = format_frontmatter_display({"items": ["a", "b", "c", "d"], "empty": ""})
        assert "**Items:**\n\n- a\n- b\n- c\n- d" in display
        assert "Empty" not in display

    def test_display_empty(self):
        assert format_frontmatter_display({"x": None}) == ""


# ── Links, callouts, email blocks ──────────────────────────────────


class TestLinkFilter:
    def test_removes_open_and_mail_links(self):
        text = "a [[x.md|Open: x]] b\n\n\n\n[Open in Mail.app](message://%3Cid%3E) c"
        assert filter_unnecessary_links(text) == "a  b\n\n c"


class TestCallouts:
    def test_known_type_with_title(self):
        out, _ = _run(CalloutStage(), "> [!warning] Careful\n> line one\n>\n> line two\nafter")
        icon = CALLOUT_STYLES["warning"].icon
        assert out == (
            f"<!-- callout-warning -->\n> **{icon} Careful**\n>\n> line one\n>\n> line two\nafter"
        )

    def test_unknown_type_and_fold(self):
        out, _ = _run(CalloutStage(), "> [!custom]-\n> body")
        assert out.startswith("<!-- callout-default -->\n> **📌 Custom** 🔼")

    def test_blank_line_ends_block_unless_quoted_again(self):
        out, _ = _run(CalloutStage(), "> [!note]\n> a\n\n> b\n\nplain")
        assert out.endswith("> a\n>\n> b\n\nplain")


class TestEmailBlock:
    def test_renders_typst_call(self):
        block = 'from: "Ann <ann@example.com>"\nto: [bob, carol]\nsubject: Hi "there"\n---\nHello\u00a0world \u2014 bye\n'
        out = render_email_block(block)
        assert out.startswith("\n\n```{=typst}\n#email-block(")
        assert 'from: "Ann <ann@example.com>"' in out
        assert 'to: "bob, carol"' in out
        assert 'subject: "Hi \\"there\\""' in out
        assert '"Hello world - bye"' in out

    def test_stage_replaces_fenced_block(self):
        text = "Intro\n```email\nfrom: a\n---\nbody\n```\nOutro"
        result = PreprocessingPipeline.default().run(text)
        assert "#email-block(" in result.content
        assert "```email" not in result.content

    def test_escape_and_normalize(self):
        assert escape_typst_string('a\\b"c\nd') == 'a\\\\b\\"c\\nd'
        assert normalize_unicode("x\u200cy\u2028z") == "xy\nz"


# ── Wikilinks and embeds ───────────────────────────────────────────


class TestWikilinks:
    @pytest.mark.parametrize(
        "source, expected",
        [
            ("[[Note]]", "[Note](Note.md)"),
            ("[[Other Note#Section|see here]]", "[see here](Other%20Note.md#section)"),
            ("[[Note#Big Heading]]", "[Note#Big Heading](Note.md#big-heading)"),
            ("[[Note.md]]", "[Note.md](Note.md)"),
            ("[[#Local Part|jump]]", "[jump](#local-part)"),
            ("[[#Local Part]]", "[Local Part](#local-part)"),
            ('[[a:b?c]]', "[a:b?c](a_b_c.md)"),
        ],
    )
    def test_rewrite(self, source, expected):
        out, _ = _run(WikilinkStage(), source)
        assert out == expected

    def test_base_url(self):
        out, _ = _run(WikilinkStage(base_url="https://notes.example.com/"), "[[Note]]")
        assert out == "[Note](https://notes.example.com/Note.md)"

    def test_idempotent(self):
        once, _ = _run(WikilinkStage(), "See [[Other Note#Section|here]] and [[#Top]].")
        twice, _ = _run(WikilinkStage(), once)
        assert once == twice

    def test_helpers(self):
        assert sanitize_file_path("dir\\my file*.md") == "dir/my%20file_.md"
        assert slugify_heading("  What's  New?  ") == "whats-new"


class TestEmbeds:
    @pytest.mark.parametrize(
        "path, kind",
        [
            ("a.png", EmbedKind.IMAGE),
            ("scan.HEIC", EmbedKind.IMAGE),
            ("doc.pdf", EmbedKind.PDF),
            ("data.csv", EmbedKind.FILE),
            ("noext", EmbedKind.FILE),
        ],
    )
    def test_classify(self, path, kind):
        assert classify(path) is kind

    def test_remote_non_image_is_file(self):
        marker = build_marker("https://example.com/report.pdf")
        assert marker.kind is EmbedKind.FILE
        assert marker.sanitized_path == "https://example.com/report.pdf"

    def test_marker_fields(self):
        marker = build_marker("folder/My Pic.png", " 300 ")
        assert marker.file_name == "My Pic.png"
        assert marker.base_name == "My Pic"
        assert marker.extension == ".png"
        assert marker.sanitized_path == "folder/My%20Pic.png"
        assert marker.options == "300"

    def test_markers_are_unique_and_queued(self):
        text = "![[a.png]] ![[a.png]] ![[doc.pdf]] ![[x.zip]]"
        result = PreprocessingPipeline.default().run(text)
        ids = MARKER_RE.findall(result.content)
        assert len(ids) == 4
        assert len(set(ids)) == 4
        assert list(result.pending) == ids
        assert len(result.metadata.image_embeds) == 2
        assert len(result.metadata.pdf_embeds) == 1
        assert len(result.metadata.file_embeds) == 1

    def test_embed_extracted_before_wikilinks(self):
        result = PreprocessingPipeline.default().run("![[note.md]] and [[note]]")
        assert "![" not in result.content
        assert MARKER_RE.search(result.content)
        assert "[note](note.md)" in result.content
        assert result.embeds[0].kind is EmbedKind.FILE

    def test_empty_embed_left_with_warning(self):
        result = PreprocessingPipeline.default().run("x ![[ ]] y")
        assert "![[ ]]" in result.content
        assert any("Empty embed path" in w for w in result.warnings)


# ── Rules, title, pipeline ─────────────────────────────────────────


class TestHorizontalRules:
    def test_converts_outside_frontmatter_and_code(self):
        text = "---\na: 1\n---\ntext\n\n---\n\n```\n---\n```\n"
        out, _ = _run(HorizontalRuleStage(), text)
        assert out == "---\na: 1\n---\ntext\n\n***\n\n```\n---\n```\n"


class TestPipeline:
    def test_default_order(self):
        names = [s.name for s in PreprocessingPipeline.default().stages]
        assert names == [
            "FrontmatterStage",
            "EmailBlockStage",
            "LinkFilterStage",
            "EmbedExtractionStage",
            "WikilinkStage",
            "CalloutStage",
            "TitleBackfillStage",
        ]

    def test_horizontal_rules_opt_in(self):
        pipeline = PreprocessingPipeline.default(PreprocessOptions(convert_horizontal_rules=True))
        assert "HorizontalRuleStage" in [s.name for s in pipeline.stages]

    def test_failing_stage_is_recorded_and_skipped(self):
        class Boom(TransformStage):
            def apply(self, content, result):
                raise RuntimeError("kaboom")

        result = PreprocessingPipeline([Boom(), WikilinkStage()]).run("[[A]]")
        assert result.errors == ["Boom failed: kaboom"]
        assert result.content == "[A](A.md)"

    def test_title_and_word_count(self):
        result = PreprocessingPipeline.default().run("# Heading Here\n\nOne two ![[img.png]] three.\n")
        assert result.metadata.title == "Heading Here"
        assert result.metadata.word_count == word_count(result.content)
        assert result.metadata.word_count == 6
