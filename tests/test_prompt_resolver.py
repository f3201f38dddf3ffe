"""Tests for C3L prompt locators and resolvers."""

from stepflow.prompts.resolver import (
    DictPromptResolver,
    FileSystemPromptResolver,
    PromptLocator,
    strip_frontmatter,
)


class TestPromptLocator:
    def test_filename_with_and_without_adaptation(self):
        base = PromptLocator("steps", "closure", "issue")

        assert base.filename == "f_default.md"
        assert base.with_edition("failed", "lint").filename == "f_failed_lint.md"
        assert str(base.with_edition("failed")) == "steps/closure/issue/f_failed.md"

    def test_with_edition_drops_adaptation(self):
        adapted = PromptLocator("steps", "initial", "issue", adaptation="fast")

        assert adapted.with_edition("failed").adaptation is None

    def test_to_dict(self):
        assert PromptLocator("steps", "a", "b").to_dict() == {
            "c1": "steps", "c2": "a", "c3": "b", "edition": "default", "adaptation": None
        }


class TestFileSystemPromptResolver:
    def test_resolves_and_strips_frontmatter(self, tmp_path):
        prompt = tmp_path / "steps" / "closure" / "issue" / "f_failed.md"
        prompt.parent.mkdir(parents=True)
        prompt.write_text("---\ntitle: retry\n---\nFix {{error}}\n", encoding="utf-8")

        resolution = FileSystemPromptResolver(tmp_path).resolve(
            PromptLocator("steps", "closure", "issue", edition="failed")
        )

        assert resolution.ok
        assert resolution.content == "Fix {{error}}\n"
        assert resolution.path == str(prompt)

    def test_missing_prompt(self, tmp_path):
        resolution = FileSystemPromptResolver(tmp_path).resolve(PromptLocator("steps", "x", "y"))

        assert not resolution.ok
        assert resolution.content is None
        assert "Prompt not found" in resolution.error


class TestDictPromptResolver:
    def test_lookup_by_relative_path(self):
        resolver = DictPromptResolver({"steps/a/b/f_default.md": "hello"})

        assert resolver.resolve(PromptLocator("steps", "a", "b")).content == "hello"
        assert not resolver.resolve(PromptLocator("steps", "a", "c")).ok


def test_strip_frontmatter_leaves_plain_text():
    assert strip_frontmatter("plain\n---\ntext") == "plain\n---\ntext"
    assert strip_frontmatter("---\nunterminated") == "---\nunterminated"
