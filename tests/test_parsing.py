"""Tests for the story and translation text parsers."""

from moral_story_maker.common.parsing import (
    parse_story_text,
    parse_translation,
    split_marked_sections,
)


class TestParseStoryText:
    def test_title_body_and_moral(self):
        parsed = parse_story_text("Title line\nBody text here.\nMoral: Be kind.")
        assert parsed.title == "Title line"
        assert parsed.body == "Body text here."
        assert parsed.moral == "Be kind."

    def test_missing_moral_marker(self):
        parsed = parse_story_text("A Title\nFirst paragraph.\n\nSecond paragraph.")
        assert parsed.moral == ""
        assert parsed.title == "A Title"
        assert parsed.body == "First paragraph.\n\nSecond paragraph."

    def test_single_line_has_no_title(self):
        parsed = parse_story_text("Just one line of story.")
        assert parsed.title == ""
        assert parsed.body == "Just one line of story."

    def test_strips_title_label_and_decoration(self):
        parsed = parse_story_text('## Title: "The Brave Owl"\nOwl was brave.\nMoral: **Courage matters.')
        assert parsed.title == "The Brave Owl"
        assert parsed.moral == "Courage matters."

    def test_only_first_moral_marker_splits(self):
        parsed = parse_story_text("T\nBody\nMoral: one. Moral: two.")
        assert parsed.moral == "one. Moral: two."

    def test_empty_input(self):
        parsed = parse_story_text("")
        assert (parsed.title, parsed.body, parsed.moral) == ("", "", "")

    def test_windows_newlines(self):
        parsed = parse_story_text("Title\r\nBody\r\nMoral: M")
        assert parsed.title == "Title"
        assert parsed.body == "Body"


class TestParseTranslation:
    FULL = (
        "TITLE: Le Renard Honnête\n"
        "STORY: Il était une fois un renard.\n\nFin.\n"
        "MORAL: L'honnêteté paie.\n"
        'REFLECTION_QUESTIONS: ["Pourquoi?"]\n'
        'ACTION_STEPS: ["Dis la vérité."]\n'
        "RELATED_QUOTE: La vérité libère.\n"
        'DISCUSSION_PROMPTS: ["Quand est-ce difficile?"]\n'
    )

    def test_all_sections(self):
        sections = parse_translation(self.FULL)
        assert sections.title == "Le Renard Honnête"
        assert sections.story == "Il était une fois un renard.\n\nFin."
        assert sections.moral == "L'honnêteté paie."
        assert sections.reflection_questions == ["Pourquoi?"]
        assert sections.action_steps == ["Dis la vérité."]
        assert sections.related_quote == "La vérité libère."
        assert sections.discussion_prompts == ["Quand est-ce difficile?"]

    def test_missing_section_is_none(self):
        text = self.FULL.replace('ACTION_STEPS: ["Dis la vérité."]\n', "")
        sections = parse_translation(text)
        assert sections.action_steps is None
        assert sections.related_quote == "La vérité libère."

    def test_invalid_json_is_none(self):
        text = self.FULL.replace('["Pourquoi?"]', "Pourquoi?")
        assert parse_translation(text).reflection_questions is None

    def test_json_in_code_fence(self):
        text = self.FULL.replace('["Pourquoi?"]', '```json\n["Pourquoi?"]\n```')
        assert parse_translation(text).reflection_questions == ["Pourquoi?"]

    def test_markers_are_case_insensitive_and_decorated(self):
        sections = split_marked_sections("**title:** Hola\n**story:** Cuento")
        assert sections == {"TITLE": "Hola", "STORY": "Cuento"}

    def test_garbage_yields_empty_record(self):
        sections = parse_translation("sorry, I cannot help with that")
        assert sections.title is None
        assert sections.story is None
        assert sections.action_steps is None
