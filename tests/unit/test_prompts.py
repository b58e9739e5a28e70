"""Unit tests for guidance prompts."""

import pytest

from tdd_flow.prompts import fill_placeholders, get_prompt, list_prompts


class TestListPrompts:
    """Test cases for the prompt catalogue."""

    def test_names(self):
        """Test the available prompts."""
        assert [prompt.name for prompt in list_prompts()] == [
            "tdd_workflow",
            "test_generation",
            "implementation_guide",
            "refactoring_guide",
            "red_green_refactor",
            "debug_failing_tests",
        ]

    def test_to_dict_marks_required_arguments(self):
        """Test the serialized definition."""
        data = list_prompts()[0].to_dict()
        assert data["name"] == "tdd_workflow"
        required = {arg["name"]: arg["required"] for arg in data["arguments"]}
        assert required == {
            "feature_description": True,
            "language": True,
            "test_framework": True,
            "complexity_level": False,
        }


class TestGetPrompt:
    """Test cases for get_prompt."""

    def test_arguments_fill_template_and_summary(self):
        """Test that provided arguments replace placeholders."""
        prompt = get_prompt("red_green_refactor", {"current_state": "green", "feature_increment": "sum two numbers"})

        assert prompt.description == "TDD cycle guidance - Current state: green"
        assert "sum two numbers" in prompt.text
        assert "[No existing tests]" in prompt.text
        assert "{{" not in prompt.text

    def test_defaults(self):
        """Test that missing or empty arguments use their defaults."""
        prompt = get_prompt("tdd_workflow", {"feature_description": ""})

        assert prompt.description == "Complete TDD workflow for implementing: [Feature Description]"
        assert "moderate" in prompt.text

    @pytest.mark.parametrize(
        "name",
        ["tdd_workflow", "test_generation", "implementation_guide", "refactoring_guide", "debug_failing_tests"],
    )
    def test_every_template_is_fully_filled(self, name):
        """Test that bundled templates have no leftover placeholders."""
        assert "{{" not in get_prompt(name).text

    def test_missing_template(self, tmp_path):
        """Test the fallback text when a template file is absent."""
        prompt = get_prompt("tdd_workflow", templates_dir=tmp_path)
        assert prompt.text == "# tdd-workflow.md\n\nTemplate content not found."

    def test_unknown_prompt(self):
        """Test that unknown names are rejected."""
        with pytest.raises(ValueError, match="Unknown prompt: nope"):
            get_prompt("nope")

    def test_to_dict_message(self):
        """Test the MCP message shape."""
        data = get_prompt("debug_failing_tests").to_dict()
        assert data["description"] == "Debug and fix failing tests"
        assert data["messages"][0]["role"] == "user"
        assert data["messages"][0]["content"]["type"] == "text"


class TestFillPlaceholders:
    """Test cases for fill_placeholders."""

    def test_every_occurrence_is_replaced(self):
        """Test repeated placeholders."""
        assert fill_placeholders("{{A}} and {{A}}", {"A": "x"}) == "x and x"

    def test_unknown_keys_are_kept(self):
        """Test placeholders without a value."""
        assert fill_placeholders("{{A}} {{B}}", {"A": "x"}) == "x {{B}}"
