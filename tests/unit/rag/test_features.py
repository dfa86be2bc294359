"""Tests for the feature catalogue, mermaid extraction and prompts."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from repolens.errors import MalformedResponseError, PreconditionError
from repolens.rag import prompts
from repolens.rag.features import (
    FEATURES,
    ask_repo,
    extract_mermaid,
    normalize_analysis,
    parse_analysis,
    run_feature,
)

REPO = "https://github.com/acme/widgets"


@pytest.fixture
def engine():
    mock = MagicMock()
    mock.query.return_value = "answer"
    return mock


# ------------------------------------------------------------------
# extract_mermaid
# ------------------------------------------------------------------


def test_extract_mermaid_refences_block():
    output = "Here you go:\n```mermaid\ngraph TD\n  A-->B\n```\nThanks."
    assert extract_mermaid(output) == "```mermaid\ngraph TD\n  A-->B\n```"


def test_extract_mermaid_case_insensitive_first_block():
    output = "```MERMAID\ngraph LR\nX-->Y\n```\n```mermaid\ngraph TD\n```"
    assert extract_mermaid(output) == "```mermaid\ngraph LR\nX-->Y\n```"


@pytest.mark.parametrize("output", ["graph TD\nA-->B", "```mermaid\n   \n```", "", "```python\nx=1\n```"])
def test_extract_mermaid_rejects(output):
    with pytest.raises(MalformedResponseError):
        extract_mermaid(output)


# ------------------------------------------------------------------
# analyze
# ------------------------------------------------------------------

ANALYSIS = (
    '{"summary": "Small, tidy codebase.", "suggestions": ["Add tests", "Type hints", "Docs"], '
    '"healthScore": 72, "topIssues": [{"filePath": "src/a.py", "line": 3, '
    '"severity": "warning", "message": "Unused import"}]}'
)


def test_parse_analysis_plain_json():
    parsed = parse_analysis(ANALYSIS)
    assert parsed["healthScore"] == 72
    assert parsed["topIssues"][0]["filePath"] == "src/a.py"


def test_parse_analysis_strips_code_fences():
    assert parse_analysis(f"```json\n{ANALYSIS}\n```")["summary"] == "Small, tidy codebase."


@pytest.mark.parametrize("output", [
    "",
    "The codebase looks fine overall.",
    "{\"summary\": \"cut off",
])
def test_parse_analysis_rejects_non_json(output):
    with pytest.raises(MalformedResponseError, match="malformed JSON"):
        parse_analysis(output)


@pytest.mark.parametrize("output,problem", [
    ('["not", "an", "object"]', "non-object"),
    ('{"suggestions": [], "healthScore": 50, "topIssues": []}', "summary"),
    ('{"summary": "s", "suggestions": [], "healthScore": "high", "topIssues": []}', "healthScore"),
    ('{"summary": "s", "suggestions": [], "healthScore": 140, "topIssues": []}', "healthScore"),
    ('{"summary": "s", "suggestions": [], "healthScore": true, "topIssues": []}', "healthScore"),
    ('{"summary": "s", "suggestions": "do better", "healthScore": 50, "topIssues": []}', "suggestions"),
    ('{"summary": "s", "suggestions": [], "healthScore": 50, "topIssues": ["bad"]}', "topIssues"),
])
def test_parse_analysis_rejects_wrong_shape(output, problem):
    with pytest.raises(MalformedResponseError, match=problem):
        parse_analysis(output)


def test_normalize_analysis_pretty_prints():
    normalized = normalize_analysis(f"```\n{ANALYSIS}\n```")
    assert normalized.startswith("{\n  \"summary\"")
    assert parse_analysis(normalized) == parse_analysis(ANALYSIS)


def test_analyze_is_repo_wide_and_validated(engine):
    run_feature(engine, "analyze", REPO)
    kwargs = engine.query.call_args.kwargs
    assert kwargs["target"] == "analyze"
    assert kwargs["file_path"] is None
    assert kwargs["postprocess"] is normalize_analysis
    prompt = engine.query.call_args.args[3](["chunk"])
    assert "healthScore" in prompt
    assert "untrusted" in prompt


# ------------------------------------------------------------------
# run_feature
# ------------------------------------------------------------------


def test_catalogue_names():
    assert set(FEATURES) == {
        "explain_file", "architecture", "workflow", "unit_tests", "improvements", "analyze",
    }


def test_unknown_feature(engine):
    with pytest.raises(PreconditionError, match="Unknown feature"):
        run_feature(engine, "summarize", REPO)
    engine.query.assert_not_called()


@pytest.mark.parametrize("name", ["explain_file", "unit_tests"])
def test_file_features_need_a_path(engine, name):
    with pytest.raises(PreconditionError, match="--file"):
        run_feature(engine, name, REPO)


def test_repo_wide_feature_rejects_path(engine):
    with pytest.raises(PreconditionError, match="does not take a file path"):
        run_feature(engine, "architecture", REPO, file_path="src/a.py")


def test_explain_file_scoped_to_file(engine):
    assert run_feature(engine, "explain_file", REPO, file_path="src/a.py") == "answer"
    engine.require_file.assert_called_once_with(REPO, "src/a.py")
    args, kwargs = engine.query.call_args
    assert args[:3] == (REPO, "explain_file", "Explain the purpose and logic of src/a.py")
    assert kwargs["target"] == "src/a.py"
    assert kwargs["file_path"] == "src/a.py"
    assert kwargs["top_k"] == 10


def test_architecture_uses_default_target_and_mermaid(engine):
    run_feature(engine, "architecture", REPO)
    engine.require_file.assert_not_called()
    kwargs = engine.query.call_args.kwargs
    assert kwargs["target"] == "architecture"
    assert kwargs["file_path"] is None
    assert kwargs["top_k"] == 15
    assert kwargs["postprocess"] is extract_mermaid


def test_improvements_optional_file(engine):
    run_feature(engine, "improvements", REPO)
    assert engine.query.call_args.kwargs["target"] == "repo-wide"
    run_feature(engine, "improvements", REPO, file_path="src/b.py")
    assert engine.query.call_args.kwargs["target"] == "src/b.py"


def test_prompt_builder_receives_chunks(engine):
    run_feature(engine, "unit_tests", REPO, file_path="src/a.py")
    build = engine.query.call_args.args[3]
    prompt = build(["--- File: src/a.py (chunk 0, score: 0.900) ---\ndef add(a, b): ..."])
    assert "src/a.py" in prompt
    assert "def add(a, b)" in prompt


# ------------------------------------------------------------------
# ask_repo
# ------------------------------------------------------------------


def test_ask_repo(engine):
    assert ask_repo(engine, REPO, "How is auth handled?") == "answer"
    args, kwargs = engine.query.call_args
    assert args[:3] == (REPO, "ask_repo", "How is auth handled?")
    assert kwargs["target"] == "ask_repo"
    assert kwargs["top_k"] == 8
    assert "How is auth handled?" in args[3](["chunk"])


def test_ask_repo_empty_question(engine):
    with pytest.raises(PreconditionError):
        ask_repo(engine, REPO, "   ")
    engine.query.assert_not_called()


# ------------------------------------------------------------------
# prompts
# ------------------------------------------------------------------


def test_prompts_wrap_chunks_as_untrusted_context():
    prompt = prompts.workflow_prompt(["first chunk", "second chunk"])
    assert "<context>\nfirst chunk\n\nsecond chunk\n</context>" in prompt
    assert "untrusted" in prompt


def test_architecture_prompt_asks_for_mermaid():
    assert "mermaid" in prompts.architecture_prompt(["x"]).lower()
