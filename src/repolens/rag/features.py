"""Repository features built on ``RagEngine.query``.

Each feature fixes its retrieval query, top-K, cache target and prompt.
File-scoped features validate the file against the ingested set first.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from repolens.errors import MalformedResponseError, PreconditionError
from repolens.rag import prompts
from repolens.rag.engine import Postprocess, RagEngine

logger = logging.getLogger(__name__)

_MERMAID_RE = re.compile(r"```mermaid([\s\S]*?)```", re.IGNORECASE)
_CODE_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

ASK_REPO = "ask_repo"
ASK_REPO_TOP_K = 8


def extract_mermaid(output: str) -> str:
    """Return the first mermaid block of *output*, re-fenced.

    Raises:
        MalformedResponseError: No non-empty mermaid block is present.
    """
    match = _MERMAID_RE.search(output or "")
    if not match or not match.group(1).strip():
        raise MalformedResponseError("No valid Mermaid diagram found in the model output.")
    return f"```mermaid\n{match.group(1).strip()}\n```"


def parse_analysis(output: str) -> dict:
    """Parse the ``analyze`` feature's JSON health review.

    Code fences around the object are tolerated. The result has a string
    ``summary``, a ``healthScore`` in 0-100, a list of string
    ``suggestions`` and a list of ``topIssues`` objects.

    Raises:
        MalformedResponseError: The output is not JSON or not of that shape.
    """
    cleaned = _CODE_FENCE_RE.sub("", output or "").strip()
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.error("Unparseable analysis output: %.200s", output)
        raise MalformedResponseError(f"Model returned malformed JSON ({exc.msg}). Try again.") from exc

    problem = _analysis_shape_problem(parsed)
    if problem:
        logger.error("Analysis output has the wrong shape (%s): %.200s", problem, output)
        raise MalformedResponseError(f"Model returned an analysis with {problem}. Try again.")
    return parsed


def _analysis_shape_problem(parsed: object) -> str | None:
    if not isinstance(parsed, dict):
        return "a non-object top level"
    if not isinstance(parsed.get("summary"), str):
        return "no string summary"
    score = parsed.get("healthScore")
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 100:
        return "a healthScore outside 0-100"
    suggestions = parsed.get("suggestions")
    if not isinstance(suggestions, list) or not all(isinstance(s, str) for s in suggestions):
        return "suggestions that are not a list of strings"
    issues = parsed.get("topIssues")
    if not isinstance(issues, list) or not all(isinstance(i, dict) for i in issues):
        return "topIssues that are not a list of objects"
    return None


def normalize_analysis(output: str) -> str:
    """Postprocess for ``analyze``: validated, pretty-printed JSON."""
    return json.dumps(parse_analysis(output), indent=2, ensure_ascii=False)


@dataclass(frozen=True)
class Feature:
    """Retrieval + prompt recipe for one feature.

    Attributes:
        name: Feature name (also the cache key's feature component).
        query: Retrieval query; ``{path}`` is replaced with the file path.
        top_k: Number of vector matches requested.
        build_prompt: ``(file_path, chunks) -> prompt``.
        file_scope: ``required``, ``optional`` or ``none``.
        default_target: Cache target when no file path applies.
        postprocess: Optional transform/validation of the model output.
    """

    name: str
    query: str
    top_k: int
    build_prompt: Callable[[str | None, Sequence[str]], str]
    file_scope: str = "none"
    default_target: str = ""
    postprocess: Postprocess | None = None


FEATURES: dict[str, Feature] = {
    f.name: f
    for f in (
        Feature(
            name="explain_file",
            query="Explain the purpose and logic of {path}",
            top_k=10,
            build_prompt=lambda path, chunks: prompts.explain_file_prompt(path or "", chunks),
            file_scope="required",
        ),
        Feature(
            name="architecture",
            query="entry points imports exports module dependencies main components architecture",
            top_k=15,
            build_prompt=lambda _path, chunks: prompts.architecture_prompt(chunks),
            default_target="architecture",
            postprocess=extract_mermaid,
        ),
        Feature(
            name="workflow",
            query="entry point main function startup initialization request flow execution",
            top_k=10,
            build_prompt=lambda _path, chunks: prompts.workflow_prompt(chunks),
            default_target="workflow",
        ),
        Feature(
            name="unit_tests",
            query="exported functions and classes in {path}",
            top_k=10,
            build_prompt=lambda path, chunks: prompts.unit_tests_prompt(path or "", chunks),
            file_scope="required",
        ),
        Feature(
            name="improvements",
            query="code quality patterns anti-patterns performance security improvements",
            top_k=12,
            build_prompt=lambda _path, chunks: prompts.improvements_prompt(chunks),
            file_scope="optional",
            default_target="repo-wide",
        ),
        Feature(
            name="analyze",
            query="code quality error handling validation tests structure complexity duplication",
            top_k=15,
            build_prompt=lambda _path, chunks: prompts.analyze_prompt(chunks),
            default_target="analyze",
            postprocess=normalize_analysis,
        ),
    )
}


def run_feature(
    engine: RagEngine,
    name: str,
    repository_id: str,
    file_path: str | None = None,
) -> str:
    """Run feature *name* against *repository_id*.

    Raises:
        PreconditionError: Unknown feature, a missing required file path, or
            a file path given to a repository-wide feature.
    """
    feature = FEATURES.get(name)
    if feature is None:
        raise PreconditionError(
            f"Unknown feature '{name}'. Available: {', '.join(sorted(FEATURES))}, {ASK_REPO}",
            repository_id=repository_id,
        )
    if feature.file_scope == "required" and not file_path:
        raise PreconditionError(
            f"Feature '{name}' needs a file path (--file).", repository_id=repository_id
        )
    if feature.file_scope == "none" and file_path:
        raise PreconditionError(
            f"Feature '{name}' is repository-wide and does not take a file path.",
            repository_id=repository_id,
        )

    if file_path:
        engine.require_file(repository_id, file_path)

    return engine.query(
        repository_id,
        feature.name,
        feature.query.format(path=file_path or ""),
        lambda chunks: feature.build_prompt(file_path, chunks),
        target=file_path or feature.default_target,
        top_k=feature.top_k,
        file_path=file_path,
        postprocess=feature.postprocess,
    )


def ask_repo(engine: RagEngine, repository_id: str, question: str) -> str:
    """Answer a free-form question about *repository_id* (never cached by default)."""
    if not question.strip():
        raise PreconditionError("Question is empty.", repository_id=repository_id)
    return engine.query(
        repository_id,
        ASK_REPO,
        question,
        lambda chunks: prompts.ask_repo_prompt(question, chunks),
        target=ASK_REPO,
        top_k=ASK_REPO_TOP_K,
    )
