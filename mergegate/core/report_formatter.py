"""
Report Formatter
================
Single source of truth for every human-readable string the pipeline emits:
promotion summaries, failure headlines, chat messages and merge commit
messages.

DETERMINISM CONTRACT:
  - This module NEVER reads environment variables.
  - This module NEVER performs I/O.
  - Given the same inputs, it ALWAYS returns the exact same string.

Headline formats (byte-exact, asserted by tests):
    Promoted {sha} {source} → {target} ({mode}, {n} file(s) changed)
    [BLOCKED] {category headline}: {sha} on {source} → {target}{detail}
"""
from typing import Optional, Sequence

from mergegate.core.constants import ARROW, MERGE_COMMIT_PREFIX
from mergegate.models.reports import FailureCategory, FailureReport

SHORT_SHA_LENGTH = 7

# Fenced excerpts are trimmed again here so chat payloads stay small even
# when the stored excerpt is larger.
MESSAGE_EXCERPT_MAX_CHARS = 1500

CATEGORY_HEADLINES: dict[FailureCategory, str] = {
    FailureCategory.VALIDATION_FAILURE: "Validation failed",
    FailureCategory.PROMOTION_CONFLICT: "Promotion conflict",
    FailureCategory.INTERNAL_ERROR: "Pipeline error",
}

CATEGORY_HINTS: dict[FailureCategory, str] = {
    FailureCategory.VALIDATION_FAILURE: (
        "Fix the failing step and push again; the target branch was not changed."
    ),
    FailureCategory.PROMOTION_CONFLICT: (
        "The target branch changed outside the pipeline. "
        "Your commit passed validation; re-push or merge manually."
    ),
    FailureCategory.INTERNAL_ERROR: (
        "The pipeline itself failed. Check the service logs; the target branch was not changed."
    ),
}


def short_sha(commit: str) -> str:
    return commit[:SHORT_SHA_LENGTH]


def format_route(source: str, target: str) -> str:
    return f"{source} {ARROW} {target}"


def format_promotion_summary(
    commit: str,
    source: str,
    target: str,
    changed_paths: Sequence[str] = (),
    fast_forward: bool = False,
) -> str:
    mode = "fast-forward" if fast_forward else "merge commit"
    count = len(changed_paths)
    noun = "file" if count == 1 else "files"
    return (
        f"Promoted {short_sha(commit)} {format_route(source, target)} "
        f"({mode}, {count} {noun} changed)"
    )


def format_failure_headline(report: FailureReport) -> str:
    headline = CATEGORY_HEADLINES[report.category]
    detail = ""
    if report.failing_step:
        detail = f", step '{report.failing_step}'"
        if report.exit_code is not None:
            detail += f" exited {report.exit_code}"
    return (
        f"[BLOCKED] {headline}: {short_sha(report.commit)} on "
        f"{format_route(report.source_branch, report.target_branch)}{detail}"
    )


def trim_excerpt(excerpt: str, max_chars: int = MESSAGE_EXCERPT_MAX_CHARS) -> str:
    """Keep the tail of an excerpt; failures are usually at the end."""
    if len(excerpt) <= max_chars:
        return excerpt
    return "…" + excerpt[-max_chars:]


def format_failure_message(report: FailureReport) -> str:
    """Multi-line chat message: headline, commit, optional detail, excerpt, hint."""
    lines = [format_failure_headline(report), f"Commit: {report.commit}"]
    if report.message:
        lines.append(report.message)
    excerpt = report.output_excerpt.strip()
    if excerpt:
        lines.extend(["```", trim_excerpt(excerpt), "```"])
    lines.append(CATEGORY_HINTS[report.category])
    return "\n".join(lines)


def format_merge_commit_message(commit: str, source: str, target: str) -> str:
    return f"{MERGE_COMMIT_PREFIX} {short_sha(commit)} from {source} into {target}"


def format_step_detail(name: str, exit_code: int, timed_out: bool, error: Optional[str] = None) -> str:
    """One-line explanation of why a step failed, used as FailureReport.message."""
    if timed_out:
        return f"Step '{name}' timed out"
    if error:
        return f"Step '{name}' could not run: {error}"
    return f"Step '{name}' exited with code {exit_code}"
