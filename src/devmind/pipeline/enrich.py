"""Issue and pull-request references mentioned in content."""

from __future__ import annotations

from dataclasses import dataclass, field

from devmind.pipeline import patterns


@dataclass(frozen=True)
class References:
    """Normalized ``#N`` references, in order of first mention."""

    issues: list[str] = field(default_factory=list)
    prs: list[str] = field(default_factory=list)


def _ordered(numbers: list[str]) -> list[str]:
    return list(dict.fromkeys(f"#{n}" for n in numbers))


def extract_references(content: str) -> References:
    """Pull issue and PR numbers out of free text.

    Closing keywords ("fixes #42", "resolves #7") and GitHub issue URLs name
    issues; "PR #N" and GitHub pull URLs name pull requests. When no issue is
    named explicitly, bare ``#N`` mentions that are not PR references count as
    issues, capped at MAX_BARE_REFERENCES.
    """
    prs = _ordered(
        [m.group(1) for m in patterns.PR_REFERENCE_RE.finditer(content)]
        + [m.group(1) for m in patterns.GITHUB_PULL_URL_RE.finditer(content)]
    )
    issues = _ordered(
        [m.group(1) for m in patterns.ISSUE_CLOSING_RE.finditer(content)]
        + [m.group(1) for m in patterns.GITHUB_ISSUE_URL_RE.finditer(content)]
    )
    if not issues:
        pr_spans = [m.span(0) for m in patterns.PR_REFERENCE_RE.finditer(content)]
        bare = [
            m.group(1)
            for m in patterns.BARE_REFERENCE_RE.finditer(content)
            if not any(start <= m.start() < end for start, end in pr_spans)
        ]
        issues = _ordered(bare)[: patterns.MAX_BARE_REFERENCES]
    return References(issues=issues, prs=prs)
