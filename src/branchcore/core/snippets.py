"""
Code snippets and branch reviews.

Snippets are free-standing text fragments tagged by the caller (tagging a
snippet with a branch id attaches it to that branch's status view).
Reviews flag thoughts carrying code blocks or improvement language.
"""

import re
from typing import List, Optional, Sequence

from branchcore.core.exceptions import ValidationError
from branchcore.core.models import Branch, ReviewSuggestion, Snippet

_CODE_BLOCK_RE = re.compile(r"```(?:js|ts|py|javascript|typescript|python)\b[\s\S]+?```", re.IGNORECASE)
_IMPROVEMENT_RE = re.compile(r"\b(bad|fix\w*|improv\w*|refactor\w*|bugs?)\b", re.IGNORECASE)


class SnippetLibrary:
    def __init__(self):
        self._snippets: List[Snippet] = []
        self._counter = 0

    def add(self, content: str, tags: Optional[Sequence[str]] = None, author: Optional[str] = None) -> Snippet:
        if not content or not content.strip():
            raise ValidationError("content", "snippet content cannot be empty")
        self._counter += 1
        snippet = Snippet(id=f"snippet-{self._counter}", content=content, tags=list(tags or []), author=author)
        self._snippets.append(snippet)
        return snippet

    def search(self, query: str, top_n: int = 5) -> List[Snippet]:
        """Case-insensitive substring match on content or any tag, newest first."""
        needle = query.lower()
        matches = [
            s for s in self._snippets
            if needle in s.content.lower() or any(needle in tag.lower() for tag in s.tags)
        ]
        # Ties on timestamp fall back to creation order
        matches = sorted(enumerate(matches), key=lambda pair: (pair[1].created, pair[0]), reverse=True)
        return [s for _, s in matches][:top_n]

    def tagged(self, tag: str) -> List[Snippet]:
        return [s for s in self._snippets if tag in s.tags]

    def clear(self) -> None:
        self._snippets.clear()

    def __len__(self) -> int:
        return len(self._snippets)


def review_branch(branch: Branch) -> List[ReviewSuggestion]:
    """One suggestion per thought with a fenced code block or improvement keywords."""
    reviews = []
    for thought in branch.thoughts:
        if _CODE_BLOCK_RE.search(thought.content):
            content = "Static analysis review: found code block in thought"
        elif _IMPROVEMENT_RE.search(thought.content):
            content = f"Review suggested: {thought.content}"
        else:
            continue
        reviews.append(
            ReviewSuggestion(
                id=f"review-{branch.id}-{thought.id}",
                branch_id=branch.id,
                thought_id=thought.id,
                content=content,
            )
        )
    return reviews
