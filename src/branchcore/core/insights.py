"""
Branch analysis helpers used to derive insights.

Pure functions over a branch: frequent key points and a coarse
word-list sentiment tally. The graph store turns their results into
``Insight`` records.
"""

import re
from collections import Counter
from dataclasses import dataclass
from typing import List

from branchcore.core.models import Branch

POSITIVE_WORDS = frozenset({"good", "great", "positive", "success", "improve", "yes"})
NEGATIVE_WORDS = frozenset({"bad", "fail", "negative", "problem", "issue", "no"})

_WORD_RE = re.compile(r"[a-z']+")


@dataclass
class SentimentTally:
    positive: int = 0
    negative: int = 0
    neutral: int = 0

    @property
    def has_signal(self) -> bool:
        return bool(self.positive or self.negative)

    @property
    def trend(self) -> str:
        if self.positive > self.negative:
            return "positive"
        if self.negative > self.positive:
            return "negative"
        return "mixed"

    def describe(self) -> str:
        return (
            f"Branch sentiment trend: {self.trend} "
            f"({self.positive} positive, {self.negative} negative, {self.neutral} neutral)"
        )


def frequent_key_points(branch: Branch) -> List[str]:
    """Key points mentioned by more than one thought, in first-seen order."""
    counts: Counter = Counter()
    for thought in branch.thoughts:
        counts.update(thought.key_points)
    return [kp for kp, count in counts.items() if count > 1]


def sentiment_tally(branch: Branch) -> SentimentTally:
    """
    Classify each thought as positive, negative or neutral.

    A thought containing any positive word counts as positive even if it
    also contains negative words.
    """
    tally = SentimentTally()
    for thought in branch.thoughts:
        words = set(_WORD_RE.findall(thought.content.lower()))
        if words & POSITIVE_WORDS:
            tally.positive += 1
        elif words & NEGATIVE_WORDS:
            tally.negative += 1
        else:
            tally.neutral += 1
    return tally
