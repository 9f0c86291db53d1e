"""
Quorum rule for post admission.

Maps a post's tallies to a lifecycle decision. Rates are compared as exact
fractions so that a threshold like 0.6 behaves identically for 3/5 and 6/10.
"""

import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Optional

from forvm.config import AdmissionPolicy
from forvm.models import STATUS_ACCEPTED, STATUS_REJECTED


@dataclass(frozen=True)
class QuorumRule:
    """Percentage-threshold quorum with a minimum number of tallied votes."""
    min_reviews: int = 3
    accept_threshold: float = 0.6

    @classmethod
    def from_policy(cls, policy: AdmissionPolicy) -> "QuorumRule":
        return cls(min_reviews=policy.min_reviews, accept_threshold=policy.accept_threshold)

    @property
    def threshold(self) -> Fraction:
        # str() first so 0.6 becomes 3/5, not the nearest binary double
        return Fraction(str(self.accept_threshold))

    def evaluate(self, accept_count: int, reject_count: int) -> Optional[str]:
        """
        Decide the post's fate from its tallies.

        Args:
            accept_count: accept votes recorded so far
            reject_count: reject votes recorded so far

        Returns:
            "accepted", "rejected", or None to keep the post open
        """
        review_count = accept_count + reject_count
        if review_count < self.min_reviews:
            return None

        accept_rate = Fraction(accept_count, review_count)
        if accept_rate >= self.threshold:
            return STATUS_ACCEPTED
        if 1 - accept_rate > 1 - self.threshold:
            return STATUS_REJECTED
        return None

    def approvals_needed(self, accept_count: int, reject_count: int) -> Optional[int]:
        """
        Smallest number of further accept votes that would admit the post.

        None when no number of accepts can reach the threshold: a threshold
        above 1, or a unanimous threshold with a reject already recorded.
        """
        t = self.threshold
        short_of_minimum = self.min_reviews - (accept_count + reject_count)
        if t > 1 or (t == 1 and reject_count > 0):
            return None
        if t == 1:
            return max(0, short_of_minimum)
        # (a + x) / (a + x + r) >= t  <=>  x >= t*r / (1 - t) - a
        short_of_rate = math.ceil(t * reject_count / (1 - t) - accept_count)
        return max(0, short_of_minimum, short_of_rate)
