"""
Feed view projection: filter and sort posts for display.
"""

from typing import Callable, Dict, List, Optional, Sequence, Tuple

from omnitruth.models import ALL, Post, SortKey, VerdictFilter


# (sort key, descending)
_ORDERINGS: Dict[SortKey, Tuple[Callable[[Post], object], bool]] = {
    SortKey.LATEST: (lambda p: p.timestamp, True),
    SortKey.TRUST_HIGH: (lambda p: p.trust_score, True),
    SortKey.TRUST_LOW: (lambda p: p.trust_score, False),
    SortKey.CROWD_HIGH: (lambda p: p.crowd_score, True),
}


def project(
    posts: Sequence[Post],
    filter_verdict: VerdictFilter = ALL,
    sort_key: Optional[SortKey] = SortKey.LATEST,
) -> List[Post]:
    """
    Derive the ordered list of posts to display.

    Filters by verdict first (``ALL`` keeps everything), then sorts. The sort
    is stable, so posts with equal keys keep their input order; a
    ``sort_key`` of None keeps the input order entirely. Neither the input
    sequence nor any post in it is modified.
    """
    if filter_verdict == ALL:
        result = list(posts)
    else:
        result = [p for p in posts if p.verdict == filter_verdict]

    if sort_key is None:
        return result

    key, descending = _ORDERINGS[SortKey(sort_key)]
    # sorted(reverse=True) keeps equal elements in their original order
    return sorted(result, key=key, reverse=descending)
