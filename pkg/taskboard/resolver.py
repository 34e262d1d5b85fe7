"""
Assignee name resolution.

One matching cascade backs both @-mention autocomplete and the names
returned by transcript extraction. Tiers, best first:

  1. exact       query == display name
  2. first-name  query == first token of display name
  3. contains    display name contains query, or query contains first token
  4. email       query == email local part

All comparisons are case-insensitive. Within a tier the roster order
decides (first listed wins).
"""
import re
from typing import List, Optional, Sequence, Tuple

from .schema import MemberProfile

EXACT = 1
FIRST_NAME = 2
CONTAINS = 3
EMAIL = 4

TIERS = (EXACT, FIRST_NAME, CONTAINS, EMAIL)

# last "@" not preceded by a backslash, with no whitespace after it
_MENTION_RE = re.compile(r"(?<!\\)@([^\s@]*)$")


def _normalize(text: Optional[str]) -> str:
    return (text or "").strip().lower()


def match_tier(query: str, member: MemberProfile) -> Optional[int]:
    """Best tier `member` satisfies for an already-normalized query, or None."""
    display = member.display_name.lower()
    first = member.first_name.lower()

    if display == query:
        return EXACT
    if first == query:
        return FIRST_NAME
    if query in display or (first and first in query):
        return CONTAINS
    if member.email_local_part.lower() == query:
        return EMAIL
    return None


def resolve(query: Optional[str], roster: Sequence[MemberProfile]) -> Optional[MemberProfile]:
    """Pick the single best member for `query`, or None."""
    q = _normalize(query)
    if not q:
        return None

    best = None
    best_tier = None
    for member in roster:
        tier = match_tier(q, member)
        if tier is None:
            continue
        if tier == EXACT:
            return member
        if best_tier is None or tier < best_tier:
            best, best_tier = member, tier
    return best


def mention_candidates(fragment: Optional[str], roster: Sequence[MemberProfile]) -> List[MemberProfile]:
    """
    Every member matching any tier, best tier first, roster order within a tier.

    A bare "@" (empty fragment) lists the whole roster.
    """
    q = _normalize(fragment)
    if not q:
        return list(roster)

    ranked = []
    for index, member in enumerate(roster):
        tier = match_tier(q, member)
        if tier is not None:
            ranked.append((tier, index, member))
    ranked.sort(key=lambda r: (r[0], r[1]))
    return [member for _, _, member in ranked]


def mention_fragment(text: str, cursor: Optional[int] = None) -> Optional[Tuple[int, str]]:
    """
    Find the mention being typed at `cursor` (default: end of text).

    Returns (index of "@", fragment after it) when the last unescaped "@"
    before the cursor has no whitespace after it, else None.
    """
    if cursor is None:
        cursor = len(text)
    before = text[:cursor]
    match = _MENTION_RE.search(before)
    if not match:
        return None
    return match.start(), match.group(1)


def insert_mention(text: str, at_index: int, fragment: str, member: MemberProfile) -> str:
    """Replace "@fragment" at `at_index` with "@<display name>"."""
    end = at_index + 1 + len(fragment)
    return f"{text[:at_index]}@{member.display_name}{text[end:]}"
