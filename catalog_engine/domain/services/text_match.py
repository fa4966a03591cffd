# catalog_engine/domain/services/text_match.py
"""
Text primitives for the search paths: normalization, a light stemmer for the
full-text document, typo-tolerant similarity and the four-way match union
(full-text, fuzzy, substring, synonym).
"""
import re
from difflib import SequenceMatcher
from typing import Iterable, List, Optional

from catalog_engine.domain.models.product import Product
from catalog_engine.domain.models.search import TextQuery

_TOKEN_RE = re.compile(r"[0-9a-z]+")
_SPACE_RE = re.compile(r"\s+")


def normalize(text: Optional[str]) -> str:
    if not text:
        return ""
    return _SPACE_RE.sub(" ", text.lower()).strip()


def _stem(token: str) -> str:
    if len(token) <= 3:
        return token
    if token.endswith("ies") and len(token) > 4:
        return token[:-3] + "y"
    if token.endswith("sses"):
        return token[:-2]
    if token.endswith("s") and not token.endswith("ss"):
        return token[:-1]
    return token


def tokenize(text: Optional[str]) -> List[str]:
    return [_stem(t) for t in _TOKEN_RE.findall(normalize(text))]


def full_text_rank(query: str, document: str) -> float:
    """Share of distinct query terms present in the document, in [0, 1]."""
    q_terms = set(tokenize(query))
    if not q_terms:
        return 0.0
    d_terms = set(tokenize(document))
    return len(q_terms & d_terms) / len(q_terms)


def full_text_match(query: str, document: str) -> bool:
    # every query term must be present (plain AND query)
    return bool(tokenize(query)) and full_text_rank(query, document) == 1.0


def fuzzy_similarity(query: str, text: Optional[str]) -> float:
    """
    Typo-tolerant similarity in [0, 1]. Compares the query against the whole
    text and against every window of the text with as many words as the
    query, so a short query is not penalized by a long product name.
    """
    q = normalize(query)
    t = normalize(text)
    if not q or not t:
        return 0.0
    best = SequenceMatcher(None, q, t).ratio()
    q_words = q.split(" ")
    t_words = t.split(" ")
    n = len(q_words)
    if len(t_words) > n:
        for i in range(len(t_words) - n + 1):
            window = " ".join(t_words[i:i + n])
            best = max(best, SequenceMatcher(None, q, window).ratio())
            if best == 1.0:
                break
    return best


def contains(needle: str, *haystacks: Optional[str]) -> bool:
    n = normalize(needle)
    if not n:
        return False
    return any(n in normalize(h) for h in haystacks if h)


def expand_synonyms(query: str, groups: Iterable) -> List[str]:
    """
    Members of every active group the query belongs to: the query equals one
    of the group's synonyms, or the group's term contains the query.
    """
    q = normalize(query)
    if not q:
        return []
    out: List[str] = []
    for group in groups:
        if not getattr(group, "is_active", True):
            continue
        members = [normalize(s) for s in group.synonyms]
        if q in members or q in normalize(group.term):
            for m in [normalize(group.term), *members]:
                if m and m != q and m not in out:
                    out.append(m)
    return out


def matches_text(product: Product, text: TextQuery, fuzzy_threshold: float) -> bool:
    """Union of the four match paths."""
    q = text.raw
    if full_text_match(q, product.search_document()):
        return True
    if max(fuzzy_similarity(q, product.name), fuzzy_similarity(q, product.sku)) >= fuzzy_threshold:
        return True
    if contains(q, product.name, product.description, product.sku):
        return True
    return any(contains(s, product.name, product.description) for s in text.synonyms)
