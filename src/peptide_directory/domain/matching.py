"""Link scraped vendor listings to catalog products.

Listings arrive as free text ("BPC-157 5mg (10 vials)", "TB500 + BPC157
Blend"). Resolution normalizes the text, strips dosage/packaging noise and
looks the remainder up in an alias index built from product names, slugs
and synonyms: exact key, then the longest alias present as a whole word
sequence, then a bounded Levenshtein distance. Combination listings are
never linked to a single product.
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ..logging import get_logger

LOG = get_logger("matching")

METHOD_EXACT = "exact"
METHOD_SUBSTRING = "substring"
METHOD_FUZZY = "fuzzy"
METHOD_COMBO = "combo"
METHOD_NONE = "none"

MIN_ALIAS_LENGTH = 3

COMBO_KEYWORDS: Tuple[str, ...] = ("blend", "blends", "stack", "stacks", "combo", "bundle", "mix")

FILLER_WORDS: Tuple[str, ...] = (
    "peptide",
    "peptides",
    "research",
    "lyophilized",
    "lyophilised",
    "powder",
    "capsule",
    "capsules",
    "nasal",
    "spray",
    "vial",
    "vials",
    "kit",
    "pack",
)

_SIZE_NOISE = (
    re.compile(r"\d+(?:[.,]\d+)?\s*(?:mg|mcg|µg|ug|ml|iu)\b(?:\s*/\s*(?:vial|ml|kit|bottle))?", re.IGNORECASE),
    re.compile(r"\b\d+\s*x\b|\bx\s*\d+\b", re.IGNORECASE),
    re.compile(r"\b\d+\s*(?:vials?|pcs|pieces|pack|kits?)\b", re.IGNORECASE),
)
_JOIN_TOKEN = re.compile(r"\w\s+[+&/]\s+[a-z]|\w[+&/][a-z]|\w\s+plus\s+[a-z]", re.IGNORECASE)
# "w/" and "w/o" (with, without) qualify a single product.
_WITH_ABBREVIATION = re.compile(r"\bw/(?:o\b)?", re.IGNORECASE)
_NUMBER = re.compile(r"\d+")
_LETTER_DIGIT = re.compile(r"(?<=[a-z])(?=\d)|(?<=\d)(?=[a-z])")


def _strip_size_noise(raw: str) -> str:
    out = raw
    for pattern in _SIZE_NOISE:
        out = pattern.sub(" ", out)
    return out


def normalize_product_name(name: str) -> str:
    """Lowercase, fold accents and split to alphanumeric words.

    Letter/digit boundaries become word breaks so "BPC157", "bpc-157" and
    "BPC 157" all normalize to "bpc 157".
    """
    if not isinstance(name, str):
        return ""
    folded = unicodedata.normalize("NFKD", name.replace("\u00a0", " "))
    ascii_only = "".join(ch for ch in folded if not unicodedata.combining(ch)).lower()
    ascii_only = _strip_size_noise(ascii_only)
    words = re.sub(r"[^a-z0-9]+", " ", ascii_only)
    words = _LETTER_DIGIT.sub(" ", words)
    kept = [w for w in words.split() if w not in FILLER_WORDS]
    return " ".join(kept)


def compact_key(normalized: str) -> str:
    return normalized.replace(" ", "")


def _levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) > len(b):
        a, b = b, a
    prev = list(range(len(a) + 1))
    for j, bj in enumerate(b, start=1):
        cur = [j] + [0] * len(a)
        for i, ai in enumerate(a, start=1):
            cost = 0 if ai == bj else 1
            cur[i] = min(cur[i - 1] + 1, prev[i] + 1, prev[i - 1] + cost)
        prev = cur
    return prev[len(a)]


def _field(product: Any, name: str) -> Any:
    if isinstance(product, dict):
        return product.get(name)
    return getattr(product, name, None)


@dataclass(frozen=True)
class MatchResult:
    product_id: Optional[str]
    alias: Optional[str] = None
    method: str = METHOD_NONE
    is_combo: bool = False

    @property
    def matched(self) -> bool:
        return self.product_id is not None


class AliasIndex:
    """Normalized alias -> product id, with ambiguous aliases removed."""

    def __init__(self, aliases: Dict[str, str]) -> None:
        self.aliases = aliases
        self.compact: Dict[str, str] = {}
        dropped: Set[str] = set()
        for alias, product_id in aliases.items():
            key = compact_key(alias)
            owner = self.compact.get(key)
            if owner is not None and owner != product_id:
                dropped.add(key)
            self.compact[key] = product_id
        for key in dropped:
            self.compact.pop(key, None)
        # Longest first; contained() skips hits nested inside a longer one.
        self._by_length: List[str] = sorted(
            (a for a in aliases if len(compact_key(a)) >= MIN_ALIAS_LENGTH),
            key=len,
            reverse=True,
        )

    @classmethod
    def from_products(cls, products: Iterable[Any]) -> "AliasIndex":
        """Build from dicts or Product records exposing slug, name and synonyms."""
        aliases: Dict[str, str] = {}
        ambiguous: Set[str] = set()
        for product in products:
            slug = _field(product, "slug")
            if not slug:
                continue
            product_id = str(_field(product, "id") or slug)
            candidates = [_field(product, "name"), slug]
            synonyms = _field(product, "synonyms") or []
            if isinstance(synonyms, str):
                synonyms = [synonyms]
            candidates.extend(synonyms)
            for candidate in candidates:
                alias = normalize_product_name(str(candidate or ""))
                if not alias:
                    continue
                owner = aliases.get(alias)
                if owner is not None and owner != product_id:
                    ambiguous.add(alias)
                aliases[alias] = product_id
        for alias in ambiguous:
            LOG.debug("Alias '%s' claimed by several products; ignoring it", alias)
            aliases.pop(alias, None)
        return cls(aliases)

    def __len__(self) -> int:
        return len(self.aliases)

    # ---- lookups -------------------------------------------------------------
    def exact(self, normalized: str) -> Optional[Tuple[str, str]]:
        if normalized in self.aliases:
            return self.aliases[normalized], normalized
        key = compact_key(normalized)
        if key in self.compact:
            return self.compact[key], normalized
        return None

    def contained(self, normalized: str) -> List[Tuple[str, str]]:
        """Aliases found as whole word sequences, longest first, nested hits removed."""
        padded = f" {normalized} "
        spans: List[Tuple[int, int, str]] = []
        hits: List[Tuple[str, str]] = []
        for alias in self._by_length:
            pos = padded.find(f" {alias} ")
            if pos < 0:
                continue
            start, end = pos, pos + len(alias)
            if any(s <= start and end <= e for s, e, _ in spans):
                continue
            spans.append((start, end, alias))
            hits.append((self.aliases[alias], alias))
        return hits

    def nearest(self, normalized: str) -> Optional[Tuple[str, str, int]]:
        key = compact_key(normalized)
        if len(key) < MIN_ALIAS_LENGTH:
            return None
        numbers = _NUMBER.findall(key)
        best: Optional[Tuple[str, str, int]] = None
        tied = False
        for alias_key, product_id in self.compact.items():
            if len(alias_key) < MIN_ALIAS_LENGTH:
                continue
            # Edits only apply to letters: "mt1" is not a typo of "mt2".
            if _NUMBER.findall(alias_key) != numbers:
                continue
            d = _levenshtein(key, alias_key)
            if best is None or d < best[2]:
                best = (product_id, alias_key, d)
                tied = False
            elif d == best[2] and product_id != best[0]:
                tied = True
        if best is None or tied:
            return None
        threshold = max(1, round(0.2 * max(len(best[1]), len(key))))
        if best[2] <= threshold:
            return best
        return None


def is_combo_listing(raw_name: str, normalized: Optional[str] = None) -> bool:
    """Blend/stack keywords or a join token between two names."""
    norm = normalized if normalized is not None else normalize_product_name(raw_name)
    words = set(norm.split())
    if words.intersection(COMBO_KEYWORDS):
        return True
    text = _WITH_ABBREVIATION.sub(" ", _strip_size_noise(raw_name or ""))
    return bool(_JOIN_TOKEN.search(text))


def resolve(index: AliasIndex, raw_name: str) -> MatchResult:
    """Resolve a listing name to a product id or report why it was not linked."""
    normalized = normalize_product_name(raw_name)
    if not normalized:
        return MatchResult(None)

    hit = index.exact(normalized)
    if hit:
        return MatchResult(hit[0], hit[1], METHOD_EXACT)

    if is_combo_listing(raw_name, normalized):
        LOG.debug("Combo listing not linked: %r", raw_name)
        return MatchResult(None, None, METHOD_COMBO, True)

    contained = index.contained(normalized)
    distinct = {product_id for product_id, _ in contained}
    if len(distinct) > 1:
        LOG.debug("Listing %r names %d products; treating as combo", raw_name, len(distinct))
        return MatchResult(None, None, METHOD_COMBO, True)
    if contained:
        product_id, alias = contained[0]
        return MatchResult(product_id, alias, METHOD_SUBSTRING)

    near = index.nearest(normalized)
    if near:
        return MatchResult(near[0], near[1], METHOD_FUZZY)
    return MatchResult(None)


def calculate_discounted_price(price_per_mg: float, discount_percentage: Optional[float]) -> float:
    if not discount_percentage or discount_percentage <= 0:
        return price_per_mg
    return price_per_mg * (1 - discount_percentage / 100)


_MG_AMOUNT = re.compile(r"(\d+(?:[.,]\d+)?)\s*(mg|mcg|µg|ug)\b", re.IGNORECASE)
_MULTIPLIER = re.compile(r"(\d+)\s*x\s*(?=\d)|\bx\s*(\d+)\b|(\d+)\s*vials?\b", re.IGNORECASE)


def extract_size_mg(text: str) -> Optional[float]:
    """Total milligrams named in a listing ("2mg/vial x 10 vials" -> 20.0)."""
    if not text:
        return None
    m = _MG_AMOUNT.search(text)
    if not m:
        return None
    amount = float(m.group(1).replace(",", "."))
    if m.group(2).lower() != "mg":
        amount = amount / 1000.0
    mult = _MULTIPLIER.search(text)
    if mult:
        count = next(int(g) for g in mult.groups() if g)
        if count > 0:
            amount *= count
    return round(amount, 4)
