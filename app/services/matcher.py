"""
Candidate matching: accent-insensitive name lookup, exclusion filtering and
phone number normalization.
"""
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from app.models.candidate import Candidate, Reference, UNKNOWN_POSITION
from app.utils.exceptions import AmbiguousCandidateError, CandidateNotFoundError

# Match tiers, best first
TIER_EXACT = 1
TIER_CONTAINS = 2
TIER_NORMALIZED_EXACT = 3
TIER_NORMALIZED_CONTAINS = 4
TIER_TOKEN = 5

MIN_PHONE_DIGITS = 7
MAX_PHONE_DIGITS = 15
LOCAL_NUMBER_DIGITS = 8

PHONE_PATTERN = re.compile(r"\+\d{1,3}[\s-]?\d{6,12}|\+?\d{7,15}|\d{4}[\s-]\d{4}")


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text or "")
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def normalize_name(text: str) -> str:
    """Lowercase, accent-free, single spaced"""
    return " ".join(strip_accents(text).lower().split())


def name_tokens(text: str) -> List[str]:
    return [t for t in re.split(r"[^a-z0-9]+", normalize_name(text)) if t]


def letters_only(text: str) -> str:
    return re.sub(r"[^a-z]", "", normalize_name(text))


@dataclass
class MatchResult:
    """Candidates found at the best matching tier"""
    query: str
    tier: Optional[int] = None
    matches: List[Candidate] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return bool(self.matches)

    @property
    def ambiguous(self) -> bool:
        return len(self.matches) > 1

    @property
    def candidate(self) -> Optional[Candidate]:
        return self.matches[0] if len(self.matches) == 1 else None


def match_tier(query: str, name: str) -> Optional[int]:
    """Best tier at which `query` matches `name`, or None"""
    q, n = (query or "").strip().lower(), (name or "").strip().lower()
    if not q or not n:
        return None
    if q == n:
        return TIER_EXACT
    if q in n or n in q:
        return TIER_CONTAINS
    qn, nn = normalize_name(q), normalize_name(n)
    if qn == nn:
        return TIER_NORMALIZED_EXACT
    if qn in nn or nn in qn:
        return TIER_NORMALIZED_CONTAINS
    q_tokens, n_tokens = name_tokens(q), name_tokens(n)
    if q_tokens and n_tokens and (q_tokens[0] in (n_tokens[0], n_tokens[-1])
                                  or q_tokens[-1] in (n_tokens[0], n_tokens[-1])):
        return TIER_TOKEN
    return None


def rank_candidates(query: str, candidates: Iterable[Candidate]) -> MatchResult:
    best: Optional[int] = None
    matches: List[Candidate] = []
    for candidate in candidates:
        tier = match_tier(query, candidate.name)
        if tier is None:
            continue
        if best is None or tier < best:
            best, matches = tier, [candidate]
        elif tier == best:
            matches.append(candidate)
    return MatchResult(query=query, tier=best, matches=matches)


def find_candidate(name_or_id: str, candidates: List[Candidate]) -> Candidate:
    """Resolve one candidate by id or name.

    Raises CandidateNotFoundError or AmbiguousCandidateError.
    """
    for candidate in candidates:
        if candidate.id == name_or_id:
            return candidate
    result = rank_candidates(name_or_id, candidates)
    if not result.found:
        raise CandidateNotFoundError(name_or_id)
    if result.ambiguous:
        raise AmbiguousCandidateError(name_or_id, [c.name for c in result.matches])
    return result.candidate


def find_all(names: Iterable[str], candidates: List[Candidate]) -> List[Candidate]:
    """Union of the best-tier matches of several names, in directory order"""
    ids = set()
    for name in names:
        if name and name.strip():
            ids.update(c.id for c in rank_candidates(name, candidates).matches)
    return [c for c in candidates if c.id in ids]


def is_excluded(name: str, exclude_names: Iterable[str]) -> bool:
    """Substring either way on the normalized names, or a first or second name token"""
    full = normalize_name(name)
    tokens = full.split()[:2]
    for raw in exclude_names or []:
        excluded = normalize_name(raw)
        if not excluded:
            continue
        if excluded in full or full in excluded or excluded in tokens:
            return True
    return False


def filter_excluded(candidates: List[Candidate], exclude_names: Iterable[str]) -> List[Candidate]:
    exclude_names = [n for n in (exclude_names or []) if n and n.strip()]
    if not exclude_names:
        return list(candidates)
    return [c for c in candidates if not is_excluded(c.name, exclude_names)]


def filter_references(references: List[Reference], exclude_names: Iterable[str]) -> List[Reference]:
    exclude_names = [n for n in (exclude_names or []) if n and n.strip()]
    if not exclude_names:
        return list(references)
    return [r for r in references if not is_excluded(r.name, exclude_names)]


def singular(token: str) -> str:
    """Drop a Spanish or English plural ending: desarrolladores -> desarrollador"""
    if len(token) > 5 and token.endswith("es") and token[-3] in "rlnd":
        return token[:-2]
    if len(token) > 4 and token.endswith("s"):
        return token[:-1]
    return token


def position_matches(query: str, position: str) -> bool:
    if not query or not position or position == UNKNOWN_POSITION:
        return False
    q, p = normalize_name(query), normalize_name(position)
    if q in p or p in q:
        return True
    ql, pl = letters_only(query), letters_only(position)
    if ql and pl and (ql in pl or pl in ql):
        return True
    # a shared significant word, ignoring plurals
    q_words = {singular(t) for t in name_tokens(query) if len(t) > 3}
    return bool(q_words & {singular(t) for t in name_tokens(position) if len(t) > 3})


def filter_by_position(candidates: List[Candidate], position: str) -> List[Candidate]:
    return [c for c in candidates if position_matches(position, c.position)]


def distinct_positions(candidates: List[Candidate]) -> List[Tuple[str, int]]:
    """Known positions with candidate counts, most populated first"""
    counts = {}
    for c in candidates:
        if c.has_known_position:
            counts[c.position] = counts.get(c.position, 0) + 1
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


def mentioned_candidates(text: str, candidates: List[Candidate]) -> List[Candidate]:
    """Candidates whose full name appears verbatim (accent-insensitive) in text"""
    haystack = f" {normalize_name(text)} "
    found = []
    for c in candidates:
        full = normalize_name(c.name)
        if len(full.split()) < 2:
            continue
        if f" {full} " in haystack or re.search(rf"\b{re.escape(full)}\b", haystack):
            found.append(c)
    return found


def find_reference(name: str, candidates: List[Candidate]) -> Optional[Tuple[Candidate, Reference]]:
    for c in candidates:
        for ref in c.references:
            if match_tier(name, ref.name) in (TIER_EXACT, TIER_CONTAINS,
                                              TIER_NORMALIZED_EXACT, TIER_NORMALIZED_CONTAINS):
                return c, ref
    return None


def normalize_phone(raw: Optional[str], default_country_code: str = "507") -> Optional[str]:
    """Best-effort E.164-like normalization.

    Numbers without a leading '+' get the default country code unless they
    already start with it and are longer than a local number.
    """
    if not raw:
        return None
    cleaned = re.sub(r"[^\d+]", "", str(raw).strip())
    has_plus = cleaned.startswith("+")
    digits = cleaned.replace("+", "")
    if not digits:
        return None
    if not has_plus:
        digits = digits.lstrip("0") or digits
        already_prefixed = digits.startswith(default_country_code) and \
            len(digits) >= len(default_country_code) + LOCAL_NUMBER_DIGITS
        if not already_prefixed:
            digits = f"{default_country_code}{digits}"
    if not MIN_PHONE_DIGITS <= len(digits) <= MAX_PHONE_DIGITS:
        return None
    return f"+{digits}"


def phone_digits(raw: Optional[str]) -> str:
    return re.sub(r"\D", "", raw or "")


def same_phone(a: Optional[str], b: Optional[str], default_country_code: str = "507") -> bool:
    na, nb = normalize_phone(a, default_country_code), normalize_phone(b, default_country_code)
    return bool(na) and na == nb


def extract_phone_numbers(text: str, default_country_code: str = "507") -> List[str]:
    """Normalized phone numbers mentioned in free text, in order, deduplicated"""
    found = []
    for match in PHONE_PATTERN.finditer(text or ""):
        digits = phone_digits(match.group())
        if len(digits) < LOCAL_NUMBER_DIGITS:
            continue
        number = normalize_phone(match.group(), default_country_code)
        if number and number not in found:
            found.append(number)
    return found
