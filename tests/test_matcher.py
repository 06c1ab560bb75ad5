import pytest

from app.services.matcher import (
    TIER_EXACT,
    TIER_NORMALIZED_EXACT,
    distinct_positions,
    extract_phone_numbers,
    filter_by_position,
    filter_excluded,
    find_all,
    find_candidate,
    find_reference,
    match_tier,
    mentioned_candidates,
    normalize_phone,
    position_matches,
    same_phone,
)
from app.utils.exceptions import AmbiguousCandidateError, CandidateNotFoundError


class TestNameMatching:
    """Ranked, accent-insensitive lookup"""

    def test_exact_match(self, candidates):
        """A full name returns that one candidate"""
        assert find_candidate("Carlos Gómez", candidates).id == "u1"

    def test_lookup_by_id(self, candidates):
        """Ids are accepted as well as names"""
        assert find_candidate("u3", candidates).name == "Ana López"

    def test_shared_first_name_is_ambiguous(self, candidates):
        """Equal best tiers raise with every match listed"""
        with pytest.raises(AmbiguousCandidateError) as exc:
            find_candidate("Carlos", candidates)
        assert exc.value.matches == ["Carlos Gómez", "Carlos Ruiz"]
        assert exc.value.error_code == "ambiguous_candidate"

    def test_better_tier_wins(self, candidates):
        """An accent-free full name beats a first-name token match"""
        assert find_candidate("carlos gomez", candidates).id == "u1"

    def test_not_found(self, candidates):
        """Nothing matching raises CandidateNotFoundError"""
        with pytest.raises(CandidateNotFoundError):
            find_candidate("Zoe Martínez", candidates)

    def test_tiers(self):
        """Exact beats normalized exact"""
        assert match_tier("Ana López", "Ana López") == TIER_EXACT
        assert match_tier("ana lopez", "Ana López") == TIER_NORMALIZED_EXACT
        assert match_tier("", "Ana López") is None

    def test_find_all_keeps_directory_order(self, candidates):
        """Union of several names"""
        found = find_all(["Pedro", "Ana López"], candidates)
        assert [c.name for c in found] == ["Ana López", "Pedro Salas"]

    def test_find_all_ignores_weaker_matches(self, candidates):
        """A full name does not pull in someone sharing only a first name"""
        found = find_all(["Carlos Ruiz"], candidates)
        assert [c.name for c in found] == ["Carlos Ruiz"]

    def test_mentioned_full_names(self, candidates):
        """Only multi-word names mentioned verbatim count"""
        found = mentioned_candidates("manda un mensaje a ana lopez y a Carlos", candidates)
        assert [c.name for c in found] == ["Ana López"]

    def test_find_reference(self, candidates):
        """References are searched across all candidates"""
        candidate, reference = find_reference("Marta", candidates)
        assert candidate.name == "Ana López"
        assert reference.name == "Marta Vega"


class TestExclusion:
    """Exclusion errs toward removing"""

    def test_first_name_excludes_candidate(self, candidates):
        """'Ana' removes Ana López"""
        names = [c.name for c in filter_excluded(candidates, ["Ana"])]
        assert "Ana López" not in names

    def test_partial_name_excludes(self, candidates):
        """A fragment removes every name containing it"""
        names = [c.name for c in filter_excluded(candidates, ["Carl"])]
        assert names == ["Ana López", "Mariana Torres", "Pedro Salas"]

    def test_substring_excludes_longer_name(self, candidates):
        """'Ana' also removes Mariana Torres"""
        names = [c.name for c in filter_excluded(candidates, ["Ana"])]
        assert "Mariana Torres" not in names

    def test_accent_free_surname_excludes(self, candidates):
        names = [c.name for c in filter_excluded(candidates, ["gomez"])]
        assert "Carlos Gómez" not in names
        assert "Carlos Ruiz" in names

    def test_shared_surname_is_not_excluded(self, candidates):
        """Excluding one person never removes another with a common token"""
        names = [c.name for c in filter_excluded(candidates, ["Carlos Ruiz"])]
        assert "Carlos Gómez" in names
        assert "Carlos Ruiz" not in names

    def test_no_exclusions(self, candidates):
        """An empty list keeps everyone"""
        assert len(filter_excluded(candidates, [])) == len(candidates)


class TestPositions:
    def test_plural_keyword_matches_position(self, candidates):
        """'desarrolladores' finds Desarrollador Full Stack"""
        names = [c.name for c in filter_by_position(candidates, "desarrolladores")]
        assert names == ["Carlos Gómez", "Ana López", "Mariana Torres"]

    def test_unknown_position_never_matches(self):
        assert not position_matches("Unknown Position", "Unknown Position")
        assert not position_matches("piloto", "Diseñador UX")

    def test_distinct_positions_sorted(self, candidates):
        """Known positions with counts, most populated first"""
        assert distinct_positions(candidates) == [
            ("Desarrollador Full Stack", 3),
            ("Contador", 1),
            ("Diseñador UX", 1),
        ]


class TestPhoneNormalization:
    """Phone numbers and the default country code"""

    @pytest.mark.parametrize("raw,expected", [
        ("6123-4567", "+50761234567"),
        ("+507 6123 4567", "+50761234567"),
        ("50761234567", "+50761234567"),
        ("(507) 6123-4567", "+50761234567"),
        ("+1 415 555 0100", "+14155550100"),
    ])
    def test_normalize(self, raw, expected):
        """Local and international spellings reach the same form"""
        assert normalize_phone(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "123", "abc"])
    def test_invalid(self, raw):
        """Unusable input yields None"""
        assert normalize_phone(raw) is None

    def test_normalization_is_idempotent(self):
        """Normalizing a normalized number changes nothing"""
        once = normalize_phone("6123-4567")
        assert normalize_phone(once) == once

    def test_configurable_country_code(self):
        """Another default country code is applied to local numbers"""
        assert normalize_phone("3001234567", "57") == "+573001234567"

    def test_same_phone(self):
        """Comparison goes through normalization"""
        assert same_phone("6123-4567", "+507 61234567")
        assert not same_phone("6123-4567", None)

    def test_extract_from_text(self):
        """Numbers in free text are found and deduplicated"""
        text = "mensajes de +507 6123-4567, 6222-3333 y otra vez 61234567"
        assert extract_phone_numbers(text) == ["+50761234567", "+50762223333"]
