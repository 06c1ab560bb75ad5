from app.services.scoring import best_candidate, make_default_scorer, rank_by_score, score_candidate
from tests.conftest import make_candidate


class TestScoring:
    def test_default_weights(self, candidates):
        """Experience, skills, English, home location, on-site and known position"""
        carlos = candidates[0]
        # 10 + 12 + 15 + 10 + 10 + 10
        assert score_candidate(carlos) == 67

    def test_months_count_less_than_years(self):
        months = make_candidate("a", "A", experience="8 meses")
        years = make_candidate("b", "B", experience="8 años")
        assert score_candidate(months) < score_candidate(years)

    def test_best_candidate(self, candidates):
        best, score = best_candidate(candidates)
        assert best.name == "Carlos Gómez"
        assert score > 0
        assert best_candidate([]) is None

    def test_ties_keep_directory_order(self):
        first = make_candidate("a", "Primero")
        second = make_candidate("b", "Segundo")
        assert [c.name for c, _ in rank_by_score([first, second])] == ["Primero", "Segundo"]

    def test_custom_home_location(self):
        scorer = make_default_scorer("bogotá")
        local = make_candidate("a", "A", location="Bogotá")
        away = make_candidate("b", "B", location="Panamá")
        assert scorer(local) - scorer(away) == 5

    def test_pluggable_scorer(self, candidates):
        by_name_length = lambda c: len(c.name)
        best, _ = best_candidate(candidates, scorer=by_name_length)
        assert best.name == "Mariana Torres"
