"""
Best-candidate scoring.

The default weights are provisional and not product-confirmed; pass a
different scorer to `best_candidate` to change them.
"""
import re
from typing import Callable, List, Optional, Tuple

from app.models.candidate import Candidate

Scorer = Callable[[Candidate], float]


def make_default_scorer(home_location: str = "panamá") -> Scorer:
    home = home_location.lower()

    def score_candidate(candidate: Candidate) -> float:
        score = 0.0

        experience = (candidate.experience or "").lower()
        amount = re.search(r"(\d+)", experience)
        if amount:
            if "año" in experience or "year" in experience:
                score += min(int(amount.group(1)) * 2, 30)
            elif "mes" in experience or "month" in experience:
                score += min(int(amount.group(1)) / 2, 10)

        score += min(len(candidate.skills) * 3, 25)

        languages = [lang.lower() for lang in candidate.languages]
        if any("inglés" in lang or "ingles" in lang or "english" in lang for lang in languages):
            score += 15
        elif languages:
            score += 5

        if candidate.location and home in candidate.location.lower():
            score += 10
        elif candidate.location:
            score += 5

        if candidate.availability and "presencial" in candidate.availability.lower():
            score += 10
        elif candidate.availability:
            score += 5

        if candidate.has_known_position:
            score += 10

        return score

    return score_candidate


score_candidate = make_default_scorer()


def rank_by_score(candidates: List[Candidate], scorer: Scorer = score_candidate) -> List[Tuple[Candidate, float]]:
    scored = [(c, scorer(c)) for c in candidates]
    # stable sort keeps directory order among equal scores
    return sorted(scored, key=lambda pair: pair[1], reverse=True)


def best_candidate(candidates: List[Candidate], scorer: Scorer = score_candidate) -> Optional[Tuple[Candidate, float]]:
    ranked = rank_by_score(candidates, scorer)
    return ranked[0] if ranked else None
