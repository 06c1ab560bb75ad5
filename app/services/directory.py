"""
Candidate directory: fetches users, offers and evaluation results from the
upstream REST API, merges them into Candidate records and caches the merge.
"""
import asyncio
import uuid
from typing import Any, Dict, List, Optional

import requests

from app.models.candidate import (
    Candidate,
    CandidateStatus,
    EvaluationResult,
    Reference,
    ReferenceContact,
    UNKNOWN_CANDIDATE,
    UNKNOWN_POSITION,
)
from app.services.cache import TTLCache
from app.utils.logging_config import get_logger, PerformanceMonitor

logger = get_logger(__name__)


def _split_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    if isinstance(raw, list):
        return [str(v).strip() for v in raw if str(v).strip()]
    return [part.strip() for part in str(raw).split(",") if part.strip()]


def _parse_references(raw: Any) -> List[Reference]:
    references = []
    for ref in raw or []:
        if not isinstance(ref, dict):
            continue
        contact = ref.get("contact") or {}
        references.append(Reference(
            name=ref.get("name") or "Unknown",
            position=ref.get("position"),
            company=ref.get("company"),
            contact=ReferenceContact(
                phone=contact.get("phone") or ref.get("phone"),
                email=contact.get("email") or ref.get("email"),
            ),
            relationship=(ref.get("relationship") or "unknown").lower(),
        ))
    return references


def candidate_from_user(user: Dict[str, Any], position: str = UNKNOWN_POSITION,
                        source: str = "users", offer_id: Optional[str] = None) -> Candidate:
    """Build a Candidate from one upstream user record"""
    languages = _split_list(user.get("languaje")) or ["English"]
    return Candidate(
        id=str(user.get("_id") or f"{source}_{uuid.uuid4().hex[:12]}"),
        name=user.get("name") or UNKNOWN_CANDIDATE,
        email=user.get("email"),
        phone=user.get("phone") or user.get("tel"),
        position=position or UNKNOWN_POSITION,
        status=CandidateStatus.parse(user.get("status")),
        experience=user.get("experience"),
        skills=_split_list(user.get("talents")),
        languages=languages,
        location=user.get("country"),
        salary_expectation=user.get("salary_expectation") or "Not specified",
        availability=user.get("availability"),
        references=_parse_references(user.get("references")),
        source=source,
        offer_id=offer_id,
    )


def combine_records(users: List[Dict[str, Any]], offers: List[Dict[str, Any]],
                    results: List[Dict[str, Any]]) -> List[Candidate]:
    """Merge the three upstream record sets into one candidate list.

    Users come first; users linked from an offer either get the offer title as
    their position or are appended; evaluation results are attached by user id.
    """
    by_id: Dict[str, Candidate] = {}

    for user in users:
        candidate = candidate_from_user(user)
        by_id[candidate.id] = candidate

    for offer in offers:
        linked = offer.get("user")
        if not isinstance(linked, list):
            continue
        offer_id = offer.get("_id")
        for user in linked:
            existing = by_id.get(str(user.get("_id")))
            if existing is not None:
                existing.position = offer.get("title") or existing.position
                existing.source = "offers"
                existing.offer_id = offer_id
            else:
                candidate = candidate_from_user(
                    user,
                    position=offer.get("title") or UNKNOWN_POSITION,
                    source="offers",
                    offer_id=offer_id,
                )
                by_id[candidate.id] = candidate

    for result in results:
        user_ref = result.get("user") if isinstance(result.get("user"), dict) else {}
        candidate_id = result.get("userId") or user_ref.get("_id")
        candidate = by_id.get(str(candidate_id)) if candidate_id else None
        if candidate is None:
            continue
        candidate.results.append(EvaluationResult(
            test_type=result.get("testType") or "Unknown",
            score=result.get("score", "N/A"),
            date=result.get("date") or result.get("createdAt"),
            status=result.get("status") or "completed",
        ))
        if not candidate.source.endswith("+results"):
            candidate.source = f"{candidate.source}+results"

    return list(by_id.values())


class DirectoryClient:
    """Blocking HTTP client for the users/offers/results endpoints.

    Every call swallows its own failure into an empty list so one broken
    upstream never empties the others.
    """

    def __init__(self, user_api_url: Optional[str], results_api_url: Optional[str],
                 timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.user_api_url = (user_api_url or "").rstrip("/")
        self.results_api_url = (results_api_url or "").rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.user_api_url)

    def _get_list(self, url: str, key: str, token: Optional[str]) -> List[Dict[str, Any]]:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = token
        try:
            resp = self.session.get(url, headers=headers, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Directory call failed: GET {url}: {e}")
            return []
        if payload.get("status") != "success":
            logger.warning(f"Directory call returned status {payload.get('status')!r}: GET {url}")
            return []
        return payload.get(key) or []

    def fetch_users(self, token: Optional[str]) -> List[Dict[str, Any]]:
        return self._get_list(f"{self.user_api_url}/user/get-users", "users", token)

    def fetch_offers(self, token: Optional[str], user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return self._get_list(f"{self.user_api_url}/offer/get-offers/{user_id or 'all'}", "offers", token)

    def fetch_results(self, users: List[Dict[str, Any]], offers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        if not self.results_api_url:
            return []
        body = {
            "users": [
                {
                    "name": u.get("name"),
                    "experience": u.get("experience"),
                    "talents": u.get("talents"),
                    "languajes": u.get("languaje"),
                }
                for u in users
            ],
            "offer": [
                {
                    "title": o.get("title"),
                    "description": o.get("description"),
                    "area": o.get("area"),
                    "experience": o.get("experience"),
                    "languajes": o.get("languajes"),
                }
                for o in offers
            ],
        }
        url = f"{self.results_api_url}/results/get-results"
        try:
            resp = self.session.post(url, json=body, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Directory call failed: POST {url}: {e}")
            return []
        if payload.get("status") != "success":
            return []
        return payload.get("results") or []


class CandidateDirectory:
    """Cached, merged candidate view per (credential, user scope)"""

    def __init__(self, client: DirectoryClient, cache: TTLCache):
        self.client = client
        self.cache = cache

    @staticmethod
    def cache_key(token: Optional[str], user_id: Optional[str]) -> str:
        return f"candidates_{(token or '')[:10]}_{user_id or 'no-user'}"

    async def fetch_candidates(self, token: Optional[str] = None, user_id: Optional[str] = None) -> List[Candidate]:
        key = self.cache_key(token, user_id)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Directory cache hit for {key} ({len(cached)} candidates)")
            return cached

        if not self.client.configured:
            logger.warning("USER_API_URL is not configured; candidate directory is empty")
            return []

        loop = asyncio.get_running_loop()
        try:
            with PerformanceMonitor("directory_fetch", logger, threshold_ms=3000):
                users, offers = await asyncio.gather(
                    loop.run_in_executor(None, self.client.fetch_users, token),
                    loop.run_in_executor(None, self.client.fetch_offers, token, user_id),
                )
                results = await loop.run_in_executor(None, self.client.fetch_results, users, offers)
                candidates = combine_records(users, offers, results)
        except Exception as e:
            logger.error(f"Candidate directory fetch failed: {e}", exc_info=True)
            return []

        logger.info(
            f"Fetched {len(candidates)} candidates ({len(users)} users, {len(offers)} offers, {len(results)} results)"
        )
        self.cache.set(key, candidates)
        return candidates

    def clear_cache(self) -> None:
        self.cache.invalidate()
        logger.info("Candidate directory cache cleared")

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()
