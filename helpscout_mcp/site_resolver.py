"""
Best-effort matching of a natural-language site name to a Docs site.

Scores are heuristic: exact name beats exact subdomain beats containment
beats token overlap. Nothing downstream depends on exact values, only on
the ordering.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_NOISE_TOKENS = {"the", "docs", "doc", "site", "help", "center", "centre", "knowledge", "base", "kb", "for", "our"}


@dataclass
class SiteMatch:
    site: Dict[str, Any]
    score: float
    reason: str


def _tokens(text: str) -> List[str]:
    return [t for t in _TOKEN_RE.findall(text.lower()) if t not in _NOISE_TOKENS]


def score_site(query: str, site: Dict[str, Any]) -> Tuple[float, str]:
    """Return ``(score, reason)`` for one site; 0 means no match."""
    q = query.strip().lower()
    if not q:
        return 0.0, "empty query"

    name = (site.get("title") or site.get("name") or "").strip().lower()
    subdomain = (site.get("subDomain") or site.get("subdomain") or "").strip().lower()
    cname = (site.get("cname") or "").strip().lower()

    if name and q == name:
        return 100.0, "Exact name match"
    if subdomain and q == subdomain:
        return 95.0, "Exact subdomain match"
    if name and (q in name or name in q):
        return 80.0, "Name contains query"
    if (subdomain and q in subdomain) or (cname and q in cname):
        return 70.0, "Subdomain or domain contains query"

    query_tokens = set(_tokens(q))
    if not query_tokens:
        return 0.0, "no significant words"
    site_tokens = set(_tokens(" ".join([name, subdomain, cname])))
    shared = query_tokens & site_tokens
    if shared:
        return round(60.0 * len(shared) / len(query_tokens), 1), f"Shared words: {', '.join(sorted(shared))}"
    return 0.0, "no match"


def rank_sites(query: str, sites: List[Dict[str, Any]]) -> List[SiteMatch]:
    """Matching sites, best first."""
    matches = []
    for site in sites:
        score, reason = score_site(query, site)
        if score > 0:
            matches.append(SiteMatch(site=site, score=score, reason=reason))
    matches.sort(key=lambda m: m.score, reverse=True)
    return matches


def resolve_site(
    query: Optional[str],
    sites: List[Dict[str, Any]],
    default_site_id: Optional[str] = None,
) -> Optional[SiteMatch]:
    """Best match for ``query``, falling back to the configured default site."""
    if query:
        ranked = rank_sites(query, sites)
        if ranked:
            return ranked[0]

    if default_site_id:
        for site in sites:
            if str(site.get("id")) == str(default_site_id):
                return SiteMatch(site=site, score=0.0, reason="Default site from configuration")
        return SiteMatch(site={"id": default_site_id}, score=0.0, reason="Default site from configuration")
    return None
