"""
Tests for matching a site name to a Docs site.
"""

from helpscout_mcp.site_resolver import rank_sites, resolve_site, score_site

ACME = {"id": "s1", "title": "Acme Help Center", "subDomain": "acme"}
WIDGETS = {"id": "s2", "title": "Widgets", "subDomain": "widgets-kb"}
ZED = {"id": "s3", "title": "Zed Knowledge Base", "subDomain": "zedkb", "cname": "help.zed.io"}
SITES = [ACME, WIDGETS, ZED]


class TestScoreSite:

    def test_exact_name(self):
        assert score_site("acme help center", ACME) == (100.0, "Exact name match")

    def test_exact_subdomain(self):
        assert score_site("acme", ACME)[0] == 95.0

    def test_name_containment(self):
        assert score_site("Widgets", {"title": "Widgets Docs"})[0] == 80.0

    def test_custom_domain_containment(self):
        assert score_site("help.zed.io", ZED)[0] == 70.0

    def test_shared_words(self):
        score, reason = score_site("acme knowledge base", ACME)
        assert score == 60.0
        assert "acme" in reason

    def test_no_match(self):
        assert score_site("billing", ACME)[0] == 0.0
        assert score_site("   ", ACME)[0] == 0.0


class TestResolveSite:

    def test_ranking_best_first(self):
        ranked = rank_sites("widgets", SITES)
        assert [m.site["id"] for m in ranked] == ["s2"]

    def test_best_match_wins(self):
        match = resolve_site("acme", SITES)
        assert match.site is ACME

    def test_falls_back_to_configured_default(self):
        match = resolve_site("nothing like this", SITES, default_site_id="s3")
        assert match.site is ZED
        assert match.reason == "Default site from configuration"

    def test_default_id_without_listing(self):
        match = resolve_site(None, [], default_site_id="s9")
        assert match.site == {"id": "s9"}

    def test_no_match_and_no_default(self):
        assert resolve_site("nothing like this", SITES) is None
