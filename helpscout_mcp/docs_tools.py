"""
Docs Tools - knowledge-base operations via the Help Scout Docs API.
"""

from typing import Any, Dict, Optional, TYPE_CHECKING

from .models import (
    CreateDocsArticleInput,
    DeleteDocsArticleInput,
    GetDocsArticleInput,
    ListDocsArticlesInput,
    ListDocsCategoriesInput,
    ListDocsCollectionsInput,
    ListDocsSitesInput,
    NoArgsInput,
    SearchDocsArticlesInput,
    UpdateDocsArticleInput,
)
from .site_resolver import rank_sites, resolve_site
from .utils.logging import get_logger

if TYPE_CHECKING:
    from .config import Settings
    from .docs_client import DocsClient

logger = get_logger(__name__)

DOCS_CACHE_FAMILIES = ("GET:/sites", "GET:/collections", "GET:/categories", "GET:/articles", "GET:/search")


def _page_info(response: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "page": response.get("page"),
        "pages": response.get("pages"),
        "count": response.get("count"),
    }


def _article(response: Dict[str, Any]) -> Dict[str, Any]:
    return response.get("article", response) if isinstance(response, dict) else response


class DocsTools:
    """Knowledge-base sites, collections, categories and articles."""

    def __init__(self, client: "DocsClient", settings: "Settings"):
        """
        Args:
            client: Docs API client (Basic auth)
            settings: Server settings (default site/collection, deletion gate)
        """
        self.client = client
        self.settings = settings

    async def list_docs_sites(self, inp: ListDocsSitesInput) -> Dict[str, Any]:
        response = await self.client.get("/sites", {"page": inp.page})
        sites = response.get("items") or []

        result: Dict[str, Any] = {"pagination": _page_info(response)}
        if inp.query:
            ranked = rank_sites(inp.query, sites)
            result["sites"] = [m.site for m in ranked]
            result["match_info"] = [
                {"site": m.site.get("title") or m.site.get("subDomain") or m.site.get("id"), "score": m.score, "reason": m.reason}
                for m in ranked
            ]
        else:
            result["sites"] = sites

        if not result["sites"]:
            result["warning"] = "No Help Scout Docs sites found."
            result["troubleshooting"] = [
                "Check that HELPSCOUT_DOCS_API_KEY belongs to a user with Docs access",
                "Check that Help Scout Docs is enabled and has at least one site",
            ]
        return result

    async def _resolve_site_id(self, site_id: Optional[str], site_query: Optional[str]) -> Dict[str, Any]:
        if site_id:
            return {"site_id": site_id}
        default_id = self.settings.HELPSCOUT_DEFAULT_DOCS_SITE_ID
        if not site_query and not default_id:
            return {"site_id": None}

        sites = []
        if site_query:
            sites = (await self.client.get("/sites", {"page": 1})).get("items") or []
        match = resolve_site(site_query, sites, default_id)
        if not match:
            return {"site_id": None, "unresolved_query": site_query}

        logger.info(
            "Resolved Docs site",
            extra={"data": {"query": site_query, "site_id": match.site.get("id"), "reason": match.reason}}
        )
        return {
            "site_id": match.site.get("id"),
            "match": {"site": match.site.get("title") or match.site.get("id"), "score": match.score, "reason": match.reason},
        }

    async def list_docs_collections(self, inp: ListDocsCollectionsInput) -> Dict[str, Any]:
        resolution = await self._resolve_site_id(inp.site_id, inp.site_query)
        if inp.site_query and not resolution.get("site_id"):
            return {
                "error": "No matching site found",
                "query": inp.site_query,
                "suggestion": "Call list_docs_sites to see available sites and pass site_id.",
            }

        params = {
            "page": inp.page,
            "pageSize": inp.page_size,
            "sort": inp.sort,
            "order": inp.order,
            "siteId": resolution.get("site_id"),
            "visibility": None if inp.visibility == "all" else inp.visibility,
        }
        response = await self.client.get("/collections", params)
        result = {
            "collections": response.get("items") or [],
            "pagination": _page_info(response),
        }
        if "match" in resolution:
            result["site_match"] = resolution["match"]
        return result

    async def list_docs_categories(self, inp: ListDocsCategoriesInput) -> Dict[str, Any]:
        response = await self.client.get(
            f"/collections/{inp.collection_id}/categories",
            {"page": inp.page, "pageSize": inp.page_size, "sort": inp.sort, "order": inp.order},
        )
        return {
            "collection_id": inp.collection_id,
            "categories": response.get("items") or [],
            "pagination": _page_info(response),
        }

    async def list_docs_articles(self, inp: ListDocsArticlesInput) -> Dict[str, Any]:
        if inp.collection_id:
            path = f"/collections/{inp.collection_id}/articles"
        else:
            path = f"/categories/{inp.category_id}/articles"
        response = await self.client.get(
            path,
            {"page": inp.page, "pageSize": inp.page_size, "status": inp.status, "sort": inp.sort, "order": inp.order},
        )
        return {
            "articles": response.get("items") or [],
            "pagination": _page_info(response),
        }

    async def get_docs_article(self, inp: GetDocsArticleInput) -> Dict[str, Any]:
        params = {"draft": True} if inp.draft else None
        response = await self.client.get(f"/articles/{inp.article_id}", params)
        return {"article": _article(response)}

    async def search_docs_articles(self, inp: SearchDocsArticlesInput) -> Dict[str, Any]:
        params = {
            "query": inp.query,
            "page": inp.page,
            "pageSize": inp.page_size,
            "collectionId": inp.collection_id or self.settings.HELPSCOUT_DEFAULT_DOCS_COLLECTION_ID,
            "siteId": inp.site_id,
            "status": inp.status,
            "visibility": None if inp.visibility == "all" else inp.visibility,
        }
        response = await self.client.get("/search/articles", params)
        return {
            "query": inp.query,
            "articles": response.get("items") or [],
            "pagination": _page_info(response),
        }

    async def create_docs_article(self, inp: CreateDocsArticleInput) -> Dict[str, Any]:
        collection_id = inp.collection_id or self.settings.HELPSCOUT_DEFAULT_DOCS_COLLECTION_ID
        if not collection_id:
            return {
                "error": "No collection specified",
                "message": "Pass collection_id or set HELPSCOUT_DEFAULT_DOCS_COLLECTION_ID.",
                "suggestion": "Call list_docs_collections to find a collection id.",
            }

        body: Dict[str, Any] = {
            "collectionId": collection_id,
            "name": inp.name,
            "text": inp.text,
            "status": inp.status,
        }
        for key, value in (("slug", inp.slug), ("categories", inp.categories), ("tags", inp.tags)):
            if value is not None:
                body[key] = value

        response = await self.client.post_with_response("/articles", body)
        self.client.clear_cache("GET:/collections")
        self.client.clear_cache("GET:/search")

        article_id = response["resource_id"] or _id_from_location(response["location"])
        return {
            "success": True,
            "article_id": article_id,
            "article": _article(response["data"]) or None,
            "status": inp.status,
        }

    async def update_docs_article(self, inp: UpdateDocsArticleInput) -> Dict[str, Any]:
        body = {
            key: value
            for key, value in (
                ("name", inp.name),
                ("text", inp.text),
                ("status", inp.status),
                ("slug", inp.slug),
                ("categories", inp.categories),
                ("tags", inp.tags),
            )
            if value is not None
        }
        if not body:
            return {
                "error": "Nothing to update",
                "message": "Provide at least one of name, text, status, slug, categories or tags.",
            }

        await self.client.put(f"/articles/{inp.article_id}", body)
        self.client.clear_cache(f"GET:/articles/{inp.article_id}")
        self.client.clear_cache("GET:/search")
        return {"success": True, "article_id": inp.article_id, "updated_fields": sorted(body)}

    async def delete_docs_article(self, inp: DeleteDocsArticleInput) -> Dict[str, Any]:
        if not self.settings.HELPSCOUT_ALLOW_DOCS_DELETE:
            logger.warning("Blocked Docs article deletion", extra={"data": {"article_id": inp.article_id}})
            return {
                "error": "Article deletion is disabled",
                "message": "Set HELPSCOUT_ALLOW_DOCS_DELETE=true to enable article deletion",
            }

        await self.client.delete(f"/articles/{inp.article_id}")
        self.client.clear_cache()
        logger.info("Docs article deleted", extra={"data": {"article_id": inp.article_id}})
        return {"success": True, "article_id": inp.article_id, "message": "Article deleted."}

    async def test_docs_connection(self, inp: NoArgsInput) -> Dict[str, Any]:
        connected = await self.client.test_connection()
        result: Dict[str, Any] = {"connected": connected}
        if not connected:
            result["message"] = "Could not reach the Docs API. Check HELPSCOUT_DOCS_API_KEY and HELPSCOUT_DOCS_BASE_URL."
        return result

    async def clear_docs_cache(self, inp: NoArgsInput) -> Dict[str, Any]:
        cleared = sum(self.client.clear_cache(prefix) for prefix in DOCS_CACHE_FAMILIES)
        return {"success": True, "entries_cleared": cleared}


def _id_from_location(location: Optional[str]) -> Optional[str]:
    if not location:
        return None
    return location.rstrip("/").rsplit("/", 1)[-1] or None
