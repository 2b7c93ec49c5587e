"""
HTTP client for the document store.

The store is a generic REST collection API (products, cart, orders,
notifications, processingLocations) with get/list/create/replace/patch/delete
semantics and single-field equality filters. It offers no transactions, so
callers enforce every invariant themselves.
"""
import httpx
from typing import Any, Dict, List, Optional, Tuple

from .. import config
from ..errors import ConcurrentModification


class DocumentStoreClient:
    """
    Async client for one document store.

    Args:
        base_url: Root URL of the store
        token: Optional bearer token forwarded on every request
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (used to bind the client to an
            in-process ASGI app)
    """

    def __init__(
        self,
        base_url: str = config.DATA_STORE_URL,
        token: Optional[str] = None,
        timeout: float = config.DATA_STORE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else None
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=self.transport,
        )

    @staticmethod
    def _conditional(if_match: Optional[int]) -> Optional[Dict[str, str]]:
        return {"If-Match": f'"{if_match}"'} if if_match is not None else None

    @staticmethod
    def _check_precondition(response: httpx.Response, collection: str, doc_id: str) -> None:
        if response.status_code == 412:
            raise ConcurrentModification(collection, doc_id)

    async def list(self, collection: str, **filters: Any) -> List[dict]:
        """
        Retrieve the documents of a collection.

        Args:
            collection: Collection name
            **filters: Equality filters, e.g. ``ownerId="42"``

        Returns:
            List of documents

        Raises:
            httpx.HTTPError: If there's a network error or the store is unavailable
        """
        params = {key: _query_value(value) for key, value in filters.items()}
        async with self._client() as client:
            response = await client.get(f"/{collection}", params=params or None)
            response.raise_for_status()
            return response.json()

    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """
        Retrieve one document.

        Returns:
            Document if found, None otherwise

        Raises:
            httpx.HTTPError: If there's a network error or the store is unavailable
        """
        document, _ = await self.get_versioned(collection, doc_id)
        return document

    async def get_versioned(self, collection: str, doc_id: str) -> Tuple[Optional[dict], Optional[int]]:
        """
        Retrieve one document together with its version (from the ETag header).

        Returns:
            Tuple of (document or None, version or None)
        """
        async with self._client() as client:
            response = await client.get(f"/{collection}/{doc_id}")
            if response.status_code == 404:
                return None, None
            response.raise_for_status()
            return response.json(), _parse_etag(response.headers.get("ETag"))

    async def create(self, collection: str, document: Dict[str, Any]) -> dict:
        """
        Create a document; the store assigns its id.

        Returns:
            Created document, including its id
        """
        async with self._client() as client:
            response = await client.post(f"/{collection}", json=document)
            response.raise_for_status()
            return response.json()

    async def replace(
        self,
        collection: str,
        doc_id: str,
        document: Dict[str, Any],
        if_match: Optional[int] = None,
    ) -> dict:
        """
        Replace a document entirely.

        Raises:
            ConcurrentModification: If ``if_match`` no longer matches
            httpx.HTTPStatusError: If the document does not exist
        """
        async with self._client() as client:
            response = await client.put(
                f"/{collection}/{doc_id}", json=document, headers=self._conditional(if_match)
            )
            self._check_precondition(response, collection, doc_id)
            response.raise_for_status()
            return response.json()

    async def patch(
        self,
        collection: str,
        doc_id: str,
        fields: Dict[str, Any],
        if_match: Optional[int] = None,
    ) -> dict:
        """
        Partially update a document.

        Raises:
            ConcurrentModification: If ``if_match`` no longer matches
            httpx.HTTPStatusError: If the document does not exist
        """
        async with self._client() as client:
            response = await client.patch(
                f"/{collection}/{doc_id}", json=fields, headers=self._conditional(if_match)
            )
            self._check_precondition(response, collection, doc_id)
            response.raise_for_status()
            return response.json()

    async def delete(self, collection: str, doc_id: str) -> bool:
        """
        Delete a document.

        Returns:
            True if deleted, False if it did not exist
        """
        async with self._client() as client:
            response = await client.delete(f"/{collection}/{doc_id}")
            if response.status_code == 404:
                return False
            response.raise_for_status()
            return True


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _parse_etag(etag: Optional[str]) -> Optional[int]:
    if not etag:
        return None
    raw = etag[2:] if etag.startswith("W/") else etag
    try:
        return int(raw.strip('"'))
    except ValueError:
        return None
