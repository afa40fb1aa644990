from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

import httpx

from docindex.services.pipeline.types import Document, UpdateResponse


class IndexClientError(RuntimeError):
    pass


class IndexClient(Protocol):
    def add(self, documents: Sequence[Document], commit_within_ms: int) -> UpdateResponse: ...

    def commit(self) -> None: ...

    def ping(self) -> None: ...


def _update_response(response: httpx.Response) -> UpdateResponse:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    header = payload.get("responseHeader") if isinstance(payload, dict) else None
    status = header.get("status") if isinstance(header, dict) else None
    if isinstance(status, int) and not isinstance(status, bool):
        qtime = header.get("QTime")
        return UpdateResponse(status=status, qtime_ms=qtime if isinstance(qtime, int) else 0)

    if response.status_code >= 400:
        return UpdateResponse(status=response.status_code)

    raise IndexClientError("Invalid Solr payload: missing responseHeader.status")


class SolrIndexClient:
    """Talks to one Solr node through the JSON update API."""

    def __init__(
        self,
        *,
        base_url: str,
        collection: str,
        timeout_seconds: float = 10.0,
        connect_timeout_seconds: float = 5.0,
    ) -> None:
        self._node_urls = [base_url.rstrip("/")]
        self._collection = collection
        self._timeout = httpx.Timeout(timeout_seconds, connect=connect_timeout_seconds)

    @property
    def node_urls(self) -> list[str]:
        return list(self._node_urls)

    def add(self, documents: Sequence[Document], commit_within_ms: int) -> UpdateResponse:
        response = self._send(
            "POST",
            "update",
            params={"commitWithin": str(commit_within_ms), "wt": "json"},
            json=[document.to_solr() for document in documents],
        )
        return _update_response(response)

    def commit(self) -> None:
        response = self._send(
            "POST",
            "update",
            params={"wt": "json"},
            json={"commit": {}},
        )
        result = _update_response(response)
        if result.status != 0:
            raise IndexClientError(f"Solr commit failed with status {result.status}")

    def ping(self) -> None:
        response = self._send("GET", "admin/ping", params={"wt": "json"})
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise IndexClientError(f"Solr ping failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise IndexClientError("Solr ping returned a non-JSON payload") from exc
        if not isinstance(payload, dict) or payload.get("status") != "OK":
            raise IndexClientError(f"Solr ping failed for collection {self._collection}")

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        errors: list[str] = []
        for node_url in self._node_urls:
            try:
                return httpx.request(
                    method,
                    f"{node_url}/{self._collection}/{path}",
                    timeout=self._timeout,
                    **kwargs,
                )
            except httpx.TransportError as exc:
                errors.append(f"{node_url}: {exc}")
                continue
            except httpx.RequestError as exc:
                # The node answered; another node would not do better.
                raise IndexClientError(f"Solr request to {node_url} failed: {exc}") from exc

        raise IndexClientError(f"No Solr node reachable ({'; '.join(errors)})")


class CloudSolrIndexClient(SolrIndexClient):
    """Same protocol over a list of nodes; each request fails over to the next node."""

    def __init__(
        self,
        *,
        node_urls: Sequence[str],
        collection: str,
        timeout_seconds: float = 10.0,
        connect_timeout_seconds: float = 5.0,
    ) -> None:
        if not node_urls:
            raise ValueError("node_urls must contain at least one Solr base URL")
        super().__init__(
            base_url=node_urls[0],
            collection=collection,
            timeout_seconds=timeout_seconds,
            connect_timeout_seconds=connect_timeout_seconds,
        )
        self._node_urls = [url.rstrip("/") for url in node_urls]


def build_index_client(
    *,
    mode: str,
    urls: Sequence[str],
    collection: str,
    timeout_seconds: float,
    connect_timeout_seconds: float,
) -> IndexClient:
    if mode == "cloud":
        return CloudSolrIndexClient(
            node_urls=urls,
            collection=collection,
            timeout_seconds=timeout_seconds,
            connect_timeout_seconds=connect_timeout_seconds,
        )
    if mode == "standalone":
        if len(urls) != 1:
            raise ValueError("standalone Solr mode takes exactly one base URL")
        return SolrIndexClient(
            base_url=urls[0],
            collection=collection,
            timeout_seconds=timeout_seconds,
            connect_timeout_seconds=connect_timeout_seconds,
        )
    raise ValueError(f"Unknown Solr mode: {mode}")
