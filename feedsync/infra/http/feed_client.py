from __future__ import annotations

import time
from typing import Any
from urllib.parse import quote

import httpx

from feedsync.common.sanitize import truncateText
from feedsync.domain.error_codes import ErrorCode
from feedsync.domain.ports.fetch import FeedApiProtocol, FetchResponse, Fetcher
from feedsync.domain.resources import FeedResource
from feedsync.errors import AppError


class ApiError(AppError):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        retryable: bool = False,
        details: dict | None = None,
        code: str | None = None,
    ):
        """
        Назначение:
            Исключение для ошибок HTTP/API уровня FeedApiClient.
        Контракт:
            - code: строковый код (NETWORK_ERROR для транспорта, HTTP_* для статусов).
            - status_code сохраняется для диагностики (None для сетевых ошибок).
        """
        super().__init__(
            category="api",
            code=code or (f"HTTP_{status_code}" if status_code else "API_ERROR"),
            message=message,
            retryable=retryable,
            details=details or {},
        )
        self.status_code = status_code


class FeedApiClient(FeedApiProtocol):
    def __init__(
        self,
        baseUrl: str,
        appSecret: str | None = None,
        secretHeader: str = "x-feedsync-secret",
        timeoutSeconds: float = 20.0,
        retries: int = 3,
        retryBackoffSeconds: float = 0.5,
        transport: httpx.BaseTransport | None = None,
    ):
        """
        Назначение:
            Клиент REST API ленты с простой политикой ретраев.
        Контракт:
            - baseUrl обязателен.
            - retries/retryBackoffSeconds управляют повторными попытками (429, 5xx, сеть).
            - Статус ответа не превращается в исключение: решает вызывающий код по ok.
        """
        self.baseUrl = baseUrl.rstrip("/")
        self.appSecret = appSecret
        self.secretHeader = secretHeader
        self.retries = retries
        self.retryBackoffSeconds = retryBackoffSeconds

        self.client = httpx.Client(
            base_url=self.baseUrl,
            timeout=timeoutSeconds,
            transport=transport,
        )

    def close(self) -> None:
        self.client.close()

    def _headers(self) -> dict[str, str]:
        headers = {"accept": "application/json"}
        if self.appSecret:
            headers[self.secretHeader] = self.appSecret
        return headers

    def _should_retry(self, resp: httpx.Response) -> bool:
        """Решает, стоит ли повторить запрос (429 или 5xx)."""
        if resp.status_code == 429:
            return True
        if 500 <= resp.status_code <= 599:
            return True
        return False

    def _sleep_backoff(self, attempt: int) -> None:
        """Задержка с экспоненциальным ростом для ретраев."""
        delay = self.retryBackoffSeconds * (2 ** attempt)
        if delay > 0:
            time.sleep(delay)

    def _request_with_retry(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
    ) -> httpx.Response:
        """
        Запрос с ретраями по 429/5xx и сетевым ошибкам.
        Сетевые ошибки после исчерпания попыток -> ApiError(NETWORK_ERROR);
        HTTP-статусы возвращаются как есть.
        """
        attempt = 0
        while True:
            try:
                resp = self.client.request(method, path, params=params, headers=self._headers(), json=json)
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                if attempt >= self.retries:
                    raise ApiError("Network error", status_code=None, retryable=True, code="NETWORK_ERROR") from exc
                self._sleep_backoff(attempt)
                attempt += 1
                continue

            if self._should_retry(resp) and attempt < self.retries:
                self._sleep_backoff(attempt)
                attempt += 1
                continue

            return resp

    def _to_fetch_response(self, resp: httpx.Response) -> FetchResponse:
        ok = 200 <= resp.status_code <= 299
        body: Any = None
        if resp.text:
            try:
                body = resp.json()
            except ValueError:
                body = None
        error_code = None if ok else ErrorCode.from_status(resp.status_code).value
        return FetchResponse(
            ok=ok,
            status_code=resp.status_code,
            body=body,
            text=truncateText(resp.text) if body is None and resp.text else None,
            error_code=error_code,
        )

    def fetch(self, path: str, params: dict[str, Any] | None = None) -> FetchResponse:
        """
        Назначение:
            GET JSON. Возвращает FetchResponse(ok=False) для не-2xx, бросает ApiError на сетевых ошибках.
        """
        resp = self._request_with_retry("GET", path, params=params or {})
        return self._to_fetch_response(resp)

    def send_action(self, entity_id: str, action: str, fingerprint: str | None) -> FetchResponse:
        """
        Назначение:
            PATCH /posts/{id} с телом {"action": ..., "fingerprint": ...}.
        """
        path = f"/posts/{quote(entity_id, safe='')}"
        resp = self._request_with_retry("PATCH", path, json={"action": action, "fingerprint": fingerprint})
        return self._to_fetch_response(resp)

    def page_fetcher(self, resource: FeedResource, page: int) -> Fetcher:
        """
        Назначение:
            Фабрика fetcher-а страницы ресурса для TieredFetchCoordinator.
        """
        params = resource.query_params(page)
        path = resource.path

        def fetcher() -> FetchResponse:
            return self.fetch(path, params=params)

        return fetcher
