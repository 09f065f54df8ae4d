# app/providers/gateway.py
from __future__ import annotations

import logging
import uuid
from typing import Any, Optional

import httpx

from app.providers.base import ContinueResult, Failed, PaymentGateway, Pending, Settled, TransferResult
from app.providers.http import HttpClient, is_retryable_http
from settings import settings

logger = logging.getLogger("tandapay.gateway")


class HttpPaymentGateway(PaymentGateway):
    """
    Payment gateway service over HTTP.

        POST {base}/transfers                    -> settled | pending | failed
        POST {base}/transfers/{token}/continue   -> settled | failed

    Transport problems never escape as exceptions: they come back as Failed
    (timeouts are retryable) so the caller's per-tanda section is released.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        auth_mode: Optional[str] = None,
        http: Optional[HttpClient] = None,
    ):
        self.base_url = (base_url if base_url is not None else settings.GATEWAY_BASE_URL or "").strip().rstrip("/")
        self.api_key = (api_key if api_key is not None else settings.GATEWAY_API_KEY or "").strip()
        self.auth_mode = (auth_mode or settings.GATEWAY_AUTH_MODE or "bearer").strip().lower()
        timeout = float(getattr(settings, "GATEWAY_HTTP_TIMEOUT_S", 20.0))
        self.http = http or HttpClient(timeout_s=timeout)

    def _headers(self, idempotency_key: Optional[str] = None) -> dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.auth_mode == "x-api-key":
            headers["X-Api-Key"] = self.api_key
        else:
            headers["Authorization"] = f"Bearer {self.api_key}"
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    def _post(self, url: str, body: dict[str, Any], idempotency_key: Optional[str] = None):
        try:
            return self.http.post(url, headers=self._headers(idempotency_key), json_body=body, debug=True), None
        except httpx.TimeoutException:
            return None, Failed(reason="Gateway timeout", retryable=True)
        except httpx.HTTPError as e:
            return None, Failed(reason=f"Gateway error: {e}", retryable=True)

    def transfer(
        self,
        source_wallet: str,
        dest_wallet: str,
        amount: int,
        memo: Optional[str] = None,
    ) -> TransferResult:
        if not self.base_url:
            return Failed(reason="Gateway not configured", retryable=False)
        if int(amount) <= 0:
            return Failed(reason="Missing/invalid amount", retryable=False)

        body: dict[str, Any] = {
            "source": source_wallet,
            "destination": dest_wallet,
            "amount": str(int(amount)),
        }
        if memo:
            body["memo"] = memo

        resp, failed = self._post(f"{self.base_url}/transfers", body, idempotency_key=str(uuid.uuid4()))
        if failed is not None:
            logger.warning("transfer error source=%s dest=%s reason=%s", source_wallet, dest_wallet, failed.reason)
            return failed

        payload = resp.json or {}
        state = str(payload.get("status") or "").strip().lower()

        if resp.status_code in (200, 201) and state in ("settled", "completed", "success"):
            ref = payload.get("reference") or payload.get("id")
            if not ref:
                return Failed(reason="Settled without reference", retryable=False, response=payload)
            return Settled(reference=str(ref), response=payload)

        if resp.status_code in (200, 201, 202) and state in ("pending", "requires_interaction"):
            token = payload.get("continuation_token") or (payload.get("continue") or {}).get("token")
            if not token:
                return Failed(reason="Pending without continuation token", retryable=False, response=payload)
            url = payload.get("authorization_url") or (payload.get("interact") or {}).get("redirect")
            return Pending(continuation_token=str(token), authorization_url=url, response=payload)

        return Failed(
            reason=str(payload.get("error") or f"HTTP {resp.status_code}"),
            retryable=is_retryable_http(resp.status_code),
            response={"http_status": resp.status_code, "body": resp.json, "text": resp.text},
        )

    def continue_transfer(self, continuation_token: str, proof: str) -> ContinueResult:
        if not self.base_url:
            return Failed(reason="Gateway not configured", retryable=False)

        url = f"{self.base_url}/transfers/{continuation_token}/continue"
        resp, failed = self._post(url, {"proof": proof})
        if failed is not None:
            logger.warning("continue error reason=%s", failed.reason)
            return failed

        payload = resp.json or {}
        state = str(payload.get("status") or "").strip().lower()
        if resp.status_code in (200, 201) and state in ("settled", "completed", "success"):
            ref = payload.get("reference") or payload.get("id") or continuation_token
            return Settled(reference=str(ref), response=payload)

        return Failed(
            reason=str(payload.get("error") or f"HTTP {resp.status_code}"),
            retryable=is_retryable_http(resp.status_code),
            response={"http_status": resp.status_code, "body": resp.json, "text": resp.text},
        )
