#api.py
import json
import time
import uuid
from typing import Optional, Tuple, List, Dict, Any
from urllib.parse import urlencode

import requests

from config import (
    SESSION,
    CAFE24_BASE_URL,
    CAFE24_API_VERSION,
    CAFE24_CLIENT_ID,
    CAFE24_CLIENT_SECRET,
    CAFE24_REDIRECT_URI,
    CAFE24_SCOPES,
    SHOP_NO,
    ORDER_PAGE_LIMIT,
    ORDER_PAGE_DELAY_SECONDS,
)
from exceptions import RemoteCallError, TokenUnavailableError
from models import ApiDecodeResult, Cafe24Token, OrderRecord
from logger import get_logger

log = get_logger("api")

ORDER_STATUS_TEXT = {
    "N00": "입금전",
    "N10": "상품준비중",
    "N20": "배송대기",
    "N21": "배송보류",
    "N22": "배송준비중",
    "N30": "배송중",
    "N40": "배송완료",
    "C00": "취소",
    "C10": "반품",
    "C20": "교환",
    "C40": "환불",
}

SHIPPING_STATUS_TEXT = {
    "F00": "배송전",
    "F10": "배송준비중",
    "F20": "배송중",
    "F30": "배송완료",
}

def order_status_text(status: str) -> str:
    return ORDER_STATUS_TEXT.get(status, status or "")

def shipping_status_text(status: str) -> str:
    return SHIPPING_STATUS_TEXT.get(status, status or "배송전")


def decode_response(resp: requests.Response, endpoint: str) -> ApiDecodeResult:
    status = resp.status_code
    raw_text = resp.text or ""
    payload = None
    error_message = ""
    details = None

    try:
        payload = resp.json() if raw_text else {}
    except ValueError as e:
        error_message = f"Could not parse response JSON: {e}"

    if isinstance(payload, dict) and payload.get("error"):
        err = payload["error"]
        if isinstance(err, dict):
            error_message = err.get("message") or error_message
            details = err.get("details")
        else:
            error_message = str(err)

    if not (200 <= status < 300) and not error_message:
        error_message = f"HTTP {status}"

    return ApiDecodeResult(status, endpoint, error_message, details, payload, raw_text)


def raise_for_result(result: ApiDecodeResult) -> ApiDecodeResult:
    if result.ok:
        return result
    raise RemoteCallError(
        f"{result.endpoint} failed: {result.status_code} {result.error_message}",
        endpoint=result.endpoint,
        status=result.status_code,
        error_message=result.error_message,
        details=result.details if result.details is not None else result.payload,
        raw_response_text=result.raw_text,
    )


def order_from_cafe24(data: Dict[str, Any]) -> OrderRecord:
    receiver = (data.get("receivers") or [{}])[0] or {}
    status = data.get("order_status") or ""
    return OrderRecord(
        order_id=str(data.get("order_id") or ""),
        receiver_name=receiver.get("name") or "",
        receiver_phone=receiver.get("cellphone") or receiver.get("phone") or "",
        receiver_address=receiver.get("address_full") or "",
        order_status=status,
        order_status_text=order_status_text(status),
        order_date=data.get("order_date") or "",
    )


def _has_next(links) -> bool:
    # Cafe24 sends links as [{"rel": "next", "href": ...}]; tolerate {"next": href} too
    if isinstance(links, dict):
        return bool(links.get("next"))
    for link in links or []:
        if isinstance(link, dict) and link.get("rel") == "next":
            return True
    return False


class Cafe24Client:
    """
    Thin Cafe24 Admin API client. The token store is passed in (anything with
    get_token() / save_token(token)); nothing here is process-global except the
    default retrying SESSION.
    """

    def __init__(
        self,
        token_store,
        session: Optional[requests.Session] = None,
        base_url: str = CAFE24_BASE_URL,
        api_version: str = CAFE24_API_VERSION,
        client_id: str = CAFE24_CLIENT_ID,
        client_secret: str = CAFE24_CLIENT_SECRET,
        redirect_uri: str = CAFE24_REDIRECT_URI,
        clock=time.time,
        sleep=time.sleep,
        timeout: int = 60,
    ):
        self.token_store = token_store
        self.session = session or SESSION
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.clock = clock
        self.sleep = sleep
        self.timeout = timeout

    # -------------- OAuth --------------
    def auth_url(self, state: Optional[str] = None) -> str:
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "state": state or uuid.uuid4().hex[:8],
            "redirect_uri": self.redirect_uri,
            "scope": CAFE24_SCOPES,
        }
        return f"{self.base_url}/oauth/authorize?{urlencode(params)}"

    def _token_request(self, form: Dict[str, str], fallback_refresh: str = "") -> Cafe24Token:
        url = f"{self.base_url}/oauth/token"
        try:
            resp = self.session.post(
                url,
                data=form,
                auth=(self.client_id, self.client_secret),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TokenUnavailableError(f"Token request failed: {e}") from e

        if resp.status_code != 200:
            log.error(f"Token request {form.get('grant_type')} failed: {resp.status_code} {resp.text}")
            raise TokenUnavailableError(f"Token request failed: HTTP {resp.status_code}")

        try:
            data = resp.json()
            expires_in = int(data.get("expires_in") or 3600)
            token = Cafe24Token(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token") or fallback_refresh,
                expires_at=self.clock() + expires_in,
                token_type=data.get("token_type") or "Bearer",
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            log.error(f"Unreadable token response ({form.get('grant_type')}): {resp.text[:500]}")
            raise TokenUnavailableError(f"Token response could not be read: {e}") from e
        self.token_store.save_token(token)
        return token

    def exchange_code(self, code: str) -> Cafe24Token:
        log.info("Exchanging authorization code for token")
        return self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        })

    def refresh(self, token: Cafe24Token) -> Cafe24Token:
        log.info("Access token expired; refreshing")
        return self._token_request(
            {"grant_type": "refresh_token", "refresh_token": token.refresh_token},
            fallback_refresh=token.refresh_token,
        )

    def get_access_token(self) -> str:
        token = self.token_store.get_token()
        if token is None:
            raise TokenUnavailableError("No Cafe24 token stored; log in via /auth/login")
        if token.is_expired(self.clock()):
            token = self.refresh(token)
        return token.access_token

    # -------------- Transport --------------
    def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
        raise_on_error: bool = True,
    ) -> ApiDecodeResult:
        url = f"{self.base_url}{path}"
        headers = {
            "Authorization": f"Bearer {self.get_access_token()}",
            "Content-Type": "application/json",
            "X-Cafe24-Api-Version": self.api_version,
        }
        if body is not None:
            log.debug(f"{method} {path} payload: {json.dumps(body, ensure_ascii=False)}")

        try:
            resp = self.session.request(
                method, url, params=params, json=body, headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            log.error(f"{method} {path} transport error: {e}")
            raise RemoteCallError(f"{method} {path} failed: {e}", endpoint=path) from e

        log.debug(f"API Response: {resp.status_code} {resp.text[:2000]}")
        result = decode_response(resp, path)
        return raise_for_result(result) if raise_on_error else result

    # -------------- Orders --------------
    def list_orders(
        self,
        start_date: str = "",
        end_date: str = "",
        order_status: str = "",
        limit: int = ORDER_PAGE_LIMIT,
        offset: int = 0,
    ) -> Tuple[List[OrderRecord], bool]:
        params: Dict[str, Any] = {"limit": limit, "offset": offset, "embed": "receivers,items,buyers"}
        if start_date:
            params["start_date"] = start_date
        if end_date:
            params["end_date"] = end_date
        if order_status:
            params["order_status"] = order_status

        result = self.request("GET", "/admin/orders", params=params)
        data = result.payload or {}
        orders = [order_from_cafe24(o) for o in data.get("orders") or []]
        return orders, _has_next(data.get("links"))

    def fetch_all_orders(
        self,
        start_date: str = "",
        end_date: str = "",
        order_status: str = "",
        limit: int = ORDER_PAGE_LIMIT,
    ) -> List[OrderRecord]:
        """Exhaust pagination; the matcher needs the whole set in memory."""
        out: List[OrderRecord] = []
        offset = 0
        while True:
            page, has_next = self.list_orders(start_date, end_date, order_status, limit, offset)
            out.extend(page)
            if not has_next or not page:
                break
            offset += limit
            self.sleep(ORDER_PAGE_DELAY_SECONDS)
        log.info(f"Fetched {len(out)} order(s) status={order_status or '*'} {start_date}~{end_date}")
        return out

    # -------------- Shipments --------------
    def register_shipments(self, shipments: List[Dict[str, Any]], shop_no: int = SHOP_NO) -> ApiDecodeResult:
        """POST /admin/shipments. Returns the decoded result without raising; callers classify."""
        return self.request(
            "POST",
            "/admin/shipments",
            body={"shop_no": shop_no, "request": {"shipments": shipments}},
            raise_on_error=False,
        )

    # -------------- Products --------------
    def update_product(self, product_no: int, request: Dict[str, Any], shop_no: int = SHOP_NO) -> dict:
        result = self.request(
            "PUT", f"/admin/products/{product_no}", body={"shop_no": shop_no, "request": request}
        )
        return result.payload or {}

    def update_product_options(self, product_no: int, request: Dict[str, Any], shop_no: int = SHOP_NO) -> dict:
        result = self.request(
            "PUT", f"/admin/products/{product_no}/options", body={"shop_no": shop_no, "request": request}
        )
        return result.payload or {}

    def update_product_variant(
        self, product_no: int, variant_code: str, request: Dict[str, Any], shop_no: int = SHOP_NO
    ) -> dict:
        result = self.request(
            "PUT",
            f"/admin/products/{product_no}/variants/{variant_code}",
            body={"shop_no": shop_no, "request": request},
        )
        return result.payload or {}
