# tests/test_api.py
import json
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from api import Cafe24Client, decode_response, order_from_cafe24, order_status_text
from exceptions import RemoteCallError, TokenUnavailableError
from models import Cafe24Token


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        self.text = text if text is not None else (json.dumps(body) if body is not None else "")

    def json(self):
        return json.loads(self.text)


class FakeSession:
    def __init__(self, responses=None, token_response=None):
        self.responses = list(responses or [])
        self.token_response = token_response
        self.calls = []
        self.token_calls = []

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": params, "json": json, "headers": headers})
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp

    def post(self, url, data=None, auth=None, timeout=None):
        self.token_calls.append({"url": url, "data": data, "auth": auth})
        return self.token_response


class MemoryTokenStore:
    def __init__(self, token=None):
        self.token = token

    def get_token(self):
        return self.token

    def save_token(self, token):
        self.token = token


def make_client(session, token=None, now=1000.0, sleeps=None):
    store = MemoryTokenStore(token or Cafe24Token("access-1", "refresh-1", expires_at=now + 3600))
    client = Cafe24Client(
        store,
        session=session,
        base_url="https://mall.cafe24api.com/api/v2",
        api_version="2025-06-01",
        client_id="cid",
        client_secret="secret",
        redirect_uri="http://localhost:5050/auth/callback",
        clock=lambda: now,
        sleep=(sleeps.append if sleeps is not None else (lambda s: None)),
    )
    return client, store


def cafe24_order(order_id, name="정형준", cellphone="010-1234-5678", address="서울 강남구 테헤란로 123"):
    return {
        "order_id": order_id,
        "order_status": "N20",
        "order_date": "2025-09-09T10:00:00+09:00",
        "receivers": [{"name": name, "cellphone": cellphone, "phone": "", "address_full": address}],
    }


def test_missing_token_raises():
    client, _ = make_client(FakeSession())
    client.token_store.token = None
    with pytest.raises(TokenUnavailableError):
        client.get_access_token()


def test_expired_token_is_refreshed_and_saved():
    session = FakeSession(
        responses=[FakeResponse(200, {"product": {}})],
        token_response=FakeResponse(200, {"access_token": "access-2", "expires_in": 7200}),
    )
    client, store = make_client(session, token=Cafe24Token("access-1", "refresh-1", expires_at=10.0))

    client.update_product(101, {"price": "30000"})

    assert session.token_calls[0]["data"] == {"grant_type": "refresh_token", "refresh_token": "refresh-1"}
    assert session.token_calls[0]["auth"] == ("cid", "secret")
    assert store.token.access_token == "access-2"
    assert store.token.refresh_token == "refresh-1"
    assert store.token.expires_at == 1000.0 + 7200
    assert session.calls[0]["headers"]["Authorization"] == "Bearer access-2"
    assert session.calls[0]["headers"]["X-Cafe24-Api-Version"] == "2025-06-01"


def test_failed_refresh_is_token_unavailable():
    session = FakeSession(token_response=FakeResponse(400, {"error": "invalid_grant"}))
    client, _ = make_client(session, token=Cafe24Token("a", "r", expires_at=0.0))
    with pytest.raises(TokenUnavailableError):
        client.get_access_token()


def test_exchange_code_saves_token():
    session = FakeSession(token_response=FakeResponse(200, {"access_token": "new", "refresh_token": "rnew"}))
    client, store = make_client(session)
    token = client.exchange_code("abc")

    assert session.token_calls[0]["data"]["grant_type"] == "authorization_code"
    assert session.token_calls[0]["data"]["code"] == "abc"
    assert store.token is token
    assert token.refresh_token == "rnew"


def test_auth_url():
    client, _ = make_client(FakeSession())
    url = urlparse(client.auth_url("xyz"))
    qs = parse_qs(url.query)
    assert url.path.endswith("/oauth/authorize")
    assert qs["client_id"] == ["cid"]
    assert qs["state"] == ["xyz"]
    assert qs["redirect_uri"] == ["http://localhost:5050/auth/callback"]


def test_order_flattening():
    order = order_from_cafe24(cafe24_order("20250909001", cellphone="", address="부산 해운대구 센텀중앙로 100"))
    assert order.receiver_name == "정형준"
    assert order.receiver_phone == ""
    assert order.receiver_address == "부산 해운대구 센텀중앙로 100"
    assert order.order_status_text == "배송대기"

    bare = order_from_cafe24({"order_id": 5, "receivers": []})
    assert (bare.order_id, bare.receiver_name) == ("5", "")


def test_status_text():
    assert order_status_text("N40") == "배송완료"
    assert order_status_text("X99") == "X99"


def test_fetch_all_orders_walks_pages():
    session = FakeSession(responses=[
        FakeResponse(200, {"orders": [cafe24_order("1"), cafe24_order("2")],
                           "links": [{"rel": "next", "href": "..."}]}),
        FakeResponse(200, {"orders": [cafe24_order("3")], "links": []}),
    ])
    sleeps = []
    client, _ = make_client(session, sleeps=sleeps)
    orders = client.fetch_all_orders("2025-09-01", "2025-09-09", "N20", limit=2)

    assert [o.order_id for o in orders] == ["1", "2", "3"]
    assert [c["params"]["offset"] for c in session.calls] == [0, 2]
    assert session.calls[0]["params"]["order_status"] == "N20"
    assert session.calls[0]["params"]["embed"] == "receivers,items,buyers"
    assert len(sleeps) == 1


def test_register_shipments_returns_error_without_raising():
    body = {"error": {"message": "Unprocessable", "details": [{"tracking_no": "x"}]}}
    session = FakeSession(responses=[FakeResponse(422, body)])
    client, _ = make_client(session)

    result = client.register_shipments([{"order_id": "1", "tracking_no": "x"}], shop_no=1)

    assert session.calls[0]["method"] == "POST"
    assert session.calls[0]["url"].endswith("/admin/shipments")
    assert session.calls[0]["json"] == {"shop_no": 1, "request": {"shipments": [{"order_id": "1", "tracking_no": "x"}]}}
    assert result.status_code == 422
    assert result.error_message == "Unprocessable"
    assert result.details == [{"tracking_no": "x"}]
    assert not result.ok


def test_update_variant_raises_remote_error():
    session = FakeSession(responses=[FakeResponse(400, {"error": {"message": "invalid additional_amount"}})])
    client, _ = make_client(session)

    with pytest.raises(RemoteCallError) as exc:
        client.update_product_variant(101, "P000000A000B", {"additional_amount": "-1"})
    assert exc.value.status == 400
    assert exc.value.error_message == "invalid additional_amount"
    assert session.calls[0]["method"] == "PUT"
    assert session.calls[0]["url"].endswith("/admin/products/101/variants/P000000A000B")


def test_transport_error_is_remote_error():
    session = FakeSession(responses=[requests.ConnectionError("boom")])
    client, _ = make_client(session)
    with pytest.raises(RemoteCallError):
        client.update_product_options(101, {"options": []})


def test_decode_non_json_body():
    result = decode_response(FakeResponse(502, text="<html>Bad Gateway</html>"), "/admin/orders")
    assert result.status_code == 502
    assert "Could not parse" in result.error_message
    assert result.raw_text == "<html>Bad Gateway</html>"


@pytest.mark.parametrize("response", [
    FakeResponse(200, text="<html>maintenance</html>"),
    FakeResponse(200, {"expires_in": 7200}),
    FakeResponse(200, ["not", "an", "object"]),
])
def test_unreadable_token_response_is_token_unavailable(response):
    session = FakeSession(token_response=response)
    client, store = make_client(session, token=Cafe24Token("a", "r", expires_at=0.0))

    with pytest.raises(TokenUnavailableError):
        client.get_access_token()
    assert store.token.access_token == "a"
