import pytest

import stock_api_client
from stock_api_client import ApiError, StockApiClient, make_client_from_env


class FakeResponse:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body
        self.text = str(body)

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


class FakeRequests:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def post(self, url, data=None, headers=None, timeout=None):
        self.calls.append(("POST", url, data, headers))
        return FakeResponse(200, {"access_token": f"token-{len(self.calls)}"})

    def request(self, method, url, json=None, params=None, headers=None, timeout=None):
        self.calls.append((method, url, json, headers))
        return self.responses.pop(0)


@pytest.fixture
def fake(monkeypatch):
    def install(*responses):
        f = FakeRequests(responses)
        monkeypatch.setattr(stock_api_client.requests, "post", f.post)
        monkeypatch.setattr(stock_api_client.requests, "request", f.request)
        return f

    return install


def make_client():
    return StockApiClient(base_url="http://stock.test/api/", email="pos@example.com", password="secret")


def test_logs_in_before_first_call(fake):
    f = fake(FakeResponse(201, {"id": "m1"}))
    client = make_client()

    assert client.record_movement(item_id="i1", store_id="s1", type="SALE", quantity=2) == {"id": "m1"}

    login, call = f.calls
    assert login[1] == "http://stock.test/api/auth/jwt/login"
    assert login[2] == {"username": "pos@example.com", "password": "secret"}
    method, url, payload, headers = call
    assert (method, url) == ("POST", "http://stock.test/api/stock/movements")
    assert payload["normalize_sign"] is True
    assert payload["quantity"] == 2
    assert headers["Authorization"] == "Bearer token-1"


def test_expired_token_is_refreshed_once(fake):
    f = fake(FakeResponse(401, {"detail": "Unauthorized"}), FakeResponse(200, {"alerts": []}))
    client = make_client()
    client.token = "old"

    assert client.get_alerts() == {"alerts": []}
    assert client.token == "token-2"
    assert [c[0] for c in f.calls] == ["GET", "POST", "GET"]


def test_errors_carry_status_and_body(fake):
    fake(FakeResponse(409, {"detail": "Only completed counts can be approved", "code": "invalid_state"}))
    client = make_client()
    client.token = "t"

    with pytest.raises(ApiError) as exc:
        client.approve_count("c1")
    assert exc.value.status_code == 409
    assert exc.value.body["code"] == "invalid_state"


def test_no_content_returns_none(fake):
    fake(FakeResponse(204))
    client = make_client()
    client.token = "t"
    assert client._request("DELETE", "/counts/c1") is None


def test_record_sales_references_the_order(fake):
    f = fake(FakeResponse(201, {"count": 2}))
    client = make_client()
    client.token = "t"

    client.record_sales(store_id="s1", order_id="o-9", lines=[{"item_id": "a", "quantity": 1}, {"item_id": "b", "quantity": 2}])

    _, url, payload, _ = f.calls[0]
    assert url.endswith("/stock/movements/batch")
    lines = payload["movements"]
    assert [line["type"] for line in lines] == ["SALE", "SALE"]
    assert all(line["reference_id"] == "o-9" and line["normalize_sign"] for line in lines)


def test_client_from_env(monkeypatch):
    monkeypatch.setenv("STOCK_API_URL", "http://stock.test")
    monkeypatch.setenv("STOCK_API_EMAIL", "pos@example.com")
    monkeypatch.setenv("STOCK_API_PASSWORD", "secret")
    monkeypatch.delenv("STOCK_API_TOKEN", raising=False)

    client = make_client_from_env()
    assert client.base_url == "http://stock.test"
    assert client.token is None

    monkeypatch.delenv("STOCK_API_PASSWORD")
    with pytest.raises(RuntimeError):
        make_client_from_env()
