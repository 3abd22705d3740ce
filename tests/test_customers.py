from conftest import auth


def test_root_and_request_id(client):
    response = client.get("/", headers={"X-Request-ID": "req-42"})
    assert response.json() == {"status": "Repair Desk Running"}
    assert response.headers["X-Request-ID"] == "req-42"


def test_customers_are_scoped_to_shop(client, seed):
    created = client.post(
        "/customers", json={"name": " Dana Driver ", "phone": "+15555550111"}, headers=auth("advisor-token")
    )
    assert created.status_code == 201
    assert created.json()["name"] == "Dana Driver"
    assert created.json()["shop_id"] == seed.shop_id

    search = client.get("/customers", params={"q": "dana"}, headers=auth("advisor-token")).json()["items"]
    assert [item["name"] for item in search] == ["Dana Driver"]

    other = client.get("/customers", headers=auth("other-token")).json()["items"]
    assert other == []


def test_customer_requires_name(client, seed):
    response = client.post("/customers", json={"name": "   "}, headers=auth("advisor-token"))
    assert response.status_code == 400
    assert response.json() == {"error": "name is required", "code": "VALIDATION_ERROR"}


def test_vehicle_customer_must_be_in_shop(client, seed):
    created = client.post(
        "/vehicles",
        json={"customer_id": seed.customer_id, "year": 2020, "make": "Ram", "model": "2500", "vin": " 3c6ur5dl1lg123456 "},
        headers=auth("advisor-token"),
    )
    assert created.json()["vin"] == "3C6UR5DL1LG123456"

    listed = client.get("/vehicles", params={"customer_id": seed.customer_id}, headers=auth("advisor-token")).json()
    assert [item["make"] for item in listed["items"]] == ["Ford", "Ram"]

    foreign = client.post("/vehicles", json={"customer_id": seed.customer_id}, headers=auth("other-token"))
    assert foreign.status_code == 404


def test_requests_need_a_known_token(client, seed):
    assert client.get("/customers").status_code == 401
    unknown = client.get("/customers", headers=auth("nope"))
    assert unknown.status_code == 401
    assert unknown.json() == {"error": "Not authenticated", "code": "UNAUTHENTICATED"}
    assert client.get("/customers", headers=auth("customer-token")).status_code == 403
