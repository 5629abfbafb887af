import pytest


def _order(store_id, **overrides):
    body = {
        "storeId": store_id,
        "customerName": "Ada Lovelace",
        "customerEmail": "ada@analytical.io",
        "customerPhone": "+44 20 7946 0000",
        "items": [
            {"productId": "p-1", "name": "Linen Shirt", "quantity": 2, "unitPrice": 19.99},
            {"productId": "p-2", "name": "Sun Hat", "quantity": 3, "unitPrice": 5.50},
        ],
    }
    body.update(overrides)
    return body


@pytest.fixture
def order(client, store):
    response = client.post("/api/orders", json=_order(store["id"]))
    assert response.status_code == 201
    return response.json()


def test_create_order(order, store):
    assert order["id"]
    assert order["storeId"] == store["id"]
    assert order["status"] == "pending"
    assert order["totalAmount"] == 56.48
    assert order["items"] == [
        {"productId": "p-1", "name": "Linen Shirt", "quantity": 2, "unitPrice": 19.99},
        {"productId": "p-2", "name": "Sun Hat", "quantity": 3, "unitPrice": 5.5},
    ]


def test_client_total_is_recomputed(client, store):
    response = client.post("/api/orders", json=_order(store["id"], totalAmount=1.00))
    assert response.status_code == 201
    assert response.json()["totalAmount"] == 56.48


def test_fetch_order(client, order):
    response = client.get(f"/api/orders/{order['id']}")
    assert response.status_code == 200
    assert response.json() == order


def test_order_for_unknown_store(client, storage):
    response = client.post("/api/orders", json=_order("does-not-exist"))
    assert response.status_code == 404
    assert storage.list_orders("does-not-exist") == []


@pytest.mark.parametrize(
    "overrides",
    [
        {"items": []},
        {"customerEmail": "not-an-email"},
        {"customerName": ""},
        {"items": [{"productId": "p-1", "quantity": 0, "unitPrice": 3}]},
        {"items": [{"productId": "p-1", "quantity": 1, "unitPrice": -3}]},
    ],
)
def test_invalid_orders_rejected(client, store, storage, overrides):
    response = client.post("/api/orders", json=_order(store["id"], **overrides))
    assert response.status_code == 422
    assert storage.list_orders(store["id"]) == []


def test_status_moves_forward(client, order):
    for status in ["confirmed", "shipped", "delivered"]:
        response = client.patch(f"/api/orders/{order['id']}", json={"status": status})
        assert response.status_code == 200
        assert response.json()["status"] == status
    assert client.get(f"/api/orders/{order['id']}").json()["status"] == "delivered"


@pytest.mark.parametrize(
    "path, rejected",
    [
        (["confirmed"], "pending"),
        (["shipped"], "confirmed"),
        (["shipped"], "cancelled"),
        (["delivered"], "cancelled"),
        (["cancelled"], "confirmed"),
        ([], "pending"),
    ],
)
def test_status_never_moves_backwards(client, order, path, rejected):
    for status in path:
        assert client.patch(f"/api/orders/{order['id']}", json={"status": status}).status_code == 200
    response = client.patch(f"/api/orders/{order['id']}", json={"status": rejected})
    assert response.status_code == 409
    expected = path[-1] if path else "pending"
    assert client.get(f"/api/orders/{order['id']}").json()["status"] == expected


def test_cancel_pending_order(client, order):
    response = client.patch(f"/api/orders/{order['id']}", json={"status": "cancelled"})
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


def test_unknown_status_rejected(client, order):
    response = client.patch(f"/api/orders/{order['id']}", json={"status": "lost"})
    assert response.status_code == 422


def test_update_unknown_order(client):
    response = client.patch("/api/orders/does-not-exist", json={"status": "confirmed"})
    assert response.status_code == 404
    assert client.get("/api/orders/does-not-exist").status_code == 404


def test_list_orders_by_store_and_status(client, store):
    first = client.post("/api/orders", json=_order(store["id"])).json()
    second = client.post("/api/orders", json=_order(store["id"])).json()
    client.patch(f"/api/orders/{second['id']}", json={"status": "confirmed"})

    everything = client.get("/api/orders", params={"storeId": store["id"]}).json()
    assert [o["id"] for o in everything] == [first["id"], second["id"]]

    pending = client.get("/api/orders", params={"storeId": store["id"], "status": "pending"}).json()
    assert [o["id"] for o in pending] == [first["id"]]


@pytest.mark.parametrize(
    "items",
    [
        [{"productId": "p-1", "quantity": 10**12, "unitPrice": 1}],
        [{"productId": "p-1", "quantity": 10**40, "unitPrice": 0.01}],
        [
            {"productId": "p-1", "quantity": 100001, "unitPrice": 99999.99},
            {"productId": "p-2", "quantity": 1, "unitPrice": 0.01},
        ],
    ],
)
def test_order_total_too_large_rejected(client, store, storage, items):
    response = client.post("/api/orders", json=_order(store["id"], items=items))
    assert response.status_code == 422
    assert storage.list_orders(store["id"]) == []


def test_order_total_at_limit_accepted(client, store):
    items = [{"productId": "p-1", "quantity": 1, "unitPrice": 9999999999.99}]
    response = client.post("/api/orders", json=_order(store["id"], items=items))
    assert response.status_code == 201
    assert response.json()["totalAmount"] == 9999999999.99
