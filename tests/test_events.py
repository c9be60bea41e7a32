from backend.events import PRODUCT_CREATED, EventBus

from .helpers import GAMING_MOUSE, auth_header


def received_events(socket_client, name):
    return [event for event in socket_client.get_received() if event["name"] == name]


def test_product_creation_is_broadcast(client, superadmin_token, admin_token, socket_client):
    client.post(
        "/api/admin/categorias",
        json={"nombre": "Gaming"},
        headers=auth_header(superadmin_token),
    )
    socket_client.get_received()

    response = client.post(
        "/api/productos", json=GAMING_MOUSE, headers=auth_header(admin_token)
    )
    assert response.status_code == 201
    created = response.get_json()["producto"]

    events = received_events(socket_client, "productCreated")
    assert len(events) == 1
    assert events[0]["args"][0]["id_producto"] == created["id_producto"]
    assert events[0]["args"][0] == created


def test_rejected_product_is_not_broadcast(client, admin_token, socket_client):
    response = client.post(
        "/api/productos",
        json=dict(GAMING_MOUSE, price=0),
        headers=auth_header(admin_token),
    )

    assert response.status_code == 400
    assert received_events(socket_client, "productCreated") == []


def test_late_listener_misses_earlier_events(app, client, superadmin_token, admin_token):
    client.post(
        "/api/admin/categorias",
        json={"nombre": "Gaming"},
        headers=auth_header(superadmin_token),
    )
    client.post("/api/productos", json=GAMING_MOUSE, headers=auth_header(admin_token))

    late = app.extensions["socketio"].test_client(app)
    try:
        assert received_events(late, "productCreated") == []
    finally:
        late.disconnect()


def test_sale_is_relayed_verbatim(app, socket_client):
    other = app.extensions["socketio"].test_client(app)
    sale = {"producto": 3, "cantidad": 2, "total": 99.5}
    try:
        socket_client.emit("saleMade", sale)

        relayed = received_events(other, "salesUpdated")
        assert len(relayed) == 1
        assert relayed[0]["args"][0] == sale
    finally:
        other.disconnect()


def test_bus_delivers_to_every_subscriber():
    bus = EventBus()
    seen = []
    bus.subscribe(PRODUCT_CREATED, lambda payload: seen.append(("a", payload)))
    bus.subscribe(PRODUCT_CREATED, lambda payload: seen.append(("b", payload)))

    bus.publish(PRODUCT_CREATED, {"id_producto": 1})
    bus.publish("other", {"ignored": True})

    assert seen == [("a", {"id_producto": 1}), ("b", {"id_producto": 1})]


def test_failing_listener_does_not_stop_delivery():
    bus = EventBus()
    seen = []

    def broken(payload):
        raise RuntimeError("socket closed")

    bus.subscribe(PRODUCT_CREATED, broken)
    bus.subscribe(PRODUCT_CREATED, seen.append)

    bus.publish(PRODUCT_CREATED, {"id_producto": 2})

    assert seen == [{"id_producto": 2}]
