SUPERADMIN = {
    "nombreCompleto": "Super Admin",
    "correo": "root@srrobot.com",
    "contrasena": "SrRobot2024!",
}

GAMING_MOUSE = {
    "name": "Mouse Gamer",
    "category": "Gaming",
    "price": 50,
    "image": "https://cdn.example.com/mouse.png",
    "description": "Wireless mouse",
    "characteristics": "2.4GHz, 16000 DPI",
    "productCode": "MS-1",
}


def auth_header(token):
    return {"Authorization": f"Bearer {token}"}


def login(client, correo, contrasena):
    response = client.post(
        "/api/auth/iniciar-sesion", json={"correo": correo, "contrasena": contrasena}
    )
    assert response.status_code == 200, response.get_json()
    return response.get_json()["token"]
