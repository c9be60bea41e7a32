from typing import Optional

import click
from flask import Flask, g, jsonify, request
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from flask_socketio import SocketIO
from pymongo.errors import PyMongoError
from werkzeug.middleware.proxy_fix import ProxyFix

from . import accounts, catalog
from .config import Settings
from .errors import ApiError, register_error_handlers
from .events import EventBus, register_socket_handlers
from .security import ROLE_ADMIN, ROLE_SUPERADMIN, ROLE_USER, role_required


def create_app(settings: Optional[Settings] = None, db=None) -> Flask:
    """Create and configure the Flask application."""
    settings = settings or Settings.from_env()
    app = Flask(__name__)

    # Honor proxy headers so client addresses survive the load balancer.
    if settings.trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=settings.trusted_proxy_hops,
            x_proto=settings.trusted_proxy_hops,
            x_host=settings.trusted_proxy_hops,
            x_port=settings.trusted_proxy_hops,
        )

    # --- Configuration ---
    app.config["SETTINGS"] = settings
    app.config["JWT_SECRET_KEY"] = settings.jwt_secret
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = settings.token_lifetime
    app.config["MONGO_URI"] = settings.mongo_uri
    app.config["CORPORATE_EMAIL_DOMAIN"] = settings.corporate_domain
    app.config["BCRYPT_ROUNDS"] = settings.bcrypt_rounds

    # --- Initialize extensions ---
    CORS(
        app,
        origins=settings.cors_origins,
        methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
    JWTManager(app)

    if db is None:
        mongo = PyMongo(app)
        db = mongo.db

    try:
        accounts.ensure_indexes(db)
        catalog.ensure_indexes(db)
    except PyMongoError as exc:
        app.logger.warning("Unable to ensure indexes: %s", exc)

    bus = EventBus()
    socketio = SocketIO(app, cors_allowed_origins="*")
    register_socket_handlers(socketio, bus)
    register_error_handlers(app)

    staff_roles = (ROLE_ADMIN, ROLE_SUPERADMIN)
    any_role = (ROLE_USER, ROLE_ADMIN, ROLE_SUPERADMIN)

    def read_payload():
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else {}

    # --- ROUTES ---

    @app.route("/")
    def index():
        return "Welcome to my API"

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    # Authentication
    @app.route("/api/auth/registrar", methods=["POST"])
    @app.route("/api/auth/registrar-cliente", methods=["POST"])
    def register_customer():
        payload = read_payload()
        accounts.register(
            db,
            payload.get("nombreCompleto"),
            payload.get("correo"),
            payload.get("contrasena"),
            ROLE_USER,
        )
        return jsonify({"mensaje": "Cliente registrado", "rol": ROLE_USER}), 201

    @app.route("/api/auth/iniciar-sesion", methods=["POST"])
    def login():
        payload = read_payload()
        token, role = accounts.authenticate(
            db, payload.get("correo"), payload.get("contrasena")
        )
        return jsonify({"token": token, "rol": role})

    @app.route("/api/setup/crear-superadmin", methods=["POST"])
    def create_superadmin():
        payload = read_payload()
        accounts.bootstrap_superadmin(
            db,
            payload.get("nombreCompleto"),
            payload.get("correo"),
            payload.get("contrasena"),
        )
        return (
            jsonify(
                {"mensaje": "Superadmin creado con éxito", "rol": ROLE_SUPERADMIN}
            ),
            201,
        )

    # Profile
    @app.route("/api/perfil", methods=["GET"])
    @role_required(*any_role)
    def get_profile():
        principal = accounts.get_profile(db, g.principal["id"], g.principal["rol"])
        return jsonify({"perfil": accounts.serialize_principal(principal)})

    @app.route("/api/perfil", methods=["PUT"])
    @role_required(*any_role)
    def update_profile():
        principal = accounts.update_profile(
            db, g.principal["id"], g.principal["rol"], read_payload()
        )
        return jsonify(
            {
                "mensaje": "Perfil actualizado con éxito",
                "perfil": accounts.serialize_principal(principal),
            }
        )

    # Staff management
    @app.route("/api/admin/crear-admin", methods=["POST"])
    @role_required(ROLE_SUPERADMIN)
    def create_admin():
        payload = read_payload()
        accounts.create_admin(
            db,
            payload.get("nombreCompleto"),
            payload.get("correo"),
            payload.get("contrasena"),
        )
        return jsonify({"mensaje": "Admin creado con éxito", "rol": ROLE_ADMIN}), 201

    @app.route("/api/superadmin/admins", methods=["GET"])
    @role_required(ROLE_SUPERADMIN)
    def list_admins():
        admins = [accounts.serialize_principal(doc) for doc in accounts.list_admins(db)]
        return jsonify({"admins": admins})

    @app.route("/api/superadmin/admins/<int:admin_id>", methods=["GET"])
    @role_required(ROLE_SUPERADMIN)
    def get_admin(admin_id: int):
        admin = accounts.get_admin(db, admin_id)
        return jsonify({"admin": accounts.serialize_principal(admin)})

    @app.route("/api/superadmin/admins/<int:admin_id>", methods=["PUT"])
    @role_required(ROLE_SUPERADMIN)
    def update_admin(admin_id: int):
        admin = accounts.update_admin(db, admin_id, read_payload())
        return jsonify(
            {
                "mensaje": "Admin actualizado con éxito",
                "admin": accounts.serialize_principal(admin),
            }
        )

    @app.route("/api/superadmin/admins/<int:admin_id>", methods=["DELETE"])
    @role_required(ROLE_SUPERADMIN)
    def delete_admin(admin_id: int):
        accounts.delete_admin(db, admin_id)
        return jsonify({"mensaje": "Admin eliminado con éxito"})

    # Categories
    def categories_response():
        categories = [
            catalog.serialize_category(doc) for doc in catalog.list_categories(db)
        ]
        return jsonify({"categorias": categories})

    @app.route("/api/categorias", methods=["GET"])
    def list_categories():
        return categories_response()

    @app.route("/api/admin/categorias", methods=["GET"])
    @role_required(ROLE_SUPERADMIN)
    def admin_list_categories():
        return categories_response()

    @app.route("/api/admin/categorias/<int:category_id>", methods=["GET"])
    @role_required(ROLE_SUPERADMIN)
    def get_category(category_id: int):
        category = catalog.get_category(db, category_id)
        return jsonify({"categoria": catalog.serialize_category(category)})

    @app.route("/api/admin/categorias", methods=["POST"])
    @app.route("/api/admin/crear-categoria", methods=["POST"])
    @role_required(ROLE_SUPERADMIN)
    def create_category():
        payload = read_payload()
        category = catalog.create_category(
            db, payload.get("nombre"), payload.get("descripcion")
        )
        return (
            jsonify(
                {
                    "mensaje": "Categoría creada con éxito",
                    "categoria": catalog.serialize_category(category),
                }
            ),
            201,
        )

    @app.route("/api/admin/categorias/<int:category_id>", methods=["PUT"])
    @role_required(ROLE_SUPERADMIN)
    def update_category(category_id: int):
        category = catalog.update_category(db, category_id, read_payload())
        return jsonify(
            {
                "mensaje": "Categoría actualizada con éxito",
                "categoria": catalog.serialize_category(category),
            }
        )

    @app.route("/api/admin/categorias/<int:category_id>", methods=["DELETE"])
    @role_required(ROLE_SUPERADMIN)
    def delete_category(category_id: int):
        catalog.delete_category(db, category_id)
        return jsonify({"mensaje": "Categoría eliminada con éxito"})

    # Products
    @app.route("/api/productos", methods=["GET"])
    def list_products():
        products = [catalog.serialize_product(doc) for doc in catalog.list_products(db)]
        return jsonify(products)

    @app.route("/api/productos/<int:product_id>", methods=["GET"])
    def get_product(product_id: int):
        product = catalog.get_product(db, product_id)
        return jsonify({"producto": catalog.serialize_product(product)})

    @app.route("/api/productos", methods=["POST"])
    @role_required(*staff_roles)
    def create_product():
        product = catalog.create_product(db, read_payload(), bus)
        return (
            jsonify(
                {
                    "mensaje": "Producto creado con éxito",
                    "producto": catalog.serialize_product(product),
                }
            ),
            201,
        )

    @app.route("/api/productos/<int:product_id>", methods=["PUT"])
    @role_required(*staff_roles)
    def update_product(product_id: int):
        product = catalog.update_product(db, product_id, read_payload())
        return jsonify(
            {
                "mensaje": "Producto actualizado con éxito",
                "producto": catalog.serialize_product(product),
            }
        )

    @app.route("/api/productos/<int:product_id>", methods=["DELETE"])
    @role_required(*staff_roles)
    def delete_product(product_id: int):
        catalog.delete_product(db, product_id)
        return jsonify({"mensaje": "Producto eliminado con éxito"})

    # --- CLI ---

    @app.cli.command("crear-superadmin")
    @click.option("--nombre", prompt="Nombre completo")
    @click.option("--correo", prompt="Correo corporativo")
    @click.password_option("--contrasena", prompt="Contraseña")
    def create_superadmin_command(nombre, correo, contrasena):
        """Create the one superadmin account from the terminal."""
        try:
            principal = accounts.bootstrap_superadmin(db, nombre, correo, contrasena)
        except ApiError as exc:
            raise click.ClickException(exc.message)
        click.echo(f"Superadmin creado: {principal['correo']}")

    return app


if __name__ == "__main__":
    settings = Settings.from_env()
    application = create_app(settings)
    # The Werkzeug dev server is only allowed with FLASK_DEBUG set.
    application.extensions["socketio"].run(
        application,
        host="0.0.0.0",
        port=settings.port,
        debug=settings.debug,
        allow_unsafe_werkzeug=settings.debug,
    )
