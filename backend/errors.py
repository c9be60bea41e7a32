from flask import jsonify
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException


class ApiError(Exception):
    status_code = 400
    default_message = "Solicitud inválida"

    def __init__(self, message=None, status_code=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ApiError):
    default_message = "Todos los campos son requeridos"


class ConflictError(ApiError):
    default_message = "El recurso ya existe"


class PreconditionFailed(ApiError):
    default_message = "La operación no está permitida en el estado actual"


class AuthError(ApiError):
    status_code = 401
    default_message = "No token proporcionado"


class NotFoundError(ApiError):
    status_code = 404
    default_message = "Recurso no encontrado"


class StoreError(ApiError):
    status_code = 500
    default_message = "Error de base de datos"


def register_error_handlers(app):
    """Translate every failure into a ``{"mensaje": ...}`` JSON body."""

    @app.errorhandler(ApiError)
    def handle_api_error(error: ApiError):
        if error.status_code >= 500:
            app.logger.error("Store failure: %s", error.message)
        return jsonify({"mensaje": error.message}), error.status_code

    @app.errorhandler(PyMongoError)
    def handle_store_error(error: PyMongoError):
        app.logger.error("MongoDB error: %s", error)
        return jsonify({"mensaje": f"Error: {error}"}), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"mensaje": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.exception("Unhandled error: %s", error)
        return jsonify({"mensaje": "Error interno del servidor"}), 500
