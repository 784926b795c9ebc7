from collections.abc import Mapping

from flask import Flask
from flask_cors import CORS

from . import notifications
from .config import Config
from .extensions import db
from .routes import register_routes


def create_app(config_object=None, emitter=None):
    app = Flask(__name__, instance_relative_config=True)

    if isinstance(config_object, Mapping):
        app.config.from_object(Config)
        app.config.update(config_object)
    elif config_object:
        app.config.from_object(config_object)
    else:
        app.config.from_object(Config)
        app.config.from_envvar("APP_SETTINGS", silent=True)

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)

    CORS(app,
         origins=app.config.get("CORS_ORIGINS", ["*"]),
         supports_credentials=True,
         allow_headers=["Content-Type", "Authorization", "Stripe-Signature"],
         methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]
    )

    notifications.init_app(app, emitter)
    register_routes(app)

    return app
