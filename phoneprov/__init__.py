import logging

from flask import Flask

from .config import Config
from .extensions import db, login_manager, migrate


def _configure_logging(app: Flask) -> None:
    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )


def create_app(config_class=Config):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config_class)

    _configure_logging(app)

    db.init_app(app)
    login_manager.init_app(app)
    migrate.init_app(app, db)

    from . import models  # noqa: F401

    from .main import main_bp
    from .auth import auth_bp
    from .wizard import wizard_bp
    from .provision import provision_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(wizard_bp, url_prefix="/devices")
    app.register_blueprint(provision_bp, url_prefix="/provision")

    from .cli import register_cli
    register_cli(app)

    return app
