from flask import Flask
from werkzeug.middleware.proxy_fix import ProxyFix
from .extensions import db
from .routes import bp as main_bp
from .cli import agenda_cli
from .live_sync import ChangeFeed


def create_app(config_class='config.Config'):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Fix for Render (handle reverse proxy headers for HTTPS)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    db.init_app(app)

    # Realtime feed for live session rows, and one controller per live event
    app.extensions["live_feed"] = ChangeFeed()
    app.extensions["live_controllers"] = {}

    app.register_blueprint(main_bp)
    app.cli.add_command(agenda_cli)

    with app.app_context():
        # Create tables if they don't exist
        db.create_all()

        # Worship groups must exist before services reference them
        from .seed_data import seed_database
        seed_database()

    return app
