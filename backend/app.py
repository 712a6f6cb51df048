import os

from flask import Flask
from flask_cors import CORS

from app_logging import setup_logging
from db.sqlite_db import init_all_tables


def create_app() -> Flask:
    setup_logging()

    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = int(os.environ.get("IMPORT_MAX_UPLOAD_BYTES", str(25 * 1024 * 1024))) + 1024 * 1024
    CORS(
        app,
        resources={r"/*": {"origins": "*"}},
        allow_headers=["Content-Type", "Authorization"],
        methods=["GET", "POST", "OPTIONS"],
    )

    init_all_tables()

    # Register APIs (keep app.py as the central register)
    from apis.system_api import bp as system_bp
    from apis.import_api import bp as import_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(import_bp)

    return app


if __name__ == "__main__":
    create_app().run(host="0.0.0.0", port=int(os.environ.get("PORT", "5000")))
