"""
FLASK APP MAIN ENTRY POINT - TOTP SECRET STORE BACKEND
=======================================================

File này thiết lập Flask app, cấu hình CORS, và đăng ký API routes của
secret store (popup editor, keyboard shortcut, import/export đều gọi qua đây).

CẤU HÌNH (environment)
- TOTP_DATABASE_FILE: đường dẫn SQLite (mặc định database/totp_secrets.db)
"""
import logging
from typing import Optional

from flask import Flask
from flask_cors import CORS

from backend.routes import secrets_bp
from database.db_manager import DATABASE_FILE, SecretStore

logger = logging.getLogger(__name__)


def create_app(database_file: Optional[str] = None, store: Optional[SecretStore] = None) -> Flask:
    """
    Tạo Flask app.

    Arguments:
        database_file: đường dẫn SQLite; bỏ trống -> TOTP_DATABASE_FILE / mặc định
        store: SecretStore có sẵn (ưu tiên hơn database_file)
    """
    app = Flask(__name__)

    # Cho phép popup / extension (origin khác) gọi API
    CORS(app)

    if store is None:
        store = SecretStore(database_file or DATABASE_FILE)
    app.config["DATABASE_FILE"] = store.database_file
    app.extensions["secret_store"] = store

    app.register_blueprint(secrets_bp)
    logger.info("Secret store backend using %s", store.database_file)
    return app


# KHỞI CHẠY SERVER
if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    create_app().run(debug=True, host='127.0.0.1', port=5000)
