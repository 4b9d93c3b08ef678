import logging
import os
import sqlite3

logger = logging.getLogger(__name__)


def setup_database(database_file: str):
    """Tạo bảng secrets nếu chưa có (idempotent).

    Mỗi secret thuộc đúng một bucket `website`; `position` giữ thứ tự chèn
    trong bucket (tăng dần toàn bảng, nên chuyển bucket = lấy position mới).
    """

    # Đảm bảo thư mục tồn tại
    directory = os.path.dirname(database_file)
    if directory:
        os.makedirs(directory, exist_ok=True)

    conn = sqlite3.connect(database_file)
    try:
        with conn:
            conn.execute('''
            CREATE TABLE IF NOT EXISTS secrets (
                id TEXT PRIMARY KEY,
                website TEXT NOT NULL,
                position INTEGER NOT NULL,
                name TEXT NOT NULL,
                secret_key TEXT NOT NULL,
                issuer TEXT NOT NULL DEFAULT '',
                digits INTEGER NOT NULL DEFAULT 6,
                period INTEGER NOT NULL DEFAULT 30,
                algorithm TEXT NOT NULL DEFAULT 'SHA1',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            ''')
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_secrets_website ON secrets (website, position)"
            )
    finally:
        conn.close()
    logger.debug("Database schema ready at %s", database_file)


if __name__ == "__main__":
    from database.db_manager import DATABASE_FILE

    logging.basicConfig(level=logging.INFO)
    setup_database(DATABASE_FILE)
    print("Database setup completed successfully!")
