"""
SecretStore: lưu TOTP secrets trong SQLite, phân vùng (bucket) theo website.

- Mỗi thao tác mở một connection riêng và chạy trong một transaction, nên không
  có trạng thái ghi dở dang nào lộ ra cho thao tác khác.
- add / update / delete là read-modify-write trên một bucket: được serialize bằng
  lock theo website. Chuyển secret sang website khác giữ lock của cả hai bucket.
  Lock chỉ sống khi còn thao tác giữ nó; đọc không lấy lock (transaction SQLite
  đã cho một snapshot đã commit).
- Secret key được validate qua core.otp_core trước khi ghi; store không bao giờ
  lưu một key không decode được.
"""

from collections.abc import Mapping
from contextlib import ExitStack, contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
import json
import logging
import os
import sqlite3
import threading
from typing import Optional
import uuid
import weakref

from core.otp_core import (
    DEFAULT_ALGORITHM,
    DEFAULT_DIGITS,
    DEFAULT_TIME_STEP,
    SUPPORTED_DIGITS,
    SUPPORTED_PERIODS,
    UnsupportedParameters,
    normalize_algorithm,
    normalize_secret_key,
    validate_secret,
)
from database.setup_database import setup_database

logger = logging.getLogger(__name__)

DATABASE_FILE = os.environ.get(
    "TOTP_DATABASE_FILE", os.path.join("database", "totp_secrets.db")
)
EXPORT_VERSION = "1.0"

MUTABLE_FIELDS = ("website", "name", "secret_key", "issuer", "digits", "period")
_FIELD_ALIASES = {"secretKey": "secret_key", "secret": "secret_key"}
_READ_ONLY_FIELDS = {"id", "createdAt", "updatedAt", "created_at", "updated_at"}
_COLUMNS = (
    "id, website, name, secret_key, issuer, digits, period, algorithm, "
    "created_at, updated_at"
)


class StoreError(Exception):
    """Base class cho lỗi của SecretStore."""


class ValidationError(StoreError):
    """Thiếu field bắt buộc hoặc giá trị không hợp lệ."""


class NotFound(StoreError):
    """Không có secret với id đã cho."""


class MalformedImport(StoreError):
    """Tài liệu import sai cấu trúc (không phải JSON object có list `secrets`)."""


@dataclass
class Secret:
    id: str
    website: str
    name: str
    secret_key: str
    issuer: str
    digits: int
    period: int
    algorithm: str
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Secret":
        return cls(**{key: row[key] for key in row.keys()})

    def mutable_fields(self) -> dict:
        data = asdict(self)
        return {key: data[key] for key in MUTABLE_FIELDS + ("algorithm",)}

    def to_dict(self) -> dict:
        """Dạng JSON (camelCase) dùng cho API."""
        return {
            "id": self.id,
            "website": self.website,
            "name": self.name,
            "secretKey": self.secret_key,
            "issuer": self.issuer,
            "digits": self.digits,
            "period": self.period,
            "algorithm": self.algorithm,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    def export_entry(self) -> dict:
        """Chỉ các field cần cho re-import; id và timestamps không được export."""
        return {
            "website": self.website,
            "name": self.name,
            "secretKey": self.secret_key,
            "issuer": self.issuer,
            "digits": self.digits,
            "period": self.period,
        }


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _text(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _choice(value, default: int, allowed: tuple, field: str) -> int:
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise ValidationError(f"{field} must be an integer, got {value!r}") from e
    if number not in allowed:
        raise ValidationError(f"{field} must be one of {allowed}, got {number}")
    return number


def _canonical_fields(data) -> dict:
    """Map camelCase/legacy keys sang tên cột; bỏ field read-only; từ chối field lạ."""
    if not isinstance(data, Mapping):
        raise ValidationError("Secret data must be an object")
    fields = {}
    for key, value in data.items():
        if key in _READ_ONLY_FIELDS:
            continue
        key = _FIELD_ALIASES.get(key, key)
        if key not in MUTABLE_FIELDS and key != "algorithm":
            raise ValidationError(f"Unknown field: {key}")
        fields[key] = value
    return fields


def validate_fields(fields: Mapping) -> dict:
    """
    Validate và chuẩn hoá các field có thể sửa của một secret.

    Raises:
        ValidationError: thiếu website / secret key, key không phải Base32,
            digits / period / algorithm ngoài tập hỗ trợ
    """
    website = _text(fields.get("website"))
    secret_key = normalize_secret_key(_text(fields.get("secret_key")))
    if not website or not secret_key:
        raise ValidationError("Please fill in all required fields (website, secretKey)")
    if not validate_secret(secret_key):
        raise ValidationError("Invalid secret key. Please check the Base32 format.")

    try:
        algorithm = normalize_algorithm(fields.get("algorithm") or DEFAULT_ALGORITHM)
    except UnsupportedParameters as e:
        raise ValidationError(str(e)) from e
    # Algorithm cố định SHA1; field giữ lại cho tương thích về sau
    if algorithm != DEFAULT_ALGORITHM:
        raise ValidationError(f"Only {DEFAULT_ALGORITHM} secrets can be stored")

    return {
        "website": website,
        "name": _text(fields.get("name")) or website,
        "secret_key": secret_key,
        "issuer": _text(fields.get("issuer")),
        "digits": _choice(fields.get("digits"), DEFAULT_DIGITS, SUPPORTED_DIGITS, "digits"),
        "period": _choice(fields.get("period"), DEFAULT_TIME_STEP, SUPPORTED_PERIODS, "period"),
        "algorithm": algorithm,
    }


class _BucketLock:
    """threading.Lock bọc lại để WeakValueDictionary giữ được (Lock gốc không weakref được)."""

    __slots__ = ("_lock", "__weakref__")

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info):
        self._lock.release()


class SecretStore:
    """Durable collection of Secret records keyed by website."""

    def __init__(self, database_file: Optional[str] = None):
        self.database_file = database_file or DATABASE_FILE
        setup_database(self.database_file)
        self._locks_guard = threading.Lock()
        self._bucket_locks: "weakref.WeakValueDictionary[str, _BucketLock]" = \
            weakref.WeakValueDictionary()

    # --- connection / locking ---------------------------------------------
    def get_db_connection(self) -> sqlite3.Connection:
        """Kết nối đến database"""
        conn = sqlite3.connect(self.database_file)
        conn.row_factory = sqlite3.Row  # Trả về kết quả dạng dictionary
        return conn

    @contextmanager
    def _transaction(self):
        conn = self.get_db_connection()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _bucket_lock(self, website: str) -> "_BucketLock":
        with self._locks_guard:
            lock = self._bucket_locks.get(website)
            if lock is None:
                lock = self._bucket_locks[website] = _BucketLock()
            return lock

    @contextmanager
    def _locked(self, *websites: str):
        # Thứ tự cố định để hai update chéo bucket không deadlock
        with ExitStack() as stack:
            for website in sorted(set(websites)):
                stack.enter_context(self._bucket_lock(website))
            yield

    # --- reads --------------------------------------------------------------
    def list_by_website(self, website: str) -> list[Secret]:
        """Tất cả secret của một website theo thứ tự thêm vào; [] nếu không có."""
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM secrets WHERE website = ? ORDER BY position",
                (website,),
            ).fetchall()
        return [Secret.from_row(row) for row in rows]

    def list_all(self) -> list[Secret]:
        """Mọi secret, nhóm theo website, giữ thứ tự thêm vào trong từng website."""
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM secrets ORDER BY website, position"
            ).fetchall()
        return [Secret.from_row(row) for row in rows]

    def get(self, secret_id: str) -> Secret:
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM secrets WHERE id = ?", (secret_id,)
            ).fetchone()
        if row is None:
            raise NotFound(f"Secret '{secret_id}' not found")
        return Secret.from_row(row)

    def first_for_website(self, website: str) -> Optional[Secret]:
        """Secret đầu tiên (theo thứ tự thêm vào) của website, hoặc None."""
        secrets = self.list_by_website(website)
        return secrets[0] if secrets else None

    def count(self) -> int:
        with self._transaction() as conn:
            return conn.execute("SELECT COUNT(*) FROM secrets").fetchone()[0]

    # --- mutations ----------------------------------------------------------
    def add(self, data: Mapping) -> Secret:
        """
        Thêm secret mới vào cuối bucket của website.

        id, created_at, updated_at do store sinh ra; giá trị caller gửi kèm bị bỏ qua.

        Raises:
            ValidationError
        """
        fields = validate_fields(_canonical_fields(data))
        now = _utc_now()
        secret = Secret(id=uuid.uuid4().hex, created_at=now, updated_at=now, **fields)

        with self._locked(secret.website), self._transaction() as conn:
            conn.execute(
                """INSERT INTO secrets
                   (id, website, position, name, secret_key, issuer, digits, period,
                    algorithm, created_at, updated_at)
                   VALUES (?, ?, (SELECT COALESCE(MAX(position), 0) + 1 FROM secrets),
                           ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    secret.id, secret.website, secret.name, secret.secret_key,
                    secret.issuer, secret.digits, secret.period, secret.algorithm,
                    secret.created_at, secret.updated_at,
                ),
            )
        logger.info("Added secret %s for %s", secret.id, secret.website)
        return secret

    def update(self, secret_id: str, fields: Mapping) -> Secret:
        """
        Sửa các field của secret (id, created_at giữ nguyên; updated_at làm mới).

        Nếu website thay đổi, secret được chuyển khỏi bucket cũ và nối vào cuối
        bucket mới.

        Raises:
            NotFound: không có secret_id
            ValidationError: field lạ hoặc giá trị không hợp lệ
        """
        changes = _canonical_fields(fields)
        while True:
            old_website = self.get(secret_id).website
            target = _text(changes.get("website", old_website))
            with self._locked(old_website, target), self._transaction() as conn:
                row = conn.execute(
                    f"SELECT {_COLUMNS} FROM secrets WHERE id = ?", (secret_id,)
                ).fetchone()
                if row is None:
                    raise NotFound(f"Secret '{secret_id}' not found")
                current = Secret.from_row(row)
                if current.website != old_website:
                    # bị chuyển bucket giữa chừng, đọc lại
                    continue

                merged = current.mutable_fields()
                merged.update(changes)
                cleaned = validate_fields(merged)
                updated = Secret(
                    id=current.id,
                    created_at=current.created_at,
                    updated_at=_utc_now(),
                    **cleaned,
                )
                if updated.website != current.website:
                    position_sql = "(SELECT COALESCE(MAX(position), 0) + 1 FROM secrets)"
                else:
                    position_sql = "position"
                conn.execute(
                    f"""UPDATE secrets SET website = ?, position = {position_sql},
                           name = ?, secret_key = ?, issuer = ?, digits = ?, period = ?,
                           algorithm = ?, updated_at = ?
                        WHERE id = ?""",
                    (
                        updated.website, updated.name, updated.secret_key,
                        updated.issuer, updated.digits, updated.period,
                        updated.algorithm, updated.updated_at, updated.id,
                    ),
                )
            break

        if updated.website != old_website:
            logger.info("Moved secret %s from %s to %s", secret_id, old_website, updated.website)
        else:
            logger.info("Updated secret %s for %s", secret_id, updated.website)
        return updated

    def delete(self, secret_id: str, website: str) -> None:
        """Xoá secret khỏi bucket website. Không có thì thôi (idempotent)."""
        with self._locked(website), self._transaction() as conn:
            removed = conn.execute(
                "DELETE FROM secrets WHERE id = ? AND website = ?", (secret_id, website)
            ).rowcount
        if removed:
            logger.info("Deleted secret %s from %s", secret_id, website)
        else:
            logger.debug("Delete of %s in %s: nothing to remove", secret_id, website)

    # --- import / export ----------------------------------------------------
    def export_document(self) -> dict:
        """Snapshot có version của toàn bộ secrets (không có id / timestamps)."""
        return {
            "version": EXPORT_VERSION,
            "exportDate": _utc_now(),
            "secrets": [secret.export_entry() for secret in self.list_all()],
        }

    def export_all(self) -> str:
        return json.dumps(self.export_document(), indent=2)

    def import_all(self, document) -> int:
        """
        Import secrets từ tài liệu export (JSON text/bytes hoặc dict đã parse).

        - Sai cấu trúc top-level -> MalformedImport, không import gì.
        - Entry thiếu website / name / secretKey bị bỏ qua.
        - Entry không qua được validate của add cũng bị bỏ qua (ghi log).

        Trả về:
            int: số secret đã import
        """
        if isinstance(document, (str, bytes, bytearray)):
            try:
                data = json.loads(document)
            except ValueError as e:
                raise MalformedImport(f"Invalid import format: {e}") from e
        else:
            data = document

        if not isinstance(data, Mapping) or not isinstance(data.get("secrets"), list):
            raise MalformedImport("Invalid import format: expected an object with a 'secrets' list")

        imported = 0
        for index, entry in enumerate(data["secrets"]):
            if not isinstance(entry, Mapping):
                logger.warning("Skipping import entry %d: not an object", index)
                continue
            secret_key = entry.get("secretKey") or entry.get("secret")
            if not entry.get("website") or not entry.get("name") or not secret_key:
                logger.debug("Skipping import entry %d: missing required field", index)
                continue
            try:
                self.add({
                    "website": entry["website"],
                    "name": entry["name"],
                    "secret_key": secret_key,
                    "issuer": entry.get("issuer") or "",
                    "digits": entry.get("digits") or DEFAULT_DIGITS,
                    "period": entry.get("period") or DEFAULT_TIME_STEP,
                    "algorithm": DEFAULT_ALGORITHM,
                })
            except ValidationError as e:
                logger.warning("Skipping import entry %d: %s", index, e)
                continue
            imported += 1

        logger.info("Imported %d of %d secrets", imported, len(data["secrets"]))
        return imported
