"""
SECRET STORE API ROUTES - FLASK BLUEPRINT

Các endpoint REST cho secret store, prefix /api.

VÍ DỤ:
curl "http://localhost:5000/api/secrets?website=github.com"
curl -X POST http://localhost:5000/api/secrets -H "Content-Type: application/json" \
     -d '{"website": "github.com", "name": "work", "secretKey": "JBSWY3DPEHPK3PXP"}'
curl "http://localhost:5000/api/code?url=https://github.com/login"
curl http://localhost:5000/api/export > totp-secrets.json
"""

import base64
import io
import logging
import time

from flask import Blueprint, current_app, jsonify, request
import qrcode

from core.otp_core import (
    DEFAULT_ALGORITHM,
    DEFAULT_DIGITS,
    DEFAULT_TIME_STEP,
    InvalidSecret,
    UnsupportedParameters,
    compute_code,
    format_otpauth_uri,
    hostname_from_url,
)
from database.db_manager import MalformedImport, NotFound, ValidationError

logger = logging.getLogger(__name__)

secrets_bp = Blueprint('secrets', __name__, url_prefix='/api')


def _store():
    return current_app.extensions["secret_store"]


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data


def _with_code(secret, now: int) -> dict:
    """Secret + mã hiện tại, như một thẻ trong popup."""
    item = secret.to_dict()
    result = compute_code(secret.secret_key, now, secret.digits, secret.period, secret.algorithm)
    item.update({
        "code": result.code,
        "remaining": result.seconds_remaining,
        "progress": result.progress,
    })
    return item


def _website_arg() -> str:
    url = request.args.get('url')
    if url:
        return hostname_from_url(url)
    return (request.args.get('website') or '').strip()


# --- Error handlers --------------------------------------------------------
@secrets_bp.errorhandler(ValidationError)
@secrets_bp.errorhandler(InvalidSecret)
@secrets_bp.errorhandler(UnsupportedParameters)
@secrets_bp.errorhandler(MalformedImport)
def handle_bad_request(error):
    logger.info("Rejected %s %s: %s", request.method, request.path, error)
    return jsonify({"error": str(error)}), 400


@secrets_bp.errorhandler(NotFound)
def handle_not_found(error):
    return jsonify({"error": str(error)}), 404


# --- Secrets CRUD ----------------------------------------------------------
@secrets_bp.route('/secrets', methods=['GET'])
def list_secrets():
    """
    DANH SÁCH SECRET CỦA MỘT WEBSITE (kèm mã hiện tại)

      curl "http://localhost:5000/api/secrets?website=github.com"
      curl "http://localhost:5000/api/secrets?url=https://github.com/login"
    """
    website = _website_arg()
    if not website:
        raise ValidationError("website (or url) query parameter is required")
    now = int(time.time())
    secrets = [_with_code(s, now) for s in _store().list_by_website(website)]
    return jsonify({"website": website, "secrets": secrets})


@secrets_bp.route('/secrets/all', methods=['GET'])
def list_all_secrets():
    """Tất cả secret (nút "show all") và tổng số."""
    now = int(time.time())
    secrets = [_with_code(s, now) for s in _store().list_all()]
    return jsonify({"secrets": secrets, "total": len(secrets)})


@secrets_bp.route('/secrets', methods=['POST'])
def add_secret():
    """
    THÊM SECRET

    Input (JSON body):
      {
        "website": "github.com",      # BẮT BUỘC
        "secretKey": "JBSWY3DPEHPK3PXP",  # BẮT BUỘC (Base32)
        "name": "work",               # mặc định = website
        "issuer": "GitHub",
        "digits": 6,                  # 6 | 8
        "period": 30                  # 30 | 60
      }
    """
    secret = _store().add(_json_body())
    return jsonify(secret.to_dict()), 201


@secrets_bp.route('/secrets/<string:secret_id>', methods=['GET'])
def get_secret(secret_id):
    return jsonify(_store().get(secret_id).to_dict())


@secrets_bp.route('/secrets/<string:secret_id>', methods=['PUT', 'PATCH'])
def update_secret(secret_id):
    """SỬA SECRET: đổi website sẽ chuyển secret sang bucket mới."""
    secret = _store().update(secret_id, _json_body())
    return jsonify(secret.to_dict())


@secrets_bp.route('/secrets/<string:secret_id>', methods=['DELETE'])
def delete_secret(secret_id):
    """
    XOÁ SECRET (idempotent)

      curl -X DELETE "http://localhost:5000/api/secrets/<id>?website=github.com"
    """
    website = _website_arg()
    if not website:
        raise ValidationError("website query parameter is required")
    _store().delete(secret_id, website)
    return jsonify({"deleted": secret_id, "website": website})


@secrets_bp.route('/secrets/<string:secret_id>/qr', methods=['GET'])
def secret_qr_code(secret_id):
    """QR code (data URI PNG) của otpauth URI, để chuyển secret sang authenticator app."""
    secret = _store().get(secret_id)
    uri = format_otpauth_uri(
        secret.secret_key,
        account=secret.name,
        issuer=secret.issuer,
        algo=secret.algorithm,
        digits=secret.digits,
        period=secret.period,
    )

    qr = qrcode.QRCode(version=1, box_size=10, border=5)
    qr.add_data(uri)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    img_str = base64.b64encode(buffer.getvalue()).decode()
    return jsonify({"qr_code": f"data:image/png;base64,{img_str}", "uri": uri})


# --- Codes -----------------------------------------------------------------
@secrets_bp.route('/code', methods=['GET'])
def code_for_website():
    """
    MÃ CHO KEYBOARD SHORTCUT, dùng secret đầu tiên của website.

      curl "http://localhost:5000/api/code?url=https://github.com/login"
    """
    website = _website_arg()
    if not website:
        raise ValidationError("website (or url) query parameter is required")
    secret = _store().first_for_website(website)
    if secret is None:
        raise NotFound(f"No TOTP secrets configured for {website}")
    item = _with_code(secret, int(time.time()))
    return jsonify({"website": website, "name": item["name"], "code": item["code"],
                    "remaining": item["remaining"]})


@secrets_bp.route('/totp', methods=['POST'])
def generate_totp():
    """
    TÍNH MÃ TOTP TỪ SECRET THÔ (không lưu)

    Body: {"secret": "JBSWY3DPEHPK3PXP", "timestamp": 59, "digits": 8, "period": 30, "algorithm": "SHA1"}
    """
    data = _json_body()
    secret = data.get('secret') or data.get('secretKey')
    if not secret:
        raise ValidationError("secret is required")
    timestamp = data.get('timestamp')
    if timestamp is not None and not isinstance(timestamp, (int, float)):
        raise ValidationError("timestamp must be a number of seconds")
    result = compute_code(
        str(secret),
        timestamp,
        data.get('digits', DEFAULT_DIGITS),
        data.get('period', DEFAULT_TIME_STEP),
        data.get('algorithm', DEFAULT_ALGORITHM),
    )
    return jsonify({
        "code": result.code,
        "remaining": result.seconds_remaining,
        "progress": result.progress,
    })


# --- Import / export -------------------------------------------------------
@secrets_bp.route('/export', methods=['GET'])
def export_secrets():
    return jsonify(_store().export_document())


@secrets_bp.route('/import', methods=['POST'])
def import_secrets():
    """Import file export; body là JSON document {version, exportDate, secrets: [...]}."""
    document = request.get_json(silent=True)
    if document is None:
        document = request.get_data()
    imported = _store().import_all(document)
    return jsonify({"imported": imported, "total": _store().count()})
