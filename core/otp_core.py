#!/usr/bin/env python3
"""
otp_core.py — Core library cho TOTP (RFC 6238) trên nền HOTP (RFC 4226).

Mục tiêu:
- Chứa các hàm thuần (pure functions) để dùng trực tiếp bởi store, REST API và CLI.
- Không đọc/ghi file, không giữ state: cùng input -> cùng output.
- Base32 decode tự viết theo đúng RFC 4648 (bỏ padding '=', không phân biệt hoa/thường,
  byte lẻ cuối cùng bị bỏ) để mọi secret mà authenticator app chấp nhận đều dùng được.

Supported parameters:
- digits: 6 hoặc 8
- period: 30 hoặc 60 giây
- algorithm: SHA1 (mặc định), SHA256, SHA512
"""

from typing import NamedTuple, Optional, Tuple
from urllib.parse import quote, urlsplit
import hashlib
import hmac
import math
import struct
import time

import pyotp

# --- Config / constants ----------------------------------------------------
DEFAULT_DIGITS = 6          # chuẩn: 6 chữ số
DEFAULT_TIME_STEP = 30      # TOTP step (giây)
DEFAULT_ALGORITHM = "SHA1"
SUPPORTED_DIGITS = (6, 8)
SUPPORTED_PERIODS = (30, 60)
SUPPORTED_ALGORITHMS = ("SHA1", "SHA256", "SHA512")
SECRET_LENGTH = 32          # Base32 chars cho generate_base32_secret (160 bit)
MAX_COUNTER = 2 ** 64 - 1   # counter là 8-byte unsigned

BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
_BASE32_LOOKUP = {ch: i for i, ch in enumerate(BASE32_ALPHABET)}

_HASHES = {
    "SHA1": hashlib.sha1,
    "SHA256": hashlib.sha256,
    "SHA512": hashlib.sha512,
}


# --- Errors ----------------------------------------------------------------
class InvalidEncoding(ValueError):
    """A character outside the RFC 4648 Base32 alphabet."""


class InvalidSecret(ValueError):
    """The shared secret is empty or cannot be Base32-decoded."""


class UnsupportedParameters(ValueError):
    """digits / period / algorithm (or the timestamp) is outside the supported set."""


class TotpCode(NamedTuple):
    """Result of compute_code.

    - code: zero-padded decimal string, exactly `digits` characters
    - seconds_remaining: seconds until the code rolls over, in [1, period]
    - period: time step the code was computed with
    """

    code: str
    seconds_remaining: int
    period: int

    @property
    def progress(self) -> float:
        """Fraction of the current window already elapsed (for countdown bars)."""
        return (self.period - self.seconds_remaining) / self.period


# --- Base32 ----------------------------------------------------------------
def decode_base32(text: str) -> bytes:
    """
    Decode Base32 (RFC 4648) thành raw key bytes.

    - Bỏ các ký tự '=' ở cuối.
    - Mỗi ký tự (không phân biệt hoa/thường) -> 5 bit, nối theo thứ tự.
    - Cắt về số byte nguyên lớn nhất; phần bit dư cuối bị bỏ.

    Ví dụ: decode_base32("JBSWY3DPEHPK3PXP") -> b"Hello!\\xde\\xad\\xbe\\xef"

    Raises:
        InvalidEncoding: nếu có ký tự ngoài bảng chữ cái Base32
    """
    encoded = text.rstrip("=")
    buffer = 0
    bits = 0
    out = bytearray()
    for position, ch in enumerate(encoded):
        value = _BASE32_LOOKUP.get(ch.upper())
        if value is None:
            raise InvalidEncoding(f"Invalid base32 character {ch!r} at position {position}")
        buffer = (buffer << 5) | value
        bits += 5
        if bits >= 8:
            bits -= 8
            out.append((buffer >> bits) & 0xFF)
            buffer &= (1 << bits) - 1
    return bytes(out)


def normalize_secret_key(text: str) -> str:
    """Bỏ mọi khoảng trắng và chuyển sang chữ hoa ("jbsw y3dp" -> "JBSWY3DP")."""
    return "".join(text.split()).upper()


def decode_secret(secret_b32: str) -> bytes:
    """
    Decode secret thành key bytes dùng cho HMAC.

    Raises:
        InvalidSecret: secret rỗng, hoặc Base32 không hợp lệ
    """
    try:
        key = decode_base32(secret_b32)
    except InvalidEncoding as e:
        raise InvalidSecret("Invalid Base32 secret") from e
    if not key:
        raise InvalidSecret("Secret key is empty")
    return key


def validate_secret(secret_b32: str) -> bool:
    """True nếu secret decode được ra ít nhất 1 byte."""
    try:
        decode_secret(secret_b32)
    except InvalidSecret:
        return False
    return True


def generate_base32_secret() -> str:
    """
    Sinh một secret ngẫu nhiên (Base32, không padding) để nhập vào authenticator.

    pyotp.random_base32 dùng `secrets` (CSPRNG) bên dưới.
    """
    return pyotp.random_base32(length=SECRET_LENGTH)


# --- Parameter checks ------------------------------------------------------
def normalize_algorithm(name: str) -> str:
    """'sha-1' / 'SHA1' -> 'SHA1'. Raises UnsupportedParameters cho hash khác."""
    canonical = str(name).upper().replace("-", "").replace("_", "")
    if canonical not in _HASHES:
        raise UnsupportedParameters(f"Unsupported algorithm: {name}")
    return canonical


def check_parameters(digits: int, period: int, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Validate digits/period/algorithm, trả về tên algorithm đã chuẩn hoá."""
    # 8.0 == 8 nên phải so type; bool cũng bị loại
    if type(digits) is not int or digits not in SUPPORTED_DIGITS:
        raise UnsupportedParameters(f"digits must be one of {SUPPORTED_DIGITS}, got {digits!r}")
    if type(period) is not int or period not in SUPPORTED_PERIODS:
        raise UnsupportedParameters(f"period must be one of {SUPPORTED_PERIODS}, got {period!r}")
    return normalize_algorithm(algorithm)


# --- RFC helpers -----------------------------------------------------------
def int_to_bytes(i: int) -> bytes:
    """
    Chuyển integer (counter) sang 8-byte big-endian như RFC4226 yêu cầu.

    Ví dụ: int_to_bytes(1) -> b'\\x00\\x00\\x00\\x00\\x00\\x00\\x00\\x01'
    """
    return struct.pack(">Q", i)


def dynamic_truncate(hmac_digest: bytes) -> int:
    """
    Áp dụng dynamic truncation theo RFC4226.

    - Lấy offset = last_byte & 0x0F
    - Lấy 4 bytes từ offset, clear MSB (0x7F) cho byte đầu
    - Trả về integer 31-bit (unsigned)
    """
    offset = hmac_digest[-1] & 0x0F
    code = (
        ((hmac_digest[offset] & 0x7F) << 24)
        | ((hmac_digest[offset + 1] & 0xFF) << 16)
        | ((hmac_digest[offset + 2] & 0xFF) << 8)
        | (hmac_digest[offset + 3] & 0xFF)
    )
    return code


def hotp(
    secret_b32: str,
    counter: int,
    digits: int = DEFAULT_DIGITS,
    algorithm: str = DEFAULT_ALGORITHM,
) -> str:
    """
    Sinh mã HOTP theo RFC4226.

    Steps:
    1. Base32-decode secret -> raw key bytes
    2. Message = 8-byte counter (big-endian)
    3. HMAC(algorithm, key, message)
    4. Dynamic truncate -> dbc
    5. otp = dbc % 10^digits, zero-pad đủ "digits" chữ số

    Raises:
        InvalidSecret: secret rỗng / Base32 không hợp lệ
        UnsupportedParameters: algorithm không hỗ trợ, counter âm
    """
    if not 0 <= counter <= MAX_COUNTER:
        raise UnsupportedParameters(f"counter must be in [0, 2**64), got {counter}")
    digestmod = _HASHES[normalize_algorithm(algorithm)]
    key = decode_secret(secret_b32)

    msg = int_to_bytes(counter)
    digest = hmac.new(key, msg, digestmod).digest()

    dbc = dynamic_truncate(digest)
    otp_val = dbc % (10 ** digits)
    return str(otp_val).zfill(digits)


def compute_code(
    secret_key: str,
    timestamp: Optional[float] = None,
    digits: int = DEFAULT_DIGITS,
    period: int = DEFAULT_TIME_STEP,
    algorithm: str = DEFAULT_ALGORITHM,
) -> TotpCode:
    """
    Sinh mã TOTP theo RFC6238: HOTP(counter = floor(timestamp / period)).

    Arguments:
        secret_key: Base32 secret
        timestamp: epoch seconds (None -> time.time()); phần thập phân bị floor
        digits: 6 hoặc 8
        period: 30 hoặc 60
        algorithm: SHA1 / SHA256 / SHA512

    Trả về:
        TotpCode(code, seconds_remaining, period)

    Raises:
        InvalidSecret, UnsupportedParameters
    """
    algorithm = check_parameters(digits, period, algorithm)
    if timestamp is None:
        timestamp = time.time()
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)) \
            or not math.isfinite(timestamp):
        raise UnsupportedParameters(f"timestamp must be a finite number, got {timestamp!r}")
    now = math.floor(timestamp)
    if now < 0:
        raise UnsupportedParameters(f"timestamp must be non-negative, got {timestamp}")

    counter = now // period
    if counter > MAX_COUNTER:
        raise UnsupportedParameters(f"timestamp {timestamp} is past the 64-bit counter range")
    code = hotp(secret_key, counter, digits, algorithm)
    remaining = period - (now % period)
    return TotpCode(code, remaining, period)


def totp(
    secret_b32: str,
    timestamp: Optional[float] = None,
    timestep: int = DEFAULT_TIME_STEP,
    digits: int = DEFAULT_DIGITS,
    algorithm: str = DEFAULT_ALGORITHM,
) -> Tuple[str, int]:
    """Dạng tuple của compute_code: trả về (code, remaining_seconds)."""
    result = compute_code(secret_b32, timestamp, digits, timestep, algorithm)
    return result.code, result.seconds_remaining


# --- otpauth / website helpers ---------------------------------------------
def format_otpauth_uri(
    secret_b32: str,
    account: str,
    issuer: str = "",
    algo: str = DEFAULT_ALGORITHM,
    digits: int = DEFAULT_DIGITS,
    period: int = DEFAULT_TIME_STEP,
) -> str:
    """
    Tạo otpauth:// URI cho TOTP, dễ import vào ứng dụng Authenticator / render QR.

    otpauth://totp/{issuer}:{account}?secret=...&issuer=...&algorithm=...&digits=...&period=...
    """
    label = quote(f"{issuer}:{account}" if issuer else account, safe=":@")
    uri = f"otpauth://totp/{label}?secret={secret_b32}"
    if issuer:
        uri += f"&issuer={quote(issuer, safe='')}"
    uri += f"&algorithm={algo}&digits={digits}&period={period}"
    return uri


def hostname_from_url(url_or_host: str) -> str:
    """
    "https://accounts.google.com/login" -> "accounts.google.com".

    Chuỗi không có scheme được coi là hostname (có thể kèm path).
    Trả về "" nếu không lấy được hostname (vd. "http://[x").
    """
    text = url_or_host.strip()
    if "://" not in text:
        text = "//" + text
    try:
        hostname = urlsplit(text).hostname
    except ValueError:
        return ""
    return (hostname or "").lower()
