"""
core package
============

Sinh mã TOTP theo chuẩn RFC 6238 (trên nền HOTP RFC 4226) cho secret store
theo website.

──────────────────────────────────────────────
Giải thuật cốt lõi
──────────────────────────────────────────────
- Base32 decode (RFC 4648): bỏ '=', 5 bit / ký tự, byte lẻ cuối bị bỏ.
- HOTP: code = Truncate(HMAC(key=secret, msg=counter)) mod 10^digits
- TOTP: HOTP với counter = floor(timestamp / period), period 30 hoặc 60 giây.
- Dynamic Truncation: lấy 4 byte từ HMAC tại offset (last byte & 0x0F),
  clear bit cao nhất.

──────────────────────────────────────────────
Ví dụ sử dụng nhanh
──────────────────────────────────────────────
>>> from core import compute_code
>>> result = compute_code("GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ", timestamp=59, digits=8)
>>> result.code, result.seconds_remaining
('94287082', 1)
"""
from .otp_core import (
    DEFAULT_ALGORITHM,
    DEFAULT_DIGITS,
    DEFAULT_TIME_STEP,
    SUPPORTED_ALGORITHMS,
    SUPPORTED_DIGITS,
    SUPPORTED_PERIODS,
    InvalidEncoding,
    InvalidSecret,
    TotpCode,
    UnsupportedParameters,
    compute_code,
    decode_base32,
    format_otpauth_uri,
    generate_base32_secret,
    hostname_from_url,
    hotp,
    totp,
    validate_secret,
)
