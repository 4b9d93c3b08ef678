#!/usr/bin/env python3
"""
otp_cli.py — CLI cho TOTP secret store (secret phân theo website)

Cung cấp các subcommand:
- list     : liệt kê secret + mã hiện tại của một website
- all      : liệt kê toàn bộ secret
- add      : thêm secret cho website
- edit     : sửa secret theo id (đổi --website sẽ chuyển sang website khác)
- delete   : xoá secret theo id
- code     : in mã của secret đầu tiên cho website (giống keyboard shortcut)
- export   : xuất toàn bộ secret ra JSON
- import   : nhập secret từ file JSON đã export
- generate : sinh secret Base32 ngẫu nhiên + otpauth URI

eg..:
    python -m core.otp_cli add --website github.com --secret JBSWY3DPEHPK3PXP --name work
    python -m core.otp_cli code --url https://github.com/login --watch
    python -m core.otp_cli export --output totp-secrets.json
"""

import argparse
import logging
import sys
import time

from core import otp_core
from database.db_manager import SecretStore, StoreError

logger = logging.getLogger(__name__)


def _website(args) -> str:
    if getattr(args, "url", None):
        return otp_core.hostname_from_url(args.url)
    return args.website


def _print_secret(secret, now: int) -> None:
    try:
        result = otp_core.compute_code(
            secret.secret_key, now, secret.digits, secret.period, secret.algorithm
        )
        code = f"{result.code}  ({result.seconds_remaining:2d}s)"
    except ValueError:
        code = "invalid secret key"
    issuer = f" [{secret.issuer}]" if secret.issuer else ""
    print(f"{secret.id}  {secret.website:<24} {secret.name}{issuer}: {code}")


# --- CLI command handlers ---
def cmd_list(args, store: SecretStore):
    website = _website(args)
    secrets = store.list_by_website(website)
    if not secrets:
        print(f"No TOTP secrets configured for {website}")
        return
    now = int(time.time())
    for secret in secrets:
        _print_secret(secret, now)


def cmd_all(args, store: SecretStore):
    secrets = store.list_all()
    now = int(time.time())
    for secret in secrets:
        _print_secret(secret, now)
    print(f"{len(secrets)} secret{'s' if len(secrets) != 1 else ''}")


def cmd_add(args, store: SecretStore):
    secret = store.add({
        "website": _website(args),
        "name": args.name,
        "secret_key": args.secret,
        "issuer": args.issuer,
        "digits": args.digits,
        "period": args.period,
    })
    print(f"[+] Added {secret.name} for {secret.website} (id={secret.id})")


def cmd_edit(args, store: SecretStore):
    fields = {}
    for key in ("website", "name", "issuer", "digits", "period"):
        value = getattr(args, key)
        if value is not None:
            fields[key] = value
    if args.secret is not None:
        fields["secret_key"] = args.secret
    secret = store.update(args.id, fields)
    print(f"[+] Updated {secret.name} for {secret.website} (id={secret.id})")


def cmd_delete(args, store: SecretStore):
    store.delete(args.id, _website(args))
    print(f"[+] Deleted {args.id} from {_website(args)}")


def cmd_code(args, store: SecretStore):
    website = _website(args)
    secret = store.first_for_website(website)
    if secret is None:
        print(f"No TOTP secrets configured for {website}")
        return 1

    if not args.watch:
        result = otp_core.compute_code(
            secret.secret_key, None, secret.digits, secret.period, secret.algorithm
        )
        print(result.code)
        return 0

    print(f"[{website}: {secret.name}] Press Ctrl+C to quit.\n")
    last_code = None
    try:
        while True:
            result = otp_core.compute_code(
                secret.secret_key, None, secret.digits, secret.period, secret.algorithm
            )
            if result.code != last_code:
                print(f"TOTP ({secret.digits}d): {result.code}  (valid ~{result.seconds_remaining:2d}s)")
                last_code = result.code
            else:
                print(f".. {result.seconds_remaining:2d}s left", end='\r', flush=True)
            time.sleep(1)
    except KeyboardInterrupt:
        print("\nBye.")
    return 0


def cmd_export(args, store: SecretStore):
    data = store.export_all()
    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            f.write(data + "\n")
        print(f"[+] Exported {store.count()} secrets to {args.output}")
    else:
        print(data)


def cmd_import(args, store: SecretStore):
    with open(args.file, "r", encoding="utf-8") as f:
        imported = store.import_all(f.read())
    print(f"[+] Imported {imported} secrets")


def cmd_generate(args, store: SecretStore):
    secret = otp_core.generate_base32_secret()
    uri = otp_core.format_otpauth_uri(
        secret, account=args.account, issuer=args.issuer,
        digits=args.digits, period=args.period,
    )
    print("Secret:", secret)
    print("TOTP URI:", uri)


# --- Argparse builder ---
def _add_website_args(parser, required: bool = True):
    group = parser.add_mutually_exclusive_group(required=required)
    group.add_argument("--website", help="Website (hostname), e.g. github.com")
    group.add_argument("--url", help="Full URL; hostname is used as website")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="TOTP secret store CLI (secrets grouped by website)")
    p.add_argument("--db", help="SQLite database file (default: $TOTP_DATABASE_FILE)")
    p.add_argument("--verbose", action="store_true", help="Verbose logging")
    sub = p.add_subparsers(dest="cmd", required=True)

    pl = sub.add_parser("list", help="List secrets and current codes for a website")
    _add_website_args(pl)
    pl.set_defaults(func=cmd_list)

    pa = sub.add_parser("all", help="List every stored secret")
    pa.set_defaults(func=cmd_all)

    padd = sub.add_parser("add", help="Add a secret for a website")
    _add_website_args(padd)
    padd.add_argument("--secret", required=True, help="Base32 secret key")
    padd.add_argument("--name", default="", help="Display name (default: website)")
    padd.add_argument("--issuer", default="")
    padd.add_argument("--digits", type=int, default=otp_core.DEFAULT_DIGITS, choices=otp_core.SUPPORTED_DIGITS)
    padd.add_argument("--period", type=int, default=otp_core.DEFAULT_TIME_STEP, choices=otp_core.SUPPORTED_PERIODS)
    padd.set_defaults(func=cmd_add)

    pe = sub.add_parser("edit", help="Edit a secret by id")
    pe.add_argument("id")
    pe.add_argument("--website", help="Move the secret to another website")
    pe.add_argument("--secret")
    pe.add_argument("--name")
    pe.add_argument("--issuer")
    pe.add_argument("--digits", type=int, choices=otp_core.SUPPORTED_DIGITS)
    pe.add_argument("--period", type=int, choices=otp_core.SUPPORTED_PERIODS)
    pe.set_defaults(func=cmd_edit)

    pd = sub.add_parser("delete", help="Delete a secret by id")
    pd.add_argument("id")
    _add_website_args(pd)
    pd.set_defaults(func=cmd_delete)

    pc = sub.add_parser("code", help="Print the current code of the first secret for a website")
    _add_website_args(pc)
    pc.add_argument("--watch", action="store_true", help="Keep refreshing until Ctrl+C")
    pc.set_defaults(func=cmd_code)

    px = sub.add_parser("export", help="Export all secrets as JSON")
    px.add_argument("--output", "-o", help="Write to file instead of stdout")
    px.set_defaults(func=cmd_export)

    pi = sub.add_parser("import", help="Import secrets from an exported JSON file")
    pi.add_argument("file")
    pi.set_defaults(func=cmd_import)

    pg = sub.add_parser("generate", help="Generate a random Base32 secret and otpauth URI")
    pg.add_argument("--account", default="user@example")
    pg.add_argument("--issuer", default="")
    pg.add_argument("--digits", type=int, default=otp_core.DEFAULT_DIGITS, choices=otp_core.SUPPORTED_DIGITS)
    pg.add_argument("--period", type=int, default=otp_core.DEFAULT_TIME_STEP, choices=otp_core.SUPPORTED_PERIODS)
    pg.set_defaults(func=cmd_generate)

    return p


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        store = SecretStore(args.db)
        return args.func(args, store) or 0
    except (StoreError, ValueError, OSError) as e:
        logger.debug("Command %s failed", args.cmd, exc_info=True)
        print(f"[!] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
