#!/usr/bin/env python3
"""
accountgate -- operator command line.

Usage:
  python main.py create-admin admin@example.com
  python main.py create-admin admin@example.com --password-stdin < secret.txt
  python main.py audit
  python main.py audit --account 3f2a... --limit 20

create-admin is the first-run path: registration only ever creates USER
accounts, so the first ADMIN has to come from here.

Environment variables (see core/config.py):
  DATABASE_URL   SQLAlchemy URL of the account database (default sqlite:///accountgate.db)
  BCRYPT_ROUNDS  Cost factor for new password hashes (default 10)
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.audit import StoreAuditSink
from auth.codes import CodeGenerator
from auth.credentials import CredentialVerifier
from auth.machine import AccountStateMachine
from auth.store import AccountStore
from core.config import get_settings
from core.errors import AccountError


def _read_password(from_stdin: bool) -> str:
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Confirm password: "):
        print("  [!] Passwords don't match.")
        sys.exit(1)
    return password


def create_admin(store: AccountStore, email: str, password: str, rounds: int) -> int:
    machine = AccountStateMachine(store, CredentialVerifier(rounds=rounds), CodeGenerator(), StoreAuditSink(store))
    try:
        account = machine.bootstrap_admin(email, password)
    except AccountError as exc:
        print(f"  [!] {exc.message}")
        return 1
    print(f"Admin account created: {account.email} ({account.id})")
    return 0


def show_audit(store: AccountStore, account_id: Optional[str], limit: int) -> int:
    events = store.list_audit(account_id=account_id, limit=limit)
    if not events:
        print("No audit entries.")
        return 0
    for e in events:
        when = e.timestamp.strftime("%Y-%m-%d %H:%M:%S") if e.timestamp else "-"
        print(f"{when}  {e.action.value:<26} {e.outcome:<8} {e.resource_id or '-'}  {e.details}")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="accountgate",
        description="Operator tools for the accountgate account database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin admin@example.com
  python main.py audit --limit 50
  DATABASE_URL=sqlite:///prod.db python main.py audit --account <id>
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    admin = sub.add_parser("create-admin", help="Create an active, verified ADMIN account")
    admin.add_argument("email", help="Email address of the new admin")
    admin.add_argument(
        "--password-stdin",
        action="store_true",
        help="Read the password from the first line of stdin instead of prompting",
    )

    audit = sub.add_parser("audit", help="Print recent audit log entries, oldest first")
    audit.add_argument("--account", metavar="ID", default=None, help="Only entries about this account id")
    audit.add_argument("--limit", type=int, default=100, help="Number of entries to show (default: 100)")

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    settings = get_settings()
    store = AccountStore(settings.database_url)
    try:
        if args.command == "create-admin":
            code = create_admin(store, args.email, _read_password(args.password_stdin), settings.bcrypt_rounds)
        else:
            code = show_audit(store, args.account, args.limit)
    finally:
        store.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
