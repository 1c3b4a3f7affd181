"""Command-line interface for the starter kit service."""

from __future__ import annotations
import argparse
import logging
import sys
from getpass import getpass
from typing import Sequence

from app.config import Settings
from app.database import Database, resolve_database_path
from app.validation import RegisterForm, validate_form

logger = logging.getLogger("starter.main")

KNOWN_COMMANDS = {"serve", "init-db", "create-user", "list-users", "delete-user"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Starter kit utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    init_parser = subparsers.add_parser("init-db", help="Create or migrate the application database")
    init_parser.add_argument(
        "--fresh",
        action="store_true",
        help="Delete the existing database file before recreating the schema",
    )

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP service")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve_parser.add_argument("--port", type=int, default=8000, help="Port to listen on (default: 8000)")
    serve_parser.add_argument("--reload", action="store_true", help="Restart on code changes")
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )

    create_parser = subparsers.add_parser("create-user", help="Create a user account")
    create_parser.add_argument("name", help="Display name for the user")
    create_parser.add_argument("email", help="Unique email address for login")
    create_parser.add_argument(
        "--verified",
        action="store_true",
        help="Mark the email address as already verified",
    )

    subparsers.add_parser("list-users", help="List registered accounts")

    delete_parser = subparsers.add_parser("delete-user", help="Delete a user account")
    delete_parser.add_argument("email", help="Email address of the account to delete")

    args_list = list(argv) if argv is not None else sys.argv[1:]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in KNOWN_COMMANDS:
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database(settings: Settings, *, fresh: bool = False) -> Database:
    db_path = settings.database_path or resolve_database_path(None)
    if fresh and db_path.exists():
        db_path.unlink()
        logger.warning("Deleted existing database at %s", db_path)
    database = Database(db_path, encryption_secret=settings.session_secret)
    database.initialize()
    logger.info("Database initialised at %s", db_path)
    return database


def _serve(
    settings: Settings,
    *,
    database: Database,
    host: str,
    port: int,
    reload: bool,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    import uvicorn

    from app.application import create_application

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")
    if not settings.session_secret:
        raise SystemExit("Set STARTER_SESSION_SECRET before starting the service.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting %s on %s://%s:%s", settings.app_name, protocol, host, port)

    if reload:
        uvicorn.run(
            "app:create_app",
            factory=True,
            host=host,
            port=port,
            reload=True,
            log_level="info",
            ssl_certfile=ssl_certfile,
            ssl_keyfile=ssl_keyfile,
        )
        return

    app = create_application(settings, database=database)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _prompt_for_password(min_length: int) -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {min_length} characters): ")
        if len(password) < min_length:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _create_user(settings: Settings, database: Database, name: str, email: str, *, verified: bool) -> int:
    password = _prompt_for_password(settings.password_min_length)
    if password is None:
        print("Failed to set password after three attempts.", file=sys.stderr)
        return 1

    form, errors = validate_form(
        RegisterForm,
        {"name": name, "email": email, "password": password, "password_confirmation": password},
        password_min_length=settings.password_min_length,
    )
    if form is None:
        for message in errors.values():
            print(f"Error: {message}", file=sys.stderr)
        return 1

    try:
        user = database.create_user(form.name, form.email, form.password, email_verified=verified)
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.name} <{user.email}>")
    return 0


def _list_users(database: Database) -> int:
    users = database.list_users()
    if not users:
        print("No users are currently registered.")
        return 0

    print(f"{len(users)} user(s) found:")
    print(f"{'ID':>4}  {'Name':<24}  {'Email':<32}  {'Verified':<8}  {'2FA':<3}  Created")
    print("-" * 96)
    for user in users:
        created = user.created_at.strftime("%Y-%m-%d %H:%M:%S %Z")
        verified = "yes" if user.has_verified_email else "no"
        two_factor = "on" if user.two_factor_enabled else "off"
        print(f"{user.id:>4}  {user.name:<24}  {user.email:<32}  {verified:<8}  {two_factor:<3}  {created}")
    return 0


def _delete_user(database: Database, email: str) -> int:
    user = database.get_user_by_email(email)
    if user is None or not database.delete_user(user.id):
        print(f"No user found for {email}.", file=sys.stderr)
        return 1
    print(f"Deleted user #{user.id}: {user.name} <{user.email}>")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    args = _parse_args(argv)
    settings = Settings.from_env()
    database = _initialise_database(settings, fresh=args.command == "init-db" and args.fresh)

    if args.command == "serve":
        _serve(
            settings,
            database=database,
            host=args.host,
            port=args.port,
            reload=args.reload,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
        return 0
    if args.command == "create-user":
        return _create_user(settings, database, args.name, args.email, verified=args.verified)
    if args.command == "list-users":
        return _list_users(database)
    if args.command == "delete-user":
        return _delete_user(database, args.email)

    print("Database initialisation complete.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
