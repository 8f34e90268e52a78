"""Out-of-band administration: users and API keys are never created over HTTP.

    python -m filevault.manage init-db
    python -m filevault.manage create-user --name Ada --email ada@example.com
    python -m filevault.manage issue-key --email ada@example.com --permission READ
    python -m filevault.manage list-keys --email ada@example.com
"""
import argparse
import secrets
import sys

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from filevault.core.config import get_settings
from filevault.models import file as _file_models  # noqa: F401  registers File with Base
from filevault.models.database import Base, build_engine, build_session_factory
from filevault.models.user import ApiKey, Permission, User


class CommandError(Exception):
    pass


def generate_key() -> str:
    return secrets.token_urlsafe(32)


def _user_by_email(db: Session, email: str) -> User:
    user = db.execute(select(User).where(User.email == email.lower().strip())).scalar_one_or_none()
    if user is None:
        raise CommandError(f"no user with email {email}")
    return user


def create_user(db: Session, name: str, email: str, role: str = "user") -> User:
    user = User(name=name, email=email.lower().strip(), role=role)
    db.add(user)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise CommandError(f"email already registered: {email}") from e
    db.refresh(user)
    return user


def issue_key(
    db: Session, email: str, name: str = "default", permission: Permission = Permission.FULL_ACCESS
) -> ApiKey:
    user = _user_by_email(db, email)
    api_key = ApiKey(name=name, key=generate_key(), user_id=user.id, permission=permission)
    db.add(api_key)
    db.commit()
    db.refresh(api_key)
    return api_key


def list_keys(db: Session, email: str) -> list[ApiKey]:
    user = _user_by_email(db, email)
    stmt = select(ApiKey).where(ApiKey.user_id == user.id).order_by(ApiKey.created_at)
    return list(db.execute(stmt).scalars())


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="filevault-manage", description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create missing tables")

    p = sub.add_parser("create-user", help="register a user")
    p.add_argument("--name", required=True)
    p.add_argument("--email", required=True)
    p.add_argument("--role", default="user")

    p = sub.add_parser("issue-key", help="issue a new API key for a user")
    p.add_argument("--email", required=True)
    p.add_argument("--name", default="default")
    p.add_argument(
        "--permission",
        choices=[perm.value for perm in Permission],
        default=Permission.FULL_ACCESS.value,
    )

    p = sub.add_parser("list-keys", help="list a user's API keys")
    p.add_argument("--email", required=True)

    return parser


def run(argv: list[str] | None = None, database_url: str | None = None) -> int:
    args = build_parser().parse_args(argv)
    engine = build_engine(database_url or get_settings().database_url)
    Base.metadata.create_all(bind=engine)
    SessionLocal = build_session_factory(engine)

    try:
        with SessionLocal() as db:
            if args.command == "create-user":
                user = create_user(db, args.name, args.email, args.role)
                print(user.id)
            elif args.command == "issue-key":
                api_key = issue_key(db, args.email, args.name, Permission(args.permission))
                print(api_key.key)
            elif args.command == "list-keys":
                for api_key in list_keys(db, args.email):
                    print(f"{api_key.id}\t{api_key.name}\t{api_key.permission.value}\t{api_key.created_at:%Y-%m-%d}")
    except CommandError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    finally:
        engine.dispose()
    return 0


if __name__ == "__main__":
    sys.exit(run())
