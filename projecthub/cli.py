"""
ProjectHub CLI — bootstrap and maintenance commands.

Commands:
- projecthub init          — Create DB tables, seed the admin user
- projecthub run           — Start the API server (uvicorn)
- projecthub mark-overdue  — Flip past-due pending/in_progress tasks to overdue (cron-friendly)
- projecthub cleanup-logs  — Compress / delete old JSONL log files
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from typing import Optional

from projecthub.engine.errors import ProjectHubError

logger = logging.getLogger("projecthub.cli")


def main(argv: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="projecthub",
        description="ProjectHub — projects, tasks and completion rewards",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def add_config_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument(
            "--config", default="projecthub.yaml", help="Path to projecthub.yaml (default: projecthub.yaml)"
        )
        sub.add_argument("--db-url", help="Database URL (overrides database.url)")

    # projecthub init
    init_parser = subparsers.add_parser("init", help="Create tables and seed the admin user")
    add_config_args(init_parser)
    init_parser.add_argument("--admin-email", default="admin@localhost", help="Admin email (default: admin@localhost)")
    init_parser.add_argument("--admin-name", default="Administrator", help="Admin display name")
    init_parser.add_argument("--admin-password", help="Admin password (prompted if not provided)")

    # projecthub run
    run_parser = subparsers.add_parser("run", help="Start the API server")
    add_config_args(run_parser)
    run_parser.add_argument("--host", help="Host to bind (default: api.host)")
    run_parser.add_argument("--port", type=int, help="Port to bind (default: api.port)")

    # projecthub mark-overdue
    overdue_parser = subparsers.add_parser("mark-overdue", help="Mark past-due tasks as overdue")
    add_config_args(overdue_parser)

    # projecthub cleanup-logs
    cleanup_parser = subparsers.add_parser("cleanup-logs", help="Compress and delete old log files")
    cleanup_parser.add_argument(
        "--config", default="projecthub.yaml", help="Path to projecthub.yaml (default: projecthub.yaml)"
    )
    cleanup_parser.add_argument("--log-dir", help="Log directory (default: logging.directory)")

    args = parser.parse_args(argv)

    if args.command == "init":
        return cmd_init(args)
    elif args.command == "run":
        return cmd_run(args)
    elif args.command == "mark-overdue":
        return cmd_mark_overdue(args)
    elif args.command == "cleanup-logs":
        return cmd_cleanup_logs(args)
    else:
        parser.print_help()
        return 0


def _load_config(args: argparse.Namespace):
    from projecthub.engine.config import load_platform_config

    config = load_platform_config(args.config)
    if getattr(args, "db_url", None):
        config.database.url = args.db_url
    return config


def _init_db(config, create_tables: bool = False):
    from projecthub.db.session import init_db

    db = config.database
    return init_db(
        db.url,
        schema=db.db_schema,
        create_tables=create_tables,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
        pool_pre_ping=db.pool_pre_ping,
    )


def cmd_init(args: argparse.Namespace) -> int:
    """
    Bootstrap the database:
    1. Load config from projecthub.yaml
    2. Create all tables (SQLAlchemy metadata.create_all)
    3. Create the admin user, or reset its password when it already exists
    """
    print("=" * 60)
    print("  ProjectHub Initialization")
    print("=" * 60)

    try:
        config = _load_config(args)
        print(f"[OK] Loaded config from {args.config}")
    except ProjectHubError as e:
        print(f"[ERROR] Failed to load config: {e.message}")
        return 1

    admin_password = args.admin_password
    if not admin_password:
        while True:
            admin_password = getpass.getpass("  Enter admin password: ")
            confirm = getpass.getpass("  Confirm password: ")
            if admin_password == confirm:
                break
            print("  Passwords do not match. Try again.")

    if len(admin_password) < config.security.password_min_length:
        print(f"[ERROR] Password must be at least {config.security.password_min_length} characters")
        return 1

    from sqlalchemy.exc import SQLAlchemyError

    try:
        session_factory = _init_db(config, create_tables=True)
        print("[OK] Database tables created")
    except SQLAlchemyError as e:
        print(f"[ERROR] Database initialization failed: {e}")
        return 1

    from projecthub.db.models import PERMISSIONS, User
    from projecthub.db.session import close_all_sessions
    from projecthub.engine.security import hash_password

    email = args.admin_email.strip().lower()
    session = session_factory()
    try:
        existing = session.query(User).filter_by(email=email).first()
        if existing:
            print(f"[INFO] Admin '{email}' already exists")
            existing.password_hash = hash_password(admin_password, rounds=config.security.bcrypt_rounds)
            existing.role = "admin"
            session.commit()
            print("[OK] Admin password updated")
            return 0

        session.add(User(
            name=args.admin_name,
            email=email,
            password_hash=hash_password(admin_password, rounds=config.security.bcrypt_rounds),
            role="admin",
            department="Administration",
            permissions=list(PERMISSIONS),
            reward_points=0,
            current_streak=0,
        ))
        session.commit()
        print(f"[OK] Created admin user: '{email}'")

        print()
        print("=" * 60)
        print("  ProjectHub initialized successfully!")
        print()
        print(f"  Admin login: {email} / (your password)")
        print("  Run: projecthub run")
        print("=" * 60)
        return 0

    except SQLAlchemyError as e:
        session.rollback()
        print(f"[ERROR] Seed data failed: {e}")
        return 1
    finally:
        session.close()
        close_all_sessions()


def _start_event_log(config) -> None:
    from projecthub.engine.logging import init_logging

    queue_cfg = config.logging.async_queue
    init_logging(
        log_dir=config.logging.directory,
        flush_interval_ms=queue_cfg.flush_interval_ms,
        flush_batch_size=queue_cfg.flush_batch_size,
        max_queue_size=queue_cfg.max_queue_size,
    )


def cmd_run(args: argparse.Namespace) -> int:
    """Start the API server with uvicorn."""
    try:
        config = _load_config(args)
    except ProjectHubError as e:
        print(f"[ERROR] Failed to load config: {e.message}")
        return 1

    import uvicorn

    from projecthub.api.app import create_app
    from projecthub.engine.logging import shutdown_logging

    logging.basicConfig(level=config.logging.level)
    _start_event_log(config)

    host = args.host or config.api.host
    port = args.port or config.api.port
    print(f"Starting {config.name} API on {host}:{port}...")
    try:
        uvicorn.run(create_app(config), host=host, port=port)
        return 0
    except KeyboardInterrupt:
        print("\nServer stopped.")
        return 0
    finally:
        shutdown_logging()


def cmd_mark_overdue(args: argparse.Namespace) -> int:
    """Mark pending / in_progress tasks whose due day has ended as overdue."""
    try:
        config = _load_config(args)
    except ProjectHubError as e:
        print(f"[ERROR] Failed to load config: {e.message}")
        return 1

    from sqlalchemy.exc import SQLAlchemyError

    from projecthub.db.session import close_all_sessions, session_scope
    from projecthub.engine.logging import shutdown_logging
    from projecthub.services.tasks import TaskService

    _start_event_log(config)
    try:
        _init_db(config)
        with session_scope() as session:
            ids = TaskService(session, config.rewards).mark_overdue()
    except ProjectHubError as e:
        print(f"[ERROR] Overdue scan failed: {e.message}")
        return 1
    except SQLAlchemyError as e:
        print(f"[ERROR] Overdue scan failed: {e}")
        return 1
    finally:
        close_all_sessions()
        shutdown_logging()

    print(f"[OK] Marked {len(ids)} task(s) overdue")
    for task_id in ids:
        print(f"  - task {task_id}")
    return 0


def cmd_cleanup_logs(args: argparse.Namespace) -> int:
    """Apply the log retention policy once."""
    try:
        config = _load_config(args)
    except ProjectHubError as e:
        print(f"[ERROR] Failed to load config: {e.message}")
        return 1

    from projecthub.engine.logging import LogRetentionManager

    retention = config.logging.retention
    manager = LogRetentionManager(
        log_dir=args.log_dir or config.logging.directory,
        retention_days={
            "execution": retention.execution_days,
            "performance": retention.performance_days,
            "security": retention.security_days,
        },
        compress_after_days=config.logging.compress_after_days,
    )
    result = manager.cleanup()
    print(f"[OK] Compressed {result['compressed']} file(s), deleted {result['deleted']} file(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
