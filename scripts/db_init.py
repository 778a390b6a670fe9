#!/usr/bin/env python3
import sys
from pathlib import Path

# make newsdesk.* importable when run from a checkout
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pymysql

from newsdesk.config import get_settings
from newsdesk.database import Base, build_engine
from newsdesk import models  # noqa: F401  registers the tables on Base
from newsdesk.storage import UploadStorage


def create_database_if_not_exists() -> None:
    settings = get_settings()
    if settings.DATABASE_URL:
        return
    conn = pymysql.connect(
        host=settings.MYSQL_HOST,
        port=settings.MYSQL_PORT,
        user=settings.MYSQL_USER,
        password=settings.MYSQL_PASSWORD,
        database="mysql",
        charset="utf8mb4",
        connect_timeout=settings.DB_CONNECT_TIMEOUT,
        autocommit=True,
    )
    try:
        with conn.cursor() as cur:
            cur.execute(
                f"CREATE DATABASE IF NOT EXISTS `{settings.MYSQL_DB}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci;"
            )
    finally:
        conn.close()


def create_tables() -> None:
    engine = build_engine(get_settings())
    Base.metadata.create_all(bind=engine)


def create_upload_dirs() -> None:
    settings = get_settings()
    UploadStorage(Path(settings.UPLOAD_ROOT), settings.PUBLIC_URL_PREFIX).init_directories()


def main() -> None:
    print("[db-init] Creating database if not exists...")
    create_database_if_not_exists()
    print("[db-init] Creating tables...")
    create_tables()
    print("[db-init] Creating upload directories...")
    create_upload_dirs()
    print("[db-init] Done.")


if __name__ == "__main__":
    main()
