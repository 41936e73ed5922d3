"""
Snapshot every table to object storage and prune old snapshots.

Run with ``python -m kepka.backup``; schedule it with cron or a k8s CronJob.
"""

from __future__ import annotations

import argparse
import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from kepka.config import Settings, get_settings
from kepka.db import DbClient, utcnow
from kepka.dependencies import build_db_client
from kepka.storage import InMemoryStorageClient, S3StorageClient, StorageClient

logger = logging.getLogger(__name__)


def build_storage_client(settings: Settings) -> StorageClient:
    if not settings.backup_bucket:
        logger.warning("BACKUP_BUCKET not set; writing backup to memory only")
        return InMemoryStorageClient()
    return S3StorageClient(
        bucket=settings.backup_bucket,
        region=settings.backup_region,
        endpoint=settings.backup_endpoint,
        access_key_id=settings.aws_access_key_id,
        secret_access_key=settings.aws_secret_access_key,
    )


def run_backup(
    db: DbClient,
    storage: StorageClient,
    *,
    prefix: str,
    retention_days: int,
    now: Optional[datetime] = None,
) -> tuple[str, list[str]]:
    """Upload a snapshot and delete snapshots older than ``retention_days``.

    Returns the new object key and the keys that were pruned.
    """
    now = now or utcnow()
    prefix = prefix.rstrip("/")
    key = f"{prefix}/kepka-backup-{now.strftime('%Y%m%dT%H%M%SZ')}.json"
    tables = db.snapshot()
    storage.upload_json(key, {"created_at": now.isoformat(), "tables": tables})
    logger.info(
        "Backup written to %s (%d tables, %d rows)",
        key,
        len(tables),
        sum(len(rows) for rows in tables.values()),
    )

    cutoff = now - timedelta(days=retention_days)
    pruned = []
    for obj in storage.list_objects(f"{prefix}/kepka-backup-"):
        if obj.key != key and obj.last_modified < cutoff:
            storage.delete(obj.key)
            pruned.append(obj.key)
    if pruned:
        logger.info("Pruned %d backups older than %s", len(pruned), cutoff.isoformat())
    return key, pruned


def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Back up the Kepka database")
    parser.add_argument(
        "--prefix",
        type=str,
        default=settings.backup_prefix,
        help="Object key prefix for backups",
    )
    parser.add_argument(
        "--retention-days",
        type=int,
        default=settings.backup_retention_days,
        help="Delete backups older than this many days",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    db = build_db_client(settings)
    storage = build_storage_client(settings)
    run_backup(db, storage, prefix=args.prefix, retention_days=args.retention_days)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
