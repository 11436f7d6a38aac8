#!/usr/bin/env python3
"""
MSSQL Backup Runner - Snapshot
Copy-only, compressed backup of the source database straight to the blob container
"""

import sys
import argparse
import logging
from datetime import datetime

from .config import SnapshotConfig
from .connection import connect, execute_statement
from .naming import artifact_name, blob_url
from .runner_base import RunnerBase
from . import tsql

logger = logging.getLogger(__name__)


class SnapshotRunner(RunnerBase):
    name = 'snapshot backup'
    config_class = SnapshotConfig

    def __init__(self, job_config=None, credential=None, overrides=None,
                 connect_fn=connect, clock=datetime.now):
        super().__init__(job_config, credential, overrides)
        self.connect_fn = connect_fn
        self.clock = clock

    def build_backup_sql(self, moment=None):
        """Return (artifact name, destination URL, BACKUP statement) for the given day"""
        config = self.job_config
        artifact = artifact_name(config.database, config.developer, moment or self.clock())
        url = blob_url(config.storage.account, config.storage.container, artifact,
                       config.storage.endpoint_suffix)
        return artifact, url, tsql.backup_to_url_statement(config.database, url)

    def check_url_credential(self, conn):
        """Warn early when the instance has no credential for the container URL"""
        container_url = self.job_config.storage.container_url
        rows = execute_statement(conn, tsql.url_credential_query(), (container_url,))
        if not rows:
            logger.warning(f"No SQL credential named {container_url} on {self.job_config.source_server}; "
                           f"the backup will fail unless the instance can write to the container otherwise")

    def execute(self):
        config = self.job_config
        artifact, url, sql = self.build_backup_sql()
        logger.info(f"Backing up [{config.database}] to {url}")

        conn = self.connect_fn(
            config.source_server, 'master',
            driver=config.driver,
            access_token=self.get_access_token(),
        )
        try:
            self.check_url_credential(conn)
            execute_statement(conn, sql, on_message=lambda m: logger.info(f"Backup: {m}"))
        finally:
            conn.close()

        logger.info(f"Backup artifact written: {artifact}")
        return artifact


def main(argv=None):
    parser = argparse.ArgumentParser(description="Back up the source database to the blob container")
    parser.add_argument('--developer', help="Developer suffix for the artifact name (default: DEV_USER)")
    parser.add_argument('--print-sql', action='store_true',
                        help="Print the BACKUP statement instead of running it")
    args = parser.parse_args(argv)

    runner = SnapshotRunner(overrides={'developer': args.developer})
    if args.print_sql:
        try:
            sql = runner.build_backup_sql()[2]
        except ValueError as e:
            logger.error(f"Cannot build the backup statement: {e}")
            return 1
        print(sql)
        return 0
    return runner.run()


if __name__ == '__main__':
    sys.exit(main())
