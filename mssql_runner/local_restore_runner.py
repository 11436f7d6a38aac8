#!/usr/bin/env python3
"""
MSSQL Backup Runner - Local Restore
Download today's snapshot artifact and restore it onto a local development server
"""

import os
import sys
import argparse
import logging
from datetime import datetime

from .config import LocalRestoreConfig
from .connection import connect, execute_statement
from .naming import artifact_name, local_database_name
from .runner_base import RunnerAbort, RunnerBase
from .storage import BlobStore
from . import tsql

logger = logging.getLogger(__name__)


class LocalRestoreRunner(RunnerBase):
    name = 'local restore'
    config_class = LocalRestoreConfig

    def __init__(self, job_config=None, credential=None, overrides=None, store=None,
                 connect_fn=connect, clock=datetime.now, path_join=os.path.join):
        super().__init__(job_config, credential, overrides)
        self.store = store or BlobStore.from_config(self.job_config.storage, self.credential)
        self.connect_fn = connect_fn
        self.clock = clock
        self.path_join = path_join

    @property
    def artifact(self):
        return artifact_name(self.job_config.database, self.job_config.developer, self.clock())

    @property
    def target_database(self):
        return local_database_name(self.job_config.database, self.job_config.developer)

    def check_artifact(self, artifact):
        """Fail fast, before anything is written locally, when the artifact is absent"""
        if not self.store.exists(artifact):
            raise RunnerAbort(
                f"Backup artifact {artifact} not found in container {self.store.container}. "
                f"Run the snapshot backup for developer '{self.job_config.developer}' first.")
        logger.info(f"Found backup artifact {artifact}")

    def download_artifact(self, artifact):
        work_dir = self.job_config.work_dir
        os.makedirs(work_dir, exist_ok=True)
        local_path = os.path.join(work_dir, artifact)
        self.store.download(artifact, local_path)
        return local_path

    def open_connection(self):
        config = self.job_config
        return self.connect_fn(
            config.server, 'master',
            driver=config.driver,
            username=config.username,
            password=config.password,
            trust_server_certificate=config.trust_server_certificate,
            timeout=config.restore_timeout,
        )

    def restore_database(self, local_path):
        """Read the file manifest, relocate every file under the work dir and restore"""
        database = self.target_database
        conn = self.open_connection()
        try:
            manifest = execute_statement(conn, tsql.filelist_statement(local_path))
            entries = tsql.relocation_entries(manifest, self.job_config.work_dir, self.path_join)
            for entry in entries:
                logger.info(f"Relocating {entry.logical_name} ({entry.file_type}) -> {entry.target_path}")

            logger.info(f"Restoring [{database}] from {local_path}")
            execute_statement(conn, tsql.restore_statement(database, local_path, entries),
                              on_message=lambda m: logger.info(f"Restore: {m}"))
        finally:
            conn.close()
        return database

    def cleanup(self, artifact, local_path):
        # The remote delete is not guarded; only the local .bak removal may fail softly
        self.store.delete(artifact)
        self.cleanup_files(local_path)

    def execute(self):
        artifact = self.artifact
        self.check_artifact(artifact)
        local_path = self.download_artifact(artifact)
        database = self.restore_database(local_path)
        self.cleanup(artifact, local_path)
        logger.info(f"Database [{database}] restored on {self.job_config.server}")
        return database


def main(argv=None):
    parser = argparse.ArgumentParser(description="Restore a snapshot artifact onto the local SQL Server")
    parser.add_argument('--developer', help="Developer suffix of the artifact (default: DEV_USER)")
    parser.add_argument('--date', help="Artifact date as YYYY-MM-DD (default: today)")
    args = parser.parse_args(argv)

    clock = datetime.now
    if args.date:
        try:
            moment = datetime.strptime(args.date, '%Y-%m-%d')
        except ValueError:
            parser.error(f"--date must be YYYY-MM-DD, got {args.date!r}")
        clock = lambda: moment  # noqa: E731

    runner = LocalRestoreRunner(overrides={'developer': args.developer}, clock=clock)
    return runner.run()


if __name__ == '__main__':
    sys.exit(main())
