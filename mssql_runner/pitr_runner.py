#!/usr/bin/env python3
"""
MSSQL Backup Runner - Point-in-time restore between managed instances
Restores the production database as of a few minutes ago onto the test instance
"""

import sys
import time
import argparse
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from azure.core.exceptions import HttpResponseError

from .config import PitrConfig
from .connection import connect, execute_statement
from .instances import ManagedInstanceClient
from .policies import DeleteErrorKind, ForbiddenDuringDeletePolicy, Poller, UnknownStatusPolicy
from .runner_base import SQL_SCOPE, RerunRequired, RunnerAbort, RunnerBase
from .state import PitrState, StateStore
from . import tsql

logger = logging.getLogger(__name__)

ONLINE = 'Online'


class PitrOutcome(Enum):
    ABORTED_USER_DECLINED = ('aborted_user_declined', 1)
    ABORTED_INSUFFICIENT_STORAGE = ('aborted_insufficient_storage', 1)
    ABORTED_DELETION_TIMEOUT = ('aborted_deletion_timeout', 1)
    DELETED_RERUN_REQUIRED = ('deleted_rerun_required', 0)
    COMPLETED_ONLINE = ('completed_online', 0)
    COMPLETED_TIMED_OUT_STATUS_UNKNOWN = ('completed_timed_out_status_unknown', 0)

    def __init__(self, label, exit_code):
        self.label = label
        self.exit_code = exit_code


class PitrAbort(RunnerAbort):
    def __init__(self, outcome, message):
        super().__init__(message, outcome.exit_code)
        self.outcome = outcome


@dataclass(frozen=True)
class StorageBudget:
    total_mb: float
    used_mb: float
    estimated_source_mb: float

    @property
    def available_mb(self):
        return self.total_mb - self.used_mb

    @property
    def is_sufficient(self):
        return self.available_mb >= self.estimated_source_mb


def prompt_confirmation(question):
    try:
        answer = input(question)
    except EOFError:
        return False
    return answer.strip().lower() in ('y', 'yes')


class PitrRunner(RunnerBase):
    name = 'point-in-time restore'
    config_class = PitrConfig

    def __init__(self, job_config=None, credential=None, overrides=None, source=None, target=None,
                 connect_fn=connect, confirm=prompt_confirmation, assume_yes=False,
                 continue_after_delete=False, reset_state=False, state_store=None, sleep=None,
                 monotonic=time.monotonic, utcnow=None, cancel_event=None):
        super().__init__(job_config, credential, overrides)
        config = self.job_config
        self.source = source or ManagedInstanceClient(config.source, self.credential)
        self.target = target or ManagedInstanceClient(config.target, self.credential)
        self.connect_fn = connect_fn
        self.confirm = confirm
        self.assume_yes = assume_yes
        self.continue_after_delete = continue_after_delete
        self.state = state_store or StateStore(config.state_file)
        self.reset_state = reset_state
        self.sleep = sleep
        self.monotonic = monotonic
        self.utcnow = utcnow or (lambda: datetime.now(timezone.utc))
        self.cancel_event = cancel_event or threading.Event()
        self.forbidden_policy = ForbiddenDuringDeletePolicy(config.forbidden_retry_budget)
        self.status_policy = UnknownStatusPolicy()

    @property
    def state_key(self):
        return f"{self.job_config.target.resource_id}/databases/{self.job_config.target_database}"

    @property
    def target_label(self):
        return f"{self.job_config.target.instance_name}/{self.job_config.target_database}"

    def poller(self, timeout):
        config = self.job_config
        return Poller(config.poll_interval, timeout,
                      backoff=config.poll_backoff, max_interval=config.poll_max_interval,
                      clock=self.monotonic, sleep=self.sleep, cancel_event=self.cancel_event)

    # Deletion of an existing target

    def _database_gone(self):
        try:
            exists = self.target.database_exists(self.job_config.target_database)
        except HttpResponseError as e:
            if self.forbidden_policy.classify(e) is DeleteErrorKind.FATAL:
                raise
            return False
        if exists:
            logger.info(f"Waiting for {self.target_label} to disappear...")
        return not exists

    def delete_existing(self):
        config = self.job_config
        database = config.target_database
        question = f"Database {self.target_label} already exists. Delete it? [y/N] "
        if not (self.assume_yes or self.confirm(question)):
            raise PitrAbort(PitrOutcome.ABORTED_USER_DECLINED,
                            f"Deletion of {self.target_label} declined; nothing was changed.")

        self.state.set(self.state_key, PitrState.PENDING_DELETE)
        try:
            self.target.delete_database(database)
        except HttpResponseError as e:
            if self.forbidden_policy.classify(e) is DeleteErrorKind.FATAL:
                raise
            logger.warning("Delete returned Forbidden, monitoring it as an in-progress deletion")

        if not self.poller(config.delete_timeout).wait_until(self._database_gone):
            raise PitrAbort(PitrOutcome.ABORTED_DELETION_TIMEOUT,
                            f"{self.target_label} still exists after {config.delete_timeout} seconds. "
                            f"Check the deletion in the Azure portal and run again once it is gone.")
        self.state.set(self.state_key, PitrState.DELETED)
        logger.info(f"Deleted {self.target_label}")
        self.cool_down()

        if not self.continue_after_delete:
            raise RerunRequired(f"{self.target_label} was deleted. Run the restore again to start "
                                f"the point-in-time restore on a settled instance.")

    def cool_down(self):
        seconds = self.job_config.cooldown
        logger.info(f"Waiting {seconds} seconds for storage accounting on "
                    f"{self.job_config.target.instance_name} to settle")
        self.poller(seconds).sleep_for(seconds)
        self.state.set(self.state_key, PitrState.COOLDOWN_ELAPSED)

    # Capacity

    def estimate_source_size_mb(self):
        config = self.job_config
        conn = self.connect_fn(
            self.source.instance_fqdn(), 'master',
            driver=config.driver,
            access_token=self.get_access_token(SQL_SCOPE),
        )
        try:
            rows = execute_statement(conn, tsql.source_size_query(), (config.source_database,))
        finally:
            conn.close()
        size = rows[0].get('size_mb') if rows else None
        if size is None:
            raise RuntimeError(f"Database {config.source_database} not found on "
                               f"{config.source.instance_name}")
        return float(size)

    def check_capacity(self):
        budget = StorageBudget(
            total_mb=self.target.instance_total_storage_mb(),
            used_mb=self.target.instance_used_storage_mb(self.job_config.metric_window_minutes),
            estimated_source_mb=self.estimate_source_size_mb(),
        )
        logger.info(f"Target storage: {budget.total_mb:.0f} MB total, {budget.used_mb:.0f} MB used, "
                    f"{budget.available_mb:.0f} MB available; source needs ~{budget.estimated_source_mb:.0f} MB")
        if not budget.is_sufficient:
            raise PitrAbort(PitrOutcome.ABORTED_INSUFFICIENT_STORAGE,
                            f"Not enough storage on {self.job_config.target.instance_name}: "
                            f"{budget.available_mb:.0f} MB available, {budget.estimated_source_mb:.0f} MB needed. "
                            f"Drop unused databases or increase the instance storage size, then run again.")
        return budget

    # Restore

    def submit_restore(self):
        config = self.job_config
        restore_point = self.utcnow() - timedelta(minutes=config.restore_point_offset_minutes)
        self.target.begin_point_in_time_restore(
            config.source.database_id(config.source_database), config.target_database, restore_point)
        self.state.set(self.state_key, PitrState.RESTORING)
        return restore_point

    def await_online(self):
        config = self.job_config

        def online():
            status = self.status_policy.status_of(
                lambda: self.target.database_status(config.target_database))
            logger.info(f"Status of {self.target_label}: {status}")
            return status == ONLINE

        if self.poller(config.poll_timeout).wait_until(online):
            self.state.set(self.state_key, PitrState.ONLINE)
            logger.info(f"{self.target_label} is online")
            return PitrOutcome.COMPLETED_ONLINE

        logger.info(f"{self.target_label} is not online after {config.poll_timeout} seconds. "
                    f"The restore may still be running; check its status in the Azure portal.")
        return PitrOutcome.COMPLETED_TIMED_OUT_STATUS_UNKNOWN

    def execute(self):
        config = self.job_config
        if self.reset_state:
            logger.info(f"Discarding saved progress for {self.target_label}")
            self.state.clear(self.state_key)
        previous = self.state.get(self.state_key)

        if previous is PitrState.RESTORING:
            if self.target.database_exists(config.target_database):
                logger.info(f"Resuming status monitoring of the restore into {self.target_label}")
                return self.await_online()
            logger.warning(f"A restore into {self.target_label} was recorded but the database does not exist; "
                           f"the earlier restore failed. Starting over.")
            self.state.clear(self.state_key)
            previous = None
        if previous is PitrState.ONLINE:
            self.state.clear(self.state_key)
            previous = None

        if self.target.database_exists(config.target_database):
            self.delete_existing()
        elif previous in (PitrState.PENDING_DELETE, PitrState.DELETED):
            # An earlier run was stopped before the cooldown finished
            self.cool_down()

        self.check_capacity()
        self.submit_restore()
        return self.await_online()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Point-in-time restore from the source to the target managed instance")
    parser.add_argument('--yes', action='store_true',
                        help="Delete an existing target database without asking")
    parser.add_argument('--continue-after-delete', action='store_true',
                        help="Start the restore in the same run after deleting an existing target")
    parser.add_argument('--target-db', help="Target database name (default: TARGET_DB_NAME)")
    parser.add_argument('--reset-state', action='store_true',
                        help="Forget progress saved in PITR_STATE_FILE for this target before starting")
    args = parser.parse_args(argv)

    runner = PitrRunner(
        overrides={'target_database': args.target_db},
        assume_yes=args.yes,
        continue_after_delete=args.continue_after_delete,
        reset_state=args.reset_state,
    )
    return runner.run()


if __name__ == '__main__':
    sys.exit(main())
