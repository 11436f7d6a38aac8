"""
Managed instance administration: azure-mgmt-sql plus the ARM metrics REST endpoint
"""

import logging
from datetime import datetime, timedelta, timezone

import requests
from azure.core.exceptions import ResourceNotFoundError
from azure.mgmt.sql import SqlManagementClient
from azure.mgmt.sql.models import ManagedDatabase

logger = logging.getLogger(__name__)

ARM_ENDPOINT = 'https://management.azure.com'
ARM_SCOPE = 'https://management.azure.com/.default'
METRICS_API_VERSION = '2018-01-01'
STORAGE_USED_METRIC = 'storage_space_used_mb'


class ManagedInstanceClient:
    """Operations the PITR runner issues against one managed instance"""

    def __init__(self, ref, credential, sql_client=None, session=None):
        self.ref = ref
        self.credential = credential
        self.sql_client = sql_client or SqlManagementClient(credential, ref.subscription_id)
        self.session = session or requests.Session()
        self._instance = None

    @property
    def instance(self):
        if self._instance is None:
            self._instance = self.sql_client.managed_instances.get(
                self.ref.resource_group, self.ref.instance_name)
        return self._instance

    def get_database(self, database):
        return self.sql_client.managed_databases.get(
            self.ref.resource_group, self.ref.instance_name, database)

    def database_exists(self, database):
        try:
            self.get_database(database)
            return True
        except ResourceNotFoundError:
            return False

    def database_status(self, database):
        return self.get_database(database).status

    def delete_database(self, database):
        """Submit the delete; completion is observed by polling existence, not the LRO"""
        logger.info(f"Deleting database {database} on {self.ref.instance_name}")
        return self.sql_client.managed_databases.begin_delete(
            self.ref.resource_group, self.ref.instance_name, database)

    def instance_fqdn(self):
        return self.instance.fully_qualified_domain_name

    def instance_total_storage_mb(self):
        return float(self.instance.storage_size_in_gb) * 1024

    def instance_used_storage_mb(self, window_minutes=2, now=None):
        """Latest storage_space_used_mb average within the window, at 5 minute grain"""
        end = now or datetime.now(timezone.utc)
        start = end - timedelta(minutes=window_minutes)
        token = self.credential.get_token(ARM_SCOPE).token

        response = self.session.get(
            f"{ARM_ENDPOINT}{self.ref.resource_id}/providers/Microsoft.Insights/metrics",
            params={
                'api-version': METRICS_API_VERSION,
                'metricnames': STORAGE_USED_METRIC,
                'timespan': f"{_iso(start)}/{_iso(end)}",
                'interval': 'PT5M',
                'aggregation': 'Average',
            },
            headers={'Authorization': f"Bearer {token}"},
            timeout=30,
        )
        response.raise_for_status()

        latest = None
        for metric in response.json().get('value', []):
            for series in metric.get('timeseries', []):
                for point in series.get('data', []):
                    if point.get('average') is not None:
                        latest = point['average']
        if latest is None:
            raise RuntimeError(
                f"No {STORAGE_USED_METRIC} datapoint for {self.ref.instance_name} "
                f"in the last {window_minutes} minutes")
        return float(latest)

    def begin_point_in_time_restore(self, source_database_id, target_database, restore_point):
        """Submit the restore and return the poller without waiting on it"""
        parameters = ManagedDatabase(
            location=self.instance.location,
            create_mode='PointInTimeRestore',
            source_database_id=source_database_id,
            restore_point_in_time=restore_point,
        )
        logger.info(f"Submitting point-in-time restore of {source_database_id} "
                    f"at {_iso(restore_point)} into {self.ref.instance_name}/{target_database}")
        return self.sql_client.managed_databases.begin_create_or_update(
            self.ref.resource_group, self.ref.instance_name, target_database, parameters)


def _iso(moment):
    return moment.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
