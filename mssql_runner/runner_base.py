#!/usr/bin/env python3
"""
MSSQL Backup Runner - Shared Base Class
Config loading, Azure sign-in and the run/exit-code template shared by every runner
"""

import os
import sys
import logging
import dataclasses

from azure.identity import DefaultAzureCredential

from .config import ConfigError


def log_level(value):
    """Numeric level for a LOG_LEVEL name; unknown names fall back to INFO"""
    level = logging.getLevelName(str(value or 'INFO').strip().upper())
    return level if isinstance(level, int) else logging.INFO


# Configure logging
logging.basicConfig(
    level=log_level(os.environ.get('LOG_LEVEL')),
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logging.getLogger('azure').setLevel(logging.WARNING)
logging.getLogger('azure.core.pipeline.policies.http_logging_policy').setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

SQL_SCOPE = 'https://database.windows.net/.default'


class RunnerAbort(Exception):
    """A precondition failed; the run stops without touching anything further."""

    def __init__(self, message, exit_code=1):
        super().__init__(message)
        self.exit_code = exit_code


class RerunRequired(Exception):
    """The run ended on purpose and must be invoked again to continue."""


class PollCancelled(Exception):
    """A wait loop was interrupted before the watched operation finished."""


class RunnerBase:
    name = 'runner'
    config_class = None

    def __init__(self, job_config=None, credential=None, overrides=None):
        job_config = job_config if job_config is not None else self.load_job_config()
        # Command line values take precedence over the environment
        overrides = {k: v for k, v in (overrides or {}).items() if v is not None}
        self.job_config = dataclasses.replace(job_config, **overrides) if overrides else job_config
        self.credential = credential if credential is not None else self.setup_credentials()

    def load_job_config(self):
        """Load job configuration from environment variables"""
        try:
            return self.config_class.from_env(os.environ)
        except ConfigError as e:
            logger.error(f"Invalid configuration: {e}")
            sys.exit(1)

    def setup_credentials(self):
        """Sign in with the ambient Azure identity, falling back to a browser prompt"""
        return DefaultAzureCredential(exclude_interactive_browser_credential=False)

    def get_access_token(self, scope=SQL_SCOPE):
        """Short-lived bearer token for a direct call against an Azure resource"""
        return self.credential.get_token(scope).token

    def run(self):
        """Execute the runner and translate the outcome into a process exit code"""
        logger.info(f"Starting {self.name}")

        try:
            result = self.execute()
        except RunnerAbort as e:
            logger.error(str(e))
            return e.exit_code
        except RerunRequired as e:
            logger.info(str(e))
            return 0
        except (PollCancelled, KeyboardInterrupt):
            logger.error("Interrupted. Monitoring stopped; any operation already submitted "
                         "to Azure keeps running and must be checked manually.")
            return 1
        except Exception as e:
            logger.error(f"{self.name} failed: {str(e)}")
            return 1

        logger.info(f"{self.name} completed successfully")
        return getattr(result, 'exit_code', 0)

    def execute(self):
        """Run the workflow - must be implemented by subclasses"""
        raise NotImplementedError("Subclasses must implement execute method")

    def cleanup_files(self, *files):
        """Remove local files; a failure is logged, never fatal"""
        for file in files:
            if not os.path.exists(file):
                continue
            try:
                os.unlink(file)
                logger.info(f"Cleaned up: {file}")
            except OSError as e:
                logger.warning(f"Could not delete local file {file}: {e}")
