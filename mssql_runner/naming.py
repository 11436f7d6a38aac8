"""
Backup artifact naming shared by the snapshot and local restore runners
"""

import re
from datetime import datetime

from .config import DEFAULT_ENDPOINT_SUFFIX

# English day names regardless of the process locale, as DATENAME(WEEKDAY) returns them
WEEKDAYS = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')

_INVALID_DEVELOPER = re.compile(r"[\s/\\'\"]")


def validate_developer(developer):
    developer = (developer or '').strip()
    if not developer:
        raise ValueError("Developer identifier must not be empty")
    if _INVALID_DEVELOPER.search(developer):
        raise ValueError(f"Developer identifier {developer!r} must not contain whitespace, slashes or quotes")
    return developer


def artifact_timestamp(moment=None):
    """dd_MM_yyyy_Weekday, e.g. 04_07_2025_Friday"""
    moment = moment or datetime.now()
    return f"{moment.strftime('%d_%m_%Y')}_{WEEKDAYS[moment.weekday()]}"


def artifact_name(database, developer, moment=None):
    return f"{database}_{validate_developer(developer)}_{artifact_timestamp(moment)}.bak"


def blob_url(account, container, blob, endpoint_suffix=DEFAULT_ENDPOINT_SUFFIX):
    return f"https://{account}.{endpoint_suffix}/{container}/{blob}"


def local_database_name(database, developer):
    return f"{database}_{validate_developer(developer)}"
