"""
Persisted progress of a PITR run, so a later invocation resumes at the right step
"""

import os
import json
import logging
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)


class PitrState(Enum):
    PENDING_DELETE = 'pending_delete'
    DELETED = 'deleted'
    COOLDOWN_ELAPSED = 'cooldown_elapsed'
    RESTORING = 'restoring'
    ONLINE = 'online'


class StateStore:
    """JSON file keyed by target; without a path every call is a no-op"""

    def __init__(self, path=None):
        self.path = path

    def _load_all(self):
        if not self.path or not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except ValueError as e:
            logger.warning(f"Ignoring unreadable state file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save_all(self, data):
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)

    def get(self, key):
        entry = self._load_all().get(key)
        if not entry:
            return None
        return PitrState(entry['state'])

    def set(self, key, state):
        if not self.path:
            return
        data = self._load_all()
        data[key] = {
            'state': state.value,
            'updated_at': datetime.now(timezone.utc).isoformat(),
        }
        self._save_all(data)
        logger.debug(f"State for {key} -> {state.value}")

    def clear(self, key):
        if not self.path:
            return
        data = self._load_all()
        if data.pop(key, None) is not None:
            self._save_all(data)
