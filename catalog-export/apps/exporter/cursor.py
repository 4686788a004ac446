"""
Run Cursor - Last Successful Run State

Persists {"orgid": <uuid>, "updatedSince": <ISO-8601>} after a fully
successful run so the next run can ask only for records changed since then.

A cursor is only trusted when it validates AND belongs to the organization
being exported; anything else is deleted and the run falls back to a full
fetch. Cursors are never shared across organizations.
"""

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Optional

import orjson
from pydantic import ValidationError

from utils.errors import CursorValidationError
from utils.schemas import RunCursor


class CursorStore:
    """Reads, validates and writes the run cursor file."""

    def __init__(self, path: str | Path = "lastrun.json", logger: Optional[logging.Logger] = None) -> None:
        self.path = Path(path)
        self.logger = logger or logging.getLogger(__name__)

    def _read(self) -> RunCursor:
        try:
            raw = orjson.loads(self.path.read_bytes())
            return RunCursor.model_validate(raw)
        except OSError as e:
            raise CursorValidationError(f"Last run file could not be read. {e}") from e
        except (orjson.JSONDecodeError, ValidationError) as e:
            raise CursorValidationError(f"Last run file was not valid. {e}") from e

    def load(self, expected_org_id: str) -> Optional[str]:
        """Return the updatedSince timestamp to filter on, if the cursor is trusted.

        Args:
            expected_org_id: Organization the current run exports

        Returns:
            The stored timestamp, or None when there is no usable cursor
        """
        if not self.path.exists():
            return None

        try:
            cursor = self._read()
            if not cursor.belongs_to(expected_org_id):
                raise CursorValidationError("Last run file from different orgid")
        except CursorValidationError as e:
            try:
                self.path.unlink(missing_ok=True)
            except OSError as unlink_error:
                self.logger.warning("%s and could not be deleted: %s", e, unlink_error)
            else:
                self.logger.info("%s and so deleted", e)
            return None

        self.logger.info("Request updatedSince filter set to: %s", cursor.updatedSince)
        return cursor.updatedSince

    def store(self, org_id: str, started_at: datetime) -> RunCursor:
        """Overwrite the cursor with the start time of a successful run."""
        cursor = RunCursor(orgid=org_id, updatedSince=started_at.isoformat(timespec="seconds"))
        tmp_path = self.path.with_name(f"{self.path.name}.tmp")
        tmp_path.write_bytes(orjson.dumps(cursor.model_dump(mode="json")))
        os.replace(tmp_path, self.path)
        self.logger.info("Last successful run information stored in %s", self.path)
        return cursor
