from __future__ import annotations

import shutil
import tempfile
import time
from pathlib import Path


class TempDbSandbox:
    """A throwaway directory holding one sqlite file for an app under test."""

    def __init__(self, prefix: str = "crm_portal_tests", db_name: str = "crm_portal_test.db") -> None:
        self.temp_dir = tempfile.mkdtemp(prefix=f"{prefix}_")
        self.db_path = str(Path(self.temp_dir) / db_name)

    def make_config(self, base_config, **overrides):
        """Subclass ``base_config`` so the app writes only inside this sandbox."""
        attrs = {
            "DATABASE_DIR": self.temp_dir,
            "DB_PATH": self.db_path,
            "FOLLOWUP_TASKS_ASYNC": False,
            "RATE_LIMIT_ENABLED": False,
            "PROPAGATE_EXCEPTIONS": False,
        }
        attrs.update(overrides)
        return type("SandboxConfig", (base_config,), attrs)

    def cleanup(self, attempts: int = 5) -> None:
        # sqlite handles can linger briefly after close_db on some platforms.
        for attempt in range(attempts):
            try:
                shutil.rmtree(self.temp_dir)
                return
            except FileNotFoundError:
                return
            except OSError:
                if attempt == attempts - 1:
                    raise
                time.sleep(0.05 * (attempt + 1))
