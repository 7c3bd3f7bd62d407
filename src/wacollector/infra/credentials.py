"""Credential-storage directory.

Holds what this process learns about the linked device between restarts
(its own phone/LID addresses). An administrative reset wipes the directory,
after which the device must be paired again.
"""

import json
import shutil
from dataclasses import asdict, dataclass
from pathlib import Path

from wacollector.observability.logging import get_logger
from wacollector.observability.redaction import safe_log_context

logger = get_logger(__name__)

CREDS_FILE = "creds.json"


@dataclass(frozen=True)
class SelfIdentity:
    """The linked device's own addresses as last reported by the backend."""

    id: str | None = None
    lid: str | None = None
    name: str | None = None


class CredentialStore:
    """JSON-backed store rooted at AUTH_DIR."""

    def __init__(self, auth_dir: str | Path) -> None:
        self.root = Path(auth_dir)

    @property
    def path(self) -> Path:
        return self.root / CREDS_FILE

    def load_self(self) -> SelfIdentity | None:
        """Stored identity, or None if absent or unreadable."""
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "{}")
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(
                "credential file unreadable",
                extra={"extra_fields": safe_log_context(error_type=type(e).__name__)},
            )
            return None

        me = raw.get("me") if isinstance(raw, dict) else None
        if not isinstance(me, dict):
            return None
        return SelfIdentity(
            id=me.get("id") if isinstance(me.get("id"), str) else None,
            lid=me.get("lid") if isinstance(me.get("lid"), str) else None,
            name=me.get("name") if isinstance(me.get("name"), str) else None,
        )

    def save_self(self, identity: SelfIdentity) -> None:
        """Atomically replace the stored identity."""
        self.root.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps({"me": asdict(identity)}, indent=2), encoding="utf-8")
        tmp.replace(self.path)

    def wipe(self) -> None:
        """Remove the whole directory. Missing directory is not an error."""
        shutil.rmtree(self.root, ignore_errors=True)
        logger.info("credential directory wiped")
