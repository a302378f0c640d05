"""
File-system persistence of per-session login material.

Layout under the configured root::

    <root>/<client_id>/                 created by the gateway
    <root>/session-<client_id>/         created by the engine (LocalAuth)

Every entry whose name contains the client ID belongs to that client.
"""

import shutil
from pathlib import Path

from wagate.logger import get_logger

logger = get_logger(__name__)


class CredentialStore:
    """Credential directories rooted at a single base path."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def path_for(self, client_id: str) -> Path:
        """Return the client's credential folder, creating it if missing."""
        path = self.ensure_root() / client_id
        path.mkdir(parents=True, exist_ok=True)
        return path

    def entries(self, client_id: str) -> list[Path]:
        """List every root entry whose name contains the client ID."""
        if not self.root.exists():
            return []
        return sorted(p for p in self.root.iterdir() if client_id in p.name)

    def exists(self, client_id: str) -> bool:
        return bool(self.entries(client_id))

    def purge(self, client_id: str) -> list[Path]:
        """
        Recursively delete every entry belonging to the client.

        Returns:
            The paths that were removed.
        """
        removed = []
        for entry in self.entries(client_id):
            try:
                if entry.is_dir() and not entry.is_symlink():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
                removed.append(entry)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error(f"[{client_id}] Failed to delete {entry}: {e}")
                raise

        if removed:
            logger.info(f"[{client_id}] Deleted {len(removed)} credential entries")
        return removed
