"""Local-file asset loading: contexts, tool manifests and server configuration."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

LOGGER = logging.getLogger(__name__)

SERVER_CONFIG_FILE = "serverConfig.json"


class FileAssetLoader:
    """Reads assets from a directory.

    ``*.md`` files are contexts and the other ``*.json`` files are tool
    manifests, both keyed by file stem.
    """

    def __init__(self, assets_dir: Path) -> None:
        self._assets_dir = Path(assets_dir)

    def load_server_config(self) -> dict[str, Any]:
        path = self._assets_dir / SERVER_CONFIG_FILE
        if not path.exists():
            raise RuntimeError(f"Server configuration not found: {path}")
        config = json.loads(path.read_text(encoding="utf-8"))
        LOGGER.info("Loaded server configuration from %s", path)
        return config

    def load_contexts(self) -> dict[str, str]:
        contexts = {
            path.stem: path.read_text(encoding="utf-8").strip() + "\n"
            for path in sorted(self._assets_dir.glob("*.md"))
        }
        LOGGER.info("Loaded %d contexts from %s", len(contexts), self._assets_dir)
        return contexts

    def load_manifests(self) -> dict[str, dict[str, Any]]:
        manifests: dict[str, dict[str, Any]] = {}
        for path in sorted(self._assets_dir.glob("*.json")):
            if path.name == SERVER_CONFIG_FILE:
                continue
            try:
                manifests[path.stem] = json.loads(path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as exc:
                LOGGER.error("Skipping manifest %s with invalid JSON: %s", path.name, exc)
        LOGGER.info("Loaded %d manifests from %s", len(manifests), self._assets_dir)
        return manifests
