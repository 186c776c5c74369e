"""In-memory cache of assets handed out to relay sessions."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any

from prompts.loader import FileAssetLoader
from relay.errors import AssetNotFoundError
from relay.schemas import SilenceDetectionConfig

LOGGER = logging.getLogger(__name__)


@dataclass
class SessionAssets:
    """Independent copy of the assets one session starts with."""

    context: str
    manifest: dict[str, Any]
    silence_detection: SilenceDetectionConfig = field(default_factory=SilenceDetectionConfig)
    listen_mode: bool = False


class AssetCatalog:
    """Contexts, manifests and relay configuration loaded once at startup."""

    def __init__(
        self,
        *,
        contexts: dict[str, str],
        manifests: dict[str, dict[str, Any]],
        server_config: dict[str, Any],
    ) -> None:
        self._contexts = contexts
        self._manifests = manifests
        self._server_config = server_config

        loader_config = server_config.get("AssetLoader", {})
        self.default_context_key: str = loader_config.get("context", "")
        self.default_manifest_key: str = loader_config.get("manifest", "")
        if self.default_context_key not in contexts:
            LOGGER.warning("Default context %r is not available", self.default_context_key)
        if self.default_manifest_key not in manifests:
            LOGGER.warning("Default manifest %r is not available", self.default_manifest_key)

    @classmethod
    def from_loader(cls, loader: FileAssetLoader) -> AssetCatalog:
        return cls(
            contexts=loader.load_contexts(),
            manifests=loader.load_manifests(),
            server_config=loader.load_server_config(),
        )

    @property
    def context_keys(self) -> list[str]:
        return list(self._contexts)

    @property
    def manifest_keys(self) -> list[str]:
        return list(self._manifests)

    @property
    def relay_configuration(self) -> dict[str, Any]:
        return dict(self._server_config.get("ConversationRelay", {}).get("Configuration", {}))

    @property
    def silence_detection(self) -> SilenceDetectionConfig:
        raw = self._server_config.get("ConversationRelay", {}).get("SilenceDetection")
        return SilenceDetectionConfig.model_validate(raw) if raw else SilenceDetectionConfig()

    @property
    def listen_mode(self) -> bool:
        return bool(self._server_config.get("Server", {}).get("ListenMode", {}).get("enabled", False))

    def get_context(self, key: str) -> str:
        try:
            return self._contexts[key]
        except KeyError:
            raise AssetNotFoundError(f"Context not found for key: {key}") from None

    def get_manifest(self, key: str) -> dict[str, Any]:
        try:
            return copy.deepcopy(self._manifests[key])
        except KeyError:
            raise AssetNotFoundError(f"Tool manifest not found for key: {key}") from None

    def session_assets(
        self, context_key: str | None = None, manifest_key: str | None = None
    ) -> SessionAssets:
        """Assets for a new session, honouring known selectors and falling back otherwise."""

        context_key = self._pick(context_key, self._contexts, self.default_context_key, "context")
        manifest_key = self._pick(manifest_key, self._manifests, self.default_manifest_key, "manifest")
        return SessionAssets(
            context=self._contexts.get(context_key, ""),
            manifest=copy.deepcopy(self._manifests.get(manifest_key, {})),
            silence_detection=self.silence_detection,
            listen_mode=self.listen_mode,
        )

    def assets_for_context_switch(self, context_key: str) -> tuple[str, dict[str, Any]]:
        """New context plus the default manifest; unknown keys raise AssetNotFoundError."""

        context = self.get_context(context_key)
        return context, copy.deepcopy(self._manifests.get(self.default_manifest_key, {}))

    @staticmethod
    def _pick(requested: str | None, available: dict[str, Any], default: str, kind: str) -> str:
        if requested and requested in available:
            return requested
        if requested:
            LOGGER.warning("Unknown %s key %r requested, using %r", kind, requested, default)
        return default
