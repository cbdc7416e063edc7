"""Configuration models describing shardstore settings."""

from __future__ import annotations

import hashlib
import re
from typing import Iterator, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

_HEX_COLOUR = re.compile(r"^#?[0-9a-fA-F]{6}$")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ShardStoreBaseModel(BaseModel):
    """Shared configuration for shardstore Pydantic models."""

    model_config = ConfigDict(extra="forbid")


class StoreSettings(ShardStoreBaseModel):
    """Settings for the content-addressed file store.

    Attributes:
        root: Directory holding the sharded store.
        temp_dir: Directory used for pre-ingestion temporary files.
        hash_algorithm: Name of the hashlib algorithm used for digests.
        chunk_size: Number of bytes read per hashing step.
        dir_permissions: Mode applied to shard directories created on ingest.
    """

    root: str = "~/.shardstore/files"
    temp_dir: str = "~/.shardstore/tmp"
    hash_algorithm: str = "md5"
    chunk_size: int = Field(default=8192, gt=0)
    dir_permissions: int = 0o775

    @field_validator("hash_algorithm")
    @classmethod
    def _check_algorithm(cls, value: str) -> str:
        name = value.strip().lower()
        if name not in hashlib.algorithms_available:
            raise ValueError(f"unknown hash algorithm: {value}")
        return name


class NormalizationSettings(ShardStoreBaseModel):
    """Settings for converting uploads into the canonical encoding.

    Attributes:
        quality: JPEG quality used for the canonical re-encoding.
        background: Hex colour that transparent pixels are flattened onto.
        accepted_encodings: Input encodings the normalizer will decode.
    """

    quality: int = Field(default=100, ge=1, le=100)
    background: str = "#ffffff"
    accepted_encodings: List[str] = Field(default_factory=lambda: ["png", "jpeg"])

    @field_validator("background")
    @classmethod
    def _check_background(cls, value: str) -> str:
        if not _HEX_COLOUR.match(value):
            raise ValueError("background must be a hex colour such as '#ffffff'")
        return value if value.startswith("#") else f"#{value}"

    @field_validator("accepted_encodings")
    @classmethod
    def _lower_encodings(cls, value: List[str]) -> List[str]:
        return [item.strip().lower() for item in value if item.strip()]


class EndpointSettings(ShardStoreBaseModel):
    """Connection and payload settings for one external analysis endpoint.

    Attributes:
        url: Base URL of the service; the endpoint is disabled while empty.
        enabled: Whether the pipeline dispatches to this endpoint.
        attach_metadata: Whether a ``data`` part describing the object is sent.
        response: Shape of the success payload returned by the service.
        metadata_type: Namespace reported in the ``type`` metadata field.
        link_template: Template for the ``link`` back-reference.
        path_template: Template for the ``path`` the service uses to fetch the object.
        not_found_message: 404 message that means nothing was detected.
        timeout_seconds: Optional per-endpoint request timeout override.
    """

    url: str = ""
    enabled: bool = True
    attach_metadata: bool = False
    response: Literal["face", "recognition"] = "recognition"
    metadata_type: str = "legion"
    link_template: str = "#/person/{owner_id}"
    path_template: str = "files?md5hash={digest}&format={format}"
    not_found_message: str = "No Faces Found."
    timeout_seconds: Optional[float] = None

    @field_validator("link_template", "path_template")
    @classmethod
    def _check_template(cls, value: str) -> str:
        try:
            value.format(digest="0" * 32, format="IMAGE", owner_id="owner")
        except (AttributeError, IndexError, KeyError, ValueError) as exc:
            raise ValueError(
                f"template {value!r} may only use {{digest}}, {{format}}, and {{owner_id}}: {exc!r}"
            ) from exc
        return value

    @property
    def active(self) -> bool:
        """Return True when the endpoint is enabled and has a URL."""
        return self.enabled and bool(self.url.strip())


def _face_defaults() -> EndpointSettings:
    return EndpointSettings(attach_metadata=True, response="face")


class AnalysisSettings(ShardStoreBaseModel):
    """Settings for the external analysis services.

    Attributes:
        face: Face recognition / face index endpoint.
        recognition: General object and scene recognition endpoint.
        timeout_seconds: Default request timeout for every endpoint.
    """

    face: EndpointSettings = Field(default_factory=_face_defaults)
    recognition: EndpointSettings = Field(default_factory=EndpointSettings)
    timeout_seconds: float = Field(default=30.0, gt=0)

    def endpoint(self, name: str) -> EndpointSettings | None:
        """Return the settings for ``name`` or None when it is not configured."""
        if name not in ("face", "recognition"):
            return None
        return getattr(self, name)

    def endpoints(self) -> Iterator[tuple[str, EndpointSettings]]:
        """Yield ``(name, settings)`` for every active endpoint in dispatch order."""
        for name in ("face", "recognition"):
            settings = getattr(self, name)
            if settings.active:
                yield name, settings


class LoggingSettings(ShardStoreBaseModel):
    """Runtime logging configuration.

    Attributes:
        level: Logging verbosity level.
        file: Optional path of a rotating log file.
        max_size_mb: Maximum log size before rotation.
        backup_count: Number of historical log files to retain.
    """

    level: str = "WARNING"
    file: Optional[str] = None
    max_size_mb: int = 100
    backup_count: int = 5

    @field_validator("level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"level must be one of {', '.join(_LOG_LEVELS)}")
        return level


class CLIOptions(ShardStoreBaseModel):
    """CLI behavior defaults.

    Attributes:
        quiet_default: Whether commands suppress non-error output by default.
    """

    quiet_default: bool = False


class ShardStoreConfig(ShardStoreBaseModel):
    """Top-level configuration struct for shardstore.

    Attributes:
        store: File store settings.
        normalization: Canonical encoding settings.
        analysis: External analysis endpoint settings.
        logging: Logging configuration.
        cli: CLI presentation defaults.
    """

    store: StoreSettings = Field(default_factory=StoreSettings)
    normalization: NormalizationSettings = Field(default_factory=NormalizationSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    cli: CLIOptions = Field(default_factory=CLIOptions)


__all__ = [
    "ShardStoreBaseModel",
    "StoreSettings",
    "NormalizationSettings",
    "EndpointSettings",
    "AnalysisSettings",
    "LoggingSettings",
    "CLIOptions",
    "ShardStoreConfig",
]
