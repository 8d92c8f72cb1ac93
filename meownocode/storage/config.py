"""Storage type enumeration and typed per-backend configuration structs.

Every backend has its own config dataclass. ``from_dict`` is the only way raw
JSON (from the persisted ``storage_config`` key or from a caller) becomes a
config, and it reports every missing or malformed field at once.
"""

from dataclasses import MISSING, asdict, dataclass, fields
from enum import Enum
from typing import Any, ClassVar, Self

from .exceptions import StorageConfigError

STORAGE_CONFIG_VERSION = 1


class StorageType(str, Enum):
    """Available storage backends."""
    BROWSER = "browser"
    LOCAL_DB = "localdb"
    CLOUDFLARE = "cloudflare"
    SUPABASE = "supabase"
    S3 = "s3"
    MEMORY = "memory"

    @classmethod
    def parse(cls, value: "StorageType | str") -> "StorageType":
        """Coerce a string to a StorageType, raising StorageConfigError."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            available = ", ".join(t.value for t in cls)
            raise StorageConfigError(
                f"Unsupported storage type: '{value}'. Available: {available}"
            ) from None


class BaseStorageConfig:
    """Shared ``from_dict``/``to_dict`` behaviour for config dataclasses.

    Subclasses list their mandatory keys in ``required_fields``. A required
    field passes when omitted only if its default is non-empty; an explicit
    empty value (``""``/``None``) is always rejected.
    """

    required_fields: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Self:
        data = dict(data or {})
        known = {f.name: f for f in fields(cls)}  # type: ignore[arg-type]
        errors: list[str] = []

        unknown = sorted(set(data) - set(known))
        if unknown:
            errors.append(f"Unknown config fields: {', '.join(unknown)}")

        for name in cls.required_fields:
            value = data.get(name, known[name].default)
            if value is MISSING or value in (None, ""):
                errors.append(f"Missing required config: {name}")

        if errors:
            raise StorageConfigError(errors)

        values = {k: v for k, v in data.items() if k in known}
        config = cls(**values)
        config.check()
        return config

    def check(self) -> None:
        """Field-level checks beyond presence; override in subclasses."""
        pass

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]


@dataclass
class MemoryConfig(BaseStorageConfig):
    """In-process storage; nothing to configure."""
    pass


@dataclass
class BrowserConfig(BaseStorageConfig):
    """Local key/value file plus a blob directory."""
    data_dir: str = "./data/browser"


@dataclass
class LocalDBConfig(BaseStorageConfig):
    """Single SQLite database file.

    With ``auto_save`` every write is committed immediately; otherwise writes
    are committed every ``save_interval`` seconds and on close.
    """
    db_path: str = "meownocode.db"
    auto_save: bool = True
    save_interval: float = 30.0

    required_fields: ClassVar[tuple[str, ...]] = ("db_path",)

    def check(self) -> None:
        if not isinstance(self.save_interval, (int, float)) or self.save_interval <= 0:
            raise StorageConfigError("save_interval must be a positive number")


@dataclass
class CloudflareConfig(BaseStorageConfig):
    """Workers + D1 + R2 HTTP API."""
    base_url: str = ""
    api_key: str | None = None
    timeout: float = 30.0

    required_fields: ClassVar[tuple[str, ...]] = ("base_url",)

    def check(self) -> None:
        if not self.base_url.startswith(("http://", "https://")):
            raise StorageConfigError(f"base_url must be an http(s) URL: {self.base_url}")
        self.base_url = self.base_url.rstrip("/")


@dataclass
class SupabaseConfig(BaseStorageConfig):
    """Postgres database (Supabase or self-hosted)."""
    connection_string: str = ""
    user_id: str = "default"
    pool_size: int = 10

    required_fields: ClassVar[tuple[str, ...]] = ("connection_string",)


@dataclass
class S3Config(BaseStorageConfig):
    """S3-compatible object storage (AWS, R2, MinIO)."""
    bucket: str = ""
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    prefix: str = "meownocode"

    required_fields: ClassVar[tuple[str, ...]] = ("bucket",)

    def check(self) -> None:
        if bool(self.access_key_id) != bool(self.secret_access_key):
            raise StorageConfigError(
                "access_key_id and secret_access_key must be given together"
            )
        self.prefix = self.prefix.strip("/")


@dataclass
class StorageConfig:
    """The persisted ``{version, type, config}`` record."""
    type: StorageType
    config: dict[str, Any]
    version: int = STORAGE_CONFIG_VERSION

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StorageConfig":
        version = data.get("version", STORAGE_CONFIG_VERSION)
        if not isinstance(version, int) or version > STORAGE_CONFIG_VERSION:
            raise StorageConfigError(f"Unsupported storage config version: {version}")
        if "type" not in data:
            raise StorageConfigError("Missing storage type")
        config = data.get("config") or {}
        if not isinstance(config, dict):
            raise StorageConfigError("config must be an object")
        return cls(type=StorageType.parse(data["type"]), config=config, version=version)

    def to_dict(self) -> dict[str, Any]:
        return {"version": self.version, "type": self.type.value, "config": dict(self.config)}
