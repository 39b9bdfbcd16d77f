"""
vendorvault settings, read once from VENDORVAULT_* environment variables.

Usage:
    from vendorvault.config import get_config
    cfg = get_config()
    cfg.db.name             # "vendorvault"
    cfg.test_concurrency    # 2
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_KDF_SALT = "vendorvault-credential-kdf-v1"
DEFAULT_KDF_ITERATIONS = 600_000
DEFAULT_HANDLER_PACKAGES = ("vendorvault.vendors.handlers",)


@dataclass(frozen=True)
class DatabaseConfig:
    """Where the credential tables live, and how the pool talks to them."""

    host: str = ""  # "" connects over the local socket
    port: int = 5432
    name: str = "vendorvault"
    user: str = "vendorvault"
    password: str = ""
    pool_min: int = 1
    pool_max: int = 10
    # Upper bound on waiting for a credential row lock
    lock_timeout_ms: int = 5000

    @property
    def dict(self) -> dict[str, str | int]:
        """Keyword arguments for psycopg2.connect (pool settings excluded)."""
        optional = {"host": self.host, "user": self.user, "password": self.password}
        return {
            "dbname": self.name,
            "port": self.port,
            **{key: value for key, value in optional.items() if value},
        }

    @property
    def dsn(self) -> str:
        """The same parameters as a libpq keyword/value string."""
        return " ".join(f"{key}={value}" for key, value in self.dict.items())


@dataclass(frozen=True)
class CipherConfig:
    """Key-derivation inputs for the credential cipher.

    The master secret is never persisted; only the derived key is held in memory.
    """

    master_secret: str = field(default="", repr=False)
    salt: str = DEFAULT_KDF_SALT
    iterations: int = DEFAULT_KDF_ITERATIONS


@dataclass(frozen=True)
class Config:
    """Top-level vendorvault configuration."""

    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    cipher: CipherConfig = field(default_factory=CipherConfig)

    # "postgres" or "memory"
    store_backend: str = "postgres"

    # Global ceiling on simultaneous vendor connection tests
    test_concurrency: int = 2

    vendor_manifest: Path | None = None
    handler_packages: tuple[str, ...] = DEFAULT_HANDLER_PACKAGES

    api_host: str = "127.0.0.1"
    api_port: int = 9300


# Process-wide, built on first access
_config: Config | None = None


def get_config() -> Config:
    """Return the process config, reading the environment on first call."""
    global _config
    if _config is None:
        _config = _load_from_env()
    return _config


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, default))


def _load_from_env() -> Config:
    env = os.environ.get
    db = DatabaseConfig(
        host=env("VENDORVAULT_DB_HOST", ""),
        port=_env_int("VENDORVAULT_DB_PORT", 5432),
        name=env("VENDORVAULT_DB_NAME", "vendorvault"),
        user=env("VENDORVAULT_DB_USER", env("USER", "vendorvault")),
        password=env("VENDORVAULT_DB_PASSWORD", ""),
        pool_min=_env_int("VENDORVAULT_DB_POOL_MIN", 1),
        pool_max=_env_int("VENDORVAULT_DB_POOL_MAX", 10),
        lock_timeout_ms=_env_int("VENDORVAULT_DB_LOCK_TIMEOUT_MS", 5000),
    )
    cipher = CipherConfig(
        master_secret=env("VENDORVAULT_MASTER_SECRET", ""),
        salt=env("VENDORVAULT_KDF_SALT", DEFAULT_KDF_SALT),
        iterations=_env_int("VENDORVAULT_KDF_ITERATIONS", DEFAULT_KDF_ITERATIONS),
    )

    manifest = env("VENDORVAULT_VENDOR_MANIFEST")
    packages = tuple(
        p.strip() for p in env("VENDORVAULT_HANDLER_PACKAGES", "").split(",") if p.strip()
    )

    return Config(
        db=db,
        cipher=cipher,
        store_backend=env("VENDORVAULT_STORE", "postgres").lower(),
        test_concurrency=_env_int("VENDORVAULT_TEST_CONCURRENCY", 2),
        vendor_manifest=Path(manifest) if manifest else None,
        handler_packages=packages or DEFAULT_HANDLER_PACKAGES,
        api_host=env("VENDORVAULT_API_HOST", "127.0.0.1"),
        api_port=_env_int("VENDORVAULT_API_PORT", 9300),
    )


def reset_config() -> None:
    """Forget the cached config so the next get_config() re-reads the environment."""
    global _config
    _config = None
