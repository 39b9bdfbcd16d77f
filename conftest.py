"""
Root-level shared test fixtures.

Every test starts with fresh singletons and no VENDORVAULT_* environment.
The ``vault`` fixture is fully in-memory: memory store, a random-key cipher
(no slow key derivation) and a MagicMock in place of the audit log.
"""

from __future__ import annotations

import secrets
from unittest.mock import MagicMock

import pytest

from vendorvault.config import reset_config
from vendorvault.orchestrator.queue import reset_test_queue
from vendorvault.orchestrator.tester import reset_tester
from vendorvault.vault.crypto import Cipher, reset_cipher
from vendorvault.vault.schema import SchemaRegistry, builtin_definitions, reset_schema_registry
from vendorvault.vault.service import CredentialVault, reset_vault
from vendorvault.vault.store import MemoryCredentialStore, reset_store
from vendorvault.vendors.registry import reset_registry


@pytest.fixture(autouse=True)
def reset_singletons():
    """Drop every cached process-wide object before and after each test."""
    resets = (
        reset_config,
        reset_cipher,
        reset_schema_registry,
        reset_store,
        reset_vault,
        reset_registry,
        reset_test_queue,
        reset_tester,
    )
    for reset in resets:
        reset()
    yield
    for reset in resets:
        reset()


@pytest.fixture
def clean_env(monkeypatch):
    """Remove VENDORVAULT_* env vars that leak between tests."""
    for key in [
        "VENDORVAULT_DB_HOST",
        "VENDORVAULT_DB_PORT",
        "VENDORVAULT_DB_NAME",
        "VENDORVAULT_DB_USER",
        "VENDORVAULT_DB_PASSWORD",
        "VENDORVAULT_DB_POOL_MIN",
        "VENDORVAULT_DB_POOL_MAX",
        "VENDORVAULT_DB_LOCK_TIMEOUT_MS",
        "VENDORVAULT_MASTER_SECRET",
        "VENDORVAULT_KDF_SALT",
        "VENDORVAULT_KDF_ITERATIONS",
        "VENDORVAULT_TEST_CONCURRENCY",
        "VENDORVAULT_STORE",
        "VENDORVAULT_VENDOR_MANIFEST",
        "VENDORVAULT_HANDLER_PACKAGES",
        "VENDORVAULT_API_HOST",
        "VENDORVAULT_API_PORT",
    ]:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def cipher():
    return Cipher(secrets.token_bytes(32))


@pytest.fixture
def audit():
    """Stand-in for record_event; inspect ``audit.call_args_list``."""
    return MagicMock(return_value={"id": 1, "timestamp": "2026-01-01T00:00:00"})


@pytest.fixture
def schemas():
    return SchemaRegistry(builtin_definitions())


@pytest.fixture
def store():
    return MemoryCredentialStore()


@pytest.fixture
def vault(schemas, store, cipher, audit):
    return CredentialVault(schemas=schemas, store=store, cipher=cipher, audit=audit)
