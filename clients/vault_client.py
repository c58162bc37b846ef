"""
HashiCorp Vault access for HomeschoolSync deployment secrets.

AppRole login from the environment (VAULT_ADDR, VAULT_ROLE_ID,
VAULT_SECRET_ID, optional VAULT_NAMESPACE). Every path is read under the
``homeschool/`` KV v2 mount prefix. Anything missing is fatal at startup.
"""

import logging
import os
import threading
from typing import Dict

import hvac
from hvac.exceptions import Forbidden, InvalidPath, Unauthorized

logger = logging.getLogger(__name__)

_SECRET_PREFIX = "homeschool"

_vault_client_instance: "VaultClient | None" = None
_instance_lock = threading.Lock()

# Whole secrets keyed by path, read once per process
_secret_cache: Dict[str, Dict[str, str]] = {}


def _require_env(*names: str) -> Dict[str, str]:
    missing = [name for name in names if not os.getenv(name)]
    if missing:
        raise ValueError(f"{' and '.join(missing)} environment variable(s) required")
    return {name: os.environ[name] for name in names}


class VaultClient:
    """AppRole-authenticated reader for secrets under homeschool/."""

    def __init__(self, vault_addr: str | None = None, vault_namespace: str | None = None):
        self.vault_addr = vault_addr or _require_env("VAULT_ADDR")["VAULT_ADDR"]
        approle = _require_env("VAULT_ROLE_ID", "VAULT_SECRET_ID")

        namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        if namespace:
            self.client = hvac.Client(url=self.vault_addr, namespace=namespace)
        else:
            self.client = hvac.Client(url=self.vault_addr)

        self._login(approle["VAULT_ROLE_ID"], approle["VAULT_SECRET_ID"])
        logger.info(f"Vault ready at {self.vault_addr}")

    def _login(self, role_id: str, secret_id: str) -> None:
        try:
            response = self.client.auth.approle.login(role_id=role_id, secret_id=secret_id)
        except (Unauthorized, Forbidden, InvalidPath) as e:
            logger.error(f"AppRole authentication failed: {e}")
            raise PermissionError(f"AppRole authentication failed: {e}") from e

        self.client.token = response["auth"]["client_token"]
        if not self.client.is_authenticated():
            raise PermissionError("Vault rejected the AppRole token")

    def read_secret(self, path: str) -> Dict[str, str]:
        """All fields of ``homeschool/<path>``.

        Raises:
            PermissionError: Path missing or not readable with this role.
        """
        full_path = f"{_SECRET_PREFIX}/{path}"
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath as e:
            logger.error(f"Secret path not found: {full_path}")
            raise PermissionError(f"Secret path '{full_path}' not found in Vault") from e
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise PermissionError(f"Access denied to secret '{full_path}': {e}") from e
        return response["data"]["data"]

    def get_secret(self, path: str, field: str) -> str:
        """One field of ``homeschool/<path>``. KeyError when the field is absent."""
        return _pick(path, self.read_secret(path), [field])[field]


def _pick(path: str, data: Dict[str, str], fields: list[str]) -> Dict[str, str]:
    missing = [field for field in fields if field not in data]
    if missing:
        raise KeyError(
            f"Field(s) {', '.join(missing)} not found in secret '{_SECRET_PREFIX}/{path}'. "
            f"Available: {', '.join(data.keys())}"
        )
    return {field: data[field] for field in fields}


def _client() -> VaultClient:
    global _vault_client_instance
    with _instance_lock:
        if _vault_client_instance is None:
            _vault_client_instance = VaultClient()
        return _vault_client_instance


def _cached_fields(path: str, *fields: str) -> Dict[str, str]:
    if path not in _secret_cache:
        _secret_cache[path] = _client().read_secret(path)
    return _pick(path, _secret_cache[path], list(fields))


def get_database_url() -> str:
    return _cached_fields("database", "url")["url"]


def get_valkey_url() -> str:
    return _cached_fields("valkey", "url")["url"]


def get_email_config() -> Dict[str, str]:
    """Email gateway settings: gateway_url, api_key, hmac_secret."""
    return _cached_fields("email", "gateway_url", "api_key", "hmac_secret")


def get_firebase_config() -> Dict[str, str]:
    """Federated identity provider settings: project_id."""
    return _cached_fields("firebase", "project_id")
