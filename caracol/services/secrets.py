"""
Provider secret resolution.

Secrets are read from environment variables named after the provider id and
the secret kind, e.g. ``CARACOL_PROVIDER3_BEARER_TOKEN``.
"""
import enum
import os
import threading
from typing import Dict, Mapping, Optional, Tuple

from caracol.core.config import ENV_PREFIX
from caracol.core.exceptions import MissingSecretError, UnsupportedAuthTypeError
from caracol.core.logging import get_logger, fields
from caracol.models.database.providers import AuthType

logger = get_logger(__name__)


class SecretType(str, enum.Enum):
    """Logical name of a provider secret."""
    BEARER_TOKEN = "bearer_token"
    USERNAME = "username"
    PASSWORD = "password"
    REGION = "region"
    ACCESS_KEY_ID = "access_key_id"
    SECRET_ACCESS_KEY = "secret_access_key"


_AUTH_SECRETS = {
    AuthType.BEARER_TOKEN: (SecretType.BEARER_TOKEN,),
    AuthType.BASIC_AUTH: (SecretType.USERNAME, SecretType.PASSWORD),
    AuthType.AWS_ACCESS_KEY: (SecretType.REGION, SecretType.ACCESS_KEY_ID, SecretType.SECRET_ACCESS_KEY),
}

ProviderSecrets = Dict[SecretType, str]


def secret_env_var_names(provider_id: int, auth_type) -> Dict[SecretType, str]:
    """Environment variable holding each secret required by the provider."""
    try:
        kinds = _AUTH_SECRETS[AuthType(auth_type)]
    except (ValueError, KeyError):
        raise UnsupportedAuthTypeError(auth_type) from None
    return {
        kind: f"{ENV_PREFIX}PROVIDER{provider_id}_{kind.value.upper()}"
        for kind in kinds
    }


class SecretStore:
    """
    Resolves and caches provider secrets for the lifetime of the process.

    Entries are keyed by (provider id, auth type). A failed resolution is not
    cached so that a later call can succeed once the environment is fixed.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ if environ is not None else os.environ
        self._lock = threading.Lock()
        self._secrets: Dict[Tuple[int, AuthType], ProviderSecrets] = {}

    def secrets(self, provider_id: int, auth_type) -> ProviderSecrets:
        """
        Get the secrets for a provider.

        Raises:
            UnsupportedAuthTypeError: The auth type names no known secrets
            MissingSecretError: A required environment variable is unset
        """
        names = secret_env_var_names(provider_id, auth_type)
        key = (provider_id, AuthType(auth_type))

        with self._lock:
            cached = self._secrets.get(key)
            if cached is not None:
                return cached

            resolved = {}
            for kind, name in names.items():
                value = self._environ.get(name)
                if value is None:
                    raise MissingSecretError(name, provider_id)
                resolved[kind] = value

            self._secrets[key] = resolved
            logger.debug("resolved provider secrets", extra=fields(provider_id=provider_id, auth_type=key[1].value))
            return resolved
