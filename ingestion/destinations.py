"""
Registry of named SAP RFC destinations.

A destination bundles the logon parameters for one SAP system. RFC
sources receive the registry and ask it for a connection by name, so the
same job can reuse one set of credentials for planning and for every split.
"""

from typing import Any, Callable, Dict, List, Optional
import logging
import threading

from pydantic import BaseModel, Field, SecretStr, validator

from core.exceptions import CallerInputError
from ingestion.rfc import RfcConnection

logger = logging.getLogger(__name__)


class RfcDestination(BaseModel):
    """
    Logon parameters for one SAP application server or message server.

    Either ashost/sysnr or mshost/group must be given. The password is a
    SecretStr and is only revealed when building connection parameters.
    """

    name: str = Field(..., min_length=1)
    client: str
    user: str
    passwd: SecretStr
    lang: str = "EN"
    ashost: Optional[str] = None
    sysnr: Optional[str] = None
    mshost: Optional[str] = None
    msserv: Optional[str] = None
    sysid: Optional[str] = None
    group: Optional[str] = None
    saprouter: Optional[str] = None

    class Config:
        frozen = True

    @validator("saprouter", always=True)
    def server_given(cls, v, values):
        """Require an application server or a message server"""
        if not values.get("ashost") and not values.get("mshost"):
            raise ValueError("Either 'ashost' or 'mshost' must be set")
        if values.get("ashost") and not values.get("sysnr"):
            raise ValueError("'sysnr' is required together with 'ashost'")
        return v

    @property
    def uses_load_balancing(self) -> bool:
        return bool(self.mshost)

    def connection_params(self) -> Dict[str, str]:
        """Keyword arguments for a pyrfc style Connection(**params)"""
        params = {
            "client": self.client,
            "user": self.user,
            "passwd": self.passwd.get_secret_value(),
            "lang": self.lang,
        }
        optional = {
            "ashost": self.ashost,
            "sysnr": self.sysnr,
            "mshost": self.mshost,
            "msserv": self.msserv,
            "sysid": self.sysid,
            "group": self.group,
            "saprouter": self.saprouter,
        }
        params.update({key: value for key, value in optional.items() if value})
        return params


class DestinationRegistry:
    """
    Thread-safe registry of RFC destinations.

    Attributes:
        connection_factory: Callable receiving connection_params() as keyword
            arguments and returning an RfcConnection (pyrfc.Connection fits)
    """

    def __init__(self, connection_factory: Callable[..., RfcConnection]):
        self.connection_factory = connection_factory
        self._destinations: Dict[str, RfcDestination] = {}
        self._lock = threading.Lock()

    def register(self, destination: RfcDestination) -> None:
        """Add or replace a destination"""
        with self._lock:
            replaced = destination.name in self._destinations
            self._destinations[destination.name] = destination

        if replaced:
            logger.info(f"Replaced SAP destination {destination.name}")
        else:
            logger.info(f"Registered SAP destination {destination.name}")

    def unregister(self, name: str) -> bool:
        """Remove a destination, returns False if it was not registered"""
        with self._lock:
            removed = self._destinations.pop(name, None)

        if removed is not None:
            logger.info(f"Unregistered SAP destination {name}")
        return removed is not None

    def resolve(self, name: str) -> RfcDestination:
        """
        Look up a destination by name.

        Raises:
            CallerInputError: if no destination is registered under name
        """
        with self._lock:
            destination = self._destinations.get(name)

        if destination is None:
            raise CallerInputError(
                f"SAP destination '{name}' is not registered",
                context={"destination": name}
            )
        return destination

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._destinations)

    def connect(self, name: str, **overrides: Any) -> RfcConnection:
        """Open a new connection to the named destination"""
        destination = self.resolve(name)
        params = destination.connection_params()
        params.update(overrides)

        logger.debug(
            f"Opening RFC connection to {destination.ashost or destination.mshost} "
            f"(client {destination.client}, user {destination.user})"
        )
        return self.connection_factory(**params)

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._destinations

    def __len__(self) -> int:
        with self._lock:
            return len(self._destinations)
