"""
Provisioning client registry — maps a configured client name to a factory.

The dispatcher only needs a ProvisioningAPI; which one is used in a given
deployment is decided by settings.PROVISIONING_CLIENT. Real GTM/Ads
clients register themselves here the same way the simulated one does.
"""

from typing import Callable

from jobs.base import ProvisioningAPI
from jobs.simulated import SimulatedProvisioningClient

_REGISTRY: dict[str, Callable[[], ProvisioningAPI]] = {}


def register_client(name: str, factory: Callable[[], ProvisioningAPI]) -> None:
    _REGISTRY[name] = factory


register_client("simulated", SimulatedProvisioningClient)


def create_client(name: str) -> ProvisioningAPI:
    """Build a client by name. Raises ValueError if unknown."""
    factory = _REGISTRY.get(name)
    if factory is None:
        raise ValueError(
            f"Unknown provisioning client: '{name}'. Available: {list(_REGISTRY.keys())}"
        )
    return factory()
