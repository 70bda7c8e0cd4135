# cloudcall_sdk/providers/__init__.py
# SPDX-License-Identifier: Apache-2.0

"""
Compute providers - Public API

Each provider implements the ComputeProvider capability set on top of its
own descriptor table. `create_provider()` selects the implementation named
by `EngineSettings.provider`.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from cloudcall_sdk.config import EngineSettings
from cloudcall_sdk.providers.base import ComputeProvider, Node
from cloudcall_sdk.providers.cloudstack import CloudStackProvider
from cloudcall_sdk.providers.vcloud import VCloudProvider
from cloudcall_sdk.rest.dispatcher import Dispatcher

LOG = logging.getLogger(__name__)

ProviderFactory = Callable[..., ComputeProvider]

_PROVIDERS: Dict[str, ProviderFactory] = {
    CloudStackProvider.name: CloudStackProvider.from_settings,
    VCloudProvider.name: VCloudProvider.from_settings,
}


def register_provider(name: str, factory: ProviderFactory) -> None:
    """Register `factory(settings, *, dispatcher=None)` under `name`."""
    key = name.strip().lower()
    if key in _PROVIDERS:
        LOG.warning("replacing provider factory %r", key)
    _PROVIDERS[key] = factory


def available_providers() -> List[str]:
    return sorted(_PROVIDERS)


def create_provider(
    settings: Optional[EngineSettings] = None,
    *,
    dispatcher: Optional[Dispatcher] = None,
) -> ComputeProvider:
    """Build the provider configured in `settings` (read from the environment when omitted)."""
    settings = settings or EngineSettings()
    factory = _PROVIDERS.get(settings.provider)
    if factory is None:
        raise ValueError(
            f"unknown provider {settings.provider!r}; available: {', '.join(available_providers())}"
        )
    LOG.debug("creating provider %s for %s", settings.provider, settings.endpoint)
    return factory(settings, dispatcher=dispatcher)


__all__ = [
    "ComputeProvider",
    "Node",
    "CloudStackProvider",
    "VCloudProvider",
    "register_provider",
    "available_providers",
    "create_provider",
]
