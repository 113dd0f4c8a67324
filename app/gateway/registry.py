"""Provider Registry — maps a provider type to a freshly built adapter."""

from __future__ import annotations

import logging

from app.core.encryption import CredentialVault
from app.gateway.errors import ProviderInactive, ProviderNotSupported
from app.gateway.transport import HttpTransport
from app.gateway.types import ProviderConfig, ProviderType
from app.gateway.vendor_adapters import ADAPTER_REGISTRY, BaseVendorAdapter

logger = logging.getLogger(__name__)


def parse_provider_type(value: ProviderType | str) -> ProviderType:
    if isinstance(value, ProviderType):
        return value
    try:
        return ProviderType((value or "").strip().lower())
    except ValueError:
        raise ProviderNotSupported(str(value)) from None


class ProviderRegistry:
    """Registration table built once at startup and shared by reference.

    ``resolve`` constructs a new adapter per call so no adapter state is
    shared between requests.
    """

    def __init__(
        self,
        vault: CredentialVault,
        transport: HttpTransport | None = None,
        adapters: dict[ProviderType, type[BaseVendorAdapter]] | None = None,
    ):
        self.vault = vault
        self.transport = transport
        self._adapters = dict(adapters or ADAPTER_REGISTRY)

    @property
    def provider_types(self) -> list[ProviderType]:
        return list(self._adapters)

    def adapter_class(self, provider_type: ProviderType | str) -> type[BaseVendorAdapter]:
        ptype = parse_provider_type(provider_type)
        cls = self._adapters.get(ptype)
        if cls is None:
            raise ProviderNotSupported(ptype.value)
        return cls

    def resolve(self, provider_type: ProviderType | str, config: ProviderConfig) -> BaseVendorAdapter:
        cls = self.adapter_class(provider_type)
        if not config.is_active:
            raise ProviderInactive(cls.provider.value)
        return cls(config, self.vault, self.transport)
