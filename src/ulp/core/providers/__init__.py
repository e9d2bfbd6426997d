"""Provider factories and the registry that selects them.

The registry imports every provider adapter, and each adapter imports
:mod:`ulp.core.providers.factory`, so the registry functions are resolved
on first access rather than at package import.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ulp.core.providers.factory import ClientOptions, ProviderFactory, bearer_api_key, header_api_key

if TYPE_CHECKING:
    from ulp.core.providers.registry import get_provider as get_provider
    from ulp.core.providers.registry import list_providers as list_providers

__all__ = [
    "ClientOptions",
    "ProviderFactory",
    "bearer_api_key",
    "get_provider",
    "header_api_key",
    "list_providers",
]

_LAZY_EXPORTS = {
    "get_provider": "ulp.core.providers.registry",
    "list_providers": "ulp.core.providers.registry",
}


def __getattr__(name: str) -> object:
    module_path = _LAZY_EXPORTS.get(name)
    if module_path is not None:
        import importlib

        mod = importlib.import_module(module_path)
        return getattr(mod, name)
    raise AttributeError(f"module 'ulp.core.providers' has no attribute {name!r}")
