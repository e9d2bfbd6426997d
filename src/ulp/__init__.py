"""Universal LLM Proxy — one OpenAI-compatible contract, many upstream providers."""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:
    from ulp.core.providers.registry import get_provider as get_provider
    from ulp.core.proxy import ProxyHandler as ProxyHandler

_LAZY_EXPORTS = {
    "ProxyHandler": "ulp.core.proxy",
    "get_provider": "ulp.core.providers.registry",
}


def __getattr__(name: str) -> object:
    module_path = _LAZY_EXPORTS.get(name)
    if module_path is not None:
        import importlib

        mod = importlib.import_module(module_path)
        return getattr(mod, name)
    raise AttributeError(f"module 'ulp' has no attribute {name!r}")
