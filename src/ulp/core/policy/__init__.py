"""Capability detection and tool-result content policy."""

from ulp.core.policy.capabilities import CapabilityProfile, CapabilityRegistry
from ulp.core.policy.images import (
    IMAGE_TOO_LARGE_PLACEHOLDER,
    convert_image_blocks,
    does_model_support_images,
    has_image_content,
    images_removed_placeholder,
    is_image_too_large,
    is_mcp_image_block,
    strip_image_blocks,
)
from ulp.core.policy.registry_data import build_default_registry

__all__ = [
    "IMAGE_TOO_LARGE_PLACEHOLDER",
    "CapabilityProfile",
    "CapabilityRegistry",
    "build_default_registry",
    "convert_image_blocks",
    "does_model_support_images",
    "has_image_content",
    "images_removed_placeholder",
    "is_image_too_large",
    "is_mcp_image_block",
    "strip_image_blocks",
]
