"""External volume registration.

An external volume is the warehouse's credentialed pointer to a storage
location. Creating it is a create-or-replace operation, so the registrar can
be re-run safely. The volume description names the multi-tenant app the
warehouse uses to reach the storage platform; that app's display name is the
principal that must be granted access on the lakehouse workspace.
"""

from __future__ import annotations

import logging
import re
from typing import Protocol
from urllib.parse import urlparse

from icebridge.core.errors import ProviderRejected
from icebridge.core.models import MountSpec, ServicePrincipalRef, VolumeDescriptor

logger = logging.getLogger(__name__)

# provider id -> accepted storage URI schemes
SUPPORTED_PROVIDERS: dict[str, tuple[str, ...]] = {
    "AZURE": ("azure",),
}

_APP_SUFFIX_RE = re.compile(r"_\d+$")


class VolumeAdapter(Protocol):
    """Interface for warehouse external volume operations."""

    def create_or_replace_external_volume(self, mount: MountSpec) -> None:
        """Create the volume, replacing any volume of the same name."""
        ...

    def describe_external_volume(self, name: str) -> VolumeDescriptor:
        """Return the warehouse's description of the volume."""
        ...


def validate_mount(mount: MountSpec) -> None:
    """
    Check provider and URI scheme of a mount.

    Raises:
        ProviderRejected: If the provider is unsupported or the base URL does
                          not use the provider's storage scheme.
    """
    schemes = SUPPORTED_PROVIDERS.get(mount.provider.upper())
    if schemes is None:
        raise ProviderRejected(
            f"Mount '{mount.name}': unsupported provider '{mount.provider}'. "
            f"Supported: {', '.join(sorted(SUPPORTED_PROVIDERS))}."
        )
    parsed = urlparse(mount.base_url)
    if parsed.scheme.lower() not in schemes or not parsed.netloc:
        raise ProviderRejected(
            f"Mount '{mount.name}': base URL '{mount.base_url}' must use the "
            f"{'/'.join(s + '://' for s in schemes)} scheme."
        )


def principal_display_name(app_name: str) -> str:
    """
    Derive the service principal display name from the multi-tenant app name.

    The warehouse reports ``<DisplayName>_<digits>``; the storage platform
    knows the principal only by ``<DisplayName>``.
    """
    name = app_name.strip()
    if not name:
        raise ValueError("Multi-tenant app name is empty.")
    return _APP_SUFFIX_RE.sub("", name)


def register_volume(adapter: VolumeAdapter, mount: MountSpec) -> VolumeDescriptor:
    """
    Create (or replace) the external volume for a mount and describe it.

    Validation happens before any call to the warehouse.
    """
    validate_mount(mount)
    logger.info("Creating external volume %s -> %s", mount.name, mount.base_url)
    adapter.create_or_replace_external_volume(mount)
    descriptor = adapter.describe_external_volume(mount.name)
    logger.debug("Volume %s described: %s", mount.name, descriptor)
    return descriptor


def principal_for(descriptor: VolumeDescriptor) -> ServicePrincipalRef:
    """Return a fresh principal reference for a described volume."""
    if not descriptor.multi_tenant_app_name:
        raise ProviderRejected(
            f"Volume '{descriptor.name}' does not report a multi-tenant app name."
        )
    return ServicePrincipalRef(
        display_name=principal_display_name(descriptor.multi_tenant_app_name)
    )
