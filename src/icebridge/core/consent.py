"""Consent resolution between the warehouse and the storage platform.

After an external volume is created the warehouse reaches storage through a
multi-tenant app. Until a workspace admin grants that app's service principal
a role on the lakehouse workspace, every table operation fails. This module
polls the storage platform's access control until the grant shows up, an
explicit denial is observed, the caller cancels, or the deadline elapses.

Polling is synchronous and bounded: there is always a deadline, and the
caller may pass a ``threading.Event`` to stop early.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Protocol

from icebridge.core.errors import ConsentDenied, ConsentTimeout
from icebridge.core.models import (
    AccessKind,
    ConsentState,
    PrincipalAccess,
    ServicePrincipalRef,
)

logger = logging.getLogger(__name__)

# Fabric workspace roles, weakest first.
ROLE_ORDER = ("Viewer", "Contributor", "Member", "Admin")


class AccessControlAdapter(Protocol):
    """Interface for the storage platform's workspace access control."""

    def principal_access(self, workspace: str, display_name: str) -> PrincipalAccess:
        """Look up one principal in the workspace's role assignments."""
        ...

    def grant_access(self, workspace: str, display_name: str, role: str) -> None:
        """Assign ``role`` on the workspace to the principal."""
        ...


def required_role(read_only: bool) -> str:
    """Return the minimal workspace role a mount needs."""
    return "Viewer" if read_only else "Contributor"


def role_satisfies(role: str | None, required: str) -> bool:
    """Return True if ``role`` is at least as strong as ``required``."""
    if not role:
        return False
    ranks = {r.lower(): i for i, r in enumerate(ROLE_ORDER)}
    have = ranks.get(role.lower())
    need = ranks.get(required.lower())
    if have is None or need is None:
        return False
    return have >= need


def resolve_consent(
    storage: AccessControlAdapter,
    principal: ServicePrincipalRef,
    workspace: str,
    *,
    role: str = "Contributor",
    deadline_seconds: float = 900.0,
    poll_interval: float = 15.0,
    cancel: threading.Event | None = None,
    auto_grant: bool = False,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> ServicePrincipalRef:
    """
    Block until the principal holds ``role`` (or stronger) on ``workspace``.

    The principal's ``consent_state`` moves UNKNOWN -> PENDING on the first
    observation, PENDING -> GRANTED once a sufficient
    role is seen, and to DENIED on explicit denial or when the deadline
    elapses.

    Args:
        storage: Access-control adapter of the storage platform.
        principal: Principal reference, mutated in place.
        workspace: Workspace identifier on the storage platform.
        role: Minimal role required.
        deadline_seconds: Total time budget for this call.
        poll_interval: Seconds between polls.
        cancel: Optional event; when set, polling stops early.
        auto_grant: Assign the role once if the principal is not found.
        clock: Monotonic clock, injectable for tests.
        sleep: Sleep function used when no ``cancel`` event is given.

    Returns:
        The same principal reference, in state GRANTED.

    Raises:
        ConsentDenied: The storage platform reported an explicit denial.
        ConsentTimeout: The deadline elapsed or the caller cancelled.
    """
    if deadline_seconds <= 0:
        raise ValueError("deadline_seconds must be > 0")
    if poll_interval <= 0:
        raise ValueError("poll_interval must be > 0")

    deadline = clock() + deadline_seconds
    grant_requested = False
    name = principal.display_name

    while True:
        if cancel is not None and cancel.is_set():
            raise ConsentTimeout(f"Consent wait for '{name}' cancelled.", cancelled=True)

        access = storage.principal_access(workspace, name)
        logger.debug("Consent poll for %s on %s: %s", name, workspace, access)
        if principal.consent_state == ConsentState.UNKNOWN:
            logger.info("Waiting for %s to be granted %s on %s", name, role, workspace)
        principal.transition(ConsentState.PENDING)

        if access.kind == AccessKind.DENIED:
            principal.transition(ConsentState.DENIED)
            raise ConsentDenied(f"Access for '{name}' on workspace '{workspace}' was denied.")

        if access.kind == AccessKind.FOUND_WITH_ROLE and role_satisfies(access.role, role):
            principal.transition(ConsentState.GRANTED)
            logger.info("Consent granted for %s (%s) on %s", name, access.role, workspace)
            return principal

        if access.kind == AccessKind.NOT_FOUND and auto_grant and not grant_requested:
            logger.info("Granting %s on %s to %s", role, workspace, name)
            storage.grant_access(workspace, name, role)
            grant_requested = True

        remaining = deadline - clock()
        if remaining <= 0:
            principal.transition(ConsentState.DENIED)
            raise ConsentTimeout(
                f"'{name}' was not granted {role} on workspace '{workspace}' "
                f"within {deadline_seconds:g}s."
            )

        wait = min(poll_interval, remaining)
        if cancel is not None:
            if cancel.wait(wait):
                raise ConsentTimeout(
                    f"Consent wait for '{name}' cancelled.", cancelled=True
                )
        else:
            sleep(wait)


def resolve_with_retries(
    resolve: Callable[[], ServicePrincipalRef],
    principal: ServicePrincipalRef,
    attempts: int,
) -> ServicePrincipalRef:
    """
    Run ``resolve`` up to ``attempts`` times, each with a fresh deadline.

    Only non-cancelled ConsentTimeout is retried.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    for attempt in range(1, attempts + 1):
        try:
            return resolve()
        except ConsentTimeout as exc:
            if exc.cancelled or attempt == attempts:
                raise
            logger.warning(
                "Consent attempt %d/%d for %s timed out; polling again",
                attempt,
                attempts,
                principal.display_name,
            )
            principal.transition(ConsentState.PENDING)
    raise AssertionError("unreachable")


class ConsentCache:
    """
    Mount-scoped consent results for one run.

    Consent is resolved once per mount and then shared read-only by all
    tables on that mount.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._principals: dict[str, ServicePrincipalRef] = {}
        self._errors: dict[str, Exception] = {}

    def get_or_resolve(
        self, mount_name: str, resolve: Callable[[], ServicePrincipalRef]
    ) -> ServicePrincipalRef:
        """Return the cached principal for a mount, resolving it on first use."""
        with self._lock:
            if mount_name in self._principals:
                return self._principals[mount_name]
            if mount_name in self._errors:
                raise self._errors[mount_name]
            try:
                principal = resolve()
            except Exception as exc:
                self._errors[mount_name] = exc
                raise
            self._principals[mount_name] = principal
            return principal

    def granted(self, mount_name: str) -> bool:
        """Return True if the mount's principal is known to be granted."""
        principal = self._principals.get(mount_name)
        return principal is not None and principal.consent_state == ConsentState.GRANTED
