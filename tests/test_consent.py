import threading

import pytest

from icebridge.core.consent import (
    ConsentCache,
    required_role,
    resolve_consent,
    resolve_with_retries,
    role_satisfies,
)
from icebridge.core.errors import ConsentDenied, ConsentTimeout
from icebridge.core.models import (
    AccessKind,
    ConsentState,
    PrincipalAccess,
    ServicePrincipalRef,
)

NOT_FOUND = PrincipalAccess(kind=AccessKind.NOT_FOUND)
NO_ROLE = PrincipalAccess(kind=AccessKind.FOUND_NO_ROLE)
DENIED = PrincipalAccess(kind=AccessKind.DENIED)


def _with_role(role: str) -> PrincipalAccess:
    return PrincipalAccess(kind=AccessKind.FOUND_WITH_ROLE, role=role)


class _FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class _AccessStub:
    """Returns scripted observations; the last one repeats forever."""

    def __init__(self, observations: list[PrincipalAccess]):
        self.observations = list(observations)
        self.polls = 0
        self.grants: list[tuple[str, str, str]] = []

    def principal_access(self, workspace: str, display_name: str) -> PrincipalAccess:
        self.polls += 1
        if len(self.observations) > 1:
            return self.observations.pop(0)
        return self.observations[0]

    def grant_access(self, workspace: str, display_name: str, role: str) -> None:
        self.grants.append((workspace, display_name, role))


def _principal() -> ServicePrincipalRef:
    return ServicePrincipalRef(display_name="FabricSnowflakeApp")


def test_required_role_depends_on_read_only():
    assert required_role(True) == "Viewer"
    assert required_role(False) == "Contributor"


@pytest.mark.parametrize(
    "role, required, expected",
    [
        ("Admin", "Contributor", True),
        ("member", "Contributor", True),
        ("Contributor", "Contributor", True),
        ("Viewer", "Contributor", False),
        ("Viewer", "Viewer", True),
        (None, "Viewer", False),
        ("Owner", "Viewer", False),
    ],
)
def test_role_satisfies(role, required, expected):
    assert role_satisfies(role, required) is expected


def test_resolve_consent_moves_unknown_pending_granted():
    clock = _FakeClock()
    storage = _AccessStub([NOT_FOUND, NO_ROLE, _with_role("Contributor")])
    principal = _principal()

    result = resolve_consent(
        storage,
        principal,
        "ws",
        deadline_seconds=60,
        poll_interval=5,
        clock=clock,
        sleep=clock.sleep,
    )

    assert result is principal
    assert storage.polls == 3
    assert principal.consent_state is ConsentState.GRANTED
    assert principal.history == [ConsentState.PENDING, ConsentState.GRANTED]
    assert clock.sleeps == [5, 5]


def test_resolve_consent_already_granted_passes_through_pending_without_sleeping():
    clock = _FakeClock()
    principal = _principal()

    resolve_consent(
        _AccessStub([_with_role("Admin")]),
        principal,
        "ws",
        clock=clock,
        sleep=clock.sleep,
    )

    assert principal.history == [ConsentState.PENDING, ConsentState.GRANTED]
    assert clock.sleeps == []


def test_resolve_consent_insufficient_role_keeps_waiting():
    clock = _FakeClock()
    storage = _AccessStub([_with_role("Viewer"), _with_role("Member")])
    principal = _principal()

    resolve_consent(
        storage, principal, "ws", role="Contributor", poll_interval=1, clock=clock, sleep=clock.sleep
    )

    assert storage.polls == 2
    assert principal.consent_state is ConsentState.GRANTED


def test_resolve_consent_deadline_elapses_to_denied():
    clock = _FakeClock()
    storage = _AccessStub([NO_ROLE])
    principal = _principal()

    with pytest.raises(ConsentTimeout) as excinfo:
        resolve_consent(
            storage,
            principal,
            "ws",
            deadline_seconds=12,
            poll_interval=5,
            clock=clock,
            sleep=clock.sleep,
        )

    assert excinfo.value.retryable is True
    assert excinfo.value.cancelled is False
    assert principal.consent_state is ConsentState.DENIED
    assert principal.history == [ConsentState.PENDING, ConsentState.DENIED]
    # the last wait is clipped to the remaining budget
    assert clock.sleeps == [5, 5, 2]
    assert clock.now == 12


def test_resolve_consent_explicit_denial_raises_denied():
    principal = _principal()

    with pytest.raises(ConsentDenied):
        resolve_consent(_AccessStub([DENIED]), principal, "ws")

    assert principal.consent_state is ConsentState.DENIED
    assert principal.history == [ConsentState.PENDING, ConsentState.DENIED]


def test_resolve_consent_cancelled_before_first_poll():
    cancel = threading.Event()
    cancel.set()
    storage = _AccessStub([NOT_FOUND])

    with pytest.raises(ConsentTimeout) as excinfo:
        resolve_consent(storage, _principal(), "ws", cancel=cancel)

    assert excinfo.value.cancelled is True
    assert storage.polls == 0


def test_resolve_consent_cancel_stops_waiting():
    class _SetsCancel(_AccessStub):
        def __init__(self, cancel: threading.Event):
            super().__init__([NOT_FOUND])
            self.cancel = cancel

        def principal_access(self, workspace: str, display_name: str) -> PrincipalAccess:
            self.cancel.set()
            return super().principal_access(workspace, display_name)

    cancel = threading.Event()
    storage = _SetsCancel(cancel)

    with pytest.raises(ConsentTimeout) as excinfo:
        resolve_consent(storage, _principal(), "ws", poll_interval=30, cancel=cancel)

    assert excinfo.value.cancelled is True
    assert storage.polls == 1


def test_resolve_consent_auto_grant_requests_role_once():
    clock = _FakeClock()
    storage = _AccessStub([NOT_FOUND, NOT_FOUND, _with_role("Contributor")])

    resolve_consent(
        storage,
        _principal(),
        "ws",
        auto_grant=True,
        poll_interval=1,
        clock=clock,
        sleep=clock.sleep,
    )

    assert storage.grants == [("ws", "FabricSnowflakeApp", "Contributor")]


def test_resolve_consent_without_auto_grant_never_grants():
    clock = _FakeClock()
    storage = _AccessStub([NOT_FOUND, _with_role("Admin")])

    resolve_consent(storage, _principal(), "ws", poll_interval=1, clock=clock, sleep=clock.sleep)

    assert storage.grants == []


@pytest.mark.parametrize("kwargs", [{"deadline_seconds": 0}, {"poll_interval": 0}])
def test_resolve_consent_rejects_non_positive_timing(kwargs):
    with pytest.raises(ValueError):
        resolve_consent(_AccessStub([NOT_FOUND]), _principal(), "ws", **kwargs)


def test_resolve_with_retries_retries_timeouts():
    principal = _principal()
    calls = {"n": 0}

    def _resolve():
        calls["n"] += 1
        if calls["n"] < 3:
            principal.transition(ConsentState.DENIED)
            raise ConsentTimeout("timed out")
        principal.transition(ConsentState.GRANTED)
        return principal

    assert resolve_with_retries(_resolve, principal, 3) is principal
    assert calls["n"] == 3
    assert principal.consent_state is ConsentState.GRANTED


def test_resolve_with_retries_gives_up_after_attempts():
    calls = {"n": 0}

    def _resolve():
        calls["n"] += 1
        raise ConsentTimeout("timed out")

    with pytest.raises(ConsentTimeout):
        resolve_with_retries(_resolve, _principal(), 2)
    assert calls["n"] == 2


def test_resolve_with_retries_does_not_retry_cancel_or_denial():
    calls = {"n": 0}

    def _cancelled():
        calls["n"] += 1
        raise ConsentTimeout("cancelled", cancelled=True)

    with pytest.raises(ConsentTimeout):
        resolve_with_retries(_cancelled, _principal(), 5)
    assert calls["n"] == 1

    def _denied():
        calls["n"] += 1
        raise ConsentDenied("no")

    with pytest.raises(ConsentDenied):
        resolve_with_retries(_denied, _principal(), 5)
    assert calls["n"] == 2


def test_consent_cache_resolves_once_per_mount():
    cache = ConsentCache()
    calls: list[str] = []

    def _resolve():
        calls.append("resolve")
        principal = _principal()
        principal.transition(ConsentState.GRANTED)
        return principal

    first = cache.get_or_resolve("vol1", _resolve)
    second = cache.get_or_resolve("vol1", _resolve)

    assert first is second
    assert calls == ["resolve"]
    assert cache.granted("vol1") is True
    assert cache.granted("vol2") is False


def test_consent_cache_remembers_failures():
    cache = ConsentCache()
    calls: list[str] = []

    def _resolve():
        calls.append("resolve")
        raise ConsentTimeout("timed out")

    for _ in range(2):
        with pytest.raises(ConsentTimeout):
            cache.get_or_resolve("vol1", _resolve)

    assert calls == ["resolve"]
    assert cache.granted("vol1") is False
