from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import pytest

from sqn.errors import AmbiguousProfileError, ProfileNotFoundError, RemoteOperationFailedError
from sqn.models import CSHARP
from sqn.quality_profiles import resolve_quality_profile
from sqn.transport import CancellationToken, OperationName, TransportResult


@dataclass
class FakeTransport:
    """
    纯内存 Transport：按 operation 依次返回预设结果（只剩一个时重复返回）。
    """

    responses: dict[str, list[TransportResult]]
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def execute(self, operation, connection, request, token) -> TransportResult:  # noqa: ANN001
        token.raise_if_cancelled(operation)
        self.calls.append((operation, dict(request)))
        queue = self.responses[operation]
        return queue.pop(0) if len(queue) > 1 else queue[0]


def _changelog(*dates: str) -> list[TransportResult]:
    return [TransportResult(status=200, value=[{"date": d} for d in dates])]


def _profiles(*profiles: dict[str, Any]) -> list[TransportResult]:
    return [TransportResult(status=200, value=list(profiles))]


def test_picks_default_profile_among_several_candidates(connection) -> None:  # noqa: ANN001
    transport = FakeTransport(
        responses={
            OperationName.GET_QUALITY_PROFILES: _profiles(
                {"key": "cs-1", "name": "Custom", "language": "cs", "isDefault": False},
                {"key": "cs-2", "name": "Sonar way", "language": "cs", "isDefault": True},
                {"key": "java-1", "name": "Sonar way", "language": "java", "isDefault": True},
            ),
            OperationName.GET_QUALITY_PROFILE_CHANGELOG: _changelog("2017-03-14T12:00:00+0000"),
        }
    )

    profile = resolve_quality_profile(transport, connection, "my:project", CSHARP, CancellationToken())

    assert profile.key == "cs-2"
    assert profile.is_default is True
    assert profile.time_stamp == datetime(2017, 3, 14, 12, 0, tzinfo=UTC)
    assert transport.calls[-1] == (
        OperationName.GET_QUALITY_PROFILE_CHANGELOG,
        {"profile_key": "cs-2", "page_size": 1},
    )


def test_single_candidate_is_used_even_if_not_default(connection) -> None:  # noqa: ANN001
    transport = FakeTransport(
        responses={
            OperationName.GET_QUALITY_PROFILES: _profiles(
                {"key": "cs-1", "name": "Custom", "language": "cs", "isDefault": False},
            ),
            OperationName.GET_QUALITY_PROFILE_CHANGELOG: _changelog("2017-03-14T12:00:00+0000"),
        }
    )

    profile = resolve_quality_profile(transport, connection, "my:project", CSHARP, CancellationToken())
    assert profile.key == "cs-1"


def test_no_candidate_for_language_raises_profile_not_found(connection) -> None:  # noqa: ANN001
    transport = FakeTransport(
        responses={
            OperationName.GET_QUALITY_PROFILES: _profiles(
                {"key": "java-1", "name": "Sonar way", "language": "java", "isDefault": True},
            ),
        }
    )

    with pytest.raises(ProfileNotFoundError):
        resolve_quality_profile(transport, connection, "my:project", CSHARP, CancellationToken())


@pytest.mark.parametrize("default_flags", [(True, True), (False, False)])
def test_ambiguous_defaults_raise(connection, default_flags) -> None:  # noqa: ANN001
    transport = FakeTransport(
        responses={
            OperationName.GET_QUALITY_PROFILES: _profiles(
                {"key": "cs-1", "name": "A", "language": "cs", "isDefault": default_flags[0]},
                {"key": "cs-2", "name": "B", "language": "cs", "isDefault": default_flags[1]},
            ),
        }
    )

    with pytest.raises(AmbiguousProfileError):
        resolve_quality_profile(transport, connection, "my:project", CSHARP, CancellationToken())


def test_not_found_project_falls_back_to_unscoped_request_once(connection) -> None:  # noqa: ANN001
    transport = FakeTransport(
        responses={
            OperationName.GET_QUALITY_PROFILES: [
                TransportResult(status=404),
                TransportResult(status=200, value=[{"key": "cs-2", "name": "Sonar way", "language": "cs", "isDefault": True}]),
            ],
            OperationName.GET_QUALITY_PROFILE_CHANGELOG: _changelog("2017-03-14T12:00:00+0000"),
        }
    )

    profile = resolve_quality_profile(transport, connection, "never:analyzed", CSHARP, CancellationToken())

    assert profile.key == "cs-2"
    profile_calls = [c for c in transport.calls if c[0] == OperationName.GET_QUALITY_PROFILES]
    assert [c[1]["project_key"] for c in profile_calls] == ["never:analyzed", None]


def test_second_not_found_is_surfaced(connection) -> None:  # noqa: ANN001
    transport = FakeTransport(responses={OperationName.GET_QUALITY_PROFILES: [TransportResult(status=404)]})

    with pytest.raises(RemoteOperationFailedError) as exc_info:
        resolve_quality_profile(transport, connection, "never:analyzed", CSHARP, CancellationToken())

    assert exc_info.value.status == 404
    assert len(transport.calls) == 2


def test_other_failures_are_not_retried(connection) -> None:  # noqa: ANN001
    transport = FakeTransport(responses={OperationName.GET_QUALITY_PROFILES: [TransportResult(status=403)]})

    with pytest.raises(RemoteOperationFailedError) as exc_info:
        resolve_quality_profile(transport, connection, "my:project", CSHARP, CancellationToken())

    assert exc_info.value.status == 403
    assert len(transport.calls) == 1


@pytest.mark.parametrize("dates", [(), ("2017-03-14T12:00:00+0000", "2017-03-13T12:00:00+0000")])
def test_changelog_must_have_exactly_one_entry(connection, dates) -> None:  # noqa: ANN001
    transport = FakeTransport(
        responses={
            OperationName.GET_QUALITY_PROFILES: _profiles(
                {"key": "cs-1", "name": "A", "language": "cs", "isDefault": True},
            ),
            OperationName.GET_QUALITY_PROFILE_CHANGELOG: _changelog(*dates),
        }
    )

    with pytest.raises(ProfileNotFoundError):
        resolve_quality_profile(transport, connection, "my:project", CSHARP, CancellationToken())
