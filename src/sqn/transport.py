from __future__ import annotations

import http.client
import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping, Protocol

from .errors import OperationCancelledError, RemoteOperationFailedError
from .http_utils import HttpClient, HttpResponse, basic_auth_header, with_query_params
from .models import ConnectionInformation, format_api_datetime


logger = logging.getLogger(__name__)

HTTP_NOT_FOUND = 404


class OperationName:
    VALIDATE_CREDENTIALS = "validate_credentials"
    GET_VERSION = "get_version"
    GET_ORGANIZATIONS = "get_organizations"
    GET_PROJECTS = "get_projects"
    SEARCH_PROJECTS = "search_projects"
    GET_PLUGINS = "get_plugins"
    GET_PROPERTIES = "get_properties"
    GET_QUALITY_PROFILES = "get_quality_profiles"
    GET_QUALITY_PROFILE_CHANGELOG = "get_quality_profile_changelog"
    GET_ROSLYN_EXPORT_PROFILE = "get_roslyn_export_profile"
    GET_ISSUES = "get_issues"
    GET_NOTIFICATION_EVENTS = "get_notification_events"


class CancellationToken:
    """
    协作式取消信号：由发起方 cancel()，执行方在挂起点前后检查。
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, operation: str | None = None) -> None:
        if self._event.is_set():
            raise OperationCancelledError(operation)


@dataclass(frozen=True, slots=True)
class TransportResult:
    """
    单次远端调用的结果：HTTP 状态码 + 已解析的载荷（失败时为 None）。

    status 为 0 表示网络层失败（无 HTTP 响应）。
    """

    status: int
    value: Any = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300

    def ensure_success(self, operation: str) -> None:
        if not self.is_success:
            raise RemoteOperationFailedError(operation, self.status)


class Transport(Protocol):
    """
    远端调用能力：执行一个具名操作，返回 TransportResult。

    约定：
    - 不做内部重试
    - 非 2xx 以 TransportResult 返回，不抛异常
    - token 已取消时抛 OperationCancelledError
    - 2xx 但响应体无法解析时抛 RemoteOperationFailedError
    """

    def execute(
        self,
        operation: str,
        connection: ConnectionInformation,
        request: Mapping[str, Any],
        token: CancellationToken,
    ) -> TransportResult: ...


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return format_api_datetime(value)
    return str(value)


def _json_object(resp: HttpResponse) -> Mapping[str, Any]:
    data = resp.json()
    if not isinstance(data, dict):
        raise ValueError(f"Expected object, got {type(data)}")
    return data


def _dict_list(data: Any, field: str | None) -> list[Mapping[str, Any]]:
    if field is not None:
        if not isinstance(data, dict):
            raise ValueError(f"Expected object with {field!r}, got {type(data)}")
        data = data.get(field) or []
    if not isinstance(data, list):
        raise ValueError(f"Expected list, got {type(data)}")
    return [x for x in data if isinstance(x, dict)]


def _paged(request: Mapping[str, Any]) -> dict[str, str | None]:
    return {"p": _opt_str(request.get("page")), "ps": _opt_str(request.get("page_size"))}


@dataclass(frozen=True, slots=True)
class _Endpoint:
    path: str
    params: Callable[[Mapping[str, Any]], Mapping[str, str | None]]
    parse: Callable[[HttpResponse], Any]


_ENDPOINTS: dict[str, _Endpoint] = {
    OperationName.VALIDATE_CREDENTIALS: _Endpoint(
        path="api/authentication/validate",
        params=lambda r: {},
        parse=lambda resp: bool(_json_object(resp).get("valid", False)),
    ),
    OperationName.GET_VERSION: _Endpoint(
        path="api/server/version",
        params=lambda r: {},
        parse=lambda resp: resp.text().strip(),
    ),
    OperationName.GET_ORGANIZATIONS: _Endpoint(
        path="api/organizations/search",
        params=_paged,
        parse=lambda resp: _dict_list(resp.json(), "organizations"),
    ),
    OperationName.GET_PROJECTS: _Endpoint(
        path="api/projects/index",
        params=lambda r: {"format": "json"},
        parse=lambda resp: _dict_list(resp.json(), None),
    ),
    OperationName.SEARCH_PROJECTS: _Endpoint(
        path="api/components/search_projects",
        params=lambda r: {**_paged(r), "organization": _opt_str(r.get("organization_key"))},
        parse=lambda resp: _dict_list(resp.json(), "components"),
    ),
    OperationName.GET_PLUGINS: _Endpoint(
        path="api/plugins/installed",
        params=lambda r: {},
        parse=lambda resp: _dict_list(resp.json(), "plugins"),
    ),
    OperationName.GET_PROPERTIES: _Endpoint(
        path="api/properties",
        params=lambda r: {},
        parse=lambda resp: _dict_list(resp.json(), None),
    ),
    OperationName.GET_QUALITY_PROFILES: _Endpoint(
        path="api/qualityprofiles/search",
        params=lambda r: {"projectKey": _opt_str(r.get("project_key"))},
        parse=lambda resp: _dict_list(resp.json(), "profiles"),
    ),
    OperationName.GET_QUALITY_PROFILE_CHANGELOG: _Endpoint(
        path="api/qualityprofiles/changelog",
        params=lambda r: {"profileKey": _opt_str(r.get("profile_key")), "ps": _opt_str(r.get("page_size"))},
        parse=lambda resp: _dict_list(resp.json(), "events"),
    ),
    OperationName.GET_ROSLYN_EXPORT_PROFILE: _Endpoint(
        path="api/qualityprofiles/export",
        params=lambda r: {
            "exporterKey": f"roslyn-{r.get('language_key')}",
            "language": _opt_str(r.get("language_key")),
            "name": _opt_str(r.get("profile_name")),
        },
        parse=lambda resp: resp.text(),
    ),
    OperationName.GET_ISSUES: _Endpoint(
        path="api/issues/search",
        params=lambda r: {**_paged(r), "componentKeys": _opt_str(r.get("key"))},
        parse=lambda resp: _dict_list(resp.json(), "issues"),
    ),
    OperationName.GET_NOTIFICATION_EVENTS: _Endpoint(
        path="api/developers/search_events",
        params=lambda r: {"projects": _opt_str(r.get("project_key")), "from": _opt_str(r.get("events_since"))},
        parse=lambda resp: _dict_list(resp.json(), "events"),
    ),
}


class SonarQubeHttpTransport:
    """
    基于 SonarQube Web API 的 Transport 实现。

    说明：
    - urllib 无法中途打断请求，因此取消只在请求前后检查
    - 网络层失败（连接失败/超时/读 body 中断）映射为 status=0 的失败结果
    - 2xx 但 body 无法解析（例如代理返回的 HTML 登录页）抛 RemoteOperationFailedError
    """

    def __init__(self, http: HttpClient | None = None) -> None:
        self._http = http or HttpClient()

    def execute(
        self,
        operation: str,
        connection: ConnectionInformation,
        request: Mapping[str, Any],
        token: CancellationToken,
    ) -> TransportResult:
        endpoint = _ENDPOINTS.get(operation)
        if endpoint is None:
            raise ValueError(f"Unknown operation: {operation}")

        token.raise_if_cancelled(operation)
        url = with_query_params(connection.base_url() + endpoint.path, endpoint.params(request))
        headers = {"Accept": "application/json", **basic_auth_header(connection.login, connection.password)}

        try:
            resp = self._http.get(url, headers=headers)
        except (OSError, http.client.HTTPException) as e:
            logger.warning("transport request failed: operation=%s url=%s error=%s", operation, url, e)
            token.raise_if_cancelled(operation)
            return TransportResult(status=0)

        token.raise_if_cancelled(operation)
        logger.debug("transport response: operation=%s status=%d url=%s", operation, resp.status, url)
        if not resp.ok:
            return TransportResult(status=resp.status)

        try:
            value = endpoint.parse(resp)
        except ValueError as e:
            logger.warning(
                "malformed response: operation=%s status=%d url=%s error=%s", operation, resp.status, url, e
            )
            raise RemoteOperationFailedError(operation, resp.status) from e
        return TransportResult(status=resp.status, value=value)
