from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass
from datetime import datetime

from .errors import AlreadyConnectedError, InvalidCredentialsError, NotConnectedError, RemoteOperationFailedError
from .models import (
    ConnectionInformation,
    IssueResolutionState,
    ServerVersion,
    SonarQubeIssue,
    SonarQubeLanguage,
    SonarQubeNotification,
    SonarQubeOrganization,
    SonarQubePlugin,
    SonarQubeProject,
    SonarQubeProperty,
    SonarQubeQualityProfile,
)
from .pagination import MAXIMUM_PAGE_SIZE, fetch_all_pages
from .quality_profiles import resolve_quality_profile
from .transport import HTTP_NOT_FOUND, CancellationToken, OperationName, Transport, TransportResult


logger = logging.getLogger(__name__)

ORGANIZATIONS_FEATURE_MINIMAL_VERSION = ServerVersion(6, 2)

_SUPPRESSED_RESOLUTIONS = (IssueResolutionState.WONT_FIX, IssueResolutionState.FALSE_POSITIVE)


@dataclass(frozen=True, slots=True)
class NotificationEvents:
    events: tuple[SonarQubeNotification, ...]


@dataclass(frozen=True, slots=True)
class NotificationsNotSupported:
    """
    通知接口不可用（服务端返回 404）。轮询方据此永久停止。
    """


NOT_SUPPORTED = NotificationsNotSupported()

NotificationsResult = NotificationEvents | NotificationsNotSupported


@dataclass(frozen=True, slots=True)
class ConnectedState:
    connection: ConnectionInformation
    server_version: ServerVersion


class SonarQubeSession:
    """
    与 SonarQube 服务端的有状态会话。

    职责：
    - 唯一持有“是否已连接 / 连到哪台服务 / 服务端版本”的状态
    - 所有远端查询在执行前都要求已连接（ensure_connected）
    - 不做重试，也不对并发调用做互斥；并发策略由调用方决定
    """

    def __init__(self, transport: Transport, *, max_pages: int | None = None) -> None:
        if transport is None:
            raise ValueError("transport is required")
        self._transport = transport
        self._max_pages = max_pages
        self._state: ConnectedState | None = None

    @property
    def is_connected(self) -> bool:
        return self._state is not None

    @property
    def connection(self) -> ConnectionInformation:
        return self.ensure_connected().connection

    @property
    def server_version(self) -> ServerVersion:
        return self.ensure_connected().server_version

    @property
    def has_organizations_feature(self) -> bool:
        return self.ensure_connected().server_version >= ORGANIZATIONS_FEATURE_MINIMAL_VERSION

    def ensure_connected(self) -> ConnectedState:
        state = self._state
        if state is None:
            raise NotConnectedError()
        return state

    def connect(self, connection: ConnectionInformation, token: CancellationToken) -> None:
        """
        校验凭据 -> 获取版本 -> 一次性切换为已连接。

        任一步失败都不修改状态（不存在“半连接”）。
        """
        if self._state is not None:
            raise AlreadyConnectedError()

        validation = self._transport.execute(OperationName.VALIDATE_CREDENTIALS, connection, {}, token)
        validation.ensure_success(OperationName.VALIDATE_CREDENTIALS)
        if not validation.value:
            raise InvalidCredentialsError(connection.server_uri)

        version_result = self._transport.execute(OperationName.GET_VERSION, connection, {}, token)
        version_result.ensure_success(OperationName.GET_VERSION)
        try:
            server_version = ServerVersion.parse(str(version_result.value or ""))
        except ValueError as e:
            logger.warning(
                "unparseable server version: server=%s version=%r", connection.server_uri, version_result.value
            )
            raise RemoteOperationFailedError(OperationName.GET_VERSION, version_result.status) from e

        if self._state is not None:
            raise AlreadyConnectedError()
        self._state = ConnectedState(connection=connection, server_version=server_version)
        logger.info("connected: server=%s version=%s", connection.server_uri, server_version)

    def disconnect(self) -> None:
        if self._state is not None:
            logger.info("disconnected: server=%s", self._state.connection.server_uri)
        self._state = None

    def get_all_organizations(self, token: CancellationToken) -> list[SonarQubeOrganization]:
        connection = self.ensure_connected().connection

        def fetch_page(page: int, page_size: int) -> TransportResult:
            return self._transport.execute(
                OperationName.GET_ORGANIZATIONS,
                connection,
                {"page": page, "page_size": page_size},
                token,
            )

        raw = fetch_all_pages(
            OperationName.GET_ORGANIZATIONS,
            fetch_page,
            page_size=MAXIMUM_PAGE_SIZE,
            max_pages=self._max_pages,
        )
        return [SonarQubeOrganization.from_response(x) for x in raw]

    def get_all_projects(self, organization_key: str | None, token: CancellationToken) -> list[SonarQubeProject]:
        """
        organization_key 为空：服务端不支持或未启用组织，走单次的 projects/index。
        否则：按组织分页检索。
        """
        connection = self.ensure_connected().connection

        if organization_key is None:
            result = self._transport.execute(OperationName.GET_PROJECTS, connection, {}, token)
            result.ensure_success(OperationName.GET_PROJECTS)
            return [SonarQubeProject.from_response(x) for x in result.value or ()]

        def fetch_page(page: int, page_size: int) -> TransportResult:
            return self._transport.execute(
                OperationName.SEARCH_PROJECTS,
                connection,
                {"organization_key": organization_key, "page": page, "page_size": page_size},
                token,
            )

        raw = fetch_all_pages(
            OperationName.SEARCH_PROJECTS,
            fetch_page,
            page_size=MAXIMUM_PAGE_SIZE,
            max_pages=self._max_pages,
        )
        return [SonarQubeProject.from_response(x) for x in raw]

    def get_all_plugins(self, token: CancellationToken) -> list[SonarQubePlugin]:
        connection = self.ensure_connected().connection
        result = self._transport.execute(OperationName.GET_PLUGINS, connection, {}, token)
        result.ensure_success(OperationName.GET_PLUGINS)
        return [SonarQubePlugin.from_response(x) for x in result.value or ()]

    def get_all_properties(self, token: CancellationToken) -> list[SonarQubeProperty]:
        connection = self.ensure_connected().connection
        result = self._transport.execute(OperationName.GET_PROPERTIES, connection, {}, token)
        result.ensure_success(OperationName.GET_PROPERTIES)
        return [SonarQubeProperty.from_response(x) for x in result.value or ()]

    def get_project_dashboard_url(self, project_key: str) -> str:
        connection = self.ensure_connected().connection
        return connection.base_url() + "dashboard/index/" + urllib.parse.quote(project_key, safe=":")

    def get_quality_profile(
        self,
        project_key: str,
        language: SonarQubeLanguage,
        token: CancellationToken,
    ) -> SonarQubeQualityProfile:
        connection = self.ensure_connected().connection
        return resolve_quality_profile(self._transport, connection, project_key, language, token)

    def get_roslyn_export_profile(
        self,
        quality_profile_name: str,
        language: SonarQubeLanguage,
        token: CancellationToken,
    ) -> str:
        connection = self.ensure_connected().connection
        result = self._transport.execute(
            OperationName.GET_ROSLYN_EXPORT_PROFILE,
            connection,
            {"profile_name": quality_profile_name, "language_key": language.key},
            token,
        )
        result.ensure_success(OperationName.GET_ROSLYN_EXPORT_PROFILE)
        return str(result.value or "")

    def get_suppressed_issues(self, key: str, token: CancellationToken) -> list[SonarQubeIssue]:
        """
        只保留被人工压制的问题：WONTFIX / FALSE-POSITIVE，保持服务端返回顺序。

        先取完所有分页再过滤，压制状态的问题可能出现在任意一页。
        """
        connection = self.ensure_connected().connection

        def fetch_page(page: int, page_size: int) -> TransportResult:
            return self._transport.execute(
                OperationName.GET_ISSUES,
                connection,
                {"key": key, "page": page, "page_size": page_size},
                token,
            )

        raw = fetch_all_pages(
            OperationName.GET_ISSUES,
            fetch_page,
            page_size=MAXIMUM_PAGE_SIZE,
            max_pages=self._max_pages,
        )
        issues = [SonarQubeIssue.from_response(x) for x in raw]
        return [i for i in issues if i.resolution_state in _SUPPRESSED_RESOLUTIONS]

    def get_notification_events(
        self,
        project_key: str,
        events_since: datetime,
        token: CancellationToken,
    ) -> NotificationsResult:
        """
        查询 events_since 之后的通知。

        返回值是显式标签：
        - NOT_SUPPORTED：接口 404（服务端版本不支持通知）
        - NotificationEvents：正常结果（可能为空）；其它失败状态记录日志后按“无事件”处理
        """
        connection = self.ensure_connected().connection
        result = self._transport.execute(
            OperationName.GET_NOTIFICATION_EVENTS,
            connection,
            {"project_key": project_key, "events_since": events_since},
            token,
        )

        if not result.is_success:
            if result.status == HTTP_NOT_FOUND:
                return NOT_SUPPORTED
            logger.warning(
                "notification fetch failed, treating as no events: project_key=%s status=%d",
                project_key,
                result.status,
            )
            return NotificationEvents(events=())

        return NotificationEvents(events=tuple(SonarQubeNotification.from_response(x) for x in result.value or ()))
