from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Mapping


_COMPACT_OFFSET_RE = re.compile(r"([+-])(\d{2})(\d{2})$")
_VERSION_RE = re.compile(r"^\s*(\d+)\.(\d+)")


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def parse_rfc3339_datetime(value: str) -> datetime:
    """
    解析服务端返回的时间串为带 tzinfo 的 datetime。

    兼容：
    - 2017-03-14T12:34:56Z
    - 2017-03-14T12:34:56+00:00
    - 2017-03-14T12:34:56+0100（SonarQube Web API 的默认格式）
    """
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    value = _COMPACT_OFFSET_RE.sub(r"\1\2:\3", value)
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def format_api_datetime(value: datetime) -> str:
    """
    序列化为 SonarQube Web API 接受的格式：yyyy-MM-ddTHH:mm:ss+HHMM
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.strftime("%Y-%m-%dT%H:%M:%S%z")


@dataclass(frozen=True, slots=True, order=True)
class ServerVersion:
    """
    服务端版本，只保留 major.minor 两段参与比较（元组字典序）。
    """

    major: int
    minor: int

    @classmethod
    def parse(cls, value: str) -> ServerVersion:
        m = _VERSION_RE.match(value or "")
        if not m:
            raise ValueError(f"Unrecognized server version: {value!r}")
        return cls(major=int(m.group(1)), minor=int(m.group(2)))

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


@dataclass(frozen=True, slots=True)
class ConnectionInformation:
    """
    连接参数。

    login 可以是用户名，也可以是 token（此时 password 留空）。
    """

    server_uri: str
    login: str | None = None
    password: str | None = None

    def base_url(self) -> str:
        return self.server_uri.rstrip("/") + "/"

    def __repr__(self) -> str:
        return f"ConnectionInformation(server_uri={self.server_uri!r}, login={'***' if self.login else None})"


@dataclass(frozen=True, slots=True)
class SonarQubeLanguage:
    key: str
    name: str


CSHARP = SonarQubeLanguage(key="cs", name="C#")
VBNET = SonarQubeLanguage(key="vbnet", name="VB.NET")


@dataclass(frozen=True, slots=True)
class SonarQubeOrganization:
    key: str
    name: str

    @classmethod
    def from_response(cls, raw: Mapping[str, Any]) -> SonarQubeOrganization:
        return cls(key=str(raw.get("key") or ""), name=str(raw.get("name") or ""))


@dataclass(frozen=True, slots=True)
class SonarQubeProject:
    key: str
    name: str

    @classmethod
    def from_response(cls, raw: Mapping[str, Any]) -> SonarQubeProject:
        # api/projects/index 使用 k/nm 缩写字段，api/components/search_projects 使用 key/name
        key = raw.get("key") or raw.get("k") or ""
        name = raw.get("name") or raw.get("nm") or ""
        return cls(key=str(key), name=str(name))


@dataclass(frozen=True, slots=True)
class SonarQubePlugin:
    key: str
    version: str

    @classmethod
    def from_response(cls, raw: Mapping[str, Any]) -> SonarQubePlugin:
        return cls(key=str(raw.get("key") or ""), version=str(raw.get("version") or ""))


@dataclass(frozen=True, slots=True)
class SonarQubeProperty:
    key: str
    value: str

    @classmethod
    def from_response(cls, raw: Mapping[str, Any]) -> SonarQubeProperty:
        return cls(key=str(raw.get("key") or ""), value=str(raw.get("value") or ""))


class IssueResolutionState(enum.Enum):
    UNRESOLVED = "unresolved"
    WONT_FIX = "wontfix"
    FALSE_POSITIVE = "false-positive"
    FIXED = "fixed"
    REMOVED = "removed"

    @classmethod
    def parse(cls, resolution: str | None) -> IssueResolutionState:
        """
        固定映射表；无法识别的取值（包括 OPEN）统一视为 UNRESOLVED。
        """
        return _RESOLUTION_STATES.get((resolution or "").strip().upper(), cls.UNRESOLVED)


_RESOLUTION_STATES = {
    "": IssueResolutionState.UNRESOLVED,
    "WONTFIX": IssueResolutionState.WONT_FIX,
    "FALSE-POSITIVE": IssueResolutionState.FALSE_POSITIVE,
    "FIXED": IssueResolutionState.FIXED,
    "REMOVED": IssueResolutionState.REMOVED,
}


@dataclass(frozen=True, slots=True)
class SonarQubeIssue:
    component: str
    hash: str
    line: int | None
    message: str
    rule_id: str
    resolution_state: IssueResolutionState

    @classmethod
    def from_response(cls, raw: Mapping[str, Any]) -> SonarQubeIssue:
        line = raw.get("line")
        return cls(
            component=str(raw.get("component") or ""),
            hash=str(raw.get("hash") or ""),
            line=int(line) if isinstance(line, int) and not isinstance(line, bool) else None,
            message=str(raw.get("message") or ""),
            rule_id=str(raw.get("rule") or ""),
            resolution_state=IssueResolutionState.parse(raw.get("resolution")),
        )


@dataclass(frozen=True, slots=True)
class SonarQubeQualityProfile:
    key: str
    name: str
    language: str
    is_default: bool
    time_stamp: datetime

    @classmethod
    def from_response(cls, raw: Mapping[str, Any], time_stamp: datetime) -> SonarQubeQualityProfile:
        return cls(
            key=str(raw.get("key") or ""),
            name=str(raw.get("name") or ""),
            language=str(raw.get("language") or ""),
            is_default=bool(raw.get("isDefault", False)),
            time_stamp=time_stamp,
        )


@dataclass(frozen=True, slots=True)
class SonarQubeNotification:
    """
    服务端推送的通知事件（质量门变化、新分配的问题等）。
    """

    category: str
    link: str
    message: str
    date: datetime
    project: str

    @classmethod
    def from_response(cls, raw: Mapping[str, Any]) -> SonarQubeNotification:
        date_s = raw.get("date")
        if not isinstance(date_s, str):
            raise ValueError(f"Notification event without date: {raw!r}")
        return cls(
            category=str(raw.get("category") or ""),
            link=str(raw.get("link") or ""),
            message=str(raw.get("message") or ""),
            date=parse_rfc3339_datetime(date_s),
            project=str(raw.get("project") or ""),
        )

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "link": self.link,
            "message": self.message,
            "date": self.date.isoformat(),
            "project": self.project,
        }


@dataclass(frozen=True, slots=True)
class NotificationData:
    """
    宿主侧持久化的通知水位记录：是否启用 + 已知通知的最后时间点。
    """

    enabled: bool
    last_notification_date: datetime

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "last_notification_date": self.last_notification_date.isoformat(),
        }

    @classmethod
    def from_json_dict(cls, raw: Mapping[str, Any]) -> NotificationData:
        date_s = raw.get("last_notification_date")
        if not isinstance(date_s, str):
            raise ValueError(f"Expected last_notification_date string, got {type(date_s)}")
        return cls(
            enabled=bool(raw.get("enabled", True)),
            last_notification_date=parse_rfc3339_datetime(date_s),
        )
