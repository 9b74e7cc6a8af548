from __future__ import annotations

import json
import os
from dataclasses import dataclass
from typing import Any, Mapping


DEFAULT_SQLITE_PATH = "./sqn_state.sqlite3"


def _require_dict(value: Any, *, where: str) -> Mapping[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"Expected object at {where}, got {type(value)}")
    return value


def _get_bool(d: Mapping[str, Any], key: str, default: bool) -> bool:
    v = d.get(key, default)
    return bool(v)


def _get_int(d: Mapping[str, Any], key: str, default: int) -> int:
    v = d.get(key, default)
    if isinstance(v, bool):
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def _get_str(d: Mapping[str, Any], key: str, default: str | None = None) -> str | None:
    v = d.get(key, default)
    if v is None:
        return None
    return str(v)


@dataclass(frozen=True, slots=True)
class ServerConfig:
    """
    SonarQube 服务端连接配置。

    url:
      - 服务端根地址，例如 https://sonar.example.com
    login_env / password_env:
      - 用户名（或 token）与密码的环境变量名；使用 token 时 password_env 留空
    timeout_seconds:
      - 单次 HTTP 请求超时
    """

    url: str
    login_env: str | None
    password_env: str | None
    timeout_seconds: int = 100
    verify_ssl: bool = True


@dataclass(frozen=True, slots=True)
class NotificationsConfig:
    """
    poll_interval_seconds:
      - 轮询间隔（daemon 模式下生效），最小 1 秒
    """

    enabled: bool = True
    poll_interval_seconds: int = 60


@dataclass(frozen=True, slots=True)
class AppConfig:
    """
    应用总配置。

    project_key:
      - 当前绑定的服务端项目；为空时轮询器不会发起请求
    sqlite_path:
      - SQLite 状态库路径（保存通知水位）
    """

    server: ServerConfig
    project_key: str | None
    notifications: NotificationsConfig
    sqlite_path: str

    def resolve_env(self, env_name: str | None) -> str | None:
        if not env_name:
            return None
        return os.environ.get(env_name)


def load_config(config_path: str) -> AppConfig:
    """
    使用 JSON 作为配置落地形式，避免引入第三方 YAML 解析依赖。

    JSON 顶层结构（示意）：
    {
      "server": { "url": "https://sonar.example.com", "login_env": "SONAR_TOKEN" },
      "project_key": "my:project",
      "notifications": { "enabled": true, "poll_interval_seconds": 60 },
      "state": { "sqlite_path": "./sqn_state.sqlite3" }
    }
    """
    with open(config_path, "rb") as f:
        raw = json.loads(f.read().decode("utf-8"))

    root = _require_dict(raw, where="$")

    server = _require_dict(root.get("server"), where="$.server")
    url = _get_str(server, "url")
    if not url:
        raise ValueError("Missing required string at $.server.url")
    server_cfg = ServerConfig(
        url=url,
        login_env=_get_str(server, "login_env", None),
        password_env=_get_str(server, "password_env", None),
        timeout_seconds=max(1, _get_int(server, "timeout_seconds", 100)),
        verify_ssl=_get_bool(server, "verify_ssl", True),
    )

    notifications = _require_dict(root.get("notifications", {}), where="$.notifications")
    notifications_cfg = NotificationsConfig(
        enabled=_get_bool(notifications, "enabled", True),
        poll_interval_seconds=max(1, _get_int(notifications, "poll_interval_seconds", 60)),
    )

    state = _require_dict(root.get("state", {"sqlite_path": DEFAULT_SQLITE_PATH}), where="$.state")
    sqlite_path = str(state.get("sqlite_path") or DEFAULT_SQLITE_PATH)

    return AppConfig(
        server=server_cfg,
        project_key=_get_str(root, "project_key", None) or None,
        notifications=notifications_cfg,
        sqlite_path=sqlite_path,
    )
