from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from .errors import AmbiguousProfileError, ProfileNotFoundError
from .models import ConnectionInformation, SonarQubeLanguage, SonarQubeQualityProfile, parse_rfc3339_datetime
from .transport import HTTP_NOT_FOUND, CancellationToken, OperationName, Transport


logger = logging.getLogger(__name__)


def select_profile(candidates: Sequence[Mapping[str, Any]], language: SonarQubeLanguage) -> Mapping[str, Any]:
    """
    在同一语言的候选 profile 中选出唯一生效的一个。

    - 只有一个候选：直接使用
    - 多个候选：必须恰好有一个标记为 isDefault，否则 AmbiguousProfileError
    - 没有候选：ProfileNotFoundError
    """
    if not candidates:
        raise ProfileNotFoundError(f"No quality profile found for language: {language.key}")
    if len(candidates) == 1:
        return candidates[0]

    defaults = [p for p in candidates if bool(p.get("isDefault", False))]
    if len(defaults) != 1:
        raise AmbiguousProfileError(
            f"Expected exactly one default quality profile for language {language.key}, "
            f"got {len(defaults)} of {len(candidates)} candidates"
        )
    return defaults[0]


def resolve_quality_profile(
    transport: Transport,
    connection: ConnectionInformation,
    project_key: str,
    language: SonarQubeLanguage,
    token: CancellationToken,
) -> SonarQubeQualityProfile:
    """
    定位某个项目在指定语言下生效的质量配置（quality profile）。

    流程：
    1. 按 project_key 查询；若 404（项目从未分析过）则退回不带项目的全局查询，仅重试一次
    2. 按 language.key 过滤候选并做 isDefault 决胜
    3. 拉取该 profile 的 changelog（只取最新 1 条），其时间作为 time_stamp
    """
    result = transport.execute(
        OperationName.GET_QUALITY_PROFILES, connection, {"project_key": project_key}, token
    )
    if result.status == HTTP_NOT_FOUND:
        logger.info("project has no quality profiles yet, falling back to server defaults: project_key=%s", project_key)
        result = transport.execute(OperationName.GET_QUALITY_PROFILES, connection, {"project_key": None}, token)
    result.ensure_success(OperationName.GET_QUALITY_PROFILES)

    candidates = [p for p in (result.value or ()) if p.get("language") == language.key]
    profile = select_profile(candidates, language)

    changelog = transport.execute(
        OperationName.GET_QUALITY_PROFILE_CHANGELOG,
        connection,
        {"profile_key": profile.get("key"), "page_size": 1},
        token,
    )
    changelog.ensure_success(OperationName.GET_QUALITY_PROFILE_CHANGELOG)

    events = list(changelog.value or ())
    if len(events) != 1:
        # 任何 profile 至少有一条创建记录；否则视为服务端状态不一致
        raise ProfileNotFoundError(
            f"Expected exactly one changelog entry for quality profile {profile.get('key')}, got {len(events)}"
        )

    date_s = events[0].get("date")
    if not isinstance(date_s, str):
        raise ProfileNotFoundError(f"Changelog entry without date for quality profile {profile.get('key')}")

    return SonarQubeQualityProfile.from_response(profile, parse_rfc3339_datetime(date_s))
