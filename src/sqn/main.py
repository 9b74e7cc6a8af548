from __future__ import annotations

import argparse
import logging
import os
import time

from .config import load_config
from .errors import SonarQubeError
from .runner import Runner, build_runner
from .transport import CancellationToken


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="sqn", description="SonarQube notifications poller")
    p.add_argument("--config", required=True, help="Path to JSON config file")
    p.add_argument(
        "--log-level",
        default=None,
        help="Log level (DEBUG/INFO/WARNING/ERROR). Defaults to env SQN_LOG_LEVEL or INFO",
    )
    p.add_argument(
        "--status-interval",
        type=int,
        default=None,
        help="Daemon heartbeat interval seconds. Defaults to env SQN_STATUS_INTERVAL_SECONDS or 60. Set 0 to disable.",
    )
    p.add_argument("--organization", default=None, help="Organization key used by --list-projects")

    mode = p.add_mutually_exclusive_group(required=False)
    mode.add_argument("--once", action="store_true", help="Fetch notifications once and exit")
    mode.add_argument("--daemon", action="store_true", help="Poll notifications until interrupted")
    mode.add_argument("--list-projects", action="store_true", help="Print project keys visible to the user and exit")
    return p


def _resolve_log_level(value: str | None) -> int:
    v = (value or "").strip().upper()
    if not v:
        return logging.INFO
    level = logging.getLevelNamesMapping().get(v)
    if isinstance(level, int):
        return level
    return logging.INFO


def _resolve_status_interval(value: int | None) -> int:
    if value is None:
        try:
            value = int(os.environ.get("SQN_STATUS_INTERVAL_SECONDS") or 60)
        except ValueError:
            value = 60
    return max(0, int(value))


def _list_projects(runner: Runner, organization_key: str | None, logger: logging.Logger) -> int:
    token = CancellationToken()
    if organization_key is None and runner.session.has_organizations_feature:
        logger.info("server supports organizations; pass --organization to scope the search")
    projects = runner.session.get_all_projects(organization_key, token)
    for project in projects:
        print(f"{project.key}\t{project.name}")
    logger.info("projects listed: count=%d organization=%s", len(projects), organization_key or "<none>")
    return 0


def _run_daemon(runner: Runner, status_interval: int, logger: logging.Logger) -> int:
    runner.start()
    if not runner.poller.is_running:
        logger.warning("notification poller did not start; server does not support notifications")
        runner.shutdown()
        return 1

    next_heartbeat_at = time.monotonic() + status_interval if status_interval > 0 else float("inf")
    try:
        while runner.poller.is_running:
            time.sleep(1.0)
            now = time.monotonic()
            if now >= next_heartbeat_at:
                logger.info(
                    "daemon alive: watermark=%s icon_visible=%s unread=%s events=%d",
                    runner.poller.watermark.isoformat(),
                    runner.model.is_icon_visible,
                    runner.model.has_unread_events,
                    len(runner.model.notification_events),
                )
                next_heartbeat_at = now + status_interval
        logger.warning("notification poller stopped itself; exiting")
        return 1
    except KeyboardInterrupt:
        logger.info("interrupted; shutting down")
        return 0
    finally:
        runner.shutdown()


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    env_log_level = os.environ.get("SQN_LOG_LEVEL")
    log_level = _resolve_log_level(args.log_level or env_log_level)
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger("sqn")

    config = load_config(args.config)
    runner = build_runner(config)

    if args.list_projects:
        mode = "list-projects"
    elif args.daemon:
        mode = "daemon"
    else:
        mode = "once"
    logger.info("sqn start: mode=%s config=%s", mode, args.config)
    logger.info(
        "config: server=%s project_key=%s poll_interval_seconds=%d sqlite_path=%s",
        config.server.url,
        config.project_key or "<none>",
        config.notifications.poll_interval_seconds,
        config.sqlite_path,
    )

    try:
        runner.connect()
    except SonarQubeError:
        logger.exception("connect failed: server=%s", config.server.url)
        return 2

    if mode == "list-projects":
        return _list_projects(runner, args.organization, logger)

    if mode == "daemon":
        if not config.notifications.enabled:
            logger.warning("notifications are disabled in config; nothing to do")
            return 0
        return _run_daemon(runner, _resolve_status_interval(args.status_interval), logger)

    report = runner.run_once()
    logger.info(
        "once done: duration_ms=%d project_key=%s supported=%s events=%d watermark=%s",
        report.duration_ms,
        report.project_key or "<none>",
        report.supported,
        len(report.events),
        report.watermark_after.isoformat() if report.watermark_after else "-",
    )
    return 0 if report.supported else 1


if __name__ == "__main__":
    raise SystemExit(main())
