from __future__ import annotations


class SonarQubeError(Exception):
    """
    sqn 所有业务异常的基类。

    约定：
    - 核心层不做任何自动重试，异常原样向调用方传播
    - 前置条件类异常（未连接/重复连接）属于调用方编程错误
    """


class NotConnectedError(SonarQubeError, RuntimeError):
    def __init__(self) -> None:
        super().__init__("This operation expects the session to be connected.")


class AlreadyConnectedError(SonarQubeError, RuntimeError):
    def __init__(self) -> None:
        super().__init__("This operation expects the session not to be connected.")


class InvalidCredentialsError(SonarQubeError):
    def __init__(self, server_uri: str) -> None:
        super().__init__(f"Invalid credentials for server: {server_uri}")
        self.server_uri = server_uri


class RemoteOperationFailedError(SonarQubeError):
    """
    远端调用返回非成功状态。

    status 为 HTTP 状态码；网络层失败（无响应）时为 0。
    """

    def __init__(self, operation: str, status: int) -> None:
        super().__init__(f"Remote operation failed: operation={operation} status={status}")
        self.operation = operation
        self.status = status


class ProfileNotFoundError(SonarQubeError, LookupError):
    pass


class AmbiguousProfileError(SonarQubeError, LookupError):
    pass


class OperationCancelledError(SonarQubeError):
    def __init__(self, operation: str | None = None) -> None:
        message = "Operation cancelled" if operation is None else f"Operation cancelled: operation={operation}"
        super().__init__(message)
        self.operation = operation


class PageLimitExceededError(SonarQubeError):
    def __init__(self, max_pages: int) -> None:
        super().__init__(f"Paginated fetch did not reach an empty page within max_pages={max_pages}")
        self.max_pages = max_pages
