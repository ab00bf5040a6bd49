"""
Build Events 错误分类（异常类型）。

说明：
- 生命周期记录（record_start/record_end）不抛异常；只有报告落盘与事件流回放可能失败。
- 报告落盘失败以 `ReportError` 子类上抛，底层 `OSError` 通过 `__cause__` 保留；是否记录日志由调用方决定。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


class BuildEventsError(Exception):
    """Build Events 错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """结构化问题对象（CLI 输出中的 issues）。"""

    code: str
    message: str
    details: Dict[str, Any]


class FrameworkError(BuildEventsError):
    """结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建结构化错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        """把异常转换为可序列化问题对象。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class ReportError(FrameworkError):
    """报告落盘失败（I/O 类错误）。"""


class DirectoryCreationError(ReportError):
    """报告父目录不存在且无法创建。"""

    def __init__(self, directory: str, *, reason: str = "") -> None:
        """
        参数：
        - `directory`：无法创建的目录路径
        - `reason`：底层 OSError 摘要
        """

        super().__init__(
            code="REPORT_DIRECTORY_CREATE_FAILED",
            message=f"Unable to create {directory}",
            details={"directory": directory, "reason": reason},
        )


class ReportWriteError(ReportError):
    """报告文件无法打开或写入（可能残留部分内容）。"""

    def __init__(self, path: str, *, reason: str = "") -> None:
        """
        参数：
        - `path`：报告文件路径
        - `reason`：底层 OSError 摘要
        """

        super().__init__(
            code="REPORT_WRITE_FAILED",
            message=f"Unable to write report {path}",
            details={"path": path, "reason": reason},
        )


class EventStreamError(FrameworkError):
    """事件流（JSONL）无法解析。"""

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        """创建 `EventStreamError`（错误码固定为 `EVENT_STREAM_INVALID`）。"""

        super().__init__(code="EVENT_STREAM_INVALID", message=message, details=details or {})
