"""统一异常体系

所有业务异常继承 SupplyChainError，替代散落的 ValueError / RuntimeError。
CLI 层据此输出友好提示，Resolver 据此把单包失败记录为注解而不中断整体解析。
"""

from __future__ import annotations


class SupplyChainError(Exception):
    """基础异常"""

    code: str = "UNKNOWN"

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ConfigError(SupplyChainError):
    """配置文件缺失或内容无效"""

    code = "CONFIG_ERROR"


class ValidationError(SupplyChainError):
    """输入数据校验失败"""

    code = "VALIDATION_ERROR"


class ExecutionError(SupplyChainError):
    """外部命令（cargo metadata 等）执行失败"""

    code = "EXECUTION_ERROR"


class FetchError(SupplyChainError):
    """数据库转储下载或解包失败

    kind 取值:
      - network:     网络不可达 / 超时
      - http_status: 服务端返回错误状态码
      - truncated:   实际接收字节数小于 Content-Length
      - corrupt:     压缩包损坏，无法解压
      - unpack:      解包成功但缺少必需的表
    """

    code = "FETCH_ERROR"
    KINDS = ("network", "http_status", "truncated", "corrupt", "unpack")

    def __init__(self, kind: str, message: str) -> None:
        if kind not in self.KINDS:
            raise ValueError(f"未知的 FetchError 类型: {kind}")
        super().__init__(message)
        self.kind = kind


class StoreError(SupplyChainError):
    """快照写入 / 替换失败（磁盘满、权限不足等）"""

    code = "STORE_ERROR"


class ParseError(SupplyChainError):
    """快照表格式错误：缺少必需列或行无法解码"""

    code = "PARSE_ERROR"

    def __init__(
        self, message: str, *, table: str = "", line: int | None = None,
    ) -> None:
        location = table
        if line is not None:
            location = f"{table}:{line}"
        if location:
            message = f"{location}: {message}"
        super().__init__(
            f"{message}（快照可能已损坏，请运行 `supplychain update` 重新下载）"
        )
        self.kind = "malformed"
        self.table = table
        self.line = line


class ApiError(SupplyChainError):
    """crates.io API 调用失败

    kind 取值:
      - not_found:        404，包或团队不存在（不重试）
      - client_error:     其他 4xx（不重试）
      - transient:        5xx / 超时 / 连接错误，重试耗尽
      - invalid_response: 响应不是预期的 JSON 结构
    """

    code = "API_ERROR"
    KINDS = ("not_found", "client_error", "transient", "invalid_response")

    def __init__(
        self, kind: str, message: str, *, status_code: int | None = None,
    ) -> None:
        if kind not in self.KINDS:
            raise ValueError(f"未知的 ApiError 类型: {kind}")
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code
