"""
应用配置模块 (Application Configuration Module)

使用 Pydantic Settings 管理 fleetwatch 操作端（运维机）的所有配置项，支持从 .env 文件和环境变量读取。
涵盖实例注册表、SSH 探测、批量巡检、知识库、通知渠道和自动修复等模块。

Uses Pydantic Settings to manage all operator-side configuration items, supporting
.env files and environment variables. Host-side watchdog configuration lives in
YAML, see fleetwatch.watchdog.config.
"""
import logging

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    全局配置类 (Global Configuration Class)

    字段名自动映射同名环境变量（不区分大小写），支持 .env 文件加载。
    Field names map to same-named environment variables (case insensitive).
    """

    # 实例注册表 (Instance Registry)
    instances_dir: str = "instances"  # 每个实例一个子目录，内含 metadata.json

    # SSH 探测配置 (SSH Probe Configuration)
    ssh_binary: str = "ssh"  # ssh 客户端可执行文件 (SSH client executable)
    ssh_connect_timeout: int = 10  # 连通性预检超时（秒） (Connectivity pre-check timeout)
    probe_timeout: int = 90  # 批量探测脚本超时（秒） (Batched probe timeout)

    # 批量巡检配置 (Fleet Sweep Configuration)
    sweep_concurrency: int = 10  # 并发主机数上限 (Max hosts probed in parallel)
    sweep_host_timeout: float = 120.0  # 单主机总超时（秒） (Per-host timeout)

    # 知识库配置 (Knowledge Base Configuration)
    kb_api_url: str = "https://api.solvr.dev/v1"  # 知识库 API 地址 (Knowledge base API URL)
    kb_api_key: str = ""  # 为空时禁用知识库 (Empty disables the knowledge base)
    kb_timeout: float = 15.0  # 请求超时（秒） (Request timeout)

    # 通知配置 (Notification Configuration)
    telegram_api_base: str = "https://api.telegram.org"
    telegram_bot_token: str = ""  # 默认告警机器人 (Default alert bot)
    telegram_chat_id: str = ""  # 默认告警会话 (Default alert chat)
    alert_email: str = ""  # 默认告警邮箱 (Default alert email)
    smtp_host: str = ""
    smtp_port: int = 465
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_ssl: bool = True

    # 自动修复配置 (Auto-Remediation Configuration)
    fix_settle_seconds: float = 5.0  # 修复后等待再验证（秒） (Wait before re-verifying)
    remediation_dry_run: bool = False  # 试运行：只记录不执行 (Dry-run: log only)
    agent_command: str = ""  # 远端编码 Agent 命令，如 "claude --print"；为空则不启用
    agent_timeout: int = 600  # Agent 修复会话超时（秒）

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def kb_enabled(self) -> bool:
        """知识库是否可用：配置了 API Key 才启用。"""
        return bool(self.kb_api_key)


# 全局配置实例 (Global Configuration Instance)
settings = Settings()
