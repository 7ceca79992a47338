"""
实例注册表 (Instance Registry)

每个实例在 ``<instances_dir>/<name>/metadata.json`` 中记录连接信息和告警路由：
ip、ssh_key_path（旧字段 ssh_key）、ssh_user（默认 root）、region、
parent_telegram_token、parent_chat_id、parent_email，以及可选的 profile
（覆盖 ServiceProfile 默认值）。
"""
import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from fleetwatch.core.config import settings
from fleetwatch.core.exceptions import ConfigError, InstanceNotFoundError
from fleetwatch.models import LOCAL_HOST, Host, ServiceProfile

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"


def _instances_root(instances_dir: Optional[str]) -> Path:
    return Path(instances_dir or settings.instances_dir).expanduser()


def _host_from_metadata(name: str, meta: dict) -> Host:
    ip = meta.get("ip")
    if not ip:
        raise ConfigError(f"Instance '{name}' has no IP address in metadata")
    try:
        return Host(
            name=name,
            ip=ip,
            ssh_user=meta.get("ssh_user") or "root",
            ssh_key_path=meta.get("ssh_key_path") or meta.get("ssh_key") or None,
            ssh_port=int(meta.get("ssh_port") or 22),
            region=meta.get("region") or "unknown",
            connect_timeout=meta.get("connect_timeout"),
            parent_telegram_token=meta.get("parent_telegram_token") or None,
            parent_chat_id=str(meta["parent_chat_id"]) if meta.get("parent_chat_id") else None,
            parent_email=meta.get("parent_email") or None,
            profile=ServiceProfile(**(meta.get("profile") or {})),
        )
    except (ValidationError, ValueError, TypeError) as e:
        raise ConfigError(f"Invalid metadata for instance '{name}'", str(e)) from e


def load_instance(name: str, instances_dir: Optional[str] = None) -> Host:
    """按名称加载实例；``self`` 表示本机。"""
    if name == LOCAL_HOST.name:
        return LOCAL_HOST
    meta_file = _instances_root(instances_dir) / name / METADATA_FILE
    if not meta_file.is_file():
        raise InstanceNotFoundError(f"Instance '{name}' not found", f"no {meta_file}")
    try:
        meta = json.loads(meta_file.read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read metadata for instance '{name}'", str(e)) from e
    if not isinstance(meta, dict):
        raise ConfigError(f"Metadata for instance '{name}' is not a JSON object")
    return _host_from_metadata(name, meta)


def list_instances(instances_dir: Optional[str] = None) -> list[Host]:
    """列出全部实例，按名称排序；无法解析的实例记录警告后跳过。"""
    root = _instances_root(instances_dir)
    if not root.is_dir():
        logger.info("No instances directory at %s", root)
        return []
    hosts: list[Host] = []
    for entry in sorted(root.iterdir()):
        if not (entry / METADATA_FILE).is_file():
            continue
        try:
            hosts.append(load_instance(entry.name, str(root)))
        except ConfigError as e:
            logger.warning("Skipping instance %s: %s", entry.name, e)
    return hosts
