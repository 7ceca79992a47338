"""
故障知识库客户端 (Failure Knowledge Base Client)

功能描述 (Description):
    与 Solvr 兼容的 REST 知识库集成，记录"问题 → 尝试过的方法 → 结果"，
    供自动修复流程在后续会话中优先复用已验证的方法、跳过已失败的方法。

核心功能 (Core Features):
    1. 问题检索 (search) - 按错误文本搜索已知问题及其方法
    2. 问题登记 (post_problem) - 新问题入库
    3. 方法登记 (post_approach) - 为问题追加一次修复尝试
    4. 状态回写 (update_approach_status) - tried / worked / failed
    5. 问题详情 (get_problem)

容错设计 (Fault Tolerance):
    未配置 API Key 时整体禁用；网络或 HTTP 异常只记录日志并降级为
    空列表 / None / False，知识库不可用不会中断修复流程。
"""
import logging
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from fleetwatch.core.config import settings

logger = logging.getLogger(__name__)

APPROACH_STATUSES = ("tried", "worked", "failed")


class Approach(BaseModel):
    """知识库中针对某个问题的一种修复方法。"""
    id: str
    angle: str = ""
    method: str = ""
    status: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status == "failed"


class Problem(BaseModel):
    """知识库中的一个问题条目。"""
    id: str
    title: str = ""
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    approaches: List[Approach] = Field(default_factory=list)


def _unwrap(body: Any) -> Any:
    """兼容 ``{"data": ...}`` 包装和裸响应两种格式。"""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body


class KnowledgeBaseClient:
    """
    知识库客户端类 (Knowledge Base Client Class)

    每次调用创建一个短生命周期的 httpx.AsyncClient；所有方法都不抛异常。
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.base_url = (base_url or settings.kb_api_url).rstrip("/")
        self.api_key = settings.kb_api_key if api_key is None else api_key
        self.timeout = timeout or settings.kb_timeout

    @property
    def enabled(self) -> bool:
        """配置了 API Key 才启用 (Enabled only with an API key)"""
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.request(
                method, f"{self.base_url}{path}", headers=self._headers(), **kwargs
            )
            resp.raise_for_status()
            return _unwrap(resp.json())

    async def search(self, query: str) -> List[Problem]:
        """
        按错误文本检索问题 (Search problems by error text)

        Returns:
            List[Problem]: 匹配的问题及其方法；禁用或失败时返回空列表
        """
        if not self.enabled or not query.strip():
            return []
        try:
            data = await self._request("GET", "/problems/search", params={"q": query})
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("Knowledge base search failed: %s", e)
            return []
        if not isinstance(data, list):
            data = data.get("problems", data.get("results", [])) if isinstance(data, dict) else []
        problems: List[Problem] = []
        for item in data:
            try:
                problems.append(Problem.model_validate(item))
            except ValidationError:
                logger.debug("Skipping malformed problem entry: %r", item)
        return problems

    async def post_problem(self, title: str, description: str, tags: List[str]) -> Optional[str]:
        """登记新问题，返回 problem_id；失败返回 None。"""
        if not self.enabled or not title:
            return None
        payload = {"title": title, "description": description or title, "tags": tags}
        try:
            data = await self._request("POST", "/problems", json=payload)
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("Knowledge base post_problem failed: %s", e)
            return None
        problem_id = data.get("id") if isinstance(data, dict) else None
        return str(problem_id) if problem_id is not None else None

    async def post_approach(
        self,
        problem_id: str,
        angle: str,
        method: str,
        status: Optional[str] = None,
    ) -> Optional[str]:
        """为问题追加一种方法，返回 approach_id；失败返回 None。"""
        if not self.enabled or not problem_id or not angle:
            return None
        if status is not None and status not in APPROACH_STATUSES:
            logger.warning("Rejected approach status %r", status)
            return None
        payload: Dict[str, Any] = {"angle": angle, "method": method or angle}
        if status:
            payload["status"] = status
        try:
            data = await self._request("POST", f"/problems/{problem_id}/approaches", json=payload)
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("Knowledge base post_approach failed: %s", e)
            return None
        approach_id = data.get("id") if isinstance(data, dict) else None
        return str(approach_id) if approach_id is not None else None

    async def update_approach_status(self, approach_id: str, status: str) -> bool:
        """回写方法状态，仅接受 tried / worked / failed。"""
        if status not in APPROACH_STATUSES:
            logger.warning("Rejected approach status %r", status)
            return False
        if not self.enabled or not approach_id:
            return False
        try:
            await self._request("PATCH", f"/approaches/{approach_id}", json={"status": status})
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("Knowledge base update_approach_status failed: %s", e)
            return False
        return True

    async def get_problem(self, problem_id: str) -> Optional[Problem]:
        if not self.enabled or not problem_id:
            return None
        try:
            data = await self._request("GET", f"/problems/{problem_id}")
            return Problem.model_validate(data)
        except (httpx.HTTPError, ValueError) as e:
            logger.debug("Knowledge base get_problem failed: %s", e)
            return None


# 模块级单例实例 (Module-level Singleton Instance)
knowledge_client = KnowledgeBaseClient()
