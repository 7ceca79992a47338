"""
内置修复 Runbook (Built-in Runbooks)

每个模块导出 ``RunbookDefinition`` 常量，命令由 ``steps(profile)`` 按 ServiceProfile 生成。
哪个检查项按什么顺序用哪些 runbook 由 runbook_registry.LADDERS 决定。

api_key 这类需要人工提供凭据的问题没有内置 runbook，交给知识库或 Agent 处理。
"""
