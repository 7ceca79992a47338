"""
外部服务模块包 (External Services Package)

知识库客户端、通知分发和实例注册表。
"""
