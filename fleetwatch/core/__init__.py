"""
核心模块包 (Core Module Package)

fleetwatch 的基础设施：全局配置与业务异常。

Infrastructure for fleetwatch: global settings and business exceptions.
"""
