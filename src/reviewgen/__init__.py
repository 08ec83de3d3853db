"""reviewgen -- 酒店点评生成编排层

core: 数据模型 / KV 存储 / 事件总线
provider: Provider 调用、降级链、缓存、指标
gateway: FastAPI 应用与组合根
"""

__version__ = "0.2.0"
