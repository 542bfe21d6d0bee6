"""
TradingAgents 行情数据服务
为分析师链路提供 OHLCV 行情缓存与技术指标计算

架构分层：
  数据获取层 (Acquisition)  → 从上游行情提供商拉取日线，经重试执行器包装
  缓存层     (Cache)        → 通用 TTL 文件缓存 + 行情序列内存/CSV 两级缓存
  处理层     (Processing)   → 记录清洗、按日期排序去重、标准化为 Bar
  分析层     (Analysis)     → 技术指标计算（SMA / EMA / RSI / MACD / BOLL / ATR / VWMA / MFI）
"""

__version__ = "1.0.0"
