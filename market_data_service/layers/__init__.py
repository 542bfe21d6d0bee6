"""
数据流分层架构
  Layer 1 – Acquisition  : 数据获取（yfinance / AKShare / Tushare），经 RetryExecutor 重试与限流
  Layer 2 – Cache        : 行情序列两级缓存（内存 → CSV）+ 通用 JSON 文件缓存
  Layer 3 – Processing   : 数据清洗、排序、去重
  Layer 4 – Analysis     : 技术指标计算
"""
