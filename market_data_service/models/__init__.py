"""数据模型"""

from market_data_service.models.market import Bar, IndicatorBatch, IndicatorPoint, IndicatorSeries
from market_data_service.models.response import ApiResponse

__all__ = ["ApiResponse", "Bar", "IndicatorBatch", "IndicatorPoint", "IndicatorSeries"]
