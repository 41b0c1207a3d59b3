from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class FinancialRecord:
    stock_id: str
    source: str
    eps: Optional[float] = None
    revenue: Optional[float] = None
    profit: Optional[float] = None
    roe: Optional[float] = None
    gross_margin: Optional[float] = None
    operating_margin: Optional[float] = None
    price: Optional[float] = None
    pe_ratio: Optional[float] = None
    date: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def has_figures(self) -> bool:
        values = [
            self.eps,
            self.revenue,
            self.profit,
            self.roe,
            self.gross_margin,
            self.operating_margin,
            self.price,
        ]
        return any(value is not None for value in values)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "stockId": self.stock_id,
            "eps": self.eps,
            "revenue": self.revenue,
            "profit": self.profit,
            "roe": self.roe,
            "grossMargin": self.gross_margin,
            "operatingMargin": self.operating_margin,
            "price": self.price,
            "peRatio": self.pe_ratio,
            "date": self.date,
            "source": self.source,
        }
        data.update(self.extra)
        return data


@dataclass
class PriceQuote:
    stock_id: str
    source: str
    price: Optional[float] = None
    change: Optional[float] = None
    change_percent: Optional[float] = None
    volume: Optional[float] = None
    date: Optional[str] = None
    historical_data: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def previous_close(self) -> Optional[float]:
        if self.price is None or self.change is None:
            return None
        return round(self.price - self.change, 4)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stockId": self.stock_id,
            "price": self.price,
            "change": self.change,
            "changePercent": self.change_percent,
            "volume": self.volume,
            "date": self.date,
            "historicalData": list(self.historical_data),
            "source": self.source,
        }


@dataclass
class ScoreDetail:
    item: str
    score: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"item": self.item, "score": self.score, "reason": self.reason}


@dataclass
class AIAnalysisResult:
    content: str
    score: int
    comment: str
    analysis_type: str
    success: bool = True
    raw_content: Optional[str] = None
    structured: bool = False
    positives: List[str] = field(default_factory=list)
    negatives: List[str] = field(default_factory=list)
    score_details: List[ScoreDetail] = field(default_factory=list)
    platform: Optional[str] = None
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "content": self.content,
            "rawContent": self.raw_content if self.raw_content is not None else self.content,
            "score": self.score,
            "comment": self.comment,
            "analysisType": self.analysis_type,
            "structured": self.structured,
            "positives": list(self.positives),
            "negatives": list(self.negatives),
            "scoreDetails": [detail.to_dict() for detail in self.score_details],
            "platform": self.platform,
            "timestamp": self.timestamp,
        }
