"""
Decision Engine REST API

FastAPI interface for the master orchestrator: decisions, outcome feedback,
KPIs and subsystem monitoring.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, status
from pydantic import BaseModel, Field

from edgeflow.common.errors import EdgeflowError
from edgeflow.common.schemas import (
    Direction,
    MarketSnapshot,
    NewsEvent,
    OpenPosition,
    OrderBook,
    OrderBookLevel,
    PortfolioState,
    Trade,
    candles_from_records,
)
from edgeflow.orchestrator.config import EngineConfig
from edgeflow.orchestrator.engine import MasterOrchestrator

LOG = logging.getLogger(__name__)

app = FastAPI(
    title="Edgeflow Decision Engine API",
    description="Regime-adaptive accept/reject/wait trading decisions",
    version="1.0.0"
)

# Global orchestrator instance
_orchestrator: Optional[MasterOrchestrator] = None


def get_orchestrator() -> MasterOrchestrator:
    """Get or create the orchestrator instance"""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = MasterOrchestrator(EngineConfig.from_env())
        LOG.info("Master orchestrator created for API")
    return _orchestrator


# ========================================
# REQUEST/RESPONSE SCHEMAS
# ========================================

class CandleModel(BaseModel):
    open: float = Field(..., gt=0.0)
    high: float = Field(..., gt=0.0)
    low: float = Field(..., gt=0.0)
    close: float = Field(..., gt=0.0)
    volume: float = Field(0.0, ge=0.0)
    timestamp: Optional[datetime] = None


class OrderBookLevelModel(BaseModel):
    price: float
    size: float = Field(..., ge=0.0)
    count: int = 1


class OrderBookModel(BaseModel):
    bids: List[OrderBookLevelModel]
    asks: List[OrderBookLevelModel]
    timestamp: datetime
    spread: Optional[float] = None

    def to_order_book(self) -> OrderBook:
        return OrderBook(
            bids=[OrderBookLevel(l.price, l.size, l.count) for l in self.bids],
            asks=[OrderBookLevel(l.price, l.size, l.count) for l in self.asks],
            timestamp=self.timestamp,
            spread=self.spread,
        )


class TradeModel(BaseModel):
    price: float
    size: float = Field(..., ge=0.0)
    side: Direction
    timestamp: datetime


class NewsEventModel(BaseModel):
    time: datetime
    currency: str = ""
    impact: float = Field(0.0, ge=0.0, le=10.0, description="Impact on a 0-10 scale")
    sentiment: float = Field(0.0, ge=-1.0, le=1.0)


class PositionModel(BaseModel):
    symbol: str
    side: Direction
    size: float = 0.0
    entry_price: float = 0.0


class PortfolioModel(BaseModel):
    balance: float
    equity: float
    total_capital: float
    allocated_capital: float = 0.0
    total_risk: float = 1.0
    sharpe_ratio: float = 0.0
    open_positions: List[PositionModel] = Field(default_factory=list)

    def to_state(self) -> PortfolioState:
        return PortfolioState(
            balance=self.balance,
            equity=self.equity,
            total_capital=self.total_capital,
            allocated_capital=self.allocated_capital,
            total_risk=self.total_risk,
            sharpe_ratio=self.sharpe_ratio,
            open_positions=[OpenPosition(p.symbol, p.side, p.size, p.entry_price) for p in self.open_positions],
        )


class DecisionRequest(BaseModel):
    """One decision cycle's market snapshot and portfolio"""
    pair: str = Field("EUR/USD", description="Trading pair identifier")
    candles: List[CandleModel] = Field(..., description="OHLCV bars, oldest first")
    current_price: float
    volume: Optional[List[float]] = None
    order_book: Optional[OrderBookModel] = None
    recent_trades: Optional[List[TradeModel]] = None
    news: List[NewsEventModel] = Field(default_factory=list)
    as_of: Optional[datetime] = Field(None, description="Decision time (defaults to last candle time)")
    portfolio: PortfolioModel

    class Config:
        json_schema_extra = {
            "example": {
                "pair": "EUR/USD",
                "candles": [
                    {
                        "open": 1.1000,
                        "high": 1.1010,
                        "low": 1.0995,
                        "close": 1.1005,
                        "volume": 1500,
                        "timestamp": "2024-01-01T00:00:00Z"
                    }
                ],
                "current_price": 1.1005,
                "portfolio": {
                    "balance": 100000,
                    "equity": 100000,
                    "total_capital": 100000,
                    "allocated_capital": 20000
                }
            }
        }

    def to_snapshot(self) -> MarketSnapshot:
        return MarketSnapshot(
            candles=candles_from_records([c.model_dump(exclude_none=True) for c in self.candles]),
            current_price=self.current_price,
            volume=self.volume,
            order_book=self.order_book.to_order_book() if self.order_book else None,
            recent_trades=[Trade(t.price, t.size, t.side, t.timestamp) for t in self.recent_trades]
            if self.recent_trades else None,
            news=[NewsEvent(n.time, n.currency, n.impact, n.sentiment) for n in self.news],
            as_of=self.as_of,
        )


class OutcomeRequest(BaseModel):
    """Realised return of a previously decided signal"""
    signal_id: str
    actual_outcome: float

    class Config:
        json_schema_extra = {
            "example": {
                "signal_id": "3f2a9c1b7d4e8a60",
                "actual_outcome": 0.012
            }
        }


# ========================================
# LIFECYCLE
# ========================================

@app.on_event("startup")
async def startup_event():
    get_orchestrator()
    LOG.info("Decision Engine API started")


@app.on_event("shutdown")
async def shutdown_event():
    LOG.info("Decision Engine API shutting down")


# ========================================
# ENDPOINTS
# ========================================

@app.get("/health")
async def health_check():
    """API status and configuration hash"""
    orchestrator = get_orchestrator()
    return {
        "status": "healthy",
        "config_hash": orchestrator.config.get_config_hash(),
        "decisions": len(orchestrator.get_decision_history()),
    }


@app.post("/decide")
async def decide(request: DecisionRequest):
    """
    Run one decision cycle.

    This is the main endpoint. Rejections are returned as normal results;
    malformed market or portfolio data returns 422.
    """
    orchestrator = get_orchestrator()
    try:
        recommendation = orchestrator.process_signal(
            request.to_snapshot(),
            request.portfolio.to_state(),
            pair=request.pair,
        )
    except EdgeflowError as e:
        LOG.warning(f"Invalid decision request: {e}")
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return recommendation.to_dict()


@app.post("/outcome")
async def record_outcome(request: OutcomeRequest):
    """Feed back a realised outcome for counterfactual learning"""
    analysis = get_orchestrator().update_outcome(request.signal_id, request.actual_outcome)
    if analysis is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown signal id: {request.signal_id}"
        )
    return analysis.to_dict()


@app.get("/kpis")
async def get_kpis():
    return get_orchestrator().get_system_performance()


@app.get("/subsystems")
async def get_subsystems():
    return get_orchestrator().get_subsystem_states()


@app.get("/config")
async def get_config():
    """Full configuration plus flag status and recommendations"""
    orchestrator = get_orchestrator()
    return {
        "config": orchestrator.config.to_dict(),
        "status": orchestrator.get_configuration_status(),
    }


@app.post("/recalibrate")
async def recalibrate() -> Dict:
    kpis = get_orchestrator().force_recalibration()
    return {"status": "recalibrated", "kpis": kpis.to_dict()}


def run_api(host: str = "127.0.0.1", port: int = 8010, log_dir: str = "logs"):
    """
    Run the decision engine API server.

    Logs go to stdout and to log_dir/decision_engine_api.log. Engine
    configuration is read from the environment on first use, see
    EngineConfig.from_env.

    Args:
        host: Host address
        port: Port number (default 8010)
        log_dir: Directory for the server log file
    """
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(Path(log_dir) / 'decision_engine_api.log', delay=True),
        ]
    )

    LOG.info(f"Starting decision engine API on http://{host}:{port} (Swagger UI at /docs)")
    try:
        uvicorn.run(app, host=host, port=port, log_level="info")
    except KeyboardInterrupt:
        LOG.info("Shutting down decision engine API")


if __name__ == "__main__":
    run_api()
