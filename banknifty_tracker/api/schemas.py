"""
Pydantic schemas for Bank Nifty Tracker.
Defines the quote, constituent, persistence and history models used across services.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class DataSource(str, Enum):
    """Upstream sources a price can come from."""
    NSE = "nse"
    YAHOO = "yahoo"


class Constituent(BaseModel):
    """A tracked security in display order."""
    symbol: str = Field(..., description="NSE trading symbol")
    name: str = Field(..., description="Display name")

    @validator('symbol')
    def validate_symbol(cls, v: str) -> str:
        """Validate and normalize symbol."""
        if not v or not v.strip():
            raise ValueError("Symbol cannot be empty")
        return v.strip().upper()


class Quote(BaseModel):
    """Merged per-symbol quote. Missing numbers mean unavailable this cycle, not zero."""
    symbol: str = Field(..., description="NSE trading symbol")
    live_price: Optional[float] = Field(None, description="Last traded price")
    previous_close: Optional[float] = Field(None, description="Previous close price")
    day_high: Optional[float] = Field(None, description="Intraday high")
    day_low: Optional[float] = Field(None, description="Intraday low")
    volume: Optional[float] = Field(None, description="Traded volume")
    currency: Optional[str] = Field(None, description="Quote currency")
    market_state: Optional[str] = Field(None, description="Market state reported by the source")
    issued_size: Optional[float] = Field(None, description="Issued share count")
    market_cap: Optional[float] = Field(None, description="Market capitalization")
    fifty_two_week_high: Optional[float] = Field(None, description="52-week high")
    fifty_two_week_low: Optional[float] = Field(None, description="52-week low")
    fetched_at: datetime = Field(default_factory=utcnow, description="When the quote was assembled")
    source: Optional[DataSource] = Field(None, description="Source of the price fields")
    error: Optional[str] = Field(None, description="Failure marker when no source produced a price")

    @validator('symbol')
    def validate_symbol(cls, v: str) -> str:
        """Validate and normalize symbol."""
        if not v or not v.strip():
            raise ValueError("Symbol cannot be empty")
        return v.strip().upper()

    @property
    def has_price(self) -> bool:
        return self.live_price is not None


class SupplementaryData(BaseModel):
    """Slow-moving per-symbol data from the NSE quote lookup."""
    issued_size: Optional[float] = None
    market_cap: Optional[float] = None
    fifty_two_week_high: Optional[float] = None
    fifty_two_week_low: Optional[float] = None


QuoteBatch = Dict[str, Quote]


class StoreMetadata(BaseModel):
    """Metadata persisted next to the multiplier map."""
    last_saved_at: Optional[datetime] = None
    pin: str = "1234"

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the on-disk/Redis JSON layout."""
        return {
            "lastSavedAt": self.last_saved_at.isoformat() if self.last_saved_at else None,
            "pin": self.pin,
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any], default_pin: str = "1234") -> "StoreMetadata":
        """Parse the JSON layout; older documents used ``lastSaved``."""
        last_saved = document.get("lastSavedAt") or document.get("lastSaved")
        pin = document.get("pin")
        return cls(
            last_saved_at=datetime.fromisoformat(last_saved.replace("Z", "+00:00")) if last_saved else None,
            pin=str(pin) if pin is not None else default_pin,
        )


class HistoricalPoint(BaseModel):
    """One index-vs-computed-total snapshot."""
    timestamp: datetime = Field(..., description="Snapshot time")
    index_value: float = Field(..., description="Reference index value")
    computed_total: float = Field(..., description="Sum of price x multiplier")
    absolute_difference: str = Field(..., description="computed_total - index_value, 2 decimals")
    percent_difference: str = Field(..., description="Difference as percent of index, 4 decimals")

    @classmethod
    def build(cls, timestamp: datetime, index_value: float, computed_total: float) -> "HistoricalPoint":
        difference = computed_total - index_value
        percent = (difference / index_value) * 100 if index_value else 0.0
        return cls(
            timestamp=timestamp,
            index_value=round(index_value, 2),
            computed_total=round(computed_total, 2),
            absolute_difference=f"{difference:.2f}",
            percent_difference=f"{percent:.4f}",
        )

    def to_document(self) -> Dict[str, Any]:
        document = self.dict()
        document["timestamp"] = self.timestamp.isoformat()
        return document


class HistoryStats(BaseModel):
    """Summary statistics over the retained history."""
    count: int = 0
    mean_percent_difference: Optional[float] = None
    min_percent_difference: Optional[float] = None
    max_percent_difference: Optional[float] = None
    correlation: Optional[float] = None


class ConstituentDiff(BaseModel):
    """Outcome of comparing the active list with the official membership."""
    fetched: bool = Field(..., description="Whether the official list was retrieved")
    added: List[str] = Field(default_factory=list, description="In the official list but not tracked")
    removed: List[str] = Field(default_factory=list, description="Tracked but no longer in the official list")
    count: int = Field(0, description="Number of actively tracked constituents")


# Request bodies

class PinRequest(BaseModel):
    pin: Optional[str] = None


class MultiplierUpdateRequest(BaseModel):
    pin: Optional[str] = None
    multiplier: Any = None


class BulkMultiplierRequest(BaseModel):
    pin: Optional[str] = None
    multipliers: Dict[str, Any] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Model for error responses."""
    success: bool = False
    error: str = Field(..., description="Error message")
    timestamp: datetime = Field(default_factory=utcnow, description="Error timestamp")
