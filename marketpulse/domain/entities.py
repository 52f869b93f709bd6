"""Domain entities - core business objects."""
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, computed_field, field_validator
from pydantic.alias_generators import to_camel

# Quotes and alerts travel as camelCase JSON; attributes stay snake_case.
CAMEL_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    from_attributes=True,
)

INDEX_ALIASES = ("NIFTY", "SENSEX", "BANKNIFTY")


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (e.g. read back from ClickHouse) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class MarketQuote(BaseModel):
    """Latest market snapshot for a single symbol."""
    model_config = CAMEL_CONFIG

    symbol: str
    price: float
    change: float = 0.0
    change_percent: float = 0.0
    volume: int = 0
    day_high: Optional[float] = None
    day_low: Optional[float] = None
    previous_close: Optional[float] = None
    market_cap: Optional[float] = None
    timestamp: datetime = Field(default_factory=utc_now)
    source: str = "manual"

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("timestamp")
    @classmethod
    def _utc_timestamp(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @classmethod
    def from_snapshot(
        cls,
        symbol: str,
        price: float,
        previous_close: Optional[float],
        source: str,
        volume: Optional[int] = 0,
        day_high: Optional[float] = None,
        day_low: Optional[float] = None,
        market_cap: Optional[float] = None,
        timestamp: Optional[datetime] = None,
    ) -> "MarketQuote":
        """Build a quote from raw provider fields, deriving change and change percent."""
        change = 0.0
        change_percent = 0.0
        if previous_close:
            raw_change = float(price) - float(previous_close)
            change = round(raw_change, 2)
            change_percent = round(raw_change / float(previous_close) * 100, 2)
        return cls(
            symbol=symbol,
            price=round(float(price), 2),
            change=change,
            change_percent=change_percent,
            volume=int(volume or 0),
            day_high=day_high,
            day_low=day_low,
            previous_close=previous_close,
            market_cap=market_cap,
            timestamp=timestamp or utc_now(),
            source=source,
        )

    def age_seconds(self, now: datetime) -> float:
        return (now - self.timestamp).total_seconds()

    @property
    def exchange(self) -> str:
        return "INDEX" if self.symbol in INDEX_ALIASES else "NSE"


class BatchQuoteResult(BaseModel):
    """One entry of a batch fetch; succeeds or fails on its own."""
    status: Literal["success", "error"]
    data: Optional[MarketQuote] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "success" and self.data is not None


class AlertType(str, Enum):
    PRICE = "price"
    VOLUME = "volume"
    CHANGE_PERCENT = "change_percent"


class AlertCondition(str, Enum):
    ABOVE = "above"
    BELOW = "below"
    EQUALS = "equals"


class AlertPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Alert(BaseModel):
    """User-defined threshold alert and its trigger state."""
    model_config = CAMEL_CONFIG

    id: str
    user_id: str
    symbol: str
    alert_type: AlertType
    condition: AlertCondition
    target_value: float
    current_value: float = 0.0
    message: str
    is_active: bool = True
    is_triggered: bool = False
    triggered_at: Optional[datetime] = None
    notification_sent: bool = False
    priority: AlertPriority = AlertPriority.MEDIUM
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # Moment the derived status is computed for; wall clock when unset.
    _as_of: Optional[datetime] = PrivateAttr(default=None)

    @field_validator("triggered_at", "expires_at", "created_at", "updated_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def is_eligible(self, now: datetime) -> bool:
        """Active, not yet triggered and not expired."""
        return self.is_active and not self.is_triggered and not self.is_expired(now)

    def same_definition(self, other: "Alert") -> bool:
        """Whether both versions watch the same value for the same threshold."""
        return (
            self.symbol == other.symbol
            and self.alert_type == other.alert_type
            and self.condition == other.condition
            and self.target_value == other.target_value
        )

    def as_of(self, now: datetime) -> "Alert":
        """Copy whose serialized status is evaluated at ``now``."""
        alert = self.model_copy()
        alert._as_of = now
        return alert

    def status_at(self, now: datetime) -> str:
        if self.is_triggered:
            return "triggered"
        if not self.is_active:
            return "inactive"
        if self.is_expired(now):
            return "expired"
        return "active"

    @computed_field
    @property
    def status(self) -> str:
        return self.status_at(self._as_of or utc_now())


class AlertCreate(BaseModel):
    """DTO for creating an alert."""
    model_config = CAMEL_CONFIG

    symbol: str = Field(min_length=1, max_length=32)
    alert_type: AlertType = AlertType.PRICE
    condition: AlertCondition
    target_value: float = Field(ge=0)
    message: Optional[str] = Field(default=None, max_length=500)
    priority: Optional[AlertPriority] = None
    expires_at: Optional[datetime] = None

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("expires_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class AlertUpdate(BaseModel):
    """DTO for user edits; trigger state is never client-writable."""
    model_config = CAMEL_CONFIG

    condition: Optional[AlertCondition] = None
    target_value: Optional[float] = Field(default=None, ge=0)
    message: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None
    priority: Optional[AlertPriority] = None
    expires_at: Optional[datetime] = None

    @field_validator("expires_at")
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)


class AlertCycleResult(BaseModel):
    """Outcome of one alert evaluation cycle."""
    checked: int = 0
    triggered: int = 0
    skipped: bool = False


class AlertStats(BaseModel):
    total: int = 0
    active: int = 0
    triggered: int = 0
    pending: int = 0


class UserContact(BaseModel):
    """Notification details for an alert owner."""
    user_id: str
    email: Optional[str] = None
    email_notifications: bool = True


class RoomKind(str, Enum):
    MARKET = "market"
    PORTFOLIO = "portfolio"
    NEWS = "news"
    ALERTS = "alerts"

    @property
    def user_scoped(self) -> bool:
        return self in (RoomKind.PORTFOLIO, RoomKind.ALERTS)


def room_name(kind: RoomKind, key: str) -> str:
    return f"{kind.value}_{key}"


class NewsItem(BaseModel):
    """Minimal news payload relayed to news rooms."""
    model_config = ConfigDict(extra="allow")

    title: str
    category: str = "general"
    url: Optional[str] = None
    published_at: Optional[datetime] = None
    symbols: List[str] = Field(default_factory=list)
