from pydantic import BaseModel, ConfigDict, Field, AliasChoices
from pydantic.alias_generators import to_camel
from typing import Optional
from datetime import datetime
from enum import Enum


class RideStatus(str, Enum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    ACCEPTED = "ACCEPTED"
    ARRIVED = "ARRIVED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    NO_DRIVERS_AVAILABLE = "NO_DRIVERS_AVAILABLE"


class PaymentMethod(str, Enum):
    CASH = "CASH"
    WALLET = "WALLET"


class PaymentStatus(str, Enum):
    UNPAID = "UNPAID"
    PAID = "PAID"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    COMMISSION_OWED = "COMMISSION_OWED"


class Ride(BaseModel):
    """A row of the ``rides`` table."""
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    id: str
    passenger_id: str
    driver_id: Optional[str] = None
    status: RideStatus
    pickup_lat: float
    pickup_lng: float
    dropoff_lat: float
    dropoff_lng: float
    pickup_address: Optional[str] = None
    dropoff_address: Optional[str] = None
    fare_estimate: float
    payment_method: PaymentMethod = PaymentMethod.CASH
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    scheduled_time: Optional[datetime] = None
    dispatch_batch: int = 1
    last_offer_sent_at: Optional[datetime] = None
    nearby_cells: list[str] = []
    note: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class _Body(BaseModel):
    """Request bodies accept the mobile app's camelCase keys as well as snake_case."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LatLng(_Body):
    lat: float
    lng: float


class RideRequest(_Body):
    passenger_id: str
    pickup: LatLng
    dropoff: LatLng
    pickup_address: Optional[str] = None
    dropoff_address: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.CASH
    note: Optional[str] = None
    offered_fare: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("offeredFare", "offered_fare", "fare")
    )
    scheduled_time: Optional[datetime] = None


class AcceptRequest(_Body):
    ride_id: str
    driver_id: str


class ArrivedRequest(_Body):
    ride_id: str
    driver_id: str
    lat: Optional[float] = None
    lng: Optional[float] = None


class TripRequest(_Body):
    ride_id: str
    driver_id: str


class PassengerCancelRequest(_Body):
    ride_id: str
    passenger_id: str
    reason: str = "USER_CANCELLED"


class NoShowRequest(_Body):
    ride_id: str
    driver_id: str


class LocationSample(_Body):
    lat: float
    lng: float
    heading: Optional[float] = 0


class LocationUpdate(_Body):
    """Either a single fix (older app builds) or a batch under ``locations``."""
    driver_id: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    heading: Optional[float] = 0
    locations: Optional[list[LocationSample]] = None


class GoOfflineRequest(_Body):
    driver_id: str
