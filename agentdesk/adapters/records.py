"""
Typed ingestion boundary for rows and documents coming from outside.

Every row the store hands back, and every listing document fetched from the
listings API, passes through one of these models before it reaches the
services. Malformed input is rejected here as ``PayloadError``.
"""

import re
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

import pendulum
from pendulum import DateTime
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..domain.exceptions import PayloadError
from ..domain.models import (
    STATUS_AVAILABLE,
    AvailabilitySlot,
    Property,
    TimeRange,
    VisitSlot,
)

RecordT = TypeVar("RecordT", bound=BaseModel)

SOURCE_ID_PATTERN = re.compile(r"--(\d+)$")

MEDIA_IMAGE = 1
MEDIA_VIDEO = 2
MEDIA_TOUR = 3
MEDIA_PLANS = 4


def parse_timestamp(value: str, timezone: str) -> DateTime:
    """Parse an ISO 8601 timestamp into ``timezone``."""
    parsed = pendulum.parse(value, tz=timezone)
    if not isinstance(parsed, DateTime):
        raise ValueError(f"Not a timestamp: {value}")
    return parsed.in_timezone(timezone)


def _ensure_timestamp(value: str) -> str:
    try:
        parse_timestamp(value, "UTC")
    except Exception as exc:
        raise ValueError(f"Could not parse timestamp {value!r}: {exc}") from exc
    return value


def _coerce_id(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def parse_record(model: Type[RecordT], row: Any) -> RecordT:
    """Validate one raw row, converting validation failures to PayloadError."""
    try:
        return model.model_validate(row)
    except ValidationError as exc:
        raise PayloadError(f"Malformed {model.__name__}: {exc}") from exc


def parse_records(model: Type[RecordT], rows: Iterable[Any]) -> List[RecordT]:
    return [parse_record(model, row) for row in rows]


class ScheduleRecord(BaseModel):
    """Row of ``property_schedules``."""
    model_config = ConfigDict(extra="ignore")

    id: str
    property_id: str
    start_timestamp: str
    end_timestamp: str
    status: str = STATUS_AVAILABLE

    @field_validator("id", "property_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("start_timestamp", "end_timestamp")
    @classmethod
    def check_timestamps(cls, value: str) -> str:
        return _ensure_timestamp(value)

    def to_slot(self, timezone: str) -> AvailabilitySlot:
        return AvailabilitySlot(
            id=self.id,
            property_id=self.property_id,
            time_range=TimeRange(
                start=parse_timestamp(self.start_timestamp, timezone),
                end=parse_timestamp(self.end_timestamp, timezone),
            ),
            status=self.status,
        )


class ClientRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None


class VisitRecord(BaseModel):
    """Row of ``property_visit`` with the joined client name."""
    model_config = ConfigDict(extra="ignore")

    id: str
    property_id: str
    start_date: str
    end_date: str
    status: str
    client_id: Optional[str] = None
    clients: Optional[ClientRef] = None

    @field_validator("id", "property_id", "client_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("start_date", "end_date")
    @classmethod
    def check_timestamps(cls, value: str) -> str:
        return _ensure_timestamp(value)

    @property
    def client_name(self) -> Optional[str]:
        return self.clients.name if self.clients else None

    def to_slot(self, timezone: str) -> VisitSlot:
        return VisitSlot(
            id=self.id,
            property_id=self.property_id,
            time_range=TimeRange(
                start=parse_timestamp(self.start_date, timezone),
                end=parse_timestamp(self.end_date, timezone),
            ),
            status=self.status,
            client_id=self.client_id,
            client_name=self.client_name,
        )


class PostingRecord(BaseModel):
    """Row of ``postings`` (the agent's published properties)."""
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    publisher_id: Optional[str] = None
    posting_id_old: Optional[str] = None
    created_date: Optional[str] = None
    url: Optional[str] = None

    @field_validator("id", "posting_id_old", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return _coerce_id(value)

    def to_property(self) -> Property:
        return Property(id=self.id, title=self.title, publisher_id=self.publisher_id)


class ClientRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return _coerce_id(value)

    def display_name(self) -> str:
        full_name = f"{self.first_name} {self.last_name}".strip()
        return full_name or self.email or self.id


class MessageRecord(BaseModel):
    """Row of ``messages``."""
    model_config = ConfigDict(extra="ignore")

    id: str
    session_id: Optional[str] = None
    client_id: str
    agent_id: Optional[str] = None
    direction: str
    channel: str
    content: str
    created_at: str

    @field_validator("id", "session_id", "client_id", "agent_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return _coerce_id(value)

    @field_validator("created_at")
    @classmethod
    def check_created_at(cls, value: str) -> str:
        return _ensure_timestamp(value)

    def is_outgoing(self) -> bool:
        return self.direction == "outgoing"


class SessionRecord(BaseModel):
    """Row of ``conversation_sessions`` with the joined client."""
    model_config = ConfigDict(extra="ignore")

    id: str
    client_id: str
    active: bool = True
    last_message_at: str
    created_at: str
    client: Optional[ClientRecord] = None
    messages: List[MessageRecord] = Field(default_factory=list)

    @field_validator("id", "client_id", mode="before")
    @classmethod
    def coerce_ids(cls, value: Any) -> Any:
        return _coerce_id(value)

    @property
    def latest_message(self) -> Optional[MessageRecord]:
        return self.messages[0] if self.messages else None


class MediaItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    media_type: int = Field(alias="IdTipoMultimedia")
    url: str = Field(alias="Url")
    large: Optional[str] = Field(default=None, alias="Large")
    order: Optional[int] = Field(default=None, alias="Orden")


class ListingPayload(BaseModel):
    """
    Listing document as served by the external listings API.

    Only the fields the dashboard stores are declared; unknown keys are
    dropped.
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    source_id: int = Field(alias="IdAviso")
    title: str = Field(alias="Titulo_t", min_length=1)
    operation_type: str = Field(alias="TipoOperacion_t")
    amount: int = Field(alias="MontoOperacion_i", ge=0)
    currency: str = Field(alias="MonedaSimbolo_t")
    seo_slug: str = Field(alias="DescripcionSeo_t", min_length=1)
    visible: bool = Field(alias="Visible_b")
    description: Optional[str] = Field(default=None, alias="InformacionAdicional_t")
    property_type: Optional[str] = Field(default=None, alias="TipoPropiedad_t")
    street: Optional[str] = Field(default=None, alias="Direccion_NombreCalle_t")
    street_number: Optional[int] = Field(default=None, alias="Direccion_Numero_i")
    latitude: Optional[float] = Field(default=None, alias="Direccion_Latitud_d")
    longitude: Optional[float] = Field(default=None, alias="Direccion_Longitud_d")
    published_at: Optional[str] = Field(default=None, alias="FechaPublicacionAviso_dt")
    covered_area: Optional[float] = Field(default=None, alias="SuperficieCubierta_d")
    total_area: Optional[float] = Field(default=None, alias="SuperficieTotal_d")
    rooms: Optional[int] = Field(default=None, alias="CantidadAmbientes_i")
    bedrooms: Optional[int] = Field(default=None, alias="CantidadDormitorios_i")
    bathrooms: Optional[int] = Field(default=None, alias="CantidadBanos_i")
    media: List[MediaItem] = Field(default_factory=list, alias="Multimedia_s")

    @property
    def address(self) -> Optional[str]:
        address = f"{self.street or ''} {self.street_number or ''}".strip()
        return address or None

    def has_media(self, media_type: int) -> bool:
        return any(item.media_type == media_type for item in self.media)

    def to_posting(self, publisher_id: str) -> Dict[str, Any]:
        """Build the ``postings`` row for this listing."""
        return {
            "posting_id_old": str(self.source_id),
            "title": self.title,
            "operation_type": self.operation_type,
            "amount": self.amount,
            "amount_currency": self.currency,
            "description": self.description,
            "address": self.address,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "status": "ACTIVE" if self.visible else "INACTIVE",
            "realestate_type_name": self.property_type,
            "url": f"https://www.argenprop.com/{self.seo_slug}",
            "created_date": self.published_at,
            "covered_area": self.covered_area,
            "total_area": self.total_area,
            "rooms": self.rooms,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "has_video": self.has_media(MEDIA_VIDEO),
            "has_tour": self.has_media(MEDIA_TOUR),
            "has_plans": self.has_media(MEDIA_PLANS),
            "reserved": not self.visible,
            "source": "argenprop",
            "publisher_id": publisher_id,
        }

    def image_rows(self, listing_id: str) -> List[Dict[str, Any]]:
        """Build ``listing_images`` rows from the image entries."""
        images = [item for item in self.media if item.media_type == MEDIA_IMAGE]
        return [
            {
                "listing_id": listing_id,
                "url": item.large or item.url,
                "order_index": item.order or index,
                "title": "",
            }
            for index, item in enumerate(images)
        ]


def source_id_from_url(url: str) -> str:
    """Extract the numeric listing id from a ``...--<digits>`` listing URL."""
    match = SOURCE_ID_PATTERN.search(url.strip())
    if not match:
        raise PayloadError(f"Invalid listing URL format: {url}")
    return match.group(1)
