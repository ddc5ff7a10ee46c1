"""Device records consumed by the clustering pipeline."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional

import pandas as pd

from .geometry import Coordinate

logger = logging.getLogger(__name__)

DEVICE_COLUMNS = ["device_id", "lat", "lng", "is_offline", "can_aggregate"]


@dataclass(frozen=True)
class Device:
    """A geo-located device; immutable for the duration of a run."""

    device_id: str
    lat: float
    lng: float
    is_offline: bool = False
    can_aggregate: bool = True
    last_status_change: Optional[datetime] = None

    @property
    def coordinate(self) -> Coordinate:
        return (self.lat, self.lng)

    @property
    def has_valid_coordinate(self) -> bool:
        return (
            math.isfinite(self.lat) and math.isfinite(self.lng)
            and -90.0 <= self.lat <= 90.0
            and -180.0 <= self.lng <= 180.0
        )

    @property
    def is_eligible(self) -> bool:
        """Candidate for clustering: offline and aggregatable."""
        return self.is_offline and self.can_aggregate


def is_eligible(device: Device) -> bool:
    """Default neighborhood filter used by the clustering engine."""
    return device.is_eligible


def _flag(value: Any, default: bool) -> bool:
    if value is None:
        return default
    try:
        if pd.isna(value):
            return default
    except (TypeError, ValueError):
        pass
    return bool(value)


def _coordinate(value: Any) -> float:
    # Missing or unparseable coordinates become NaN so preparation drops them
    if value is None:
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def _device_from_mapping(row: Mapping[str, Any]) -> Device:
    device_id = row.get("device_id", row.get("id"))
    if device_id is None:
        raise ValueError(f"Device record is missing 'device_id': {dict(row)}")

    lat = _coordinate(row.get("lat", row.get("latitude")))
    lng = _coordinate(row.get("lng", row.get("longitude")))
    if math.isnan(lat) or math.isnan(lng):
        logger.debug(f"Device '{device_id}' has no usable coordinates")

    changed = row.get("last_status_change")
    if isinstance(changed, pd.Timestamp):
        changed = changed.to_pydatetime()
    elif changed is not None and not isinstance(changed, datetime):
        changed = None

    return Device(
        device_id=str(device_id),
        lat=lat,
        lng=lng,
        is_offline=_flag(row.get("is_offline"), False),
        can_aggregate=_flag(row.get("can_aggregate"), True),
        last_status_change=changed,
    )


def coerce_devices(devices: Iterable[Any], skip_invalid: bool = False) -> List[Device]:
    """
    Return ``devices`` as a list of :class:`Device`.

    Accepts a DataFrame, or any iterable of ``Device`` objects or mapping-like
    records. Missing flags default to ``is_offline=False`` and
    ``can_aggregate=True``; ``latitude``/``longitude``/``id`` are accepted as
    column aliases. Missing or unparseable coordinates become NaN, which
    :attr:`Device.has_valid_coordinate` rejects.

    Args:
        devices: Records to convert
        skip_invalid: Log and drop records that cannot be converted instead
            of raising

    Raises:
        ValueError: If a record has no id or an unsupported type and
            ``skip_invalid`` is False
    """
    if isinstance(devices, pd.DataFrame):
        records: Iterable[Any] = devices.to_dict(orient="records")
    else:
        records = devices

    result: List[Device] = []
    skipped = 0
    for record in records:
        try:
            result.append(_coerce_record(record))
        except ValueError as exc:
            if not skip_invalid:
                raise
            skipped += 1
            logger.debug(f"Skipping device record: {exc}")
    if skipped:
        logger.warning(f"Skipped {skipped} device records that could not be converted")
    return result


def _coerce_record(record: Any) -> Device:
    if isinstance(record, Device):
        return record
    if isinstance(record, Mapping):
        return _device_from_mapping(record)
    if hasattr(record, "model_dump"):
        return _device_from_mapping(record.model_dump())
    raise ValueError(f"Unsupported device record type: {type(record).__name__}")


def devices_to_dataframe(devices: Iterable[Device]) -> pd.DataFrame:
    """Inverse of :func:`coerce_devices` for tabular reporting."""
    rows = [
        {
            "device_id": d.device_id,
            "lat": d.lat,
            "lng": d.lng,
            "is_offline": d.is_offline,
            "can_aggregate": d.can_aggregate,
        }
        for d in devices
    ]
    return pd.DataFrame(rows, columns=DEVICE_COLUMNS)


__all__ = [
    "DEVICE_COLUMNS",
    "Device",
    "coerce_devices",
    "devices_to_dataframe",
    "is_eligible",
]
