"""
Base schema with UTC datetime serialization.

All stored datetimes are naive UTC; UTCDatetime renders them with a Z
suffix so clients do not read them as local time.
"""

from datetime import datetime
from typing import Annotated

from pydantic import PlainSerializer

UTCDatetime = Annotated[
    datetime,
    PlainSerializer(
        lambda dt: dt.strftime("%Y-%m-%dT%H:%M:%SZ") if dt else None,
        return_type=str,
    ),
]

UTCDatetimeOptional = Annotated[
    datetime | None,
    PlainSerializer(
        lambda dt: dt.strftime("%Y-%m-%dT%H:%M:%SZ") if dt else None,
        return_type=str | None,
    ),
]
