import uuid
from datetime import datetime
from decimal import Decimal
from typing import Annotated

from sqlalchemy import DateTime, Numeric, Uuid
from sqlalchemy.orm import DeclarativeBase, mapped_column
from sqlalchemy.sql import func


class Base(DeclarativeBase):
    pass


uuidpk = Annotated[
    uuid.UUID,
    mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
]

created_ts = Annotated[
    datetime,
    mapped_column(
        DateTime(timezone=True),
        server_default=func.now()
    )
]

updated_ts = Annotated[
    datetime,
    mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )
]

money = Annotated[
    Decimal,
    mapped_column(
        Numeric(10, 2),
        nullable=False
    )
]
