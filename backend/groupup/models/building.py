"""
GroupUp Backend - Building Model
================================

What:  Relational mirror of a footprint from the spatial store.
When:  Inserted lazily, the first time a group is created inside that
       building (see BuildingService.ensure_relational_building). The id is
       the spatial store's id, so repeated lookups land on the same row.

Columns:
    - polygon: the footprint as a GeoJSON geometry string
    - bbox:    optional "minx,miny,maxx,maxy" string
    - area:    0 until an area computation exists
"""

from typing import Optional

from sqlalchemy import Float, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from groupup.database import Base
from groupup.models.common import TimestampMixin


class Building(TimestampMixin, Base):
    __tablename__ = "buildings"

    # Not generated here: mirrors the id used in the spatial store
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    osm_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    polygon: Mapped[str] = mapped_column(Text, nullable=False)
    bbox: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    area: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    def __repr__(self) -> str:
        return f"<Building(id={self.id}, name={self.name!r})>"
