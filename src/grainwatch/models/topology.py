"""Facility topology models.

Organization -> Site -> Compound -> Cell. Sensors live in cells and cells
hold a commodity type. Managed by external CRUD; Grainwatch only stores
enough of it to resolve trigger scopes and label alerts.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel


class Organization(BaseModel):
    id: str
    name: str


class Site(BaseModel):
    id: str
    organization_id: str
    name: str


class Compound(BaseModel):
    id: str
    site_id: str
    name: str


class CommodityType(BaseModel):
    id: str
    name: str


class Cell(BaseModel):
    id: str
    compound_id: str
    name: str
    commodity_type_id: Optional[str] = None


class Sensor(BaseModel):
    id: str
    cell_id: str
    mac_id: Optional[str] = None


class User(BaseModel):
    id: str
    name: str
    organization_id: Optional[str] = None
    locale: Optional[str] = None


@dataclass(frozen=True)
class CellLocation:
    """A cell with every ancestor id and display name resolved.

    Used to denormalise alerts and to fill notification templates.
    """

    cell_id: str
    cell_name: str
    compound_id: str
    compound_name: str
    site_id: str
    site_name: str
    organization_id: str
    commodity_type_id: Optional[str] = None
    commodity_type_name: Optional[str] = None
