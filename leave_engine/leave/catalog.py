"""Per-country leave taxonomy, loaded from versioned JSON configuration.

The bundled catalog lives next to this module in ``data/leave_catalog.json``;
``LEAVE_CATALOG_PATH`` points the service at another file without a code
change. New countries or leave types only need a catalog entry plus a
``LeaveType`` enum member.
"""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from pathlib import Path
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from leave_engine.common.constants import DEFAULT_WORKING_DAYS_PER_MONTH, LeaveType

logger = logging.getLogger(__name__)

BUNDLED_CATALOG_PATH = Path(__file__).parent / "data" / "leave_catalog.json"
SUPPORTED_CATALOG_VERSION = 1


class LeaveTypePolicy(BaseModel):
    """Allocation rules of one leave type within one country."""

    model_config = ConfigDict(frozen=True)

    label: str
    default_days: Decimal = Field(..., ge=0)
    accrual_rate: Decimal = Field(Decimal("0"), ge=0)


class CountryPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    working_days_per_month: int = Field(..., gt=0)
    leave_types: dict[LeaveType, LeaveTypePolicy]


class LeaveCatalog(BaseModel):
    """Country code → leave policy, plus the fallback for unknown countries."""

    model_config = ConfigDict(frozen=True)

    version: int
    default_working_days_per_month: int = Field(DEFAULT_WORKING_DAYS_PER_MONTH, gt=0)
    countries: dict[str, CountryPolicy]

    @model_validator(mode="after")
    def check_version(self) -> "LeaveCatalog":
        if self.version != SUPPORTED_CATALOG_VERSION:
            raise ValueError(
                f"Unsupported leave catalog version {self.version}; "
                f"expected {SUPPORTED_CATALOG_VERSION}."
            )
        return self

    def country(self, country_code: str) -> Optional[CountryPolicy]:
        return self.countries.get(country_code.upper())

    def policy(self, leave_type: LeaveType, country_code: str) -> Optional[LeaveTypePolicy]:
        country = self.country(country_code)
        if country is None:
            return None
        return country.leave_types.get(leave_type)

    def leave_types_for(self, country_code: str) -> list[LeaveType]:
        country = self.country(country_code)
        return list(country.leave_types) if country else []

    def working_days_per_month(self, country_code: str) -> int:
        country = self.country(country_code)
        if country is None:
            return self.default_working_days_per_month
        return country.working_days_per_month


def load_catalog(path: Union[str, Path, None] = None) -> LeaveCatalog:
    """Read and validate a catalog file; the bundled one when *path* is empty."""
    source = Path(path) if path else BUNDLED_CATALOG_PATH
    with source.open(encoding="utf-8") as fh:
        raw = json.load(fh)
    catalog = LeaveCatalog.model_validate(raw)
    logger.info(
        "Loaded leave catalog v%s from %s (%d countries)",
        catalog.version, source, len(catalog.countries),
    )
    return catalog
