"""
Import profiles: one schema contract per spreadsheet family.
"""
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, model_validator

from intake.domain.imports.errors import UnknownProfileError

LOCATION_FIELD = "location_name"


class ImportProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    target_table: str
    required_fields: Tuple[str, ...]
    optional_fields: Tuple[str, ...] = ()
    per_row_entity: bool = False
    natural_key: Tuple[str, ...] = ()
    aggregate_duplicates: bool = False  # sum `sum_field` on duplicate natural keys
    sum_field: Optional[str] = None
    positional_template: Optional[Tuple[str, ...]] = None

    @model_validator(mode="after")
    def validate_policy(self) -> "ImportProfile":
        if self.aggregate_duplicates and (not self.natural_key or not self.sum_field):
            raise ValueError(
                f"Profile '{self.name}' aggregates duplicates but declares no natural key or sum field"
            )
        if self.per_row_entity and LOCATION_FIELD not in self.all_fields:
            raise ValueError(f"Profile '{self.name}' resolves entities per row but has no '{LOCATION_FIELD}' field")
        return self

    @property
    def all_fields(self) -> Tuple[str, ...]:
        return self.required_fields + tuple(f for f in self.optional_fields if f not in self.required_fields)


BORK_SALES = ImportProfile(
    name="bork_sales",
    target_table="bork_sales_data",
    required_fields=("date", "product_name", "revenue"),
    optional_fields=("category", "quantity", "price"),
    positional_template=("date", "product_name", "category", "quantity", "price", "revenue"),
)

EITJE_LABOR = ImportProfile(
    name="eitje_labor",
    target_table="eitje_labor_hours",
    required_fields=("date", LOCATION_FIELD, "hours"),
    optional_fields=(
        "employee_name",
        "team_name",
        "hourly_rate",
        "base_hourly_wage",
        "labor_cost",
        "contract_type",
    ),
    per_row_entity=True,
)

EITJE_PRODUCTIVITY = ImportProfile(
    name="eitje_productivity",
    target_table="eitje_productivity_data",
    required_fields=("date", LOCATION_FIELD, "hours_worked"),
    optional_fields=(
        "team_name",
        "revenue",
        "labor_cost",
        "labor_cost_percentage",
        "productivity_per_hour",
    ),
    per_row_entity=True,
)

POWERBI_PNL = ImportProfile(
    name="powerbi_pnl",
    target_table="powerbi_pnl_data",
    required_fields=("year", "month", "gl_account", "amount"),
    optional_fields=("category", "subcategory"),
    natural_key=("location_id", "year", "month", "gl_account"),
    aggregate_duplicates=True,
    sum_field="amount",
    positional_template=("year", "month", "gl_account", "category", "subcategory", "amount"),
)

PROFILES: Dict[str, ImportProfile] = {
    profile.name: profile
    for profile in (BORK_SALES, EITJE_LABOR, EITJE_PRODUCTIVITY, POWERBI_PNL)
}


def get_profile(profile) -> ImportProfile:
    """Accept a profile instance or a registered profile name."""
    if isinstance(profile, ImportProfile):
        return profile
    try:
        return PROFILES[profile]
    except KeyError:
        raise UnknownProfileError(profile, sorted(PROFILES)) from None
