"""Pydantic models for CourtListener REST records.

Only the fields the sync managers read are declared; everything else the API
returns is kept as extra data so it can be stored in raw metadata blobs.
"""

from __future__ import annotations

from datetime import date
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _to_str(value: Any) -> Any:
    if value is None or value == "":
        return None
    return str(value)


OptStr = Annotated[Optional[str], BeforeValidator(_blank_to_none)]
OptDate = Annotated[Optional[date], BeforeValidator(_blank_to_none)]
OptIdStr = Annotated[Optional[str], BeforeValidator(_to_str)]


def _nested_only(value: Any) -> Any:
    # List endpoints may return hyperlinks instead of nested objects.
    if value is None:
        return []
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict)]
    return value


class _CourtListenerRecord(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def raw(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class CourtListenerCourt(_CourtListenerRecord):
    id: OptIdStr = None
    name: OptStr = None
    full_name: OptStr = None
    short_name: OptStr = None
    jurisdiction: OptStr = None
    citation_string: OptStr = None
    url: OptStr = None
    in_use: Optional[bool] = None
    has_opinion_scraper: Optional[bool] = None
    has_oral_argument_scraper: Optional[bool] = None
    position_count: Optional[int] = None
    location: OptStr = None
    start_date: OptDate = None
    end_date: OptDate = None

    @property
    def display_name(self) -> Optional[str]:
        return self.name or self.full_name


class CourtListenerPosition(_CourtListenerRecord):
    id: Optional[int] = None
    position_type: OptStr = None
    job_title: OptStr = None
    court: Any = None
    court_id: OptIdStr = None
    court_full_name: OptStr = None
    date_start: OptDate = None
    date_termination: OptDate = None
    appointer: Any = None

    @property
    def resolved_court_id(self) -> Optional[str]:
        """Court identifier from either the flat field or the nested court object."""
        if self.court_id:
            return self.court_id
        if isinstance(self.court, dict):
            value = self.court.get("id")
            return str(value) if value else None
        if isinstance(self.court, str) and self.court:
            # v4 returns court as a hyperlink: .../courts/<id>/
            return self.court.rstrip("/").rsplit("/", 1)[-1] or None
        return None

    @property
    def resolved_court_name(self) -> Optional[str]:
        if self.court_full_name:
            return self.court_full_name
        if isinstance(self.court, dict):
            return self.court.get("full_name") or self.court.get("name")
        return None

    @property
    def is_current(self) -> bool:
        return self.date_termination is None


class CourtListenerEducation(_CourtListenerRecord):
    school: Any = None
    degree: OptStr = None
    degree_level: OptStr = None
    degree_detail: OptStr = None
    degree_year: OptIdStr = None

    @property
    def school_name(self) -> Optional[str]:
        if isinstance(self.school, dict):
            return self.school.get("name")
        if isinstance(self.school, str):
            return self.school or None
        return None


class CourtListenerPoliticalAffiliation(_CourtListenerRecord):
    political_party: OptStr = None
    political_party_id: OptStr = None
    source: OptStr = None
    date_start: OptDate = None
    date_end: OptDate = None
    appointer: OptStr = None


class CourtListenerJudge(_CourtListenerRecord):
    id: Optional[int] = None
    name_first: OptStr = None
    name_middle: OptStr = None
    name_last: OptStr = None
    name_suffix: OptStr = None
    name: OptStr = None
    positions: Annotated[list[CourtListenerPosition], BeforeValidator(_nested_only)] = Field(
        default_factory=list
    )
    educations: Annotated[list[CourtListenerEducation], BeforeValidator(_nested_only)] = Field(
        default_factory=list
    )
    political_affiliations: Annotated[
        list[CourtListenerPoliticalAffiliation], BeforeValidator(_nested_only)
    ] = Field(default_factory=list)

    @property
    def full_name(self) -> Optional[str]:
        if self.name:
            return self.name.strip()
        parts = [self.name_first, self.name_middle, self.name_last, self.name_suffix]
        joined = " ".join(part.strip() for part in parts if part and part.strip())
        return joined or None


class CourtListenerOpinion(_CourtListenerRecord):
    id: Optional[int] = None
    opinion_id: Optional[int] = None
    case_name: OptStr = None
    date_filed: OptDate = None
    precedential_status: OptStr = None
    absolute_url: OptStr = None

    @property
    def external_id(self) -> Optional[int]:
        return self.opinion_id or self.id


class CourtListenerDocket(_CourtListenerRecord):
    id: Optional[int] = None
    case_name: OptStr = None
    docket_number: OptStr = None
    date_filed: OptDate = None
    date_terminated: OptDate = None
    nature_of_suit: OptStr = None
    absolute_url: OptStr = None
