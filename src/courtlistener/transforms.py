"""Map CourtListener records onto the platform's table shapes.

Every function here is pure: no I/O, no clock reads unless a timestamp is
passed in. Mapping failures raise ``MappingError`` so sync managers can count
them as per-record errors.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Iterable, Optional, Sequence

from .models import (
    CourtListenerCourt,
    CourtListenerDocket,
    CourtListenerEducation,
    CourtListenerJudge,
    CourtListenerOpinion,
    CourtListenerPoliticalAffiliation,
    CourtListenerPosition,
)

SOURCE = "courtlistener"
MAX_CASE_NAME_LEN = 500

_FEDERAL_PATTERN = re.compile(
    r"(\bu\.\s?s\.|\bunited states\b|\bfederal\b|\bcircuit\b|\bbankruptcy\b|\btax court\b)",
    re.IGNORECASE,
)

STATE_NAMES: dict[str, str] = {
    "AL": "Alabama", "AK": "Alaska", "AZ": "Arizona", "AR": "Arkansas",
    "CA": "California", "CO": "Colorado", "CT": "Connecticut", "DE": "Delaware",
    "FL": "Florida", "GA": "Georgia", "HI": "Hawaii", "ID": "Idaho",
    "IL": "Illinois", "IN": "Indiana", "IA": "Iowa", "KS": "Kansas",
    "KY": "Kentucky", "LA": "Louisiana", "ME": "Maine", "MD": "Maryland",
    "MA": "Massachusetts", "MI": "Michigan", "MN": "Minnesota", "MS": "Mississippi",
    "MO": "Missouri", "MT": "Montana", "NE": "Nebraska", "NV": "Nevada",
    "NH": "New Hampshire", "NJ": "New Jersey", "NM": "New Mexico", "NY": "New York",
    "NC": "North Carolina", "ND": "North Dakota", "OH": "Ohio", "OK": "Oklahoma",
    "OR": "Oregon", "PA": "Pennsylvania", "RI": "Rhode Island", "SC": "South Carolina",
    "SD": "South Dakota", "TN": "Tennessee", "TX": "Texas", "UT": "Utah",
    "VT": "Vermont", "VA": "Virginia", "WA": "Washington", "WV": "West Virginia",
    "WI": "Wisconsin", "WY": "Wyoming", "DC": "District of Columbia",
}

PARTY_NAMES: dict[str, str] = {
    "d": "Democratic Party",
    "r": "Republican Party",
    "i": "Independent",
    "g": "Green Party",
    "l": "Libertarian Party",
    "f": "Federalist Party",
    "w": "Whig Party",
    "dr": "Democratic-Republican",
}


class MappingError(ValueError):
    """An external record lacks a field the internal row requires."""


def _iso(value: date | datetime | None) -> Optional[str]:
    return value.isoformat() if value is not None else None


def normalize_jurisdiction(value: str | None) -> Optional[str]:
    """Accept 'CA', 'ca' or 'California' and return the two-letter code."""
    if not value:
        return None
    cleaned = value.strip()
    upper = cleaned.upper()
    if upper in STATE_NAMES or upper == "US":
        return upper
    for code, name in STATE_NAMES.items():
        if name.lower() == cleaned.lower():
            return code
    return upper


def court_filters_for(jurisdiction: str | None) -> dict[str, str]:
    """CourtListener query filters selecting courts for a jurisdiction."""
    code = normalize_jurisdiction(jurisdiction)
    if not code:
        return {}
    if code == "US":
        return {"jurisdiction__in": "F,FD,FB,FBP,FS"}
    return {"full_name__icontains": STATE_NAMES.get(code, code)}


# =============================================================================
# Courts
# =============================================================================


def determine_court_type(court: CourtListenerCourt | dict[str, Any]) -> str:
    """'federal' for federal courts, otherwise 'state'."""
    if isinstance(court, dict):
        name = court.get("full_name") or court.get("name") or ""
    else:
        name = court.full_name or court.name or ""
    return "federal" if _FEDERAL_PATTERN.search(name) else "state"


def extract_jurisdiction(
    court: CourtListenerCourt | dict[str, Any],
    default: str | None = None,
) -> Optional[str]:
    """Two-letter state code, 'US' for federal courts, else ``default``."""
    if isinstance(court, dict):
        court = CourtListenerCourt.model_validate(court)
    explicit = (court.jurisdiction or "").strip().upper()
    # CourtListener's own codes (F, S, SA, ...) are court levels, not places.
    if explicit in STATE_NAMES or explicit == "US":
        return explicit
    if determine_court_type(court) == "federal":
        return "US"
    name = f"{court.full_name or ''} {court.name or ''}".lower()
    # Longest first so "West Virginia" is not read as "Virginia".
    for code, state in sorted(STATE_NAMES.items(), key=lambda item: -len(item[1])):
        if state.lower() in name:
            return code
    return normalize_jurisdiction(default)


def build_courthouse_metadata(court: CourtListenerCourt, sync_id: str, fetched_at: datetime) -> dict[str, Any]:
    return {
        "source": SOURCE,
        "sync_id": sync_id,
        "fetched_at": fetched_at.isoformat(),
        "short_name": court.short_name,
        "citation_string": court.citation_string,
        "in_use": court.in_use,
        "has_opinion_scraper": court.has_opinion_scraper,
        "has_oral_argument_scraper": court.has_oral_argument_scraper,
        "position_count": court.position_count,
        "location": court.location,
        "start_date": _iso(court.start_date),
        "end_date": _iso(court.end_date),
        "raw": court.raw(),
    }


def court_to_row(
    court: CourtListenerCourt,
    sync_id: str,
    now: datetime,
    default_jurisdiction: str | None = None,
) -> dict[str, Any]:
    if not court.id:
        raise MappingError("court record has no id")
    name = court.display_name
    if not name:
        raise MappingError(f"court {court.id} has no name")
    jurisdiction = extract_jurisdiction(court, default_jurisdiction)
    if not jurisdiction:
        raise MappingError(f"court {court.id} has no resolvable jurisdiction")
    return {
        "name": name,
        "type": determine_court_type(court),
        "jurisdiction": jurisdiction,
        "courtlistener_id": court.id,
        "website": court.url,
        "courthouse_metadata": build_courthouse_metadata(court, sync_id, now),
        "updated_at": now.isoformat(),
    }


# =============================================================================
# Judges
# =============================================================================


def order_positions(positions: Iterable[CourtListenerPosition]) -> list[CourtListenerPosition]:
    """Oldest first; positions without a start date sort last."""
    return sorted(positions, key=lambda pos: (pos.date_start is None, pos.date_start or date.max))


def format_positions(positions: Iterable[CourtListenerPosition]) -> list[dict[str, Any]]:
    return [
        {
            "court": pos.resolved_court_name or pos.resolved_court_id or "Unknown Court",
            "court_id": pos.resolved_court_id,
            "position_type": pos.position_type or pos.job_title or "Judge",
            "date_start": _iso(pos.date_start),
            "date_termination": _iso(pos.date_termination),
        }
        for pos in order_positions(positions)
    ]


def primary_position(positions: Sequence[CourtListenerPosition]) -> Optional[CourtListenerPosition]:
    """First current position with a court, else the most recent one."""
    ordered = order_positions(positions)
    current = [pos for pos in ordered if pos.is_current and pos.resolved_court_id]
    if current:
        return current[0]
    with_court = [pos for pos in ordered if pos.resolved_court_id]
    return with_court[-1] if with_court else None


def is_retired(positions: Sequence[CourtListenerPosition]) -> bool:
    """A judge is retired when every known position has ended."""
    return bool(positions) and all(pos.date_termination is not None for pos in positions)


def judge_to_row(
    judge: CourtListenerJudge,
    court_row: dict[str, Any],
    now: datetime,
) -> dict[str, Any]:
    if judge.id is None:
        raise MappingError("judge record has no id")
    name = judge.full_name
    if not name:
        raise MappingError(f"judge {judge.id} has no name")
    return {
        "name": name,
        "courtlistener_id": str(judge.id),
        "court_id": court_row["id"],
        "court_name": court_row.get("name"),
        "jurisdiction": court_row.get("jurisdiction"),
        "positions": format_positions(judge.positions),
        "status": "retired" if is_retired(judge.positions) else "active",
        "last_synced_at": now.isoformat(),
        "updated_at": now.isoformat(),
    }


def format_education(educations: Iterable[CourtListenerEducation]) -> Optional[str]:
    """'Harvard Law (JD, 1995); Yale (BA, 1992)'."""
    parts: list[str] = []
    for edu in educations:
        school = edu.school_name
        if not school:
            continue
        detail = ", ".join(value for value in (edu.degree or edu.degree_level, edu.degree_year) if value)
        parts.append(f"{school} ({detail})" if detail else school)
    return "; ".join(parts) or None


def format_party_name(party_name: str | None, party_id: str | None) -> str:
    if party_name and party_name.strip():
        return party_name.strip()
    if party_id and party_id.lower() in PARTY_NAMES:
        return PARTY_NAMES[party_id.lower()]
    return "Unknown"


def _affiliation_years(affiliation: CourtListenerPoliticalAffiliation) -> Optional[str]:
    if affiliation.date_start is None:
        return None
    end = str(affiliation.date_end.year) if affiliation.date_end else "present"
    return f"{affiliation.date_start.year}-{end}"


def _describe_affiliation(affiliation: CourtListenerPoliticalAffiliation) -> str:
    party = format_party_name(affiliation.political_party, affiliation.political_party_id)
    details = [
        value
        for value in (
            _affiliation_years(affiliation),
            f"appointed by {affiliation.appointer}" if affiliation.appointer else None,
        )
        if value
    ]
    return f"{party} ({', '.join(details)})" if details else party


def format_political_affiliation(affiliations: Sequence[CourtListenerPoliticalAffiliation]) -> Optional[str]:
    """Current party, e.g. 'Republican Party (2018-present, appointed by Trump)'."""
    if not affiliations:
        return None
    ordered = sorted(
        affiliations,
        key=lambda aff: (aff.date_end is None, aff.date_start or date.min),
        reverse=True,
    )
    return _describe_affiliation(ordered[0])


# =============================================================================
# Decisions
# =============================================================================


def _truncate(value: str | None, fallback: str) -> str:
    text = (value or "").strip() or fallback
    return text[:MAX_CASE_NAME_LEN]


def opinion_to_case(opinion: CourtListenerOpinion, judge_row: dict[str, Any], now: datetime) -> dict[str, Any]:
    external_id = opinion.external_id
    if external_id is None:
        raise MappingError("opinion record has no id")
    return {
        "judge_id": judge_row["id"],
        "court_id": judge_row.get("court_id"),
        "case_name": _truncate(opinion.case_name, f"Opinion {external_id}"),
        "case_number": f"CL-O{external_id}",
        "case_type": "Opinion",
        "decision_date": _iso(opinion.date_filed),
        "filing_date": _iso(opinion.date_filed),
        "outcome": opinion.precedential_status,
        "jurisdiction": judge_row.get("jurisdiction"),
        "courtlistener_id": f"opinion:{external_id}",
        "source_url": opinion.absolute_url,
        "updated_at": now.isoformat(),
    }


def docket_to_case(docket: CourtListenerDocket, judge_row: dict[str, Any], now: datetime) -> dict[str, Any]:
    if docket.id is None:
        raise MappingError("docket record has no id")
    return {
        "judge_id": judge_row["id"],
        "court_id": judge_row.get("court_id"),
        "case_name": _truncate(docket.case_name, f"Docket {docket.id}"),
        "case_number": docket.docket_number or f"CL-D{docket.id}",
        "case_type": docket.nature_of_suit or "Docket",
        "filing_date": _iso(docket.date_filed),
        "decision_date": _iso(docket.date_terminated),
        "outcome": "Terminated" if docket.date_terminated else "Pending",
        "jurisdiction": judge_row.get("jurisdiction"),
        "courtlistener_id": f"docket:{docket.id}",
        "source_url": docket.absolute_url,
        "updated_at": now.isoformat(),
    }
