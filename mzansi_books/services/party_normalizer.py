"""
Resolve client and company records into one canonical display block.

Party records have accumulated several shapes over time. Names and addresses
are resolved by ordered extractor functions: the first extractor that yields
something wins, and address groups are never mixed.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Sequence, Tuple, Union

from mzansi_books.enums import PartyKind
from mzansi_books.errors import InvalidPartyDataError
from mzansi_books.models import Party, PartyView

logger = logging.getLogger(__name__)

Extractor = Callable[[Party], str]


def _clean(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _join_fragments(fragments: Sequence[Any]) -> str:
    return ", ".join(part for part in (_clean(fragment) for fragment in fragments) if part)


def _company_name(party: Party) -> str:
    return _clean(party.company_name)


def _contact_person(party: Party) -> str:
    return _clean(party.contact_person)


def _plain_name(party: Party) -> str:
    return _clean(party.display_name)


def _first_last_name(party: Party) -> str:
    return " ".join(part for part in (_clean(party.first_name), _clean(party.last_name)) if part)


NAME_EXTRACTORS: Tuple[Extractor, ...] = (
    _company_name,
    _contact_person,
    _plain_name,
    _first_last_name,
)


def _billing_group(party: Party) -> str:
    return _join_fragments(
        (
            party.billing_street,
            party.billing_city,
            party.billing_state,
            party.billing_postal,
            party.billing_country,
        )
    )


def _preformatted_address(party: Party) -> str:
    return _clean(party.address)


def _legacy_group(party: Party) -> str:
    return _join_fragments(
        (
            party.address_line1,
            party.address_line2,
            party.city,
            party.province,
            party.postal_code,
            party.country,
        )
    )


ADDRESS_EXTRACTORS: Tuple[Extractor, ...] = (
    _billing_group,
    _preformatted_address,
    _legacy_group,
)


def _first_match(party: Party, extractors: Sequence[Extractor]) -> str:
    for extractor in extractors:
        value = extractor(party)
        if value:
            return value
    return ""


def resolve_name(party: Optional[Party]) -> str:
    if party is None:
        raise InvalidPartyDataError("no party record")
    name = _first_match(party, NAME_EXTRACTORS)
    if not name:
        raise InvalidPartyDataError(f"party {party.id or '-'} has no usable name")
    return name


def resolve_address(party: Optional[Party]) -> str:
    if party is None:
        return ""
    return _first_match(party, ADDRESS_EXTRACTORS)


def normalize(
    party: Union[Party, Mapping[str, Any], None],
    kind: Optional[PartyKind] = None,
) -> PartyView:
    """Return the display name and single-string address for a party record."""
    if isinstance(party, Mapping):
        party = Party.from_record(party, kind or PartyKind.CLIENT)
    kind = kind or (party.kind if party is not None else PartyKind.CLIENT)

    try:
        display_name = resolve_name(party)
    except InvalidPartyDataError as exc:
        logger.debug("Using placeholder name: %s", exc)
        display_name = kind.placeholder_name

    if party is None:
        return PartyView(display_name=display_name, address_lines="")

    company = _company_name(party)
    contact = _contact_person(party)
    attention = contact if company and contact and contact != company else ""
    return PartyView(
        display_name=display_name,
        address_lines=resolve_address(party),
        email=_clean(party.email),
        phone=_clean(party.phone),
        attention=attention,
    )
