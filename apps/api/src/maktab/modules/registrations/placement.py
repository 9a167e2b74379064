"""
Maktab and group placement rules.

Hifz registrations always go to the boys maktab, group C. Everyone else
is placed by gender unless the reviewer overrides the maktab, and must
be given a group valid for that maktab.
"""

from dataclasses import dataclass

from maktab.modules.registrations.errors import ValidationError
from maktab.modules.registrations.models import PendingRegistration, RegistrationType

BOYS = "boys"
GIRLS = "girls"

GROUP_CODES_BY_MAKTAB: dict[str, tuple[str, ...]] = {
    BOYS: ("A1", "A2", "B", "C"),
    GIRLS: ("A", "B", "C"),
}

HIFZ_MAKTAB = BOYS
HIFZ_GROUP = "C"


@dataclass(frozen=True)
class Placement:
    maktab: str
    group: str


def maktab_for_gender(gender: str | None) -> str:
    return BOYS if (gender or "").strip().lower() == "male" else GIRLS


def auto_assigns_group(application: PendingRegistration) -> bool:
    return application.registration_type == RegistrationType.HIFZ


def is_valid_group(group: str | None, maktab: str) -> bool:
    return bool(group) and group in GROUP_CODES_BY_MAKTAB.get(maktab, ())


def resolve_placement(
    application: PendingRegistration,
    group: str | None,
    maktab: str | None = None,
) -> Placement:
    """
    Work out where an approved application is placed.

    Raises:
        ValidationError: If no group is given for a non-hifz application,
            or the group does not exist in the resolved maktab
    """
    if auto_assigns_group(application):
        return Placement(maktab=HIFZ_MAKTAB, group=HIFZ_GROUP)

    resolved_maktab = maktab or maktab_for_gender(application.gender)
    if resolved_maktab not in GROUP_CODES_BY_MAKTAB:
        raise ValidationError(f"Unknown maktab '{resolved_maktab}'", error_code="INVALID_MAKTAB")

    if not group:
        raise ValidationError(
            f"A group must be assigned for {application.full_name}",
            error_code="GROUP_REQUIRED",
        )

    if not is_valid_group(group, resolved_maktab):
        valid = ", ".join(GROUP_CODES_BY_MAKTAB[resolved_maktab])
        raise ValidationError(
            f"Group '{group}' is not valid for the {resolved_maktab} maktab. Valid groups: {valid}",
            error_code="INVALID_GROUP",
        )

    return Placement(maktab=resolved_maktab, group=group)
