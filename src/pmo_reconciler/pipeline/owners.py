"""
Owner Resolver: link extracted owners to project members.

The model names owners as free text (a name, sometimes an email). Each owner
goes through these steps, first hit wins:

1. Email equals a project member's email -> resolved
2. No email: an attendee whose name contains (or is contained in) the owner
   name supplies an email that belongs to a member -> needs_confirmation
3. The name looks like a meeting room -> conference_room
4. Fuzzy name match against the member roster (rapidfuzz):
   one candidate -> needs_confirmation (or ambiguous when weak),
   several -> ambiguous with no link
5. Otherwise -> unknown

Only steps 1, 2 and a single fuzzy candidate set Owner.user_id.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable

from rapidfuzz import fuzz, process, utils

from ..logging import get_logger
from ..models.contract import Attendee, ContractOwner
from ..models.entities import Owner
from ..models.enums import OwnerResolutionStatus
from ..models.meeting import ProjectMember

logger = get_logger(__name__)

ATTENDEE_INFERENCE_CONFIDENCE = 0.8
FUZZY_SCORE_CUTOFF = 0.6
FUZZY_CONFIRM_ABOVE = 0.7

_CONFERENCE_ROOM = re.compile(r'\b(room|conference|boardroom)\b', re.IGNORECASE)


@dataclass
class OwnerRoster:
    """People an owner can be resolved against for one meeting."""

    members: list[ProjectMember] = field(default_factory=list)
    attendees: list[Attendee] = field(default_factory=list)

    def member_by_email(self, email: str | None) -> ProjectMember | None:
        if not email:
            return None
        wanted = email.strip().lower()
        for member in self.members:
            if member.email and member.email.strip().lower() == wanted:
                return member
        return None


class OwnerResolver:
    """
    Resolves extracted owners against a roster.

    Usage:
        resolver = OwnerResolver()
        owner = resolver.resolve(ContractOwner(name='Alex'), roster)
    """

    def __init__(self, score_cutoff: float = FUZZY_SCORE_CUTOFF):
        self.score_cutoff = score_cutoff

    def resolve(self, owner: ContractOwner | Owner, roster: OwnerRoster) -> Owner:
        name = (owner.name or '').strip()
        email = (owner.email or '').strip() or None
        if not name and not email:
            return Owner()

        member = roster.member_by_email(email)
        if member is not None:
            return self._linked(name, email, member, OwnerResolutionStatus.RESOLVED, 1.0)

        if email is None and name:
            inferred = self._infer_from_attendees(name, roster)
            if inferred is not None:
                attendee_email, member = inferred
                return self._linked(
                    name,
                    attendee_email,
                    member,
                    OwnerResolutionStatus.NEEDS_CONFIRMATION,
                    ATTENDEE_INFERENCE_CONFIDENCE,
                )

        if name and _CONFERENCE_ROOM.search(name):
            return Owner(
                name=name,
                resolution_status=OwnerResolutionStatus.CONFERENCE_ROOM,
                resolution_confidence=0.0,
            )

        candidates = self.fuzzy_candidates(name, roster.members) if name else []
        if len(candidates) == 1:
            member, score = candidates[0]
            status = (
                OwnerResolutionStatus.NEEDS_CONFIRMATION
                if score > FUZZY_CONFIRM_ABOVE
                else OwnerResolutionStatus.AMBIGUOUS
            )
            return self._linked(name, email or member.email, member, status, score)
        if candidates:
            logger.info(
                'owners.ambiguous',
                owner_name=name,
                candidates=[m.display_name for m, _ in candidates[:5]],
            )
            return Owner(
                name=name,
                email=email,
                resolution_status=OwnerResolutionStatus.AMBIGUOUS,
                resolution_confidence=0.0,
            )

        return Owner(
            name=name,
            email=email,
            resolution_status=OwnerResolutionStatus.UNKNOWN,
            resolution_confidence=0.0,
        )

    def fuzzy_candidates(
        self, name: str, members: Iterable[ProjectMember]
    ) -> list[tuple[ProjectMember, float]]:
        """Members whose name or email local part is close to `name`, best first."""
        choices: list[str] = []
        owners: list[ProjectMember] = []
        for member in members:
            for label in (member.full_name, (member.email or '').split('@')[0]):
                if label:
                    choices.append(label)
                    owners.append(member)
        if not choices:
            return []

        results = process.extract(
            name,
            choices,
            scorer=fuzz.token_set_ratio,
            processor=utils.default_process,
            score_cutoff=self.score_cutoff * 100,
            limit=None,
        )

        best: dict = {}
        for _label, score, index in results:
            member = owners[index]
            if member.user_id not in best or best[member.user_id][1] < score / 100:
                best[member.user_id] = (member, score / 100)
        return sorted(best.values(), key=lambda pair: pair[1], reverse=True)

    @staticmethod
    def _infer_from_attendees(
        name: str, roster: OwnerRoster
    ) -> tuple[str, ProjectMember] | None:
        wanted = name.lower()
        for attendee in roster.attendees:
            attendee_name = attendee.name.strip().lower()
            if not attendee_name or not attendee.email:
                continue
            if attendee_name in wanted or wanted in attendee_name:
                member = roster.member_by_email(attendee.email)
                if member is not None:
                    return attendee.email, member
        return None

    @staticmethod
    def _linked(
        name: str,
        email: str | None,
        member: ProjectMember,
        status: OwnerResolutionStatus,
        confidence: float,
    ) -> Owner:
        return Owner(
            name=name or member.display_name,
            email=email,
            user_id=member.user_id,
            resolution_status=status,
            resolution_confidence=round(confidence, 4),
        )
