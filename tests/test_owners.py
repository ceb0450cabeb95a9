"""
Tests for owner resolution against project members and meeting attendees.
"""

import pytest

from pmo_reconciler.models.contract import Attendee, ContractOwner
from pmo_reconciler.models.entities import Owner
from pmo_reconciler.models.enums import OwnerResolutionStatus
from pmo_reconciler.models.meeting import ProjectMember
from pmo_reconciler.pipeline.owners import OwnerResolver, OwnerRoster
from pmo_reconciler.utils import uuid7

ALEX = ProjectMember(user_id=uuid7(), email='alex@example.com', full_name='Alex Chen')
ALEXIS = ProjectMember(user_id=uuid7(), email='amorgan@example.com', full_name='Alex Morgan')
PRIYA = ProjectMember(user_id=uuid7(), email='priya.raman@example.com', full_name='Priya Raman')
CHRIS = ProjectMember(user_id=uuid7(), email='c.lee@example.com', full_name='Christopher')


@pytest.fixture
def resolver():
    return OwnerResolver()


class TestDirectMatches:
    def test_email_match_is_resolved(self, resolver):
        roster = OwnerRoster(members=[ALEX, PRIYA])

        owner = resolver.resolve(ContractOwner(name='Alex', email='ALEX@example.com'), roster)

        assert owner.user_id == ALEX.user_id
        assert owner.resolution_status == OwnerResolutionStatus.RESOLVED
        assert owner.resolution_confidence == 1.0
        assert owner.name == 'Alex'

    def test_attendee_email_inferred_from_name(self, resolver):
        roster = OwnerRoster(
            members=[ALEX],
            attendees=[Attendee(name='Alex Chen', email='alex@example.com')],
        )

        owner = resolver.resolve(ContractOwner(name='Alex'), roster)

        assert owner.user_id == ALEX.user_id
        assert owner.email == 'alex@example.com'
        assert owner.resolution_status == OwnerResolutionStatus.NEEDS_CONFIRMATION
        assert owner.resolution_confidence == pytest.approx(0.8)

    def test_attendee_without_member_falls_through(self, resolver):
        roster = OwnerRoster(attendees=[Attendee(name='Dana', email='dana@vendor.com')])

        owner = resolver.resolve(ContractOwner(name='Dana'), roster)

        assert owner.user_id is None
        assert owner.resolution_status == OwnerResolutionStatus.UNKNOWN

    def test_unmatched_email_is_not_inferred_from_attendees(self, resolver):
        roster = OwnerRoster(
            members=[ALEX],
            attendees=[Attendee(name='Alex Chen', email='alex@example.com')],
        )

        owner = resolver.resolve(ContractOwner(name='Alex Chen', email='alex@personal.net'), roster)

        # falls to the fuzzy step, which keeps the extracted email
        assert owner.email == 'alex@personal.net'
        assert owner.user_id == ALEX.user_id
        assert owner.resolution_status == OwnerResolutionStatus.NEEDS_CONFIRMATION


class TestFallbacks:
    @pytest.mark.parametrize('name', ['Boardroom 4', 'Conference Room B', 'Meeting room 2'])
    def test_conference_room(self, resolver, name):
        owner = resolver.resolve(ContractOwner(name=name), OwnerRoster(members=[ALEX]))

        assert owner.resolution_status == OwnerResolutionStatus.CONFERENCE_ROOM
        assert owner.user_id is None
        assert owner.email is None

    def test_room_inside_a_word_is_not_a_room(self, resolver):
        owner = resolver.resolve(ContractOwner(name='Broome'), OwnerRoster())

        assert owner.resolution_status == OwnerResolutionStatus.UNKNOWN

    def test_single_fuzzy_candidate_needs_confirmation(self, resolver):
        roster = OwnerRoster(members=[PRIYA, ALEX])

        owner = resolver.resolve(ContractOwner(name='Priya'), roster)

        assert owner.user_id == PRIYA.user_id
        assert owner.email == PRIYA.email
        assert owner.resolution_status == OwnerResolutionStatus.NEEDS_CONFIRMATION

    def test_weak_single_candidate_is_ambiguous_but_linked(self, resolver):
        owner = resolver.resolve(ContractOwner(name='Chris'), OwnerRoster(members=[CHRIS]))

        assert owner.user_id == CHRIS.user_id
        assert owner.resolution_status == OwnerResolutionStatus.AMBIGUOUS
        assert owner.resolution_confidence == pytest.approx(0.625, abs=1e-3)

    def test_several_candidates_are_ambiguous_and_unlinked(self, resolver):
        roster = OwnerRoster(members=[ALEX, ALEXIS, PRIYA])

        owner = resolver.resolve(ContractOwner(name='Alex'), roster)

        assert owner.user_id is None
        assert owner.resolution_status == OwnerResolutionStatus.AMBIGUOUS
        assert {m.user_id for m, _ in resolver.fuzzy_candidates('Alex', roster.members)} == {
            ALEX.user_id,
            ALEXIS.user_id,
        }

    def test_no_match_is_unknown(self, resolver):
        owner = resolver.resolve(ContractOwner(name='Zed'), OwnerRoster(members=[ALEX, PRIYA]))

        assert owner == Owner(
            name='Zed',
            resolution_status=OwnerResolutionStatus.UNKNOWN,
            resolution_confidence=0.0,
        )

    def test_empty_owner_stays_unassigned(self, resolver):
        owner = resolver.resolve(Owner(), OwnerRoster(members=[ALEX]))

        assert owner == Owner()

    def test_member_counted_once_across_name_and_email(self, resolver):
        candidates = resolver.fuzzy_candidates('Priya Raman', [PRIYA])

        assert [m.user_id for m, _ in candidates] == [PRIYA.user_id]
        assert candidates[0][1] == pytest.approx(1.0)
