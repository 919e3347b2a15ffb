"""
Tests for the organization hierarchy and headquarters synchronization.

Validates:
- Push creates or merges into the single headquarters
- Pull copies identity fields back and keeps presentation fields
- Push-then-pull round trip is idempotent
- Concurrent pushes never produce two headquarters
"""

from __future__ import annotations

import threading

import pytest

from ecclesia.access.schema import (
    ORG_IDENTITY_FIELDS,
    Configuration,
    Congregation,
    CongregationStatus,
    Identity,
    Role,
)
from ecclesia.clock import FrozenClock
from ecclesia.directory.memory import InMemoryDirectory
from ecclesia.errors import (
    ConfigurationNotFoundError,
    CongregationNotFoundError,
    HeadquartersConflictError,
    NoHeadquartersError,
)
from ecclesia.organization.hierarchy import HierarchyStore
from ecclesia.organization.sync import HeadquartersSyncService


def _headquarters(directory) -> list[Congregation]:
    return [u for u in directory.list_units() if u.is_headquarters]


class InterleavingDirectory(InMemoryDirectory):
    """Runs ``after_read`` once, right after the next configuration read."""

    after_read = None

    def get_configuration(self):
        config = super().get_configuration()
        hook, self.after_read = self.after_read, None
        if hook is not None:
            hook()
        return config


class TestPush:
    def setup_method(self):
        self.clock = FrozenClock()
        self.directory = InMemoryDirectory()
        self.sync = HeadquartersSyncService(self.directory, self.clock, headquarters_id="matriz")

    def test_push_without_configuration_fails(self):
        with pytest.raises(ConfigurationNotFoundError):
            self.sync.push()

    def test_push_creates_headquarters(self):
        self.directory.put_configuration(Configuration(name="Igreja Central", leader_name="Pr. João"))
        hq = self.sync.push()

        assert hq.id == "matriz"
        assert hq.is_headquarters is True
        assert hq.member_count == 0
        assert hq.status == CongregationStatus.ACTIVE
        assert hq.founding_date == self.clock.now
        assert hq.name == "Igreja Central"
        assert hq.leader_name == "Pr. João"
        assert len(_headquarters(self.directory)) == 1

    def test_push_merges_and_preserves_branch_fields(self):
        founded = self.clock.now.replace(year=1990)
        self.directory.put_unit(Congregation(
            id="sede", name="Old Name", member_count=420, founding_date=founded,
            status=CongregationStatus.ACTIVE, is_headquarters=True,
        ))
        self.directory.put_configuration(Configuration(name="New Name", city="Recife"))

        hq = self.sync.push()
        assert hq.id == "sede"
        assert hq.name == "New Name"
        assert hq.city == "Recife"
        assert hq.member_count == 420
        assert hq.founding_date == founded
        assert hq.is_headquarters is True

    def test_push_twice_keeps_one_headquarters(self):
        self.directory.put_configuration(Configuration(name="Igreja Central"))
        first = self.sync.push()
        second = self.sync.push()
        assert first.id == second.id
        assert len(_headquarters(self.directory)) == 1

    def test_push_avoids_taken_id(self):
        self.directory.put_unit(Congregation(id="matriz", name="Branch using the id"))
        self.directory.put_configuration(Configuration(name="Igreja Central"))
        hq = self.sync.push()
        assert hq.id != "matriz"
        assert self.directory.get_unit("matriz").is_headquarters is False
        assert len(_headquarters(self.directory)) == 1

    def test_concurrent_pushes_yield_one_headquarters(self):
        self.directory.put_configuration(Configuration(name="Igreja Central"))
        services = [
            HeadquartersSyncService(self.directory, self.clock, headquarters_id=f"hq-{i}")
            for i in range(8)
        ]
        barrier = threading.Barrier(len(services))

        def run(service):
            barrier.wait()
            service.push()

        threads = [threading.Thread(target=run, args=(s,)) for s in services]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(_headquarters(self.directory)) == 1

    def test_overlapping_saves_leave_headquarters_on_latest(self):
        directory = InterleavingDirectory()
        directory.put_configuration(Configuration(name="A"))
        first = HeadquartersSyncService(directory, self.clock, headquarters_id="matriz")
        second = HeadquartersSyncService(directory, self.clock, headquarters_id="matriz")
        other = threading.Thread(target=second.save_configuration, args=({"name": "B"},))

        def save_in_between():
            # A second save lands after the first push has read its configuration
            other.start()
            other.join(timeout=0.5)

        directory.after_read = save_in_between
        first.push()
        other.join()

        assert directory.get_configuration().name == "B"
        assert directory.find_headquarters().name == "B"
        assert len(_headquarters(directory)) == 1

    def test_save_configuration_pushes(self):
        saved = self.sync.save_configuration({"name": "Igreja Nova", "primary_color": "#000000"})
        assert saved.primary_color == "#000000"
        assert self.directory.find_headquarters().name == "Igreja Nova"

    def test_save_configuration_merges_with_current(self):
        self.sync.save_configuration({"name": "A", "city": "Natal"})
        saved = self.sync.save_configuration({"name": "B"})
        assert saved.city == "Natal"
        assert saved.name == "B"


class TestPull:
    def setup_method(self):
        self.clock = FrozenClock()
        self.directory = InMemoryDirectory()
        self.sync = HeadquartersSyncService(self.directory, self.clock)

    def test_pull_without_headquarters_fails(self):
        self.directory.put_unit(Congregation(id="u1", name="Branch"))
        with pytest.raises(NoHeadquartersError):
            self.sync.pull()

    def test_pull_keeps_presentation_fields(self):
        self.directory.put_configuration(Configuration(
            name="Stale", primary_color="#123456", secondary_color="#654321", logo="logo.png",
        ))
        self.directory.put_unit(Congregation(
            id="sede", name="Igreja Sede", city="Belém", leader_name="Pr. Paulo",
            is_headquarters=True,
        ))

        config = self.sync.pull()
        assert config.name == "Igreja Sede"
        assert config.city == "Belém"
        assert config.leader_name == "Pr. Paulo"
        assert config.primary_color == "#123456"
        assert config.secondary_color == "#654321"
        assert config.logo == "logo.png"
        assert self.directory.get_configuration() == config

    def test_pull_without_saved_configuration_uses_defaults(self):
        self.directory.put_unit(Congregation(id="sede", name="Igreja Sede", is_headquarters=True))
        config = self.sync.pull()
        assert config.name == "Igreja Sede"
        assert config.primary_color == Configuration().primary_color

    def test_push_then_pull_round_trip(self):
        original = Configuration(
            name="Igreja Central", short_name="IC", address="Av. Brasil, 1",
            city="Curitiba", state="PR", postal_code="80000-000",
            phone="(41) 3000-0000", email="ic@igreja.org", website="ic.org",
            leader_name="Pr. Lucas", tax_id="12.345.678/0001-90",
            primary_color="#0F172A",
        )
        self.directory.put_configuration(original)

        self.sync.push()
        pulled = self.sync.pull()

        assert pulled.org_identity() == original.org_identity()
        assert pulled.presentation() == original.presentation()

    def test_pull_is_idempotent(self):
        self.directory.put_unit(Congregation(id="sede", name="Igreja Sede", is_headquarters=True))
        assert self.sync.pull() == self.sync.pull()

    def test_identity_fields_cover_both_records(self):
        for name in ORG_IDENTITY_FIELDS:
            assert name in Configuration.model_fields
            assert name in Congregation.model_fields


class TestHierarchyStore:
    def setup_method(self):
        self.directory = InMemoryDirectory()
        self.store = HierarchyStore(self.directory)
        self.store.upsert_unit(Congregation(id="u1", name="Central", is_headquarters=True))
        self.store.upsert_unit(Congregation(id="u2", name="Norte"))

    def test_get_unknown_unit(self):
        with pytest.raises(CongregationNotFoundError):
            self.store.get_unit("u9")

    def test_create_second_headquarters_rejected(self):
        with pytest.raises(HeadquartersConflictError) as exc:
            self.store.create_unit(Congregation(id="u3", name="Sul", is_headquarters=True))
        assert exc.value.existing_id == "u1"
        assert self.directory.get_unit("u3") is None

    def test_create_regular_unit(self):
        created = self.store.create_unit(Congregation(id="u3", name="Sul"))
        assert self.store.get_unit("u3") == created

    def test_create_headquarters_when_none(self):
        directory = InMemoryDirectory()
        store = HierarchyStore(directory)
        created = store.create_unit(Congregation(id="hq", name="Sede", is_headquarters=True))
        assert created.id == "hq"
        assert store.find_headquarters().id == "hq"

    def test_update_cannot_move_headquarters_flag(self):
        with pytest.raises(HeadquartersConflictError):
            self.store.update_unit("u2", {"is_headquarters": True})

    def test_update_applies_changes_and_ignores_id(self):
        updated = self.store.update_unit("u2", {"id": "other", "city": "Manaus", "member_count": 35})
        assert updated.id == "u2"
        assert updated.city == "Manaus"
        assert updated.member_count == 35

    def test_upsert_does_not_enforce_headquarters(self):
        self.store.upsert_unit(Congregation(id="u3", name="Sul", is_headquarters=True))
        assert len(_headquarters(self.directory)) == 2

    def test_select_current_unit(self):
        secretary = Identity(id="s", display_name="S", role=Role.SECRETARY, congregation_id="u2")
        assert self.store.select_current_unit(secretary).id == "u2"
        assert self.store.select_current_unit(secretary, "u1").id == "u1"
        assert self.store.select_current_unit(secretary, "missing").id == "u2"

        stranger = Identity(id="x", display_name="X", role=Role.USER, congregation_id="gone")
        assert self.store.select_current_unit(stranger).id == "u1"

    def test_select_current_unit_empty(self):
        store = HierarchyStore(InMemoryDirectory())
        assert store.select_current_unit(None) is None
