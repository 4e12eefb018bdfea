"""Tests for the Capability Registry."""

import threading

import pytest

from portal_forge.errors import (
    CapabilityConflictError,
    CapabilityNotFoundError,
    InvalidTransitionError,
)
from portal_forge.generator.engine import TemplateGenerator
from portal_forge.models.capability import Capability, CapabilityFilter, TemplateRef
from portal_forge.models.maturity import MaturityLevel, Phase
from portal_forge.models.template import SpecMetadata, TemplateSpec
from portal_forge.registry.registry import (
    CapabilityRegistry,
    RegistryContentionError,
    capability_from_artifact,
)
from portal_forge.registry.store import InMemoryCapabilityStore, SqliteCapabilityStore


def _make_ref(artifact_name, artifact_type="backend-service", level=MaturityLevel.L1, capabilities=()):
    return TemplateRef(
        artifact_name=artifact_name,
        type=artifact_type,
        phase=level.phase,
        maturity_level=level,
        capabilities=capabilities,
    )


def _make_capability(cap_id="orders", level=MaturityLevel.L1, refs=None, **kwargs):
    if refs is None:
        refs = (_make_ref(f"{level.phase.slug}-backend-service-{cap_id}", level=level),)
    return Capability(
        id=cap_id,
        name=cap_id.title(),
        maturity_level=level,
        phase=level.phase,
        templates=tuple(refs),
        **kwargs,
    )


class _NeverSwaps(InMemoryCapabilityStore):
    def compare_and_swap(self, key, expected_version, value):
        return False


class TestRegister:
    def setup_method(self):
        self.registry = CapabilityRegistry()

    def test_register_and_get(self):
        stored = self.registry.register_capability(_make_capability())
        assert stored.revision == 1
        fetched = self.registry.get_capability("orders")
        assert fetched.maturity_level == MaturityLevel.L1
        assert fetched.revision == 1

    def test_unknown_capability(self):
        assert self.registry.get_capability("missing") is None

    def test_phase_follows_maturity(self):
        cap = _make_capability(level=MaturityLevel.L3).model_copy(update={"phase": Phase.FOUNDATION})
        stored = self.registry.register_capability(cap)
        assert stored.phase == Phase.OPERATIONALIZATION

    def test_merge_keeps_highest_level_and_all_templates(self):
        self.registry.register_capability(_make_capability(level=MaturityLevel.L4, refs=(
            _make_ref("governance-policy-enforced-service-orders", "policy-enforced-service", MaturityLevel.L4),
        )))
        merged = self.registry.register_capability(_make_capability(level=MaturityLevel.L2, refs=(
            _make_ref("standardization-composite-service-orders", "composite-service", MaturityLevel.L2),
        )))
        assert merged.maturity_level == MaturityLevel.L4
        assert merged.phase == Phase.GOVERNANCE
        assert [r.artifact_name for r in merged.templates] == [
            "governance-policy-enforced-service-orders",
            "standardization-composite-service-orders",
        ]
        assert merged.revision == 2

    def test_reregistering_same_template_does_not_duplicate(self):
        self.registry.register_capability(_make_capability())
        merged = self.registry.register_capability(_make_capability())
        assert len(merged.templates) == 1

    def test_concurrent_registrations_keep_highest_level(self):
        low = _make_capability(level=MaturityLevel.L2, refs=(
            _make_ref("standardization-composite-service-orders", "composite-service", MaturityLevel.L2),
        ))
        high = _make_capability(level=MaturityLevel.L4, refs=(
            _make_ref("governance-policy-enforced-service-orders", "policy-enforced-service", MaturityLevel.L4),
        ))
        barrier = threading.Barrier(20)

        def register(cap):
            barrier.wait()
            self.registry.register_capability(cap)

        threads = [
            threading.Thread(target=register, args=(low if n % 2 else high,))
            for n in range(20)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        final = self.registry.get_capability("orders")
        assert final.maturity_level == MaturityLevel.L4
        assert final.phase == Phase.GOVERNANCE
        assert len(final.templates) == 2

    def test_contention_gives_up(self):
        registry = CapabilityRegistry(store=_NeverSwaps(), max_cas_attempts=3)
        with pytest.raises(RegistryContentionError):
            registry.register_capability(_make_capability())

    def test_sqlite_backend(self, tmp_path):
        store = SqliteCapabilityStore(str(tmp_path / "registry.db"))
        registry = CapabilityRegistry(store=store)
        registry.register_capability(_make_capability())
        registry.update_maturity("orders", MaturityLevel.L2)
        assert registry.get_capability("orders").maturity_level == MaturityLevel.L2
        store.close()


class TestMaturityUpdates:
    def setup_method(self):
        self.registry = CapabilityRegistry()
        self.registry.register_capability(_make_capability(level=MaturityLevel.L4, refs=()))

    def test_raise_level(self):
        updated = self.registry.update_maturity("orders", MaturityLevel.L5)
        assert updated.maturity_level == MaturityLevel.L5
        assert updated.phase == Phase.INTENT_DRIVEN

    def test_same_level_is_allowed(self):
        updated = self.registry.update_maturity("orders", MaturityLevel.L4)
        assert updated.maturity_level == MaturityLevel.L4

    def test_downgrade_is_refused_and_changes_nothing(self):
        before = self.registry.get_capability("orders")
        with pytest.raises(InvalidTransitionError) as exc_info:
            self.registry.update_maturity("orders", MaturityLevel.L2)
        assert exc_info.value.current == MaturityLevel.L4
        assert self.registry.get_capability("orders") == before

    def test_unknown_capability(self):
        with pytest.raises(CapabilityNotFoundError):
            self.registry.update_maturity("missing", MaturityLevel.L2)


class TestRevertRegistration:
    def setup_method(self):
        self.registry = CapabilityRegistry()
        self.registry.register_capability(_make_capability(refs=(
            _make_ref("foundation-backend-service-orders"),
        )))

    def test_removes_only_the_named_template(self):
        self.registry.register_capability(_make_capability(level=MaturityLevel.L2, refs=(
            _make_ref("standardization-composite-service-orders", "composite-service", MaturityLevel.L2),
        )))
        reverted = self.registry.revert_registration("orders", "standardization-composite-service-orders")
        assert [r.artifact_name for r in reverted.templates] == ["foundation-backend-service-orders"]
        assert reverted.maturity_level == MaturityLevel.L2

    def test_entry_is_kept_unless_asked(self):
        reverted = self.registry.revert_registration("orders", "foundation-backend-service-orders")
        assert reverted.templates == ()
        assert self.registry.get_capability("orders") is not None

    def test_entry_removed_when_nothing_remains(self):
        assert self.registry.revert_registration(
            "orders", "foundation-backend-service-orders", remove_entry=True,
        ) is None
        assert self.registry.get_capability("orders") is None
        assert self.registry.get_capabilities() == []

    def test_unknown_capability_is_a_no_op(self):
        assert self.registry.revert_registration("missing", "anything") is None

    def test_sqlite_backend(self, tmp_path):
        store = SqliteCapabilityStore(str(tmp_path / "registry.db"))
        registry = CapabilityRegistry(store=store)
        registry.register_capability(_make_capability())
        registry.revert_registration("orders", "foundation-backend-service-orders", remove_entry=True)
        assert registry.get_capability("orders") is None
        store.close()


class TestDeprecationAndFilters:
    def setup_method(self):
        self.registry = CapabilityRegistry()
        self.registry.register_capability(_make_capability("orders"))
        self.registry.register_capability(_make_capability(
            "billing",
            level=MaturityLevel.L4,
            refs=(_make_ref("governance-audit-automation-billing", "audit-automation", MaturityLevel.L4),),
            description="Invoices and payment audit",
        ))
        self.registry.register_capability(_make_capability("search", level=MaturityLevel.L2, refs=()))

    def test_deprecation_is_a_flag(self):
        deprecated = self.registry.deprecate_capability("orders", "Superseded", migration_path="orders-v2")
        assert deprecated.deprecated
        assert deprecated.deprecation_reason == "Superseded"
        assert deprecated.migration_path == "orders-v2"
        assert len(deprecated.templates) == 1
        assert self.registry.get_capability("orders") is not None

    def test_deprecate_unknown(self):
        with pytest.raises(CapabilityNotFoundError):
            self.registry.deprecate_capability("missing", "gone")

    def test_insertion_order(self):
        assert [c.id for c in self.registry.get_capabilities()] == ["orders", "billing", "search"]

    def test_filters(self):
        by_phase = self.registry.get_capabilities(CapabilityFilter(phase=Phase.GOVERNANCE))
        assert [c.id for c in by_phase] == ["billing"]
        by_level = self.registry.get_capabilities(CapabilityFilter(maturity_level=MaturityLevel.L2))
        assert [c.id for c in by_level] == ["search"]
        by_tag = self.registry.get_capabilities(CapabilityFilter(tag="audit-automation"))
        assert [c.id for c in by_tag] == ["billing"]
        by_search = self.registry.get_capabilities(CapabilityFilter(search="PAYMENT"))
        assert [c.id for c in by_search] == ["billing"]

    def test_exclude_deprecated(self):
        self.registry.deprecate_capability("orders", "Superseded")
        active = self.registry.get_capabilities(CapabilityFilter(include_deprecated=False))
        assert [c.id for c in active] == ["billing", "search"]


class TestConflicts:
    def setup_method(self):
        self.registry = CapabilityRegistry()

    def test_different_type_under_same_name_conflicts(self):
        self.registry.register_capability(_make_capability("orders", refs=(
            _make_ref("orders-app", "backend-service"),
        )))
        incoming = _make_capability("orders-web", refs=(_make_ref("orders-app", "frontend-app"),))
        conflicts = self.registry.detect_conflicts(incoming)
        assert len(conflicts) == 1
        assert conflicts[0].existing_capability_id == "orders"
        assert conflicts[0].existing_type == "backend-service"
        assert conflicts[0].incoming_type == "frontend-app"

        with pytest.raises(CapabilityConflictError) as exc_info:
            self.registry.register_capability(incoming)
        resolution = exc_info.value.resolutions[0]
        assert resolution.strategy == "rename"
        assert resolution.suggested_name == "orders-app-frontend-app"
        assert self.registry.get_capability("orders-web") is None

    def test_same_type_is_not_a_conflict(self):
        self.registry.register_capability(_make_capability("orders", refs=(_make_ref("orders-app"),)))
        assert self.registry.detect_conflicts(
            _make_capability("orders-copy", refs=(_make_ref("orders-app"),))
        ) == []

    def test_composable_types_resolve_by_composition(self):
        self.registry.register_capability(_make_capability("delivery", level=MaturityLevel.L2, refs=(
            _make_ref("delivery", "deployment-pipeline", MaturityLevel.L2),
        )))
        incoming = _make_capability("delivery-metrics", level=MaturityLevel.L2, refs=(
            _make_ref("delivery", "monitoring-setup", MaturityLevel.L2),
        ))
        [conflict] = self.registry.detect_conflicts(incoming)
        resolution = self.registry.resolve_conflict(conflict)
        assert resolution.strategy == "compose"
        assert resolution.composite_phase == Phase.STANDARDIZATION


class TestSuggestions:
    def setup_method(self):
        self.registry = CapabilityRegistry()
        artifact = TemplateGenerator().generate_template(TemplateSpec(
            metadata=SpecMetadata(name="orders-api", description="Orders"),
            type="backend-service",
        ))
        self.registry.register_capability(capability_from_artifact(artifact))

    def test_suggestions_follow_latest_template(self):
        assert self.registry.suggest_improvements("orders-api") == [
            "Add automated deployment",
            "Add environment management",
            "Add ci/cd integration",
            "Add composite template creation",
        ]

    def test_migration_comes_first_for_deprecated(self):
        self.registry.deprecate_capability("orders-api", "Replaced", migration_path="orders-v2")
        assert self.registry.suggest_improvements("orders-api")[0] == "Migrate to 'orders-v2'"

    def test_unknown_capability(self):
        with pytest.raises(CapabilityNotFoundError):
            self.registry.suggest_improvements("missing")

    def test_capability_from_artifact(self):
        cap = self.registry.get_capability("orders-api")
        assert cap.name == "Orders Api"
        ref = cap.templates[0]
        assert ref.artifact_name == "foundation-backend-service-orders-api"
        assert ref.repository_url is None
