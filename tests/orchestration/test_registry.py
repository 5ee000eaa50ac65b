"""Tests for the step registry and step list validation."""

import pytest

from batchsync.core.errors import (
    ConfigurationError,
    DependencyOrderError,
    MissingDependencyError,
    StepTypeError,
    UnknownStepError,
)
from batchsync.orchestration.registry import (
    StepRegistry,
    default_registry,
    normalize_steps,
    prepare_steps,
    register_step,
    validate_steps,
)
from batchsync.orchestration.step import Step


class A(Step):
    name = "A"

    def perform(self):
        pass


class B(Step):
    name = "B"
    depends_on = ("A",)

    def perform(self):
        pass


class C(Step):
    name = "C"
    depends_on = ("B",)

    def perform(self):
        pass


class SelfDependent(Step):
    name = "loop"
    depends_on = ("loop",)

    def perform(self):
        pass


class Unnamed(Step):
    def perform(self):
        pass


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidateSteps:
    def test_valid_list_returned_unchanged(self):
        steps = [A(), B(), C()]
        result = validate_steps(steps)
        assert result is steps
        assert [id(s) for s in result] == [id(s) for s in steps]

    def test_empty_list_is_valid(self):
        assert validate_steps([]) == []

    def test_missing_dependency(self):
        with pytest.raises(MissingDependencyError) as info:
            validate_steps([A(), C()])
        assert info.value.step == "C"
        assert info.value.dependency == "B"
        assert isinstance(info.value, ConfigurationError)

    def test_dependency_after_dependent(self):
        with pytest.raises(DependencyOrderError) as info:
            validate_steps([B(), A()])
        assert info.value.step == "B"
        assert info.value.dependency == "A"
        assert isinstance(info.value, ConfigurationError)

    def test_self_dependency_is_an_ordering_error(self):
        with pytest.raises(DependencyOrderError):
            validate_steps([SelfDependent()])

    def test_not_a_step(self):
        with pytest.raises(StepTypeError):
            validate_steps([A(), object()])

    def test_never_reorders(self):
        steps = [A(), B(), C()]
        validate_steps(steps)
        assert [s.identifier for s in steps] == ["A", "B", "C"]


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


class TestNormalizeSteps:
    def test_instances_classes_and_identifiers(self):
        registry = StepRegistry()
        registry.register("b", B)
        a = A()

        steps = normalize_steps([a, "b", C], registry)

        assert steps[0] is a
        assert isinstance(steps[1], B)
        assert isinstance(steps[2], C)

    def test_unknown_identifier(self):
        with pytest.raises(UnknownStepError):
            normalize_steps(["nope"], StepRegistry())

    @pytest.mark.parametrize("item", [42, None, dict, "  "])
    def test_rejects_non_steps(self, item):
        with pytest.raises(ConfigurationError):
            normalize_steps([item], StepRegistry())

    def test_factory_must_build_a_step(self):
        registry = StepRegistry()
        registry.register("bad", lambda: object())
        with pytest.raises(StepTypeError):
            normalize_steps(["bad"], registry)

    def test_unnamed_step_takes_registry_key(self):
        registry = StepRegistry()
        registry.register("import_users", Unnamed)
        (step,) = normalize_steps(["import_users"], registry)
        assert step.identifier == "import_users"

    def test_named_step_keeps_its_name(self):
        registry = StepRegistry()
        registry.register("alias", A)
        (step,) = normalize_steps(["alias"], registry)
        assert step.identifier == "A"

    def test_each_resolution_builds_a_new_instance(self):
        registry = StepRegistry()
        registry.register("a", A)
        first, second = normalize_steps(["a", "a"], registry)
        assert first is not second


class TestStepRegistry:
    def test_decorator_registration(self):
        @register_step("greeter")
        class Greeter(Step):
            def perform(self):
                pass

        assert "greeter" in default_registry
        assert isinstance(default_registry.resolve("greeter"), Greeter)

    def test_duplicate_registration(self):
        registry = StepRegistry()
        registry.register("a", A)
        with pytest.raises(ValueError):
            registry.register("a", B)

    def test_identifiers_sorted(self):
        registry = StepRegistry()
        registry.register("z", A)
        registry.register("m", B)
        assert registry.identifiers() == ["m", "z"]

    def test_prepare_steps_uses_default_registry(self):
        default_registry.register("A", A)
        steps = prepare_steps(["A", B])
        assert [s.identifier for s in steps] == ["A", "B"]

    def test_prepare_steps_validates(self):
        with pytest.raises(DependencyOrderError):
            prepare_steps([C, B, A])
