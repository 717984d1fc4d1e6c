"""Tests for entitystate.references."""

import pytest

from entitystate.commands import CallableCommand, Command, CompositeCommand, NullCommand
from entitystate.exceptions import UnresolvedReference
from entitystate.references import ActionResolver, import_reference
from entitystate.rules import AllRules, CallableRule, FalseRule, Rule, TrueRule


class Counter:
    """Stateful command used to check instantiation and caching."""

    def __init__(self):
        self.calls = 0

    def execute(self, context):
        self.calls += 1


class NeedsArgs:
    def __init__(self, value):
        self.value = value

    def execute(self, context):
        return None


def always_false(context):
    return False


# ── import_reference ───────────────────────────────────────────────────────────

class TestImportReference:
    def test_dotted_path(self):
        assert import_reference("entitystate.rules.TrueRule") is TrueRule

    def test_colon_path(self):
        assert import_reference("entitystate.commands:NullCommand") is NullCommand

    def test_colon_path_with_nested_attribute(self):
        assert import_reference("entitystate.rules:TrueRule.evaluate") is TrueRule.evaluate

    def test_missing_module(self):
        with pytest.raises(UnresolvedReference, match="cannot import module"):
            import_reference("no_such_package_xyz.Thing")

    def test_missing_attribute(self):
        with pytest.raises(UnresolvedReference, match="has no attribute"):
            import_reference("entitystate.rules.NoSuchRule")

    def test_bare_name(self):
        with pytest.raises(UnresolvedReference, match="not a registered name"):
            import_reference("justaname")


# ── ActionResolver ─────────────────────────────────────────────────────────────

class TestActionResolver:
    def test_none_and_empty_mean_no_action(self):
        resolver = ActionResolver()
        assert resolver.resolve_rule(None) is None
        assert resolver.resolve_command("") is None

    def test_builtins(self):
        resolver = ActionResolver()
        assert isinstance(resolver.resolve_rule("true"), TrueRule)
        assert isinstance(resolver.resolve_rule("false"), FalseRule)
        assert isinstance(resolver.resolve_command("null"), NullCommand)
        assert resolver.is_registered("true")

    def test_dotted_class_is_instantiated(self):
        command = ActionResolver().resolve_command(f"{__name__}.Counter")
        assert isinstance(command, Counter)

    def test_function_is_wrapped(self):
        resolver = ActionResolver()
        assert isinstance(resolver.resolve_rule(f"{__name__}:always_false"), CallableRule)
        assert isinstance(resolver.resolve_command(always_false), CallableCommand)

    def test_objects_used_as_is(self):
        rule = TrueRule()
        assert ActionResolver().resolve_rule(rule) is rule

    def test_string_references_are_cached(self):
        resolver = ActionResolver()
        first = resolver.resolve_command(f"{__name__}.Counter")
        assert resolver.resolve_command(f"{__name__}.Counter") is first

    def test_cache_is_per_kind(self):
        resolver = ActionResolver({"both": always_false})
        assert isinstance(resolver.resolve_rule("both"), CallableRule)
        assert isinstance(resolver.resolve_command("both"), CallableCommand)

    def test_registry_in_constructor(self):
        resolver = ActionResolver({"count": Counter})
        assert isinstance(resolver.resolve_command("count"), Counter)

    def test_register_replaces_cached_target(self):
        resolver = ActionResolver()
        resolver.register("check", TrueRule)
        assert isinstance(resolver.resolve_rule("check"), TrueRule)
        resolver.register("check", FalseRule)
        assert isinstance(resolver.resolve_rule("check"), FalseRule)

    def test_registered_alias_for_import_path(self):
        resolver = ActionResolver({"noop": "entitystate.commands.NullCommand"})
        assert isinstance(resolver.resolve_command("noop"), NullCommand)

    def test_register_empty_name_raises(self):
        with pytest.raises(ValueError):
            ActionResolver().register("", TrueRule)

    def test_rule_used_as_command_is_unresolvable(self):
        with pytest.raises(UnresolvedReference, match="execute"):
            ActionResolver().resolve_command("true")

    def test_class_needing_arguments_is_unresolvable(self):
        with pytest.raises(UnresolvedReference, match="cannot instantiate"):
            ActionResolver().resolve_command(f"{__name__}.NeedsArgs")

    def test_unknown_reference(self):
        with pytest.raises(UnresolvedReference):
            ActionResolver().resolve_rule("nowhere.to.be.found")

    def test_non_callable_object(self):
        with pytest.raises(UnresolvedReference):
            ActionResolver().resolve_rule(42)


# ── Built-in rules and commands ────────────────────────────────────────────────

class TestBuiltins:
    def test_protocols(self):
        assert isinstance(TrueRule(), Rule)
        assert isinstance(NullCommand(), Command)
        assert not isinstance(TrueRule(), Command)

    def test_all_rules(self):
        assert AllRules([TrueRule(), TrueRule()]).evaluate(None) is True
        assert AllRules([TrueRule(), FalseRule()]).evaluate(None) is False
        assert AllRules([]).evaluate(None) is True

    def test_all_rules_stops_at_first_false(self):
        seen = []
        rules = [FalseRule(), CallableRule(lambda ctx: seen.append(ctx) or True)]
        assert AllRules(rules).evaluate(None) is False
        assert seen == []

    def test_callable_rule_coerces_to_bool(self):
        assert CallableRule(lambda ctx: "yes").evaluate(None) is True
        assert CallableRule(lambda ctx: 0).evaluate(None) is False

    def test_composite_command_runs_in_order(self):
        calls = []
        composite = CompositeCommand([
            CallableCommand(lambda ctx: calls.append("first")),
            CallableCommand(lambda ctx: calls.append("second")),
        ])
        assert composite.execute(None) is True
        assert calls == ["first", "second"]

    def test_composite_command_stops_at_failure(self):
        counter = Counter()
        composite = CompositeCommand([CallableCommand(always_false), counter])
        assert composite.execute(None) is False
        assert counter.calls == 0
