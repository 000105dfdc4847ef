"""Tests for runbook.resolver module."""

import pytest

from runbook.errors import NamedFragmentNotFound
from runbook.fragment import Fragment, FragmentType, StreamBinding
from runbook.resolver import Resolver, helper_name, wrap_part_name

from conftest import make_fragment


def names(fragments):
    return [f.name for f in fragments]


class TestLookup:
    def test_first_match_wins(self):
        first = make_fragment("a", ["echo first"], id="1")
        second = make_fragment("a", ["echo second"], id="2")
        resolver = Resolver([first, second])
        assert resolver.lookup("a") is first

    def test_nickname_takes_precedence(self):
        fragment = Fragment(id="1", public_name="long name", nickname="[short]")
        resolver = Resolver([fragment])
        assert resolver.lookup("[short]") is fragment
        assert resolver.lookup("long name") is None

    def test_missing_returns_none(self):
        assert Resolver([]).lookup("nothing") is None


class TestTransitiveRequirements:
    def test_diamond_visits_each_name_once(self):
        table = [
            make_fragment("A", requirements=["B", "C"]),
            make_fragment("B", requirements=["D"]),
            make_fragment("C", requirements=["D"]),
            make_fragment("D"),
        ]
        closure = Resolver(table).transitive_requirements(["B", "C"])
        assert sorted(closure) == ["B", "C", "D"]
        assert len(closure) == 3

    def test_cycle_terminates(self):
        table = [
            make_fragment("a", requirements=["b"]),
            make_fragment("b", requirements=["a"]),
        ]
        assert Resolver(table).transitive_requirements(["a"]) == ["a", "b"]

    def test_unknown_names_kept(self):
        assert Resolver([]).transitive_requirements(["ghost"]) == ["ghost"]


class TestResolve:
    def test_document_order_not_requirement_order(self):
        table = [
            make_fragment("c"),
            make_fragment("b"),
            make_fragment("a"),
            make_fragment("target", requirements=["a", "b", "c"]),
        ]
        assert names(Resolver(table).resolve("target")) == ["c", "b", "a", "target"]

    def test_only_wanted_fragments_selected(self):
        table = [
            make_fragment("unrelated"),
            make_fragment("dep"),
            make_fragment("target", requirements=["dep"]),
        ]
        assert names(Resolver(table).resolve("target")) == ["dep", "target"]

    def test_missing_target_raises(self):
        with pytest.raises(NamedFragmentNotFound) as exc_info:
            Resolver([]).resolve("nope")
        assert exc_info.value.name == "nope"
        assert "nope" in str(exc_info.value)

    def test_call_splices_tagged_helper_copy(self):
        helper = Fragment(id="h", nickname="[get-name]", type=FragmentType.YAML, body=[".name"])
        caller = make_fragment("caller", ["echo $NAME"], call="%(get-name <$DOC >$NAME)")
        resolved = Resolver([helper, caller]).resolve("caller")

        assert len(resolved) == 2
        assert resolved[0].name == "[get-name]"
        assert resolved[0].applied_call == "%(get-name <$DOC >$NAME)"
        assert resolved[1] is caller
        # The table entry itself is untouched
        assert helper.applied_call is None

    def test_call_with_missing_helper_is_omitted(self):
        caller = make_fragment("caller", ["echo"], call="%(ghost <$A >$B)")
        assert names(Resolver([caller]).resolve("caller")) == ["caller"]


class TestExpandWraps:
    def test_nesting_order(self):
        table = [
            make_fragment(name)
            for name in ["w1-before", "w1", "w1-after", "w2-before", "w2", "w2-after"]
        ]
        target = make_fragment("X", wraps=["w1", "w2"])
        resolver = Resolver(table + [target])

        assert names(resolver.expand_wraps([target])) == [
            "w1-before",
            "w2-before",
            "w1",
            "w2",
            "X",
            "w2",
            "w2-after",
            "w1",
            "w1-after",
        ]

    def test_missing_wrap_passes_through(self):
        target = make_fragment("X", wraps=["ghost"])
        assert Resolver([target]).expand_wraps([target]) == [target]

    def test_braced_wrap_names(self):
        table = [make_fragment("{t-before}"), make_fragment("{t}"), make_fragment("{t-after}")]
        target = make_fragment("X", wraps=["{t}"])
        expanded = Resolver(table + [target]).expand_wraps([target])
        assert names(expanded) == ["{t-before}", "{t}", "X", "{t}", "{t-after}"]

    def test_wrap_part_name(self):
        assert wrap_part_name("w", "before") == "w-before"
        assert wrap_part_name("{w}", "after") == "{w-after}"


class TestAssemble:
    def test_end_to_end(self):
        table = [
            make_fragment("one", ["echo a"]),
            make_fragment("two", ["echo b"], requirements=["one"]),
        ]
        assembly = Resolver(table).assemble("two", [])
        assert assembly.code_lines == ["echo a", "echo b"]

    def test_idempotent(self):
        table = [
            make_fragment("one", ["echo a"]),
            make_fragment("two", ["echo b"], requirements=["one", "ghost"], wraps=["w"]),
            make_fragment("w", ["set -x"]),
        ]
        resolver = Resolver(table)
        first = resolver.assemble("two", ["one"])
        second = resolver.assemble("two", ["one"])
        assert first.code_lines == second.code_lines
        assert first.unmet_dependencies == second.unmet_dependencies

    def test_navigation_types_emit_nothing(self):
        table = [
            make_fragment("v", ["A: 1"], type=FragmentType.VARS),
            make_fragment("o", ["shell: sh"], type=FragmentType.OPTS),
            make_fragment("l", ["file: x.md"], type=FragmentType.LINK, requirements=["v", "o"]),
        ]
        assert Resolver(table).assemble("l").code_lines == []

    def test_variable_stdout_heredoc(self):
        fragment = make_fragment(
            "data", ["a: 1", "b: 2"], type=FragmentType.YAML,
            stdout_binding=StreamBinding("DOC", is_variable=True),
        )
        assert Resolver([fragment]).assemble("data").code_lines == [
            'export DOC=$(cat <<"EOF"',
            "a: 1",
            "b: 2",
            "EOF",
            ")",
        ]

    def test_file_stdout_heredoc(self):
        fragment = make_fragment(
            "data", ["a: 1"], stdout_binding=StreamBinding("out.yml", is_variable=False)
        )
        assert Resolver([fragment]).assemble("data").code_lines == [
            "cat > 'out.yml' <<\"EOF\"",
            "a: 1",
            "EOF",
        ]

    def test_call_generates_query_line(self):
        helper = Fragment(id="h", nickname="[get-name]", type=FragmentType.YAML, body=[".name"])
        caller = make_fragment("caller", ["echo $NAME"], call="%(get-name <$DOC >$NAME)")
        assembly = Resolver([helper, caller]).assemble("caller")
        assert assembly.code_lines == [
            "export NAME=$(echo \"$DOC\" | yq '.name')",
            "echo $NAME",
        ]

    def test_call_with_file_bindings(self):
        helper = Fragment(id="h", nickname="[pick]", body=[".items"])
        caller = make_fragment("caller", [], call="%(pick <in.yml >out.yml)")
        assembly = Resolver([helper, caller]).assemble("caller")
        assert assembly.code_lines[0] == "yq e '.items' 'in.yml' > 'out.yml'"

    def test_port_lines(self, monkeypatch):
        monkeypatch.setenv("RB_PORT_A", "one two")
        monkeypatch.delenv("RB_PORT_B", raising=False)
        fragment = make_fragment("p", ["RB_PORT_A RB_PORT_B"], type=FragmentType.PORT)
        resolver = Resolver([fragment], port_format="export {key}={value}")
        assert resolver.assemble("p").code_lines == [
            "export RB_PORT_A='one two'",
            "export RB_PORT_B=''",
        ]

    def test_code_labels(self):
        fragment = make_fragment("my block", ["echo hi"])
        resolver = Resolver(
            [fragment],
            label_format_above="# >> {block_name}",
            label_format_below="# << {block_name}",
        )
        assert resolver.assemble("my block").code_lines == [
            "# >> my_block",
            "echo hi",
            "# << my_block",
        ]

    def test_unmet_dependencies(self):
        table = [
            make_fragment("a"),
            make_fragment("target", requirements=["a", "missing", "inherited"]),
        ]
        assembly = Resolver(table).assemble("target", ["inherited"])
        assert assembly.unmet_dependencies == ["missing"]

    def test_dependencies_map(self):
        table = [
            make_fragment("a", requirements=["b"]),
            make_fragment("b"),
            make_fragment("target", requirements=["a"]),
        ]
        assembly = Resolver(table).assemble("target")
        assert assembly.dependencies == {"target": ["a"], "a": ["b"], "b": []}

    def test_block_names(self):
        table = [make_fragment("a"), make_fragment("target", requirements=["a"])]
        assert Resolver(table).assemble("target").block_names == ["a", "target"]

    def test_missing_target_raises(self):
        with pytest.raises(NamedFragmentNotFound):
            Resolver([make_fragment("a")]).assemble("b")


class TestHelperName:
    def test_bracketed(self):
        assert helper_name("%(get-name <$A >$B)") == "[get-name]"

    def test_no_arguments(self):
        assert helper_name("%(solo)") == "[solo]"

    def test_not_a_call(self):
        assert helper_name("echo") is None
