"""Tests for runbook.executor module."""

import os

import pytest

from runbook.errors import LinkDirectiveError, NamedFragmentNotFound
from runbook.executor import BlockExecutor
from runbook.fragment import FragmentType
from runbook.navigation import LinkHistory, LinkState

from conftest import make_fragment


class Recorder:
    """Collects executor hook calls."""

    def __init__(self, approve: bool = True) -> None:
        self.reports: list[str] = []
        self.results = []
        self.approved: list[str] = []
        self._approve = approve

    def report(self, message: str) -> None:
        self.reports.append(message)

    def on_result(self, fragment, script, result) -> None:
        self.results.append((fragment.name, script, result))

    def approve(self, script: str) -> bool:
        self.approved.append(script)
        return self._approve


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def history():
    return LinkHistory()


@pytest.fixture
def executor(sample_config, history, runner, recorder):
    return BlockExecutor(
        sample_config,
        history,
        runner=runner,
        approve=recorder.approve,
        report=recorder.report,
        on_result=recorder.on_result,
    )


def link(name, *body, **kwargs):
    return make_fragment(name, list(body), type=FragmentType.LINK, **kwargs)


class TestExecuteShell:
    def test_runs_required_code_after_inherited_lines(self, executor, recorder):
        table = [
            make_fragment("one", ['echo "one $RB_X"']),
            make_fragment("two", ["echo two"], requirements=["one"]),
        ]
        state = LinkState(document_path="doc.md", inherited_lines=["RB_X=5"])
        next_state = executor.execute(executor.make_resolver(table), "two", state)

        name, script, result = recorder.results[0]
        assert name == "two"
        assert script == 'RB_X=5\necho "one $RB_X"\necho two'
        assert result.stdout == "one 5\ntwo\n"
        assert next_state.inherited_lines == ["RB_X=5"]
        assert next_state.document_path == "doc.md"
        assert next_state.block_name is None
        assert next_state.prior_was_link is False

    def test_failure_reported_not_raised(self, executor, recorder):
        table = [make_fragment("bad", ["exit 4"])]
        executor.execute(executor.make_resolver(table), "bad", LinkState())
        assert recorder.reports == ["bad: exited with status 4"]

    def test_declined_approval_skips_run(self, sample_config, history, runner):
        declining = Recorder(approve=False)
        sample_config.prompt_approve = True
        executor = BlockExecutor(
            sample_config,
            history,
            runner=runner,
            approve=declining.approve,
            on_result=declining.on_result,
        )
        table = [make_fragment("a", ["echo a"])]
        executor.execute(executor.make_resolver(table), "a", LinkState())
        assert declining.approved == ["echo a"]
        assert declining.results == []

    def test_unknown_block_raises(self, executor):
        with pytest.raises(NamedFragmentNotFound):
            executor.execute(executor.make_resolver([]), "ghost", LinkState())


class TestExecuteVars:
    def test_sets_environment_and_inherited_lines(self, executor, clean_env):
        table = [
            make_fragment(
                "env", ["RB_GREETING: hello world", "RB_NAME: bob"], type=FragmentType.VARS
            )
        ]
        state = LinkState(inherited_lines=["existing"])
        next_state = executor.execute(executor.make_resolver(table), "env", state)

        assert os.environ["RB_GREETING"] == "hello world"
        assert os.environ["RB_NAME"] == "bob"
        assert next_state.inherited_lines == [
            "existing",
            "RB_GREETING='hello world'",
            "RB_NAME=bob",
        ]

    def test_malformed_body(self, executor):
        table = [make_fragment("env", ["- not", "- a mapping"], type=FragmentType.VARS)]
        with pytest.raises(LinkDirectiveError):
            executor.execute(executor.make_resolver(table), "env", LinkState())


class TestExecuteOpts:
    def test_required_opts_merged_into_config(self, executor, sample_config):
        table = [
            make_fragment("base", ["timeout: 12"], type=FragmentType.OPTS),
            make_fragment(
                "opts", ["prompt_approve: true"], type=FragmentType.OPTS, requirements=["base"]
            ),
        ]
        executor.execute(executor.make_resolver(table), "opts", LinkState())
        assert sample_config.timeout == 12.0
        assert sample_config.prompt_approve is True


class TestExecuteLink:
    def test_push_current_and_jump(self, executor, history):
        table = [
            make_fragment("prep", ["echo prep"]),
            link("go", "file: other.md", "block: target", requirements=["prep"]),
        ]
        state = LinkState(
            document_path="main.md",
            inherited_lines=["A=1"],
            inherited_block_names=["zeta"],
            inherited_dependencies={"prep": ["old"]},
        )
        next_state = executor.execute(executor.make_resolver(table), "go", state)

        assert history.peek() == state
        assert next_state.document_path == "other.md"
        assert next_state.block_name == "target"
        assert next_state.prior_was_link is True
        assert next_state.inherited_lines == ["A=1", "echo prep"]
        assert next_state.inherited_block_names == ["go", "prep", "zeta"]
        # Existing dependency data is kept over the new entries
        assert next_state.inherited_dependencies == {"go": ["prep"], "prep": ["old"]}

    def test_no_file_stays_in_document(self, executor):
        table = [link("go", "next_block: b", "block: a")]
        state = LinkState(document_path="main.md")
        next_state = executor.execute(executor.make_resolver(table), "go", state)
        assert next_state.document_path == "main.md"
        assert next_state.block_name == "b"

    def test_vars(self, executor, clean_env):
        table = [link("set region", "vars:", "  RB_REGION: eu west")]
        next_state = executor.execute(executor.make_resolver(table), "set region", LinkState())
        assert os.environ["RB_REGION"] == "eu west"
        assert next_state.inherited_lines == ["# set region", "RB_REGION='eu west'"]

    def test_load_appends_file_lines(self, executor, tmp_path):
        extra = tmp_path / "extra.sh"
        extra.write_text("echo loaded\nexport Y=2\n")
        table = [link("go", f"load: {extra}")]
        next_state = executor.execute(executor.make_resolver(table), "go", LinkState())
        assert next_state.inherited_lines == ["echo loaded", "export Y=2"]

    def test_missing_load_reported_and_transition_happens(self, executor, recorder, tmp_path):
        table = [link("go", f"load: {tmp_path / 'missing.sh'}", "file: other.md")]
        next_state = executor.execute(executor.make_resolver(table), "go", LinkState())
        assert len(recorder.reports) == 1
        assert recorder.reports[0].startswith("Cannot load")
        assert next_state.document_path == "other.md"

    def test_save_writes_inherited_lines(self, executor, tmp_path):
        target = tmp_path / "saved.sh"
        table = [link("go", f"save: {target}")]
        state = LinkState(document_path="main.md", inherited_lines=["A=1", "B=2"])
        next_state = executor.execute(executor.make_resolver(table), "go", state)
        assert target.read_text() == "A=1\nB=2\n"
        assert next_state.document_path == "main.md"

    def test_save_failure_reported(self, executor, recorder, tmp_path):
        table = [link("go", f"save: {tmp_path / 'no' / 'such' / 'dir.sh'}", "file: b.md")]
        next_state = executor.execute(executor.make_resolver(table), "go", LinkState())
        assert recorder.reports[0].startswith("Cannot save")
        assert next_state.document_path == "b.md"

    def test_eval_replaces_code_with_output(self, executor):
        table = [
            make_fragment("emit", ["echo KEY=1", "echo junk", "echo OTHER=2"]),
            link(
                "capture",
                "eval: true",
                "pattern: '^(?P<k>[A-Z]+)=(?P<v>.*)$'",
                "format: 'export {k}={v}'",
                requirements=["emit"],
            ),
        ]
        state = LinkState(document_path="main.md", inherited_lines=["echo KEEP=0"])
        next_state = executor.execute(executor.make_resolver(table), "capture", state)
        assert next_state.inherited_lines == [
            "echo KEEP=0",
            "export KEEP=0",
            "export KEY=1",
            "export OTHER=2",
        ]

    def test_eval_with_undecodable_output(self, executor):
        table = [
            make_fragment("emit", [r"printf 'A=1\n\xff\n'"]),
            link("capture", "eval: true", requirements=["emit"]),
        ]
        next_state = executor.execute(executor.make_resolver(table), "capture", LinkState())
        assert next_state.inherited_lines == ["A=1", "�"]

    def test_exec_applies_assignment_filter(self, executor, sample_config):
        sample_config.output.assignment_begin = "^---$"
        sample_config.output.assignment_match = "^(?P<name>\\w+)=(?P<value>.*)$"
        sample_config.output.assignment_format = "{name}={value}"
        table = [
            make_fragment("emit", ["echo preamble", "echo ---", "echo A=1", "sleep 0.2", "echo B=2 >&2"]),
            link("capture", "exec: true", requirements=["emit"]),
        ]
        next_state = executor.execute(executor.make_resolver(table), "capture", LinkState())
        assert sorted(next_state.inherited_lines) == ["A=1", "B=2"]

    def test_malformed_directive(self, executor):
        table = [link("go", "just a string")]
        with pytest.raises(LinkDirectiveError):
            executor.execute(executor.make_resolver(table), "go", LinkState())


class TestReturn:
    def test_return_unwinds_to_caller(self, executor, history):
        caller = LinkState(
            block_name="deploy",
            document_path="a.md",
            inherited_lines=["A=1"],
            inherited_block_names=["a"],
            inherited_dependencies={"prep": ["from-a"]},
        )
        history.push(caller)
        table = [
            make_fragment("prep", ["echo prep"]),
            link("back", "return: true", requirements=["prep"]),
        ]
        current = LinkState(document_path="b.md", inherited_lines=["A=1", "B=2"])
        next_state = executor.execute(executor.make_resolver(table), "back", current)

        assert next_state.document_path == "a.md"
        assert next_state.block_name is None
        assert next_state.inherited_lines == ["A=1", "echo prep"]
        assert next_state.inherited_block_names == ["a", "back", "prep"]
        # The caller's dependency data wins
        assert next_state.inherited_dependencies["prep"] == ["from-a"]
        # The merged frame is pushed back for the caller's caller
        assert len(history) == 1
        assert history.peek() == next_state
        assert history.peek().block_name is None

    def test_return_pops_most_recent_frame(self, executor, history):
        history.push(LinkState(document_path="a.md"))
        history.push(LinkState(document_path="b.md", inherited_lines=["B=2"]))
        table = [link("back", "return: true")]
        next_state = executor.execute(
            executor.make_resolver(table), "back", LinkState(document_path="c.md")
        )
        assert next_state.document_path == "b.md"
        assert next_state.inherited_lines == ["B=2"]
        assert [history.pop().document_path, history.pop().document_path] == ["b.md", "a.md"]

    def test_return_without_caller_stays_in_document(self, executor, history):
        table = [
            make_fragment("prep", ["echo prep"]),
            link("back", "return: true", "file: elsewhere.md", requirements=["prep"]),
        ]
        current = LinkState(document_path="b.md", inherited_lines=["B=2"])
        next_state = executor.execute(executor.make_resolver(table), "back", current)

        assert next_state.document_path == "b.md"
        assert next_state.inherited_lines == ["B=2", "echo prep"]
        assert history.peek() == current
