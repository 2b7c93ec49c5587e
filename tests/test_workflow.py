"""Tests for the step runner."""

import pytest

from conftest import run
from storefront.workflow import Workflow


def recorder(log, name, result=None, error=None):
    async def action(results):
        log.append(name)
        if error:
            raise error
        return result
    return action


class TestWorkflow:
    def test_runs_steps_in_order(self):
        log = []
        outcome = run(
            Workflow("demo")
            .add("first", recorder(log, "first", 1))
            .best_effort("second", recorder(log, "second", 2))
            .add("third", recorder(log, "third", 3))
            .run()
        )
        assert log == ["first", "second", "third"]
        assert outcome.results == {"first": 1, "second": 2, "third": 3}
        assert outcome.completed == ["first", "second", "third"]
        assert outcome.ok

    def test_later_steps_see_earlier_results(self):
        async def double(results):
            return results["first"] * 2

        outcome = run(Workflow("demo").add("first", recorder([], "first", 21)).add("double", double).run())
        assert outcome.results["double"] == 42

    def test_best_effort_failure_continues(self):
        log = []
        outcome = run(
            Workflow("demo")
            .best_effort("notify", recorder(log, "notify", error=RuntimeError("smtp down")))
            .add("archive", recorder(log, "archive", "done"))
            .run()
        )
        assert log == ["notify", "archive"]
        assert outcome.failures == {"notify": "smtp down"}
        assert outcome.completed == ["archive"]
        assert not outcome.ok

    def test_fatal_failure_aborts(self):
        log = []
        workflow = (
            Workflow("demo")
            .add("persist", recorder(log, "persist", error=ValueError("write failed")))
            .best_effort("notify", recorder(log, "notify"))
        )
        with pytest.raises(ValueError, match="write failed"):
            run(workflow.run())
        assert log == ["persist"]
