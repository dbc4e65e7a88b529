"""Tests for the built-in node types."""

import pytest

from stepwise.constants import ExecutionStatus, JobStatus
from stepwise.engine import ExecutionEngine
from stepwise.errors import ExecutionEndedError
from stepwise.instructions.condition import evaluate, get_path
from stepwise.persistence.models import Node, Workflow


def _node(id, type, upstream=None, downstream=None, branch=None, **config):
    return Node(
        id=id,
        workflow_id=1,
        type=type,
        upstream_id=upstream,
        downstream_id=downstream,
        branch_index=branch,
        config=config,
    )


def _gt(path, value):
    return {"calculator": "gt", "operands": [{"$context": path}, value]}


async def _run(repo, nodes, context=None):
    await repo.save_workflow(Workflow(id=1), nodes)
    execution = await repo.create_execution(1, context)
    engine = ExecutionEngine(repo)
    await engine.start(execution)
    jobs = {job.node_id: job for job in await repo.load_jobs(execution.id)}
    return engine, execution, jobs


# ----------------------------------------------------------------------
# condition


def test_evaluate_calculators_and_groups() -> None:
    scope = {"$context": {"user": {"roles": ["admin"], "name": "ada"}}, "$input": 3}
    assert evaluate({"calculator": "includes", "operands": [{"$context": "user.roles"}, "admin"]}, scope)
    assert evaluate({"calculator": "startsWith", "operands": [{"$context": "user.name"}, "a"]}, scope)
    assert evaluate({"calculator": "lte", "operands": [{"$input": None}, 3]}, scope)
    assert evaluate({"calculator": "empty", "operands": [{"$context": "user.email"}]}, scope)
    assert not evaluate({"calculator": "notEqual", "operands": [1, 1]}, scope)

    group = {
        "group": {
            "type": "or",
            "calculations": [
                {"calculator": "equal", "operands": [1, 2]},
                {"calculator": "gt", "operands": [{"$input": None}, 2]},
            ],
        }
    }
    assert evaluate(group, scope)
    group["group"]["type"] = "and"
    assert not evaluate(group, scope)


def test_evaluate_unknown_calculator() -> None:
    with pytest.raises(ValueError):
        evaluate({"calculator": "bogus", "operands": []}, {})


def test_get_path() -> None:
    data = {"items": [{"id": 1}, {"id": 2}]}
    assert get_path(data, "items.1.id") == 2
    assert get_path(data, "items.-1.id") == 2
    assert get_path(data, "items.5.id") is None
    assert get_path(data, "missing.path") is None
    assert get_path(data, None) is data


@pytest.mark.asyncio
async def test_condition_without_branches_resolves_with_outcome(repo):
    _, execution, jobs = await _run(
        repo,
        [_node(1, "condition", downstream=2, calculation=_gt("amount", 100)), _node(2, "echo", upstream=1)],
        context={"amount": 50},
    )
    assert jobs[1].status == JobStatus.RESOLVED
    assert jobs[1].result is False
    assert jobs[2].result is False
    assert execution.status == ExecutionStatus.RESOLVED


@pytest.mark.asyncio
async def test_condition_reject_on_false(repo):
    _, execution, jobs = await _run(
        repo,
        [
            _node(1, "condition", downstream=2, calculation=_gt("amount", 100), reject_on_false=True),
            _node(2, "echo", upstream=1),
        ],
        context={"amount": 50},
    )
    assert jobs[1].status == JobStatus.REJECTED
    assert 2 not in jobs
    assert execution.status == ExecutionStatus.REJECTED


def _branching_condition():
    return [
        _node(1, "condition", downstream=4, calculation=_gt("amount", 100)),
        _node(2, "echo", upstream=1, branch=1, value="large"),
        _node(3, "echo", upstream=1, branch=0, value="small"),
        _node(4, "echo", upstream=1),
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize("amount, taken, skipped, result", [(150, 2, 3, "large"), (50, 3, 2, "small")])
async def test_condition_enters_matching_branch(repo, amount, taken, skipped, result):
    _, execution, jobs = await _run(repo, _branching_condition(), context={"amount": amount})

    assert jobs[taken].result == result
    assert skipped not in jobs
    # the branch outcome becomes the condition outcome
    assert jobs[1].status == JobStatus.RESOLVED
    assert jobs[1].result == result
    assert jobs[4].result == result
    assert jobs[taken].upstream_id == jobs[1].id
    assert execution.status == ExecutionStatus.RESOLVED


@pytest.mark.asyncio
async def test_condition_waits_for_suspended_branch(repo):
    engine, execution, jobs = await _run(
        repo,
        [
            _node(1, "condition", downstream=3, calculation=_gt("amount", 100)),
            _node(2, "prompt", upstream=1, branch=1, form={"fields": ["approved"]}),
            _node(3, "echo", upstream=1, value="done"),
        ],
        context={"amount": 500},
    )
    assert jobs[1].status == JobStatus.PENDING
    assert jobs[2].status == JobStatus.PENDING
    assert jobs[2].result == {"fields": ["approved"]}
    assert execution.status == ExecutionStatus.STARTED

    completed = jobs[2].model_copy(update={"status": JobStatus.RESOLVED, "result": {"approved": True}})
    await engine.resume(execution, completed)

    jobs = {job.node_id: job for job in await repo.load_jobs(execution.id)}
    assert jobs[1].result == {"approved": True}
    assert jobs[3].result == "done"
    assert execution.status == ExecutionStatus.RESOLVED


# ----------------------------------------------------------------------
# parallel


def _parallel(mode, *branches, downstream=9):
    nodes = [_node(1, "parallel", downstream=downstream, mode=mode)]
    for index, (type, config) in enumerate(branches):
        nodes.append(_node(index + 2, type, upstream=1, branch=index, **config))
    if downstream:
        nodes.append(_node(downstream, "echo", upstream=1, value="after"))
    return nodes


_REJECT = ("condition", {"calculation": {"calculator": "equal", "operands": [1, 2]}, "reject_on_false": True})


@pytest.mark.asyncio
async def test_parallel_all_collects_every_branch(repo):
    _, execution, jobs = await _run(
        repo, _parallel("all", ("echo", {"value": "a"}), ("echo", {"value": "b"}))
    )
    assert jobs[1].status == JobStatus.RESOLVED
    assert jobs[1].result == [
        {"status": int(JobStatus.RESOLVED), "result": "a"},
        {"status": int(JobStatus.RESOLVED), "result": "b"},
    ]
    assert jobs[9].result == "after"
    assert execution.status == ExecutionStatus.RESOLVED


@pytest.mark.asyncio
async def test_parallel_all_fails_fast_and_skips_later_branches(repo):
    _, execution, jobs = await _run(repo, _parallel("all", _REJECT, ("echo", {"value": "b"})))
    assert jobs[1].status == JobStatus.REJECTED
    assert 3 not in jobs
    assert 9 not in jobs
    assert execution.status == ExecutionStatus.REJECTED


@pytest.mark.asyncio
async def test_parallel_any_tolerates_failed_branch(repo):
    _, execution, jobs = await _run(repo, _parallel("any", _REJECT, ("echo", {"value": "b"})))
    assert jobs[2].status == JobStatus.REJECTED
    assert jobs[1].status == JobStatus.RESOLVED
    assert execution.status == ExecutionStatus.RESOLVED


@pytest.mark.asyncio
async def test_parallel_any_rejects_when_all_branches_fail(repo):
    _, execution, jobs = await _run(repo, _parallel("any", _REJECT, _REJECT))
    assert jobs[1].status == JobStatus.REJECTED
    assert execution.status == ExecutionStatus.REJECTED


@pytest.mark.asyncio
async def test_parallel_race_takes_first_finished_branch(repo):
    engine, execution, jobs = await _run(
        repo, _parallel("race", ("prompt", {}), ("echo", {"value": "fast"}))
    )
    assert jobs[2].status == JobStatus.PENDING
    assert jobs[1].status == JobStatus.RESOLVED
    assert jobs[9].result == "after"
    assert execution.status == ExecutionStatus.RESOLVED

    # the execution is over, the slow branch can no longer be delivered
    with pytest.raises(ExecutionEndedError):
        await engine.resume(execution, jobs[2].model_copy(update={"status": JobStatus.RESOLVED}))


@pytest.mark.asyncio
async def test_parallel_prompts_join_after_every_resume(repo):
    engine, execution, jobs = await _run(
        repo,
        _parallel("all", ("prompt", {"form": "first"}), ("prompt", {"form": "second"})),
    )
    assert execution.status == ExecutionStatus.STARTED
    assert [jobs[2].result, jobs[3].result] == ["first", "second"]

    await engine.resume(execution, jobs[3].model_copy(update={"status": JobStatus.RESOLVED, "result": 2}))
    assert execution.status == ExecutionStatus.STARTED
    await engine.resume(execution, jobs[2].model_copy(update={"status": JobStatus.RESOLVED, "result": 1}))

    parallel_job = await repo.get_job(jobs[1].id)
    assert [entry["result"] for entry in parallel_job.result] == [1, 2]
    assert execution.status == ExecutionStatus.RESOLVED


@pytest.mark.asyncio
async def test_parallel_without_branches(repo):
    _, execution, jobs = await _run(repo, _parallel("all"))
    assert jobs[1].result == []
    assert execution.status == ExecutionStatus.RESOLVED


@pytest.mark.asyncio
async def test_parallel_unknown_mode_rejects_job(repo):
    _, execution, jobs = await _run(repo, _parallel("bogus", ("echo", {})))
    assert jobs[1].status == JobStatus.REJECTED
    assert jobs[1].result == "ValueError: unknown parallel mode 'bogus'"
    assert 2 not in jobs
    assert execution.status == ExecutionStatus.REJECTED


# ----------------------------------------------------------------------
# echo and prompt


@pytest.mark.asyncio
async def test_prompt_suspends_and_delivers_result(repo):
    engine, execution, jobs = await _run(
        repo,
        [_node(1, "prompt", downstream=2, form={"fields": ["comment"]}), _node(2, "echo", upstream=1)],
    )
    assert jobs[1].result == {"fields": ["comment"]}
    assert execution.status == ExecutionStatus.STARTED

    await engine.resume(
        execution, jobs[1].model_copy(update={"status": JobStatus.RESOLVED, "result": {"comment": "ok"}})
    )

    jobs = {job.node_id: job for job in await repo.load_jobs(execution.id)}
    assert jobs[2].result == {"comment": "ok"}
    assert execution.status == ExecutionStatus.RESOLVED
