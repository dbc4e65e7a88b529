"""Tests for YAML workflow templates."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from stepwise.errors import InvalidGraphError, NotFoundError
from stepwise.templates import import_template, load_template, parse_template

FIXTURES = Path(__file__).parent.parent / "fixtures"


def test_load_template():
    workflow, nodes = load_template(FIXTURES / "review.yaml")
    assert workflow.id == 1
    assert workflow.title == "Expense review"
    assert [n.id for n in nodes] == [1, 2, 3, 4, 5]
    assert all(n.workflow_id == 1 for n in nodes)
    assert nodes[0].config["calculation"]["operands"] == [{"$context": "amount"}, 100]
    assert nodes[3].branch_index == 1


def test_cyclic_template_rejected():
    with pytest.raises(InvalidGraphError):
        load_template(FIXTURES / "cyclic.yaml")


def test_dangling_reference_rejected():
    with pytest.raises(NotFoundError):
        parse_template({"id": 1, "nodes": [{"id": 1, "type": "echo", "downstream_id": 7}]})


def test_template_requires_node_type():
    with pytest.raises(ValidationError):
        parse_template({"id": 1, "nodes": [{"id": 1}]})


@pytest.mark.asyncio
async def test_import_template_replaces_nodes(repo, tmp_path):
    await import_template(repo, FIXTURES / "review.yaml")
    smaller = tmp_path / "small.yaml"
    smaller.write_text("id: 1\nnodes:\n  - {id: 1, type: echo}\n")

    workflow = await import_template(repo, smaller)

    assert workflow.title is None
    assert [n.id for n in await repo.load_nodes(1)] == [1]
