import logging

import pytest
import torch
from nestor.core.tree import (
    DepthExceededError,
    InvalidShapeError,
    ShapeMismatchError,
    from_pytree,
    tree_leaves,
    tree_leaves_with_path,
    tree_map,
    tree_structure_equal,
)
from nestor.core.types import Branch, Leaf
from nestor.nested import AggregationMode, NestedOperatorAdapter, NestedOperatorConfig
from nestor_test.util import HookedOperator, IdentityOperator, ScaleOperator, chain, grid
from pydantic import ValidationError


@pytest.mark.local
@pytest.mark.parametrize(
    "tree",
    [
        Leaf(torch.randn(3)),
        Branch(),
        grid(4),
        grid(2, 3, 2),
        Branch({"a": Leaf(torch.randn(2)), "b": Branch({"c": Branch(), "d": chain(4, torch.randn(1))})}),
    ],
)
def test_identity_forward(tree):
    adapter = NestedOperatorAdapter(IdentityOperator())

    output = adapter.forward(tree)

    assert tree_structure_equal(tree, output)
    for original, produced in zip(tree_leaves(tree), tree_leaves(output), strict=True):
        assert torch.equal(original, produced)
    assert adapter.output is output


@pytest.mark.local
def test_doubling_forward_and_backward():
    tensor_a = torch.randn(3)
    tensor_b = torch.randn(2, 2)
    tree = from_pytree({"a": tensor_a, "b": tensor_b})
    adapter = NestedOperatorAdapter(ScaleOperator(2.0))

    output = adapter(tree)

    assert list(output) == ["a", "b"]
    assert torch.equal(output["a"].value, 2 * tensor_a)
    assert torch.equal(output["b"].value, 2 * tensor_b)

    grad_output = from_pytree({"a": torch.ones(3), "b": torch.ones(2, 2)})
    grad_input = adapter.backward(tree, grad_output)

    assert torch.equal(grad_input["a"].value, torch.full((3,), 2.0))
    assert torch.equal(grad_input["b"].value, torch.full((2, 2), 2.0))
    assert adapter.grad_input is grad_input


@pytest.mark.local
def test_backward_pairs_leaves_by_key():
    operator = ScaleOperator(1.0)
    adapter = NestedOperatorAdapter(operator)
    tree = Branch({"x": Leaf(torch.tensor([1.0])), "y": Leaf(torch.tensor([2.0]))})
    # same keys, different insertion order
    grad_output = Branch({"y": Leaf(torch.tensor([20.0])), "x": Leaf(torch.tensor([10.0]))})

    adapter.backward(tree, grad_output)

    assert [(x.item(), g.item()) for x, g in operator.backward_calls] == [(1.0, 10.0), (2.0, 20.0)]


@pytest.mark.local
@pytest.mark.parametrize("scale", [1.0, 0.5, -3.0])
def test_accumulate_parameters_visits_every_leaf_once(scale):
    operator = ScaleOperator(2.0)
    adapter = NestedOperatorAdapter(operator)
    tree = grid(2, 3)
    grad_output = tree_map(torch.ones_like, tree)

    result = adapter.accumulate_parameters(tree, grad_output, scale)

    assert result is None
    assert len(operator.accumulate_calls) == 6
    assert all(call_scale == scale for _, _, call_scale in operator.accumulate_calls)
    expected_inputs = [leaf for _, leaf in tree_leaves_with_path(tree)]
    for (x, _, _), expected in zip(operator.accumulate_calls, expected_inputs, strict=True):
        assert x is expected


@pytest.mark.local
def test_depth_exceeded_never_calls_operator():
    operator = ScaleOperator(2.0)
    adapter = NestedOperatorAdapter(operator, NestedOperatorConfig(max_depth=3))
    tree = Branch({"fine": Leaf(torch.zeros(1)), "too_deep": chain(4, torch.zeros(1))})

    with pytest.raises(DepthExceededError) as exc:
        adapter.forward(tree)

    assert exc.value.configured == 3
    assert exc.value.reached == 4
    assert operator.forward_calls == []
    assert adapter.output is None

    with pytest.raises(DepthExceededError):
        adapter.backward(tree, tree)
    assert operator.backward_calls == []

    with pytest.raises(DepthExceededError):
        adapter.accumulate_parameters(tree, tree, 1.0)
    assert operator.accumulate_calls == []


@pytest.mark.local
def test_default_max_depth():
    adapter = NestedOperatorAdapter(IdentityOperator())

    assert adapter.max_depth == 10
    adapter.forward(chain(10, torch.zeros(1)))

    with pytest.raises(DepthExceededError):
        adapter.forward(chain(11, torch.zeros(1)))


@pytest.mark.local
def test_invalid_shape():
    adapter = NestedOperatorAdapter(IdentityOperator())

    with pytest.raises(InvalidShapeError):
        adapter.forward(Branch({"a": "nope"}))

    with pytest.raises(InvalidShapeError):
        adapter.forward(torch.zeros(1))


@pytest.mark.local
def test_backward_shape_mismatch():
    operator = ScaleOperator(2.0)
    adapter = NestedOperatorAdapter(operator)
    tree = grid(2, 2)
    grad_output = grid(2, 3)

    with pytest.raises(ShapeMismatchError) as exc:
        adapter.backward(tree, grad_output)

    assert exc.value.path == (0,)
    assert operator.backward_calls == []


@pytest.mark.local
def test_operator_error_is_not_wrapped():
    class FailingOperator(IdentityOperator):
        def forward(self, x):
            raise ValueError("size mismatch")

    adapter = NestedOperatorAdapter(FailingOperator())

    with pytest.raises(ValueError, match="size mismatch") as exc:
        adapter.forward(Branch({"k": Leaf(torch.zeros(1))}))

    assert type(exc.value) is ValueError
    assert any("at k" in note for note in exc.value.__notes__)


@pytest.mark.local
def test_rejects_non_operator():
    with pytest.raises(TypeError, match="accumulate_parameters"):
        NestedOperatorAdapter(object())


@pytest.mark.local
@pytest.mark.parametrize("mode", [AggregationMode.flatten, AggregationMode.mean])
def test_reserved_aggregation_modes(mode):
    with pytest.raises(NotImplementedError, match="reserved"):
        NestedOperatorAdapter(IdentityOperator(), NestedOperatorConfig(aggregation=mode))


@pytest.mark.local
def test_config_validation():
    config = NestedOperatorConfig(max_depth=4, aggregation="preserve")
    assert config.aggregation is AggregationMode.preserve

    with pytest.raises(ValidationError):
        NestedOperatorConfig(max_depth=-1)

    with pytest.raises(ValidationError):
        NestedOperatorConfig(aggregation="stack")

    with pytest.raises(ValidationError):
        config.max_depth = 20

    adapter = NestedOperatorAdapter(IdentityOperator(), config)
    assert adapter.config is config
    assert adapter.max_depth == 4
    assert adapter.aggregation is AggregationMode.preserve


@pytest.mark.local
def test_hooks_are_forwarded():
    operator = HookedOperator()
    adapter = NestedOperatorAdapter(operator)
    adapter.forward(grid(2))

    adapter.reset(7)
    assert operator.reset_seeds == [7]

    assert adapter.to(torch.float64) is adapter
    assert operator.to_calls == [((torch.float64,), {})]

    assert adapter.clear_state() is adapter
    assert operator.clear_count == 1
    assert adapter.output is None


@pytest.mark.local
def test_hooks_are_noops_when_missing():
    adapter = NestedOperatorAdapter(IdentityOperator())

    adapter.reset(1)
    assert adapter.to("cpu") is adapter
    assert adapter.clear_state() is adapter


@pytest.mark.local
def test_adapter_is_reusable():
    operator = ScaleOperator(3.0)
    adapter = NestedOperatorAdapter(operator)

    first = adapter.forward(grid(2))
    second = adapter.forward(grid(3, 1))

    assert len(first) == 2
    assert len(second) == 3
    assert len(operator.forward_calls) == 5
    assert adapter.config == NestedOperatorConfig()


@pytest.mark.local
def test_construction_is_logged(caplog):
    with caplog.at_level(logging.DEBUG, logger="nestor"):
        NestedOperatorAdapter(IdentityOperator(), NestedOperatorConfig(max_depth=2))

    assert "IdentityOperator" in caplog.text
    assert "max_depth=2" in caplog.text


@pytest.mark.local
def test_passes_log_tree_summary(caplog):
    adapter = NestedOperatorAdapter(ScaleOperator(2.0))
    inputs = grid(2, 3)

    with caplog.at_level(logging.DEBUG, logger="nestor"):
        outputs = adapter.forward(inputs)
        adapter.backward(inputs, outputs)
        adapter.accumulate_parameters(inputs, outputs)

    messages = [record.getMessage() for record in caplog.records]
    assert "forward: 6 leaves, depth 2 (max_depth=10)" in messages
    assert "backward: 6 leaves, depth 2 (max_depth=10)" in messages
    assert "accumulate_parameters: 6 leaves, depth 2 (max_depth=10)" in messages


@pytest.mark.local
def test_passes_skip_summary_above_debug(caplog):
    adapter = NestedOperatorAdapter(IdentityOperator())

    with caplog.at_level(logging.INFO, logger="nestor"):
        adapter.forward(grid(2))

    assert not caplog.records
