"""
End-to-end tests for flow execution: ordering, skipping, cancellation and scrubbing.
"""

import json
from conftest import edge, make_flow, node, run_flow
from services.executor.engine.executor import FlowExecutor
from shared.types import FlowStatus, NodeStatus, SkipReason, TERMINAL_STATUSES


def statuses(result):
    return {nid: r.status for nid, r in result.node_results.items()}


def test_linear_chain_runs_in_dependency_order(registry, event_log):
    flow = make_flow(
        [node("T", "test-trigger", ok=True), node("A", value="{{T.ok}}"), node("B", value="{{A.value}}")],
        [edge("T", "A"), edge("A", "B")],
    )

    result = run_flow(registry, flow)

    assert result.overall_status == FlowStatus.SUCCESS
    assert statuses(result) == {"T": NodeStatus.SUCCESS, "A": NodeStatus.SUCCESS, "B": NodeStatus.SUCCESS}
    assert result.node_results["B"].outputs == {"value": True}
    assert event_log.time_of("finish", "A") <= event_log.time_of("start", "B")
    assert result.node_results["A"].finished_at <= result.node_results["B"].started_at


def test_validation_failure_runs_nothing(registry, event_log):
    """A cyclic flow is rejected before any node starts"""
    flow = make_flow([node("A"), node("B")], [edge("A", "B"), edge("B", "A")])

    result = run_flow(registry, flow)

    assert result.overall_status == FlowStatus.FAILURE
    assert result.error.code == "CyclicGraph"
    assert result.error.node_ids == ["A", "B"]
    assert set(statuses(result).values()) == {NodeStatus.PENDING}
    assert event_log.events == []


def test_unknown_node_type_is_failure(registry):
    result = run_flow(registry, make_flow([node("A", "nope")]))

    assert result.overall_status == FlowStatus.FAILURE
    assert result.error.code == "UnknownNodeType"


def test_error_skips_everything_downstream(registry, event_log):
    flow = make_flow(
        [node("A", "fail"), node("B"), node("C")],
        [edge("A", "B"), edge("B", "C")],
    )

    result = run_flow(registry, flow)

    assert result.overall_status == FlowStatus.PARTIAL_FAILURE
    assert result.node_results["A"].status == NodeStatus.ERROR
    assert result.node_results["A"].error.error_message == "boom"
    assert result.node_results["A"].outputs is None
    for node_id in ("B", "C"):
        assert result.node_results[node_id].status == NodeStatus.SKIPPED
        assert result.node_results[node_id].skip_reason == SkipReason.UPSTREAM_ERROR
    assert not event_log.started("B")


def test_continue_on_error_edge_runs_successor(registry):
    """References to a failed node resolve to None"""
    flow = make_flow(
        [node("A", "fail"), node("B", value="{{A.never}}")],
        [edge("A", "B", continueOnError=True)],
    )

    result = run_flow(registry, flow)

    assert result.node_results["A"].status == NodeStatus.ERROR
    assert result.node_results["B"].status == NodeStatus.SUCCESS
    assert result.node_results["B"].outputs == {"value": None}
    assert result.overall_status == FlowStatus.PARTIAL_FAILURE


def test_independent_branches_do_not_wait_for_each_other(registry, event_log):
    flow = make_flow(
        [node("A", sleep=0.3), node("B"), node("C"), node("D")],
        [edge("A", "B"), edge("C", "D")],
    )

    result = run_flow(registry, flow)

    assert result.overall_status == FlowStatus.SUCCESS
    assert event_log.time_of("finish", "D") < event_log.time_of("finish", "A")


def test_false_condition_skips_branch_and_flow_succeeds(registry, event_log):
    flow = make_flow(
        [node("T", "test-trigger", ok=False), node("A"), node("B")],
        [edge("T", "A", condition="output.ok == true"), edge("A", "B")],
    )

    result = run_flow(registry, flow)

    assert result.node_results["T"].status == NodeStatus.SUCCESS
    assert result.node_results["A"].status == NodeStatus.SKIPPED
    assert result.node_results["A"].skip_reason == SkipReason.CONDITION_NOT_MET
    assert result.node_results["B"].skip_reason == SkipReason.CONDITION_NOT_MET
    assert result.overall_status == FlowStatus.SUCCESS
    assert not event_log.started("A")


def test_true_condition_runs_branch(registry):
    flow = make_flow(
        [node("T", "test-trigger", ok=True), node("A")],
        [edge("T", "A", condition="output.ok == true")],
    )

    result = run_flow(registry, flow)

    assert result.node_results["A"].status == NodeStatus.SUCCESS


def test_condition_can_read_variables(registry):
    flow = make_flow(
        [node("T", "test-trigger"), node("A")],
        [edge("T", "A", condition="variables.env == 'prod'")],
        variables={"env": "staging"},
    )

    result = run_flow(registry, flow)

    assert result.node_results["A"].skip_reason == SkipReason.CONDITION_NOT_MET


def test_join_runs_when_any_branch_is_active(registry):
    flow = make_flow(
        [node("T", "test-trigger", ok=True), node("A"), node("B"), node("J")],
        [
            edge("T", "A", condition="output.ok == false"),
            edge("T", "B"),
            edge("A", "J"),
            edge("B", "J"),
        ],
    )

    result = run_flow(registry, flow)

    assert result.node_results["A"].skip_reason == SkipReason.CONDITION_NOT_MET
    assert result.node_results["J"].status == NodeStatus.SUCCESS
    assert result.overall_status == FlowStatus.SUCCESS


def test_join_is_skipped_when_a_branch_failed(registry):
    flow = make_flow(
        [node("F", "fail"), node("B"), node("J")],
        [edge("F", "J"), edge("B", "J")],
    )

    result = run_flow(registry, flow)

    assert result.node_results["B"].status == NodeStatus.SUCCESS
    assert result.node_results["J"].skip_reason == SkipReason.UPSTREAM_ERROR


def test_repeated_runs_give_same_results(registry):
    flow = make_flow(
        [node("T", "test-trigger", n=1), node("A", value="{{T.n}}"), node("F", "fail"), node("J", value="{{A.value}}")],
        [edge("T", "A"), edge("T", "F"), edge("A", "J"), edge("F", "J", continueOnError=True)],
    )

    first = run_flow(registry, flow)
    second = run_flow(registry, flow)

    def summary(result):
        return {
            nid: (r.status, r.outputs, r.skip_reason, r.error.error_message if r.error else None)
            for nid, r in result.node_results.items()
        }

    assert summary(first) == summary(second)
    assert first.execution_id != second.execution_id


def test_node_timeout_cancels_node(registry):
    flow = make_flow(
        [
            {"id": "S", "type": "slow", "staticInputs": {"seconds": 5}, "timeoutSeconds": 0.1},
            node("B"),
            node("C"),
        ],
        [edge("S", "B")],
    )

    result = run_flow(registry, flow)

    assert result.node_results["S"].status == NodeStatus.CANCELLED
    assert result.node_results["S"].outputs is None
    assert result.node_results["B"].skip_reason == SkipReason.UPSTREAM_CANCELLED
    assert result.node_results["C"].status == NodeStatus.SUCCESS
    assert result.overall_status == FlowStatus.PARTIAL_FAILURE


def test_flow_deadline_cancels_outstanding_nodes(registry):
    flow = make_flow(
        [node("S", "slow", seconds=5), node("B"), node("A")],
        [edge("S", "B")],
    )

    result = run_flow(registry, flow, flow_timeout_seconds=0.2)

    assert result.node_results["A"].status == NodeStatus.SUCCESS
    assert result.node_results["S"].status == NodeStatus.CANCELLED
    assert result.node_results["B"].status == NodeStatus.CANCELLED
    assert result.overall_status == FlowStatus.PARTIAL_FAILURE


def test_disabled_node_passes_through(registry, event_log):
    flow = make_flow(
        [node("A"), {"id": "D", "type": "echo", "disabled": True}, node("B")],
        [edge("A", "D"), edge("D", "B")],
    )

    result = run_flow(registry, flow)

    assert result.node_results["D"].status == NodeStatus.SKIPPED
    assert result.node_results["D"].skip_reason == SkipReason.DISABLED
    assert result.node_results["B"].status == NodeStatus.SUCCESS
    assert result.overall_status == FlowStatus.SUCCESS
    assert not event_log.started("D")


def test_secrets_never_appear_in_result(registry):
    secret = "sk-very-secret-value"
    flow = make_flow(
        [
            node("A", value="{{secrets.API_KEY}}", data="key={{secrets.API_KEY}}"),
            node("B", value="{{A.value}}"),
            node("F", "fail", message="rejected {{secrets.API_KEY}}"),
        ],
        [edge("A", "B")],
        secrets={"API_KEY": secret},
    )

    result = run_flow(registry, flow)

    assert result.node_results["A"].outputs == {"value": "[REDACTED]", "data": "key=[REDACTED]"}
    assert result.node_results["B"].outputs == {"value": "[REDACTED]"}
    assert result.node_results["F"].error.error_message == "rejected [REDACTED]"
    assert secret not in json.dumps(result.to_dict())


def test_concurrency_is_bounded(registry, event_log):
    flow = make_flow([node(f"N{i}", sleep=0.05) for i in range(6)])

    result = run_flow(registry, flow, max_concurrency=2)

    assert result.overall_status == FlowStatus.SUCCESS
    assert event_log.peak <= 2


def test_output_node_becomes_flow_output(registry):
    flow = make_flow(
        [node("T", "test-trigger", payload={"x": 1}), node("O", "output", body="{{T.payload}}")],
        [edge("T", "O")],
    )

    result = run_flow(registry, flow)

    assert result.output == {"body": {"x": 1}}


def test_missing_required_input_fails_only_that_node(registry):
    flow = make_flow([node("R", "requires-name"), node("A")])

    result = run_flow(registry, flow)

    assert result.node_results["R"].status == NodeStatus.ERROR
    assert result.node_results["R"].error.error_type == "MissingRequiredInput"
    assert result.node_results["A"].status == NodeStatus.SUCCESS


def test_edge_binding_carries_data(registry):
    flow = make_flow(
        [node("A", value="hello"), node("B")],
        [edge("A", "B", fromOutput="value", toInput="data")],
    )

    result = run_flow(registry, flow)

    assert result.node_results["B"].outputs == {"data": "hello"}


def test_non_mapping_output_is_wrapped(registry):
    result = run_flow(registry, make_flow([node("X", "scalar")]))

    assert result.node_results["X"].outputs == {"result": 42}


def test_async_plugin_runs_on_event_loop(registry):
    result = run_flow(registry, make_flow([node("S", "slow", seconds=0.01)]))

    assert result.node_results["S"].outputs == {"done": True}


def test_every_node_ends_terminal(registry):
    flow = make_flow(
        [node("T", "test-trigger", ok=False), node("A"), node("F", "fail"), node("B"), node("C")],
        [edge("T", "A", condition="output.ok"), edge("T", "F"), edge("F", "B"), edge("A", "C"), edge("B", "C")],
    )

    result = run_flow(registry, flow)

    assert all(r.status in TERMINAL_STATUSES for r in result.node_results.values())
    assert result.node_results["C"].skip_reason == SkipReason.UPSTREAM_ERROR


def test_execution_id_and_project_are_kept(registry):
    flow = make_flow([node("A")], projectId="proj-1")
    executor = FlowExecutor(registry=registry, max_concurrency=1)

    result = executor.execute_flow_sync(flow, execution_id="exec-fixed")

    assert result.execution_id == "exec-fixed"
    assert result.project_id == "proj-1"
    assert result.duration_ms >= 0


def test_timed_out_sync_node_does_not_block_later_nodes(registry, event_log):
    """An abandoned blocking call keeps its thread; the next node still gets one"""
    flow = make_flow([
        {"id": "A", "type": "echo", "staticInputs": {"sleep": 1.0}, "timeoutSeconds": 0.2},
        {"id": "B", "type": "echo", "staticInputs": {"value": 1}, "timeoutSeconds": 0.5},
    ])

    result = run_flow(registry, flow, max_concurrency=1)

    assert result.node_results["A"].status == NodeStatus.CANCELLED
    assert result.node_results["B"].status == NodeStatus.SUCCESS
    assert result.node_results["B"].outputs == {"value": 1}
    assert event_log.started("B")


def test_inactive_data_edge_binds_nothing(registry):
    flow = make_flow(
        [node("T", "test-trigger", ok=True), node("B"), node("J")],
        [
            edge("T", "J", condition="output.ok == false", fromOutput="ok", toInput="data"),
            edge("T", "B"),
            edge("B", "J"),
        ],
    )

    result = run_flow(registry, flow)

    assert result.node_results["J"].status == NodeStatus.SUCCESS
    assert result.node_results["J"].outputs == {}
