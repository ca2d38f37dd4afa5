from __future__ import annotations

import pytest

from hostbridge.broker.core import CommandBroker
from hostbridge.broker.mode import ModeTracker
from hostbridge.broker.models import Command, normalise_context
from hostbridge.broker.router import ActionPolicy, ContextRouter


@pytest.fixture()
def mode() -> ModeTracker:
    return ModeTracker()


@pytest.fixture()
def router(mode: ModeTracker) -> ContextRouter:
    return ContextRouter(mode)


@pytest.mark.parametrize(
    "action, idle, active",
    [
        ("reload", "Edit", "Edit"),
        ("savePlace", "Edit", "Edit"),
        ("execute", "Edit", "Server"),
        ("ping", "Edit", "Server"),
        ("getState", "Edit", "Server"),
        ("somethingNew", "Edit", "Server"),
    ],
)
def test_resolve_target_per_mode(router, mode, action, idle, active) -> None:
    assert router.resolve_target(action) == idle
    mode.set_active(True)
    assert router.resolve_target(action) == active


def test_explicit_mode_argument_overrides_tracker(router, mode) -> None:
    assert router.resolve_target("execute", active=True) == "Server"
    mode.set_active(True)
    assert router.resolve_target("execute", active=False) == "Edit"


def test_edit_only_wins_over_other_classes(mode) -> None:
    router = ContextRouter(
        mode,
        edit_only=["execute"],
        active_preferred=["execute"],
        any_context=["execute"],
    )
    mode.set_active(True)
    assert router.policy_for("execute") is ActionPolicy.EDIT_ONLY
    assert router.resolve_target("execute") == "Edit"


def test_classify_reassigns_an_action(router, mode) -> None:
    router.classify("teleport", ActionPolicy.EDIT_ONLY)
    mode.set_active(True)
    assert router.resolve_target("teleport") == "Edit"
    assert "teleport" in router.describe()["edit_only"]


def test_describe_lists_every_policy(router) -> None:
    table = router.describe()
    assert set(table) == {policy.value for policy in ActionPolicy}
    assert table["edit_only"] == ["reload", "savePlace"]
    assert table["active_preferred"] == ["execute"]
    assert table["default"] == []


@pytest.mark.parametrize(
    "target, poller, expected",
    [
        ("Edit", "Edit", True),
        ("Edit", "edit", True),
        ("Edit", "Server", False),
        ("Server", "Client", False),
        ("any", "Client", True),
        ("any", "Server", True),
    ],
)
def test_is_deliverable(router, target, poller, expected) -> None:
    command = Command(id="x", action="noop", target_context=target)
    assert router.is_deliverable(command, poller) is expected


def test_deliverable_targets(router) -> None:
    assert router.deliverable_targets("server") == ("Server", "any")
    assert router.deliverable_targets("Edit") == ("Edit", "any")
    assert router.deliverable_targets("ANY") == ("any",)


class ClientCoversServer(ContextRouter):
    """Lets an active-mode client pick up server work."""

    def deliverable_targets(self, poller_context):
        targets = super().deliverable_targets(poller_context)
        if targets[0] == "Client":
            return ("Client", "Server") + targets[1:]
        return targets


def test_router_override_changes_what_a_poll_claims(mode) -> None:
    router = ClientCoversServer(mode)
    broker = CommandBroker(router=router)
    mode.set_active(True)
    server_work = Command(id="s1", action="execute", target_context="Server")
    broker.queue.enqueue(server_work)

    assert router.is_deliverable(server_work, "Client") is True
    assert ContextRouter(mode).is_deliverable(server_work, "Client") is False
    claimed = broker.poll("Client")
    assert claimed is not None and claimed.id == "s1"
    assert broker.poll("Server") is None


def test_normalise_context_spellings() -> None:
    assert normalise_context("SERVER") == "Server"
    assert normalise_context(" client ") == "Client"
    assert normalise_context("ANY") == "any"
    assert normalise_context("") == "Edit"
    assert normalise_context(None, default="Server") == "Server"
    assert normalise_context("Studio") == "Studio"


def test_mode_tracker_reports_changes_only(mode) -> None:
    assert mode.set_active(True) is True
    assert mode.set_active(True, source="caller") is False
    snapshot = mode.snapshot()
    assert snapshot["isPlaying"] is True
    assert snapshot["source"] == "caller"
    assert snapshot["changedAt"] is not None
    assert mode.set_active(False) is True
    assert mode.active is False
