"""Direct messages between players, delivered as ephemeral notifications."""

from __future__ import annotations

from ..domain.operations import Operation
from ..domain.state import DomainState
from ._payload import require_str
from .changes import Changes, RuleContext


def send_message(state: DomainState, op: Operation, ctx: RuleContext) -> Changes:
    changes = Changes(state, op, ctx)
    to = require_str(op.data, "to")
    content = require_str(op.data, "content")
    kind = require_str(op.data, "type")

    changes.notify(to, content, kind=kind, is_html=bool(op.data.get("isHtml", False)))
    return changes
