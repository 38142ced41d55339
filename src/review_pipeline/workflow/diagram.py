"""Mermaid diagrams for workflow definitions."""

from __future__ import annotations

import re
from typing import Final

from jinja2 import Environment, StrictUndefined

from review_pipeline.workflow.definition import WorkflowDefinition

_MERMAID_TEMPLATE: Final[str] = """graph TD
{% for state in states %}    {{ state.id }}[{{ state.name }}<br/>{{ state.label }}]
{% endfor %}

{% for edge in edges %}    {{ edge.source }} -->|{{ edge.name }}| {{ edge.target }}
{% endfor %}

    %% Style end states
    classDef endState fill:#e5f5e5,stroke:#2d5a2d,stroke-width:2px
{% if terminal %}
    class {{ terminal | join(",") }} endState
{% endif %}"""

_UNSAFE_ID = re.compile(r"[^A-Za-z0-9_]")

_environment = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=False,
    newline_sequence="\n",
    keep_trailing_newline=True,
)


def _node_id(name: str) -> str:
    return _UNSAFE_ID.sub("_", name)


def _label(text: str) -> str:
    return text.replace('"', "'").replace("[", "(").replace("]", ")")


def render_mermaid(definition: WorkflowDefinition, *, include_isolated: bool = False) -> str:
    """Render ``definition`` as a Mermaid ``graph TD``.

    States with no incoming or outgoing transitions are left out unless
    ``include_isolated`` is set. Terminal states get the ``endState`` class.
    """

    connected = {item.source for item in definition.transitions}
    connected.update(item.target for item in definition.transitions)
    names = [
        name for name in definition.states if include_isolated or name in connected
    ]
    states = [
        {"id": _node_id(name), "name": name, "label": _label(definition.states[name].label)}
        for name in names
    ]
    edges = [
        {
            "source": _node_id(item.source),
            "target": _node_id(item.target),
            "name": _label(item.name),
        }
        for item in definition.transitions
    ]
    terminal = [_node_id(name) for name in names if definition.is_terminal(name)]
    template = _environment.from_string(_MERMAID_TEMPLATE)
    return template.render(states=states, edges=edges, terminal=terminal)


__all__ = ["render_mermaid"]
