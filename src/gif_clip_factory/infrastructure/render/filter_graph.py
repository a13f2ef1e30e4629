from __future__ import annotations

import re
from dataclasses import dataclass, field

_NAME_RE = re.compile(r"^[a-z][a-z0-9_]*$")
_LABEL_RE = re.compile(r"^[0-9A-Za-z_:.]+$")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f]+")


def _escape_option(value: str) -> str:
    # first level: inside a single filter option
    return value.replace("\\", "\\\\").replace("'", "\\'").replace(":", "\\:")


def _escape_graph(value: str) -> str:
    # second level: inside the filtergraph description
    out = value.replace("\\", "\\\\")
    for ch in "'[],;":
        out = out.replace(ch, "\\" + ch)
    return out


def escape_filter_text(text: str) -> str:
    """Escape user text so it can only ever be a literal option value."""
    flattened = _CONTROL_RE.sub(" ", text)
    return _escape_graph(_escape_option(flattened))


def _format_value(value: object) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return format(value, "g")
    return escape_filter_text(str(value))


@dataclass(slots=True, frozen=True)
class FilterStage:
    name: str
    options: tuple[tuple[str, object], ...] = ()

    def __post_init__(self) -> None:
        if not _NAME_RE.match(self.name):
            raise ValueError(f"invalid filter name: {self.name!r}")
        for key, _ in self.options:
            if not _NAME_RE.match(key):
                raise ValueError(f"invalid option name for {self.name}: {key!r}")

    def render(self) -> str:
        if not self.options:
            return self.name
        opts = ":".join(f"{key}={_format_value(value)}" for key, value in self.options)
        return f"{self.name}={opts}"


def stage(name: str, **options: object) -> FilterStage:
    return FilterStage(name, tuple((k, v) for k, v in options.items() if v is not None))


@dataclass(slots=True)
class FilterChain:
    inputs: list[str]
    stages: list[FilterStage]
    outputs: list[str] = field(default_factory=list)

    def render(self) -> str:
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        return f"{ins}{','.join(s.render() for s in self.stages)}{outs}"


class FilterGraphBuilder:
    """Ordered list of labelled filter chains rendered to a -filter_complex string."""

    def __init__(self) -> None:
        self._chains: list[FilterChain] = []

    def chain(self, inputs: list[str], stages: list[FilterStage], outputs: list[str]) -> FilterGraphBuilder:
        if not stages:
            raise ValueError("a filter chain needs at least one stage")
        for label in [*inputs, *outputs]:
            if not _LABEL_RE.match(label):
                raise ValueError(f"invalid pad label: {label!r}")
        self._chains.append(FilterChain(list(inputs), list(stages), list(outputs)))
        return self

    @property
    def chains(self) -> list[FilterChain]:
        return list(self._chains)

    def build(self) -> str:
        produced: set[str] = set()
        for chain in self._chains:
            for label in chain.inputs:
                if ":" not in label and label not in produced:
                    raise ValueError(f"pad [{label}] is consumed before it is produced")
                produced.discard(label)
            produced.update(chain.outputs)
        return ";".join(chain.render() for chain in self._chains)
