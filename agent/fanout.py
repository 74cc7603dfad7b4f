"""Concurrent fan-out/gather over tracked names.

Flow for report(names, annotate):
    1. empty names -> "nothing tracked" report, no network calls
    2. fetch every name concurrently; each call yields an Outcome, never raises
    3. partition into entries / errors, keyed by the originating name
    4. stable sort entries by rank, descending
    5. optionally annotate every entry concurrently via one-shot completions;
       a failed annotation leaves that entry un-annotated
    6. render entries then errors

Both gathers are index-aligned: the i-th outcome belongs to the i-th input
whatever order the calls finish in.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, List, Optional, Sequence

from agent.errors import RelayError
from agent.inference_client import InferenceClient
from agent.resource_client import ResourceClient, ResourceSnapshot
from gateway.store import ConversationStore
from relay_constants import DEFAULT_REALM_TITLE

logger = logging.getLogger(__name__)

NOTHING_TRACKED_MESSAGE = (
    "No characters tracked. Use `!addcharacter <name>` to add one."
)

ANNOTATION_PROMPT = (
    "Give a 1-5 word insult for a level {rank} {label} named {name}. "
    "Reply with ONLY the insult, nothing else."
)


@dataclass
class Outcome:
    """Tagged result of one fan-out call: exactly one of value/error is set."""

    name: str
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ReportEntry:
    name: str
    rank: int
    label: str
    annotation: Optional[str] = None

    def render(self) -> str:
        line = f"  {self.name} — Level {self.rank} {self.label}"
        if self.annotation:
            line += f" — *{self.annotation}*"
        return line


@dataclass
class ReportError:
    name: str
    message: str

    def render(self) -> str:
        return f"  ⚠ {self.name}: {self.message}"


@dataclass
class FormattedReport:
    title: str = DEFAULT_REALM_TITLE
    entries: List[ReportEntry] = field(default_factory=list)
    errors: List[ReportError] = field(default_factory=list)
    empty: bool = False

    def render(self) -> str:
        if self.empty:
            return NOTHING_TRACKED_MESSAGE
        lines = [f"**Level Check — {self.title}**"]
        lines.extend(entry.render() for entry in self.entries)
        lines.extend(err.render() for err in self.errors)
        return "\n".join(lines) + "\n"


async def _capture(name: str, call: Awaitable) -> Outcome:
    """Await ``call`` and wrap its result or relay error as an Outcome."""
    try:
        return Outcome(name=name, value=await call)
    except RelayError as e:
        return Outcome(name=name, error=e)


class FanoutOrchestrator:
    """Builds level-check reports for a set of tracked names.

    Args:
        resources: Profile client used for every name.
        inference: Optional completion client for annotations.
        store: Optional store supplying the system prompt for annotations.
        title: Heading shown at the top of the rendered report.
    """

    def __init__(
        self,
        resources: ResourceClient,
        inference: Optional[InferenceClient] = None,
        store: Optional[ConversationStore] = None,
        *,
        title: str = DEFAULT_REALM_TITLE,
    ):
        self._resources = resources
        self._inference = inference
        self._store = store
        self._title = title

    async def report(self, names: Sequence[str], annotate: bool) -> FormattedReport:
        names = list(names)
        if not names:
            return FormattedReport(title=self._title, empty=True)

        outcomes = await asyncio.gather(
            *(_capture(name, self._resources.fetch(name)) for name in names)
        )

        entries: List[ReportEntry] = []
        errors: List[ReportError] = []
        for outcome in outcomes:
            if outcome.ok:
                snap: ResourceSnapshot = outcome.value
                entries.append(ReportEntry(snap.name, snap.rank, snap.label))
            else:
                errors.append(ReportError(outcome.name, str(outcome.error)))

        # list.sort is stable: equal ranks keep fetch order
        entries.sort(key=lambda e: e.rank, reverse=True)

        if annotate and entries and self._inference is not None and self._inference.configured:
            await self._annotate(entries)

        logger.info(
            "Level check: %d entries, %d errors (annotate=%s)",
            len(entries), len(errors), annotate,
        )
        return FormattedReport(title=self._title, entries=entries, errors=errors)

    async def _annotate(self, entries: List[ReportEntry]) -> None:
        system_prompt = self._system_prompt()
        outcomes = await asyncio.gather(
            *(
                _capture(
                    entry.name,
                    self._inference.complete_once(
                        system_prompt,
                        ANNOTATION_PROMPT.format(
                            rank=entry.rank, label=entry.label, name=entry.name
                        ),
                    ),
                )
                for entry in entries
            )
        )
        for entry, outcome in zip(entries, outcomes):
            if outcome.ok:
                entry.annotation = outcome.value.strip() or None
            else:
                logger.debug("No annotation for %s: %s", entry.name, outcome.error)

    def _system_prompt(self) -> str:
        if self._store is None:
            return ""
        try:
            return self._store.get_system_prompt()
        except RelayError as e:
            logger.warning("Could not read system prompt for annotations: %s", e)
            return ""
