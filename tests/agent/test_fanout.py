"""Tests for FanoutOrchestrator — concurrent level-check reports.

Covers:
    - Empty input short-circuits with no calls
    - Rank-descending order, stable on ties, independent of completion order
    - Per-name failures isolated into the error list
    - Annotations: applied, skipped, and degraded per entry
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from agent.credential_cache import CredentialCache
from agent.errors import ResourceNotFound, UpstreamError, UpstreamUnreachable
from agent.fanout import (
    NOTHING_TRACKED_MESSAGE,
    FanoutOrchestrator,
    FormattedReport,
    ReportEntry,
    ReportError,
)
from agent.resource_client import ResourceClient, ResourceSnapshot


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _snap(name, rank):
    return ResourceSnapshot(name, rank, "Orc", "Warrior")


def _make_resources(table, delays=None):
    """Fake ResourceClient: values are snapshots or exceptions to raise."""
    delays = delays or {}

    async def fetch(name):
        await asyncio.sleep(delays.get(name, 0))
        result = table[name]
        if isinstance(result, Exception):
            raise result
        return result

    resources = MagicMock()
    resources.configured = True
    resources.fetch = AsyncMock(side_effect=fetch)
    return resources


def _make_inference(replies=None, configured=True):
    """Fake InferenceClient: replies keyed by a substring of the user prompt."""
    replies = replies or {}

    async def complete_once(system_prompt, user_text):
        for needle, reply in replies.items():
            if needle in user_text:
                if isinstance(reply, Exception):
                    raise reply
                return reply
        return "Weakling"

    inference = MagicMock()
    inference.configured = configured
    inference.complete_once = AsyncMock(side_effect=complete_once)
    return inference


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

class TestRendering:
    def test_empty_report(self):
        assert FormattedReport(empty=True).render() == NOTHING_TRACKED_MESSAGE

    def test_entries_then_errors(self):
        report = FormattedReport(
            title="Nightslayer",
            entries=[ReportEntry("Thrall", 60, "Orc Shaman", "Green giant")],
            errors=[ReportError("Ghost", "**Ghost** not found.")],
        )
        assert report.render() == (
            "**Level Check — Nightslayer**\n"
            "  Thrall — Level 60 Orc Shaman — *Green giant*\n"
            "  ⚠ Ghost: **Ghost** not found.\n"
        )

    def test_entry_without_annotation(self):
        assert ReportEntry("A", 5, "Gnome Mage").render() == "  A — Level 5 Gnome Mage"


# ---------------------------------------------------------------------------
# report()
# ---------------------------------------------------------------------------

class TestReport:
    @pytest.mark.asyncio
    async def test_empty_names_makes_no_calls(self):
        resources = _make_resources({})
        inference = _make_inference()
        orch = FanoutOrchestrator(resources, inference)

        report = await orch.report([], annotate=True)

        assert report.empty is True
        assert report.render() == NOTHING_TRACKED_MESSAGE
        resources.fetch.assert_not_called()
        inference.complete_once.assert_not_called()

    @pytest.mark.asyncio
    async def test_sorted_by_rank_descending(self):
        resources = _make_resources({"a": _snap("A", 10), "b": _snap("B", 40), "c": _snap("C", 25)})
        orch = FanoutOrchestrator(resources)

        report = await orch.report(["a", "b", "c"], annotate=False)

        assert [e.rank for e in report.entries] == [40, 25, 10]
        assert report.errors == []

    @pytest.mark.asyncio
    async def test_order_independent_of_completion_order(self):
        table = {"a": _snap("A", 30), "b": _snap("B", 30), "c": _snap("C", 50)}
        # "a" finishes last; ties still keep input order
        resources = _make_resources(table, delays={"a": 0.03, "b": 0.0, "c": 0.01})
        orch = FanoutOrchestrator(resources)

        report = await orch.report(["a", "b", "c"], annotate=False)

        assert [e.name for e in report.entries] == ["C", "A", "B"]

    @pytest.mark.asyncio
    async def test_failures_isolated(self):
        table = {
            "ok": _snap("Ok", 20),
            "gone": ResourceNotFound("gone"),
            "down": UpstreamUnreachable("API request failed: boom"),
            "bad": UpstreamError(500, "Blizzard API returned status 500"),
        }
        orch = FanoutOrchestrator(_make_resources(table))

        names = ["ok", "gone", "down", "bad"]
        report = await orch.report(names, annotate=False)

        assert len(report.entries) + len(report.errors) == len(names)
        assert [e.name for e in report.entries] == ["Ok"]
        assert [(err.name, err.message) for err in report.errors] == [
            ("gone", "**gone** not found."),
            ("down", "API request failed: boom"),
            ("bad", "Blizzard API returned status 500"),
        ]

    @pytest.mark.asyncio
    async def test_fetches_run_concurrently(self):
        names = [f"n{i}" for i in range(10)]
        table = {n: _snap(n, i) for i, n in enumerate(names)}
        resources = _make_resources(table, delays={n: 0.05 for n in names})
        orch = FanoutOrchestrator(resources)

        loop = asyncio.get_running_loop()
        start = loop.time()
        report = await orch.report(names, annotate=False)
        elapsed = loop.time() - start

        assert len(report.entries) == 10
        assert elapsed < 0.4

    @pytest.mark.asyncio
    async def test_title(self):
        orch = FanoutOrchestrator(_make_resources({"a": _snap("A", 1)}), title="Realm X")
        report = await orch.report(["a"], annotate=False)
        assert report.render().startswith("**Level Check — Realm X**\n")


class TestAnnotations:
    @pytest.mark.asyncio
    async def test_annotations_applied(self):
        resources = _make_resources({"a": _snap("A", 10), "b": _snap("B", 40)})
        inference = _make_inference({"named A": "  Tiny  ", "named B": "Huge oaf"})
        store = MagicMock()
        store.get_system_prompt.return_value = "sys"
        orch = FanoutOrchestrator(resources, inference, store)

        report = await orch.report(["a", "b"], annotate=True)

        assert [(e.name, e.annotation) for e in report.entries] == [
            ("B", "Huge oaf"),
            ("A", "Tiny"),
        ]
        system_prompt, prompt = inference.complete_once.call_args_list[0].args
        assert system_prompt == "sys"
        assert "level 40 Orc Warrior named B" in prompt

    @pytest.mark.asyncio
    async def test_annotation_failure_degrades_one_entry(self):
        resources = _make_resources({"a": _snap("A", 10), "b": _snap("B", 40)})
        inference = _make_inference({"named A": UpstreamUnreachable("down"), "named B": "Oaf"})
        orch = FanoutOrchestrator(resources, inference)

        report = await orch.report(["a", "b"], annotate=True)

        annotations = {e.name: e.annotation for e in report.entries}
        assert annotations == {"A": None, "B": "Oaf"}
        assert report.errors == []
        assert "  A — Level 10 Orc Warrior\n" in report.render()

    @pytest.mark.asyncio
    async def test_raw_mode_skips_inference(self):
        inference = _make_inference()
        orch = FanoutOrchestrator(_make_resources({"a": _snap("A", 1)}), inference)

        report = await orch.report(["a"], annotate=False)

        inference.complete_once.assert_not_called()
        assert report.entries[0].annotation is None

    @pytest.mark.asyncio
    async def test_unconfigured_inference_skips_annotations(self):
        inference = _make_inference(configured=False)
        orch = FanoutOrchestrator(_make_resources({"a": _snap("A", 1)}), inference)

        await orch.report(["a"], annotate=True)

        inference.complete_once.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_annotation_calls_when_every_fetch_failed(self):
        inference = _make_inference()
        orch = FanoutOrchestrator(_make_resources({"a": ResourceNotFound("a")}), inference)

        report = await orch.report(["a"], annotate=True)

        inference.complete_once.assert_not_called()
        assert len(report.errors) == 1


class TestReportOverProfileApi:
    @pytest.mark.asyncio
    async def test_non_finite_level_degrades_to_error_line(self):
        def handler(request):
            if request.url.path == "/token":
                return httpx.Response(200, json={"access_token": "t", "expires_in": 3600})
            name = request.url.path.rsplit("/", 1)[-1]
            level = b"Infinity" if name == "bad" else b"42"
            body = (
                b'{"name": "' + name.encode() + b'", "level": ' + level + b', '
                b'"race": {"name": "Orc"}, "character_class": {"name": "Warrior"}}'
            )
            return httpx.Response(200, content=body)

        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        creds = CredentialCache("id", "secret", http_client=http, token_url="https://auth.test/token")
        resources = ResourceClient(
            creds, http_client=http, profile_url_template="https://api.test/profile/{name}",
        )
        orch = FanoutOrchestrator(resources)

        report = await orch.report(["good", "bad"], annotate=False)

        assert [(e.name, e.rank) for e in report.entries] == [("good", 42)]
        assert [err.name for err in report.errors] == ["bad"]
        assert "Failed to parse character data" in report.errors[0].message
        await http.aclose()
