"""Tests for report generation and the generator's history bookkeeping."""
import asyncio
import json

import pytest

from schemas import AgentReply, UploadedDocument, report_to_dict
from pipeline import (
    generate_report, ReportGenerator, GenerationError,
    CommunicationError, InvalidJSONError, MissingFieldsError,
)


def reply_agent(text, grounding=None, calls=None):
    async def agent(prompt, web_search):
        if calls is not None:
            calls.append({"prompt": prompt, "web_search": web_search})
        return AgentReply(text=text, grounding=grounding or [])
    return agent


def failing_agent(exc):
    async def agent(prompt, web_search):
        raise exc
    return agent


class TestGenerateReport:
    def test_parses_report_wrapped_in_prose(self, profile, report_data):
        text = "Here is your report:\n```json\n" + json.dumps(report_data) + "\n```\nGood luck!"
        report = asyncio.run(generate_report(profile, agent=reply_agent(text)))
        assert report.executive_summary == report_data["executiveSummary"]
        assert len(report.data_insights) == 2
        assert report.strategic_perspectives == report_data["strategicPerspectives"]

    def test_perspectives_absent_when_not_requested(self, profile, report_data):
        agent = reply_agent(json.dumps(report_data))
        report = asyncio.run(generate_report(profile, [], include_strategic_perspectives=False, agent=agent))
        data = report_to_dict(report)
        assert "strategicPerspectives" not in data
        assert report.strategic_perspectives is None

    def test_prompt_carries_profile_documents_and_toggle(self, profile, report_data):
        calls = []
        docs = [UploadedDocument(name="deck.txt", content="Solar canopy pilot in Denver")]
        agent = reply_agent(json.dumps(report_data), calls=calls)
        asyncio.run(generate_report(profile, docs, include_strategic_perspectives=False, web_search=False, agent=agent))
        prompt = calls[0]["prompt"]
        assert "EcoCharge" in prompt
        assert "Urban apartment dwellers" in prompt
        assert "deck.txt" in prompt and "Solar canopy pilot in Denver" in prompt
        assert "Do NOT include a strategicPerspectives key" in prompt
        assert calls[0]["web_search"] is False

    def test_prompt_requests_perspectives(self, profile, report_data):
        calls = []
        asyncio.run(generate_report(profile, agent=reply_agent(json.dumps(report_data), calls=calls)))
        assert '"strategicPerspectives"' in calls[0]["prompt"]
        assert calls[0]["web_search"] is True

    def test_grounding_becomes_deduplicated_sources(self, profile, report_data):
        grounding = [
            {"uri": "https://iea.org/ev", "title": "IEA EV Outlook"},
            {"uri": "https://iea.org/ev", "title": "IEA EV Outlook (dup)"},
            {"uri": "https://bnef.com", "title": None},
        ]
        report = asyncio.run(generate_report(profile, agent=reply_agent(json.dumps(report_data), grounding)))
        assert [s.uri for s in report.sources] == ["https://iea.org/ev"]
        assert report_to_dict(report)["sources"] == [{"uri": "https://iea.org/ev", "title": "IEA EV Outlook"}]

    def test_sources_omitted_without_grounding(self, profile, report_data):
        report = asyncio.run(generate_report(profile, agent=reply_agent(json.dumps(report_data))))
        assert "sources" not in report_to_dict(report)

    def test_model_written_sources_are_cleaned(self, profile, report_data):
        report_data["sources"] = [
            {"uri": "https://a.example", "title": "A"},
            {"uri": "https://a.example", "title": "A"},
            {"uri": "https://b.example"},
        ]
        report = asyncio.run(generate_report(profile, agent=reply_agent(json.dumps(report_data))))
        assert [s.uri for s in report.sources] == ["https://a.example"]

    def test_backend_failure_is_communication_error(self, profile):
        with pytest.raises(CommunicationError) as exc_info:
            asyncio.run(generate_report(profile, agent=failing_agent(ConnectionError("unreachable"))))
        assert exc_info.value.retryable
        assert "unreachable" in exc_info.value.detail

    def test_prose_reply_is_invalid_json(self, profile):
        with pytest.raises(InvalidJSONError):
            asyncio.run(generate_report(profile, agent=reply_agent("I cannot help with that.")))

    def test_missing_fields_named(self, profile):
        agent = reply_agent('{"executiveSummary": "Only a summary"}')
        with pytest.raises(MissingFieldsError) as exc_info:
            asyncio.run(generate_report(profile, agent=agent))
        assert exc_info.value.missing == ["marketAnalysis", "dataInsights"]

    def test_failure_messages_are_distinct(self):
        messages = {CommunicationError.message, InvalidJSONError.message, MissingFieldsError.message}
        assert len(messages) == 3
        assert issubclass(InvalidJSONError, GenerationError)

    def test_emits_progress_stages(self, profile, report_data):
        events = []
        docs = [UploadedDocument(name="a.txt", content="x")]
        asyncio.run(generate_report(
            profile, docs, agent=reply_agent(json.dumps(report_data)),
            emit=lambda *args: events.append(args),
        ))
        assert [e[2] for e in events] == ["documents", "web", "insights", "compile"]


class TestReportGenerator:
    def test_run_appends_to_current_profile(self, store, profile, report_data):
        store.create_profile("Labs")
        generator = ReportGenerator(store, agent=reply_agent(json.dumps(report_data)))
        item = asyncio.run(generator.run(profile))
        assert item.profile == "Labs"
        assert item.startup_name == "EcoCharge"
        assert store.items == [item]
        assert generator.busy is False

    def test_failure_leaves_history_untouched(self, store, profile, make_item):
        existing = make_item()
        store.append(existing)
        generator = ReportGenerator(store, agent=reply_agent("not a report"))
        with pytest.raises(InvalidJSONError):
            asyncio.run(generator.run(profile))
        assert store.items == [existing]
        assert generator.busy is False

    def test_abandoned_run_is_dropped(self, store, profile, report_data):
        async def scenario():
            gate = asyncio.Event()

            async def agent(prompt, web_search):
                await gate.wait()
                return AgentReply(text=json.dumps(report_data))

            generator = ReportGenerator(store, agent=agent)
            task = asyncio.create_task(generator.run(profile))
            await asyncio.sleep(0)
            assert generator.busy
            generator.abandon()
            assert not generator.busy
            gate.set()
            return await task

        assert asyncio.run(scenario()) is None
        assert store.items == []

    def test_abandoned_failure_is_dropped(self, store, profile):
        async def scenario():
            gate = asyncio.Event()

            async def agent(prompt, web_search):
                await gate.wait()
                raise ConnectionError("late failure")

            generator = ReportGenerator(store, agent=agent)
            task = asyncio.create_task(generator.run(profile))
            await asyncio.sleep(0)
            generator.abandon()
            gate.set()
            return await task

        assert asyncio.run(scenario()) is None
