"""Shared test fixtures for pytest suite.

Provides fixtures for:
- report_data: a complete report in its wire (camelCase) form
- profile: the EcoCharge research profile
- store: in-memory HistoryStore
- make_item: factory for HistoryItems with distinct timestamps
"""
import copy
from datetime import datetime, timedelta, timezone

import pytest

from schemas import ResearchProfile, ResearchReport
from history import HistoryStore, MemoryStorage, make_history_item


REPORT_DATA = {
    "executiveSummary": "EcoCharge targets a fast-growing market. *Key takeaway*: partnerships matter.",
    "marketAnalysis": {
        "marketSize": "$25B by 2027",
        "keyTrends": ["Solar integration", "Ultra-fast charging"],
        "competitorLandscape": [
            {"name": "ChargePoint", "strengths": "Vast network", "weaknesses": "Third-party reliance"},
        ],
    },
    "dataInsights": [
        {"metric": "Projected CAGR", "value": "30%", "numericalValue": 30,
         "commentary": "Rapid expansion", "visualizationType": "GAUGE_CHART"},
        {"metric": "Market Size", "value": "$25B", "numericalValue": 25000000000,
         "commentary": "Growth from current valuation", "visualizationType": "NUMBER_CARD"},
    ],
    "strategicPerspectives": "Focus on *underserved niches* first.",
}


@pytest.fixture
def report_data():
    return copy.deepcopy(REPORT_DATA)


@pytest.fixture
def report(report_data):
    return ResearchReport.model_validate(report_data)


@pytest.fixture
def profile():
    return ResearchProfile(
        startup_name="EcoCharge",
        sector="Electric Vehicle Charging Infrastructure",
        target_audience="Urban apartment dwellers",
        market_dynamics="Validate CAGR of solar-powered charging",
    )


@pytest.fixture
def store():
    return HistoryStore(MemoryStorage())


@pytest.fixture
def make_item(report):
    """Build HistoryItems one second apart so ids never collide."""
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    counter = {"n": 0}

    def _make(startup_name="EcoCharge", profile="Default", summary=None):
        counter["n"] += 1
        body = report if summary is None else report.model_copy(update={"executive_summary": summary})
        return make_history_item(startup_name, body, profile, now=base + timedelta(seconds=counter["n"]))

    return _make
