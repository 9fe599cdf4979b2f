from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from deep_research.models.research import (
    Gap,
    Priority,
    QueryComplexity,
    ResearchSession,
    Round,
    SearchResult,
    SessionStatus,
    SubQuestion,
    Synthesis,
)
from deep_research.services import supabase as db


def _finished_session() -> ResearchSession:
    session = ResearchSession(id="sess-1", query="q", started_at=0.0, max_rounds=2)
    session.set_complexity(QueryComplexity.MODERATE)
    session.status = SessionStatus.COMPLETED
    session.rounds.append(
        Round(
            index=1,
            sub_questions=[SubQuestion(id="sq-1", question="Question one?")],
            search_results=[SearchResult(sub_question_id="sq-1", summary="s")],
            synthesis=Synthesis(
                answer_text="a",
                confidence=0.9,
                gaps=[Gap(description="d", suggested_query="g", priority=Priority.LOW)],
            ),
        )
    )
    return session


def _persistence_settings(enabled: bool = True) -> MagicMock:
    mock_settings = MagicMock()
    mock_settings.persistence_enabled = enabled
    return mock_settings


@pytest.mark.asyncio
async def test_save_session_writes_every_table():
    fake_client = MagicMock()
    with (
        patch("deep_research.services.supabase.settings", _persistence_settings()),
        patch("deep_research.services.supabase.client", return_value=fake_client),
    ):
        assert await db.save_session(_finished_session()) is True

    tables = [call.args[0] for call in fake_client.table.call_args_list]
    assert tables == [
        "research_sessions",
        "research_plans",
        "research_notes",
        "research_gaps",
        "research_session_metrics",
    ]
    session_row = fake_client.table.return_value.insert.call_args_list[0].args[0]
    assert session_row["status"] == "completed"
    assert session_row["complexity"] == "moderate"


@pytest.mark.asyncio
async def test_save_session_skips_when_not_configured():
    fake_client = MagicMock()
    with (
        patch("deep_research.services.supabase.settings", _persistence_settings(False)),
        patch("deep_research.services.supabase.client", return_value=fake_client),
    ):
        assert await db.save_session(_finished_session()) is False
    fake_client.table.assert_not_called()


@pytest.mark.asyncio
async def test_save_session_logs_and_reports_failures():
    fake_client = MagicMock()
    fake_client.table.return_value.insert.return_value.execute.side_effect = RuntimeError("db down")
    with (
        patch("deep_research.services.supabase.settings", _persistence_settings()),
        patch("deep_research.services.supabase.client", return_value=fake_client),
    ):
        assert await db.save_session(_finished_session()) is False


@pytest.mark.asyncio
async def test_fetch_session_returns_none_when_missing():
    fake_client = MagicMock()
    fake_client.table.return_value.select.return_value.eq.return_value.execute.return_value = SimpleNamespace(
        data=[]
    )
    with patch("deep_research.services.supabase.client", return_value=fake_client):
        assert await db.fetch_session("missing") is None
