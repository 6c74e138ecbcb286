import asyncio
import json

import pytest

from tripchat.api.errors import TurnInProgressError
from tripchat.api.models import ROLE_MODEL, ROLE_USER, ChatSession, SessionMessage, UserPreferences
from tripchat.api.services.chat_service import (
    ERROR_NOTICE,
    ChatOrchestrator,
    TurnState,
)
from tripchat.api.services.map_service import GeocodingEnricher

from conftest import FakeGeocoder, FakeTransport

ITINERARY_BLOCK = "```json_itinerary\n" + json.dumps({"points": [
    {"name": "雷峰塔", "city": "杭州市", "lat": 0, "lng": 0, "description": "d", "day": 1},
    {"name": "楼外楼(孤山路店)", "lat": 0, "lng": 0, "description": "午餐", "day": 1, "category": "food"},
]}, ensure_ascii=False) + "\n```"


async def _no_sleep(delay):
    return None


def _orchestrator(transport, geocoder=None):
    geocoder = geocoder or FakeGeocoder({"雷峰塔": (30.23, 120.14), "楼外楼": (30.25, 120.14)})
    enricher = GeocodingEnricher(geocoder, request_delay=0, readiness_wait=0, sleep=_no_sleep)
    orchestrator = ChatOrchestrator(transport, enricher, system_prompt="SYS")
    updates = []
    orchestrator.on_session_update = lambda s: updates.append([m.text for m in s.messages])
    return orchestrator, updates


def _session(name="新行程", with_welcome=True):
    messages = [SessionMessage("welcome", ROLE_MODEL, "您好！", 0)] if with_welcome else []
    return ChatSession(id="s1", name=name, messages=messages)


def _send(orchestrator, session, text, preferences=None):
    async def go():
        await orchestrator.send_message(session, text, preferences)
        await orchestrator.wait_for_titles()
    asyncio.run(go())


def test_turn_streams_extracts_and_enriches():
    transport = FakeTransport(["好的！", "杭州一日游：\n", ITINERARY_BLOCK])
    orchestrator, updates = _orchestrator(transport)
    session = _session()

    _send(orchestrator, session, "去杭州玩", UserPreferences(destination="杭州市"))

    user_msg, reply = session.messages[-2:]
    assert (user_msg.role, user_msg.text) == (ROLE_USER, "去杭州玩")
    assert reply.role == ROLE_MODEL
    assert reply.text == "好的！杭州一日游："
    assert [p.name for p in reply.itinerary.points] == ["雷峰塔", "楼外楼(孤山路店)"]
    assert (reply.itinerary.points[0].lat, reply.itinerary.points[0].lng) == (30.23, 120.14)
    assert reply.itinerary.points[1].lat == 30.25

    streamed = [texts[-1] for texts in updates]
    assert "..." in streamed
    assert "好的！" in streamed
    assert "好的！杭州一日游：\n" in streamed
    assert orchestrator.state(session.id) == TurnState.IDLE


def test_history_maps_roles_and_carries_preferences_once():
    transport = FakeTransport(["ok"])
    orchestrator, _ = _orchestrator(transport)
    session = _session()

    _send(orchestrator, session, "三天行程", UserPreferences(destination="成都", interests=["美食"]))

    system_prompt, history = transport.requests[0]
    assert system_prompt == "SYS"
    assert history[0] == {"role": "assistant", "content": "您好！"}
    assert len(history) == 2
    assert history[1]["role"] == "user"
    assert history[1]["content"].startswith("三天行程\n")
    assert "目的地: 成都" in history[1]["content"]
    # the stored user message stays clean
    assert session.messages[1].text == "三天行程"


def test_plain_reply_skips_enrichment():
    geocoder = FakeGeocoder()
    orchestrator, _ = _orchestrator(FakeTransport(["随便聊聊"]), geocoder)
    session = _session()

    _send(orchestrator, session, "你好")

    assert session.messages[-1].text == "随便聊聊"
    assert session.messages[-1].itinerary is None
    assert geocoder.calls == []


def test_transport_failure_keeps_partial_reply_and_appends_notice():
    geocoder = FakeGeocoder()
    transport = FakeTransport(["第一天去", "西湖", ITINERARY_BLOCK], fail_after=2)
    orchestrator, _ = _orchestrator(transport, geocoder)
    session = _session()

    _send(orchestrator, session, "去杭州")

    texts = [m.text for m in session.messages]
    assert texts == ["您好！", "去杭州", "第一天去西湖", ERROR_NOTICE]
    assert session.messages[2].itinerary is None
    assert geocoder.calls == []
    assert transport.title_calls == []


def test_failure_before_any_text_drops_the_placeholder():
    orchestrator, _ = _orchestrator(FakeTransport([], fail_after=0))
    session = _session()

    _send(orchestrator, session, "去杭州")

    assert [m.text for m in session.messages] == ["您好！", "去杭州", ERROR_NOTICE]


def test_conversation_stays_usable_after_failure():
    transport = FakeTransport([], fail_after=0)
    orchestrator, _ = _orchestrator(transport)
    session = _session()
    _send(orchestrator, session, "第一次")

    transport.fail_after = None
    transport.chunks = ["第二次成功"]
    _send(orchestrator, session, "再试一次")

    assert session.messages[-1].text == "第二次成功"


def test_enrichment_crash_keeps_unresolved_itinerary():
    class BrokenEnricher:
        async def enrich(self, itinerary, default_city=None):
            raise RuntimeError("geocoder exploded")

    orchestrator = ChatOrchestrator(FakeTransport(["行程", ITINERARY_BLOCK]), BrokenEnricher())
    session = _session()

    _send(orchestrator, session, "去杭州")

    reply = session.messages[-1]
    assert reply.text == "行程"
    assert len(reply.itinerary.points) == 2
    assert all(p.lat == 0 and p.lng == 0 for p in reply.itinerary.points)


def test_enrichment_crash_midway_resets_resolved_points():
    class HalfwayEnricher:
        async def enrich(self, itinerary, default_city=None):
            itinerary.points[0].lat, itinerary.points[0].lng = 30.23, 120.14
            raise RuntimeError("lost the geocoder")

    orchestrator = ChatOrchestrator(FakeTransport(["行程", ITINERARY_BLOCK]), HalfwayEnricher())
    session = _session()

    _send(orchestrator, session, "去杭州")

    points = session.messages[-1].itinerary.points
    assert [(p.lat, p.lng) for p in points] == [(0.0, 0.0), (0.0, 0.0)]


def test_second_send_while_busy_is_rejected():
    async def go():
        gate = asyncio.Event()
        orchestrator, _ = _orchestrator(FakeTransport(["ok"], gate=gate))
        session = _session()

        first = asyncio.create_task(orchestrator.send_message(session, "一"))
        await asyncio.sleep(0)
        assert orchestrator.is_busy(session.id)

        with pytest.raises(TurnInProgressError):
            await orchestrator.send_message(session, "二")

        gate.set()
        await first
        assert not orchestrator.is_busy(session.id)
        return session

    session = asyncio.run(go())
    assert [m.text for m in session.messages] == ["您好！", "一", "ok"]


def test_sends_to_other_sessions_are_rejected_while_a_turn_runs():
    geocoder = FakeGeocoder({"雷峰塔": (30.23, 120.14), "楼外楼": (30.25, 120.14)})
    orchestrator, _ = _orchestrator(FakeTransport(["行程", ITINERARY_BLOCK]), geocoder)
    first = ChatSession(id="s1", messages=[])
    second = ChatSession(id="s2", messages=[])

    async def go():
        return await asyncio.gather(
            orchestrator.send_message(first, "去杭州"),
            orchestrator.send_message(second, "也去杭州"),
            return_exceptions=True,
        )

    done, rejected = asyncio.run(go())

    assert done is first
    assert isinstance(rejected, TurnInProgressError)
    assert rejected.session_id == "s1"
    assert second.messages == []
    assert geocoder.max_in_flight == 1
    assert not orchestrator.is_busy()


def test_placeholder_session_gets_titled():
    transport = FakeTransport(["杭州", ITINERARY_BLOCK], title="杭州一日游")
    orchestrator, _ = _orchestrator(transport)
    renamed = []
    orchestrator.on_session_renamed = lambda s: renamed.append(s.name)
    session = _session()

    _send(orchestrator, session, "去杭州")

    assert session.name == "杭州一日游"
    assert renamed == ["杭州一日游"]
    assert transport.title_calls == [("去杭州", "杭州")]


def test_title_needs_three_messages():
    transport = FakeTransport(["hi"])
    orchestrator, _ = _orchestrator(transport)
    session = _session(with_welcome=False)

    _send(orchestrator, session, "你好")

    assert transport.title_calls == []
    assert session.name == "新行程"


def test_named_session_is_not_retitled():
    transport = FakeTransport(["hi"])
    orchestrator, _ = _orchestrator(transport)
    session = _session(name="我的成都之旅")

    _send(orchestrator, session, "你好")

    assert transport.title_calls == []
    assert session.name == "我的成都之旅"


def test_title_failure_keeps_placeholder():
    transport = FakeTransport(["hi"], title_error=RuntimeError("quota"))
    orchestrator, _ = _orchestrator(transport)
    session = _session()

    _send(orchestrator, session, "你好")

    assert transport.title_calls
    assert session.name == "新行程"


def test_placeholder_title_answer_is_ignored():
    transport = FakeTransport(["hi"], title="新旅行计划")
    orchestrator, _ = _orchestrator(transport)
    session = _session()

    _send(orchestrator, session, "你好")

    assert session.name == "新行程"
