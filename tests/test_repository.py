import asyncio

import pytest

from core.config import AdapterVariant, SessionConfig
from core.errors import ConfigurationError
from core.repository import Session, SessionRepository, SessionStatus, generate_session_id


def make_session(session_id=None, **kwargs):
    return Session(
        id=session_id or generate_session_id(),
        variant=AdapterVariant.CDP,
        endpoint="wss://example/puppeteer",
        capabilities={},
        config=SessionConfig(),
        viewport={"width": 1920, "height": 1080},
        timeout=300000,
        **kwargs,
    )


class TestSessionRepository:

    @pytest.mark.asyncio
    async def test_create_get_delete(self):
        repo = SessionRepository()
        session = make_session("s1")
        assert await repo.create(session) == "s1"
        assert repo.get("s1") is session
        assert "s1" in repo
        assert len(repo) == 1
        assert await repo.delete("s1") is True
        assert repo.get("s1") is None
        assert await repo.delete("s1") is False

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(self):
        repo = SessionRepository()
        await repo.create(make_session("dup"))
        with pytest.raises(ConfigurationError) as exc:
            await repo.create(make_session("dup"))
        assert exc.value.session_id == "dup"

    @pytest.mark.asyncio
    async def test_list_is_snapshot(self):
        repo = SessionRepository()
        await repo.create(make_session("a"))
        snapshot = repo.list()
        await repo.create(make_session("b"))
        await repo.delete("a")
        assert [s.id for s in snapshot] == ["a"]
        assert [s.id for s in repo.list()] == ["b"]

    @pytest.mark.asyncio
    async def test_concurrent_creates_distinct_ids(self):
        repo = SessionRepository()
        await asyncio.gather(*(repo.create(make_session()) for _ in range(50)))
        assert len({s.id for s in repo.list()}) == 50


class TestSession:

    def test_generated_ids_unique(self):
        ids = {generate_session_id() for _ in range(1000)}
        assert len(ids) == 1000
        assert all(i.startswith("session_") for i in ids)

    def test_defaults(self):
        session = make_session("s1")
        assert session.status is SessionStatus.LIVE
        assert session.handle is None
        assert not session.is_connected
        assert session.created_at > 0

    def test_release_callbacks_in_order(self):
        session = make_session()

        async def first(s):
            pass

        async def second(s):
            pass

        session.on_release(first)
        session.on_release(second)
        assert session.release_callbacks == [first, second]
        # Returned list is a copy
        session.release_callbacks.clear()
        assert len(session.release_callbacks) == 2

    def test_to_dict_hides_endpoint(self):
        session = make_session(
            "s1", user_agent="UA", debug_url="https://dash/", profile_id="p",
        )
        data = session.to_dict()
        assert "endpoint" not in data
        assert data["id"] == "s1"
        assert data["adapter"] == "cdp"
        assert data["status"] == "live"
        assert data["userAgent"] == "UA"
        assert data["sessionViewerUrl"] == "https://dash/"
        assert data["profileId"] == "p"
