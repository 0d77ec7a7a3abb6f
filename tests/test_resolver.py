"""Playlist resolution: cache, liveness, search, create, leases"""
import asyncio

import pytest

from playlist_sync.services.leases import LeaseManager, LeaseUnavailable
from playlist_sync.services.naming import GroupingKey, playlist_title
from playlist_sync.services.playlist_cache import CacheEntry, PlaylistCache
from playlist_sync.services.resolver import PlaylistResolver, Resolution, ResolveError
from playlist_sync.services.youtube import QuotaExceededError, YouTubeClient

KEY = GroupingKey("FRA", "music")


def _resolver(db, fake, **lease_kw):
    async def token_source():
        return "tok"
    client = YouTubeClient(token_source, http=fake.http())
    lease_kw.setdefault("wait_seconds", 1)
    lease_kw.setdefault("poll_interval", 0.01)
    return PlaylistResolver(client, PlaylistCache(db), LeaseManager(db, **lease_kw))


class TestPlaylistCache:
    def test_put_get_invalidate(self, db_session):
        cache = PlaylistCache(db_session)
        assert cache.get(KEY) is None

        cache.put(KEY, CacheEntry("PL1", "name", "url"))
        cache.put(KEY, CacheEntry("PL2", "name", "url"))
        assert cache.get(KEY).playlist_id == "PL2"
        assert len(cache.list()) == 1

        assert cache.invalidate(KEY) is True
        assert cache.get(KEY) is None
        assert cache.invalidate(KEY) is False

    def test_invalidate_only_drops_the_stale_id(self, db_session):
        cache = PlaylistCache(db_session)
        cache.put(KEY, CacheEntry("PLfresh", "name", "url"))

        assert cache.invalidate(KEY, "PLstale") is False
        assert cache.get(KEY).playlist_id == "PLfresh"
        assert cache.invalidate(KEY, "PLfresh") is True
        assert cache.get(KEY) is None

    def test_touch_sets_last_synced(self, db_session):
        cache = PlaylistCache(db_session)
        cache.put(KEY, CacheEntry("PL1", "name", "url"))
        cache.touch(KEY)
        assert cache.get(KEY).last_synced_at is not None

    def test_remote_id_moves_between_keys(self, db_session):
        cache = PlaylistCache(db_session)
        other = GroupingKey("DEU", "music")
        cache.put(KEY, CacheEntry("PL1", "a", "url"))
        cache.put(other, CacheEntry("PL1", "b", "url"))
        assert cache.get(KEY) is None
        assert cache.get(other).playlist_id == "PL1"


class TestLeaseManager:
    def test_lease_is_exclusive_until_released(self, db_session):
        a = LeaseManager(db_session, holder="a")
        b = LeaseManager(db_session, holder="b")

        assert a.try_acquire("FRA:music") is True
        assert b.try_acquire("FRA:music") is False
        assert b.try_acquire("DEU:music") is True

        a.release("FRA:music")
        assert b.try_acquire("FRA:music") is True

    def test_expired_lease_is_taken_over(self, db_session):
        a = LeaseManager(db_session, holder="a", ttl_seconds=-1)
        b = LeaseManager(db_session, holder="b")
        assert a.try_acquire("FRA:music") is True
        assert b.try_acquire("FRA:music") is True
        # a no longer owns it, so its release is a no-op
        a.release("FRA:music")
        assert LeaseManager(db_session, holder="c").try_acquire("FRA:music") is False

    @pytest.mark.asyncio
    async def test_hold_gives_up_after_wait(self, db_session):
        LeaseManager(db_session, holder="other").try_acquire("FRA:music")
        mine = LeaseManager(db_session, holder="me", wait_seconds=0)
        with pytest.raises(LeaseUnavailable):
            async with mine.hold("FRA:music"):
                pass


class TestPlaylistResolver:
    @pytest.mark.asyncio
    async def test_cold_cache_creates_and_caches(self, db_session, fake_youtube):
        resolution = await _resolver(db_session, fake_youtube).resolve(KEY)

        assert resolution.created is True
        assert fake_youtube.count("playlists.insert") == 1
        playlist = fake_youtube.playlists[resolution.playlist_id]
        assert playlist["title"] == playlist_title(KEY)
        assert "France" in playlist["description"]
        entry = PlaylistCache(db_session).get(KEY)
        assert entry.playlist_id == resolution.playlist_id
        assert entry.url.endswith(resolution.playlist_id)

    @pytest.mark.asyncio
    async def test_live_cache_hit_skips_search_and_create(self, db_session, fake_youtube):
        pid = fake_youtube.add_playlist(playlist_title(KEY))
        PlaylistCache(db_session).put(KEY, CacheEntry(pid, playlist_title(KEY), "url"))

        resolution = await _resolver(db_session, fake_youtube).resolve(KEY)

        assert resolution.playlist_id == pid
        assert resolution.created is False
        assert fake_youtube.count("playlists.list") == 0
        assert fake_youtube.count("playlists.insert") == 0

    @pytest.mark.asyncio
    async def test_stale_cache_entry_heals(self, db_session, fake_youtube):
        PlaylistCache(db_session).put(KEY, CacheEntry("PLdeleted", playlist_title(KEY), "url"))

        resolution = await _resolver(db_session, fake_youtube).resolve(KEY)

        assert resolution.playlist_id != "PLdeleted"
        assert resolution.playlist_id in fake_youtube.playlists
        assert PlaylistCache(db_session).get(KEY).playlist_id == resolution.playlist_id

    @pytest.mark.asyncio
    async def test_existing_playlist_is_found_by_title(self, db_session, fake_youtube):
        fake_youtube.add_playlist("Something else")
        pid = fake_youtube.add_playlist(playlist_title(KEY), ["v1"])

        resolution = await _resolver(db_session, fake_youtube).resolve(KEY)

        assert resolution == Resolution(pid, created=False)
        assert fake_youtube.count("playlists.insert") == 0
        assert PlaylistCache(db_session).get(KEY).playlist_id == pid

    @pytest.mark.asyncio
    async def test_sequential_cold_resolves_reuse_the_first_playlist(self, db_session, fake_youtube):
        first = await _resolver(db_session, fake_youtube).resolve(KEY)
        PlaylistCache(db_session).invalidate(KEY)  # lose the cache, keep the remote playlist
        second = await _resolver(db_session, fake_youtube).resolve(KEY)

        assert second.playlist_id == first.playlist_id
        assert second.created is False
        assert fake_youtube.count("playlists.insert") == 1

    @pytest.mark.asyncio
    async def test_creation_quota_is_a_typed_error(self, db_session, fake_youtube):
        fake_youtube.create_failures[playlist_title(KEY)] = (403, "quotaExceeded")

        with pytest.raises(ResolveError) as exc:
            await _resolver(db_session, fake_youtube).resolve(KEY)

        assert exc.value.key == KEY
        assert isinstance(exc.value.cause, QuotaExceededError)
        assert PlaylistCache(db_session).get(KEY) is None

    @pytest.mark.asyncio
    async def test_waits_for_lease_and_reuses_winner(self, db_session, fake_youtube):
        winner = LeaseManager(db_session, holder="winner")
        assert winner.try_acquire(KEY.lease_key)
        pid = fake_youtube.add_playlist(playlist_title(KEY))

        async def finish_winner():
            await asyncio.sleep(0.05)
            PlaylistCache(db_session).put(KEY, CacheEntry(pid, playlist_title(KEY), "url"))
            winner.release(KEY.lease_key)

        resolution, _ = await asyncio.gather(_resolver(db_session, fake_youtube).resolve(KEY), finish_winner())

        assert resolution.playlist_id == pid
        assert fake_youtube.count("playlists.insert") == 0
        assert fake_youtube.count("playlists.list") == 0

    @pytest.mark.asyncio
    async def test_lease_timeout_is_a_resolve_error(self, db_session, fake_youtube):
        LeaseManager(db_session, holder="other").try_acquire(KEY.lease_key)

        with pytest.raises(ResolveError) as exc:
            await _resolver(db_session, fake_youtube, wait_seconds=0).resolve(KEY)
        assert isinstance(exc.value.cause, LeaseUnavailable)
        assert fake_youtube.count("playlists.insert") == 0

    @pytest.mark.asyncio
    async def test_stale_liveness_check_keeps_an_entry_written_meanwhile(self, db_session, fake_youtube):
        cache = PlaylistCache(db_session)
        cache.put(KEY, CacheEntry("PLdeleted", playlist_title(KEY), "url"))
        fresh = fake_youtube.add_playlist(playlist_title(KEY))

        class RacingClient(YouTubeClient):
            async def playlist_exists(self, playlist_id):
                if playlist_id == "PLdeleted":
                    # another run heals the key while our liveness check is in flight
                    cache.put(KEY, CacheEntry(fresh, playlist_title(KEY), "url"))
                    return False
                return await super().playlist_exists(playlist_id)

        async def token_source():
            return "tok"

        client = RacingClient(token_source, http=fake_youtube.http())
        resolver = PlaylistResolver(client, cache, LeaseManager(db_session, wait_seconds=1, poll_interval=0.01))

        resolution = await resolver.resolve(KEY)

        assert resolution == Resolution(fresh, created=False)
        assert cache.get(KEY).playlist_id == fresh
        assert fake_youtube.count("playlists.list") == 0
        assert fake_youtube.count("playlists.insert") == 0
