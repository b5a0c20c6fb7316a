"""Tests for parsing upstream payloads into typed records."""

from datetime import datetime, timezone

from models import CloudcastRecord, FetchArgs, QueryResult, UserSummary

from helpers import NOW, make_cloudcast


class TestCloudcastParsing:

    def test_valid_cloudcast_is_parsed(self):
        record = CloudcastRecord.from_api(make_cloudcast(1, NOW))

        assert record.key == '/nowwaveradio/show-1/'
        assert record.created_at == NOW
        assert record.play_count == 101
        assert record.tags == ['House']
        assert record.owner.username == 'nowwaveradio'
        assert set(record.picture_urls) == {'small', 'large'}

    def test_missing_required_field_rejects_record(self):
        for field in ('key', 'name', 'url', 'created_time'):
            payload = make_cloudcast(1, NOW)
            del payload[field]
            assert CloudcastRecord.from_api(payload) is None, field

    def test_unparseable_created_time_rejects_record(self):
        payload = make_cloudcast(1, NOW, created_time='not a date')
        assert CloudcastRecord.from_api(payload) is None

    def test_counters_default_to_zero_and_never_negative(self):
        payload = make_cloudcast(1, NOW, play_count=-5, favorite_count='lots')
        del payload['comment_count']

        record = CloudcastRecord.from_api(payload)

        assert record.play_count == 0
        assert record.favorite_count == 0
        assert record.comment_count == 0

    def test_untrusted_picture_hosts_are_dropped(self):
        payload = make_cloudcast(1, NOW, pictures={
            'small': 'https://thumbnails.mixcloud.com/a.jpg',
            'medium': 'https://evil.example.com/a.jpg',
            'large': 'javascript:alert(1)',
            'huge': 'https://images.mixcloud.com/b.jpg',
        })

        record = CloudcastRecord.from_api(payload)

        assert record.picture_urls == {'small': 'https://thumbnails.mixcloud.com/a.jpg'}

    def test_naive_timestamp_is_read_as_utc(self):
        record = CloudcastRecord.from_api(make_cloudcast(1, NOW, created_time='2024-06-01T12:00:00'))
        assert record.created_at == datetime(2024, 6, 1, 12, tzinfo=timezone.utc)

    def test_listing_drops_malformed_records(self):
        data = [make_cloudcast(i, NOW) for i in range(10)]
        broken = make_cloudcast(99, NOW)
        del broken['created_time']
        data.insert(4, broken)

        result = QueryResult.from_api({'data': data, 'paging': {}})

        assert len(result.records) == 10
        assert all(r.key != '/nowwaveradio/show-99/' for r in result.records)

    def test_query_result_survives_serialization(self):
        result = QueryResult.from_api({'data': [make_cloudcast(1, NOW)], 'paging': {'next': 'x'}})

        restored = QueryResult.from_dict(result.to_dict())

        assert restored.records == result.records
        assert restored.next_page == 'x'
        assert restored.fetched_at == result.fetched_at


class TestUserSummary:

    def test_user_fields_are_mapped(self):
        user = UserSummary.from_api({
            'username': 'NowWaveRadio',
            'name': 'Now Wave Radio',
            'biog': 'Weekly shows',
            'follower_count': 1200,
            'following_count': -3,
            'city': 'Oslo',
        })

        assert user.display_name == 'Now Wave Radio'
        assert user.biography == 'Weekly shows'
        assert user.follower_count == 1200
        assert user.following_count == 0
        assert user.cloudcast_count == 0


class TestFetchArgs:

    def test_defaults(self):
        assert FetchArgs.from_mapping(None) == FetchArgs(limit=20, offset=0, metadata=True)

    def test_limit_is_clamped(self):
        assert FetchArgs.from_mapping({'limit': 500}).limit == 100
        assert FetchArgs.from_mapping({'limit': 0}).limit == 0
        assert FetchArgs.from_mapping({'limit': 0}).fetch_all

    def test_offset_is_never_negative(self):
        assert FetchArgs.from_mapping({'offset': -10}).offset == 0

    def test_string_values_are_coerced(self):
        args = FetchArgs.from_mapping({'limit': '30', 'offset': '5', 'metadata': 'false'})
        assert args == FetchArgs(limit=30, offset=5, metadata=False)
