"""
Data model for Mixcloud archives.

Upstream payloads are parsed here, at one boundary: anything that comes
back from the API is turned into typed records or dropped.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import urlparse

from dateutil import parser as date_parser

from config import PICTURE_SIZES, TRUSTED_PICTURE_HOSTS

REQUIRED_CLOUDCAST_FIELDS = ('key', 'name', 'url', 'created_time')


def _count(value: Any) -> int:
    """Coerce a counter to a non-negative int (invalid -> 0)."""
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def _text(value: Any) -> str:
    if value is None:
        return ''
    return str(value).strip()


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an upstream timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        try:
            dt = date_parser.isoparse(value.strip())
        except (ValueError, OverflowError):
            return None
    else:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def sanitize_picture_urls(pictures: Any) -> Dict[str, str]:
    """Keep known sizes whose URL is http(s) on a trusted host."""
    if not isinstance(pictures, Mapping):
        return {}

    sanitized = {}
    for size, url in pictures.items():
        if size not in PICTURE_SIZES or not isinstance(url, str):
            continue
        parsed = urlparse(url.strip())
        if parsed.scheme in ('http', 'https') and parsed.hostname in TRUSTED_PICTURE_HOSTS:
            sanitized[size] = url.strip()
    return sanitized


def _tag_names(tags: Any) -> List[str]:
    # Mixcloud returns tags as {"key", "url", "name"} objects
    if not isinstance(tags, list):
        return []
    names = []
    for tag in tags:
        name = _text(tag.get('name')) if isinstance(tag, Mapping) else _text(tag)
        if name:
            names.append(name)
    return names


@dataclass
class FetchArgs:
    """Normalized request arguments for a cloudcast listing."""

    limit: int = 20
    offset: int = 0
    metadata: bool = True

    @property
    def fetch_all(self) -> bool:
        return self.limit == 0

    @classmethod
    def from_mapping(cls, args: Optional[Mapping[str, Any]] = None, max_limit: int = 100,
                     default_limit: int = 20) -> "FetchArgs":
        """
        Build normalized args from a loose mapping.

        limit=0 means "fetch all"; any other limit is clamped to
        [1, max_limit]. Negative offsets become 0.
        """
        if isinstance(args, FetchArgs):
            args = args.to_dict()
        args = dict(args or {})

        try:
            limit = int(args.get('limit', default_limit))
        except (TypeError, ValueError):
            limit = default_limit
        if limit != 0:
            limit = max(1, min(abs(limit), max_limit))

        try:
            offset = max(0, int(args.get('offset', 0)))
        except (TypeError, ValueError):
            offset = 0

        metadata = args.get('metadata', True)
        if isinstance(metadata, str):
            metadata = metadata.strip().lower() not in ('', '0', 'false', 'no')

        return cls(limit=limit, offset=offset, metadata=bool(metadata))

    def to_dict(self) -> dict:
        return {'limit': self.limit, 'offset': self.offset, 'metadata': self.metadata}


@dataclass
class UserSummary:
    """Mixcloud account profile."""

    username: str
    display_name: str = ''
    url: str = ''
    picture_urls: Dict[str, str] = field(default_factory=dict)
    city: str = ''
    country: str = ''
    biography: str = ''
    follower_count: int = 0
    following_count: int = 0
    cloudcast_count: int = 0

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "UserSummary":
        return cls(
            username=_text(payload.get('username')),
            display_name=_text(payload.get('name')),
            url=_text(payload.get('url')),
            picture_urls=sanitize_picture_urls(payload.get('pictures')),
            city=_text(payload.get('city')),
            country=_text(payload.get('country')),
            biography=_text(payload.get('biog')),
            follower_count=_count(payload.get('follower_count')),
            following_count=_count(payload.get('following_count')),
            cloudcast_count=_count(payload.get('cloudcast_count')),
        )

    def to_dict(self) -> dict:
        return {
            'username': self.username,
            'display_name': self.display_name,
            'url': self.url,
            'picture_urls': dict(self.picture_urls),
            'city': self.city,
            'country': self.country,
            'biography': self.biography,
            'follower_count': self.follower_count,
            'following_count': self.following_count,
            'cloudcast_count': self.cloudcast_count,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "UserSummary":
        return cls(
            username=data['username'],
            display_name=data.get('display_name', ''),
            url=data.get('url', ''),
            picture_urls=dict(data.get('picture_urls') or {}),
            city=data.get('city', ''),
            country=data.get('country', ''),
            biography=data.get('biography', ''),
            follower_count=_count(data.get('follower_count')),
            following_count=_count(data.get('following_count')),
            cloudcast_count=_count(data.get('cloudcast_count')),
        )


@dataclass
class CloudcastRecord:
    """One show/episode in an account's archive."""

    key: str
    name: str
    url: str
    created_at: datetime
    description: str = ''
    play_count: int = 0
    favorite_count: int = 0
    comment_count: int = 0
    audio_length: int = 0
    picture_urls: Dict[str, str] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    owner: Optional[UserSummary] = None

    @classmethod
    def from_api(cls, payload: Any) -> Optional["CloudcastRecord"]:
        """
        Parse one upstream cloudcast.

        Returns None when a required field is missing or created_time is
        unreadable; callers drop those records.
        """
        if not isinstance(payload, Mapping):
            return None
        if any(payload.get(f) in (None, '') for f in REQUIRED_CLOUDCAST_FIELDS):
            return None

        created_at = parse_timestamp(payload['created_time'])
        if created_at is None:
            return None

        owner = payload.get('user')
        return cls(
            key=_text(payload['key']),
            name=_text(payload['name']),
            url=_text(payload['url']),
            created_at=created_at,
            description=_text(payload.get('description')),
            play_count=_count(payload.get('play_count')),
            favorite_count=_count(payload.get('favorite_count')),
            comment_count=_count(payload.get('comment_count')),
            audio_length=_count(payload.get('audio_length')),
            picture_urls=sanitize_picture_urls(payload.get('pictures')),
            tags=_tag_names(payload.get('tags')),
            owner=UserSummary.from_api(owner) if isinstance(owner, Mapping) else None,
        )

    def to_dict(self) -> dict:
        return {
            'key': self.key,
            'name': self.name,
            'url': self.url,
            'created_at': self.created_at.isoformat(),
            'description': self.description,
            'play_count': self.play_count,
            'favorite_count': self.favorite_count,
            'comment_count': self.comment_count,
            'audio_length': self.audio_length,
            'picture_urls': dict(self.picture_urls),
            'tags': list(self.tags),
            'owner': self.owner.to_dict() if self.owner else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CloudcastRecord":
        owner = data.get('owner')
        return cls(
            key=data['key'],
            name=data['name'],
            url=data['url'],
            created_at=parse_timestamp(data['created_at']),
            description=data.get('description', ''),
            play_count=_count(data.get('play_count')),
            favorite_count=_count(data.get('favorite_count')),
            comment_count=_count(data.get('comment_count')),
            audio_length=_count(data.get('audio_length')),
            picture_urls=dict(data.get('picture_urls') or {}),
            tags=list(data.get('tags') or []),
            owner=UserSummary.from_dict(owner) if owner else None,
        )


@dataclass
class QueryResult:
    """Result from fetching an account's cloudcasts."""

    records: List[CloudcastRecord]
    paging: Dict[str, Any] = field(default_factory=dict)
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def next_page(self) -> Optional[str]:
        """Upstream continuation, or None on the last page."""
        return self.paging.get('next') or None

    @property
    def newest_created_at(self) -> Optional[datetime]:
        if not self.records:
            return None
        return max(r.created_at for r in self.records)

    def __len__(self) -> int:
        return len(self.records)

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> "QueryResult":
        """Parse a cloudcasts listing, dropping malformed records."""
        records = []
        for item in payload['data']:
            record = CloudcastRecord.from_api(item)
            if record is not None:
                records.append(record)

        paging = payload.get('paging')
        return cls(records=records, paging=dict(paging) if isinstance(paging, Mapping) else {})

    def to_dict(self) -> dict:
        return {
            'records': [r.to_dict() for r in self.records],
            'paging': dict(self.paging),
            'fetched_at': self.fetched_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QueryResult":
        return cls(
            records=[CloudcastRecord.from_dict(r) for r in data.get('records', [])],
            paging=dict(data.get('paging') or {}),
            fetched_at=parse_timestamp(data.get('fetched_at')) or datetime.now(timezone.utc),
        )
