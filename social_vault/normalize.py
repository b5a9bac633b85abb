from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, Sequence
from urllib.parse import quote

from .errors import ClassificationError
from .metrics import pick_first_metric
from .models import Metrics, NormalizedContent, Platform

Extractor = Callable[[Mapping[str, Any]], Any]

XHS_CDN_TEMPLATE = "https://sns-img-bd.xhscdn.com/{fileid}?imageView2/2/w/660/format/jpg/q/75"

_IMAGE_URL_KEYS = ("url_size_large", "url", "url_default", "url_pre", "url_original")
_TWEET_MEDIA_TYPES = ("photo", "animated_gif", "video")

XHS_METRIC_FIELDS: dict[str, tuple[str, ...]] = {
    "likes": ("liked_count", "likedCount", "like_count", "interactInfo.likedCount", "interact_info.liked_count", "interactStatus.likedCount"),
    "bookmarks": ("collected_count", "collectedCount", "collect_count", "interactInfo.collectedCount", "interact_info.collected_count", "interactStatus.collectedCount"),
    "comments": ("comments_count", "commentCount", "comment_count", "interactInfo.commentCount", "interact_info.comment_count", "interactStatus.commentCount"),
    "shares": ("shared_count", "shareCount", "share_count", "interactInfo.shareCount", "interact_info.share_count", "interactStatus.shareCount"),
}

TWEET_METRIC_FIELDS: dict[str, tuple[str, ...]] = {
    "likes": ("public_metrics.like_count",),
    "bookmarks": ("public_metrics.bookmark_count",),
    "comments": ("public_metrics.reply_count",),
    "shares": ("public_metrics.retweet_count",),
}


def _coerce_str(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None


def _get(obj: Any, *path: str) -> Any:
    current = obj
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def first_non_empty(record: Mapping[str, Any], extractors: Sequence[Extractor], default: Any = "") -> Any:
    """Run extractors in order and return the first non-empty result."""
    for extract in extractors:
        value = extract(record)
        if value not in (None, "", [], ()):
            return value
    return default


def _dedupe(values: Iterable[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(v for v in values if v))


# Xiaohongshu


def build_xhs_image_url(fileid: str | None) -> str:
    if not fileid:
        return ""
    return XHS_CDN_TEMPLATE.format(fileid=fileid)


def convert_to_jpg(url: str | None) -> str:
    return (url or "").replace("format/heif", "format/jpg")


def xhs_image_url(image: Any) -> str:
    """File id first, signed URL second; signed URLs expire, CDN URLs built from a file id do not."""
    if isinstance(image, str):
        return convert_to_jpg(image.strip())
    if not isinstance(image, Mapping):
        return ""
    fileid = _coerce_str(image.get("fileid")) or _coerce_str(image.get("file_id")) or _coerce_str(image.get("fileId"))
    if fileid:
        return build_xhs_image_url(fileid)
    for key in _IMAGE_URL_KEYS:
        url = _coerce_str(image.get(key))
        if url:
            return convert_to_jpg(url)
    return ""


def _xhs_image_list(note: Mapping[str, Any]) -> list[Any]:
    for key in ("images_list", "image_list", "imageList"):
        value = note.get(key)
        if isinstance(value, list):
            return value
    return []


def _cover_index(note: Mapping[str, Any]) -> int:
    try:
        return int(note.get("cover_image_index") or 0)
    except (TypeError, ValueError):
        return 0


def _cover_from_images(note: Mapping[str, Any]) -> str:
    images = _xhs_image_list(note)
    if not images:
        return ""
    idx = _cover_index(note)
    chosen = images[idx] if 0 <= idx < len(images) else images[0]
    return xhs_image_url(chosen)


XHS_COVER_EXTRACTORS: tuple[Extractor, ...] = (
    lambda n: xhs_image_url(n.get("cover")),
    _cover_from_images,
    lambda n: convert_to_jpg(_coerce_str(_get(n, "share_info", "image")) or _coerce_str(_get(n, "shareInfo", "image"))),
    lambda n: convert_to_jpg(_coerce_str(_get(n, "video", "coverUrl"))),
)

XHS_AUTHOR_EXTRACTORS: tuple[Extractor, ...] = (
    lambda n: _coerce_str(_get(n, "user", "nickname")),
    lambda n: _coerce_str(_get(n, "user", "nick_name")),
    lambda n: _coerce_str(_get(n, "user", "name")),
    lambda n: _coerce_str(_get(n, "author", "nickname")),
    lambda n: _coerce_str(n.get("nickname")),
    lambda n: _coerce_str(n.get("author_name")),
)

XHS_AVATAR_EXTRACTORS: tuple[Extractor, ...] = (
    lambda n: _coerce_str(_get(n, "user", "images")),
    lambda n: _coerce_str(_get(n, "user", "image")),
    lambda n: _coerce_str(_get(n, "user", "avatar")),
)

XHS_TITLE_EXTRACTORS: tuple[Extractor, ...] = (
    lambda n: _coerce_str(n.get("title")),
    lambda n: _coerce_str(n.get("display_title")),
    lambda n: _coerce_str(n.get("displayTitle")),
)

XHS_TEXT_EXTRACTORS: tuple[Extractor, ...] = (
    lambda n: _coerce_str(n.get("desc")),
    lambda n: _coerce_str(n.get("description")),
    lambda n: _coerce_str(n.get("content")),
)


def _publish_time_tag(note: Mapping[str, Any]) -> str | None:
    tags = note.get("corner_tag_info")
    if not isinstance(tags, list):
        return None
    for tag in tags:
        if isinstance(tag, Mapping) and tag.get("type") == "publish_time":
            return _coerce_str(tag.get("text"))
    return None


XHS_PUBLISH_TIME_EXTRACTORS: tuple[Extractor, ...] = (
    _publish_time_tag,
    lambda n: _coerce_str(n.get("time")),
    lambda n: _coerce_str(n.get("publish_time")),
    lambda n: _coerce_str(n.get("create_time")),
)

XHS_SHARE_URL_EXTRACTORS: tuple[Extractor, ...] = (
    lambda n: _coerce_str(_get(n, "share_info", "link")),
    lambda n: _coerce_str(_get(n, "shareInfo", "link")),
    lambda n: _coerce_str(n.get("share_url")),
)


def xhs_tags(note: Mapping[str, Any]) -> tuple[str, ...]:
    names: list[str] = []
    for key in ("tag_list", "tagList", "hash_tag"):
        value = note.get(key)
        if isinstance(value, list):
            for tag in value:
                name = _coerce_str(tag.get("name")) if isinstance(tag, Mapping) else _coerce_str(tag)
                if name:
                    names.append(name)
    features = note.get("feature_tags")
    if isinstance(features, list):
        for tag in features:
            name = _coerce_str(tag.get("name")) if isinstance(tag, Mapping) else _coerce_str(tag)
            if name:
                names.append(name)
    return _dedupe(names)


def xhs_source_url(note_id: str, access_token: str | None) -> str:
    if access_token:
        return f"https://www.xiaohongshu.com/discovery/item/{note_id}?xsec_token={quote(access_token, safe='')}"
    return f"https://www.xiaohongshu.com/explore/{note_id}"


def _metrics(record: Mapping[str, Any], fields: Mapping[str, Sequence[str]]) -> Metrics:
    return Metrics(**{name: pick_first_metric(record, candidates) for name, candidates in fields.items()})


def _normalize_xhs(
    note: Mapping[str, Any],
    *,
    provider: str,
    post_id: str | None,
    access_token: str | None,
) -> NormalizedContent:
    nid = _coerce_str(note.get("id")) or _coerce_str(note.get("note_id")) or _coerce_str(note.get("noteId")) or (post_id or "")
    token = access_token or _coerce_str(note.get("xsec_token")) or ""

    share_url = first_non_empty(note, XHS_SHARE_URL_EXTRACTORS)
    if not share_url:
        if not nid:
            raise ValueError("Xiaohongshu note has neither an id nor a share URL")
        share_url = xhs_source_url(nid, token or None)

    images = _dedupe(xhs_image_url(img) for img in _xhs_image_list(note))

    return NormalizedContent(
        platform=Platform.XIAOHONGSHU,
        source_url=share_url,
        post_id=nid,
        title=first_non_empty(note, XHS_TITLE_EXTRACTORS),
        author=first_non_empty(note, XHS_AUTHOR_EXTRACTORS),
        author_avatar=first_non_empty(note, XHS_AVATAR_EXTRACTORS),
        raw_text=first_non_empty(note, XHS_TEXT_EXTRACTORS),
        cover_image_url=first_non_empty(note, XHS_COVER_EXTRACTORS),
        images=images,
        tags=xhs_tags(note),
        metrics=_metrics(note, XHS_METRIC_FIELDS),
        publish_time=first_non_empty(note, XHS_PUBLISH_TIME_EXTRACTORS),
        provider_used=provider,
        access_token=token,
    )


# Twitter


def tweet_images(media: Any) -> tuple[str, ...]:
    if not isinstance(media, list):
        return ()
    urls: list[str] = []
    for m in media:
        if not isinstance(m, Mapping) or m.get("type") not in _TWEET_MEDIA_TYPES:
            continue
        url = _coerce_str(m.get("url")) or _coerce_str(m.get("preview_image_url"))
        if url:
            urls.append(url)
    return _dedupe(urls)


def tweet_tags(tweet: Mapping[str, Any]) -> tuple[str, ...]:
    hashtags = _get(tweet, "entities", "hashtags")
    if not isinstance(hashtags, list):
        return ()
    return _dedupe(
        (_coerce_str(h.get("tag")) or "") if isinstance(h, Mapping) else (_coerce_str(h) or "")
        for h in hashtags
    )


def tweet_source_url(tweet_id: str, username: str | None) -> str:
    if username:
        return f"https://twitter.com/{username}/status/{tweet_id}"
    return f"https://twitter.com/i/web/status/{tweet_id}"


TWEET_TEXT_EXTRACTORS: tuple[Extractor, ...] = (
    lambda t: _coerce_str(_get(t, "note_tweet", "text")),
    lambda t: _coerce_str(t.get("text")),
)


def _normalize_tweet(
    bundle: Mapping[str, Any],
    *,
    provider: str,
    post_id: str | None,
) -> NormalizedContent:
    # Accept both the {"tweet","user","media"} bundle and a bare tweet object.
    tweet = bundle.get("tweet") if isinstance(bundle.get("tweet"), Mapping) else bundle
    user = bundle.get("user") if isinstance(bundle.get("user"), Mapping) else {}

    tid = _coerce_str(tweet.get("id")) or (post_id or "")
    if not tid:
        raise ValueError("Tweet payload has no id")

    username = _coerce_str(user.get("username"))
    images = tweet_images(bundle.get("media"))

    return NormalizedContent(
        platform=Platform.TWITTER,
        source_url=tweet_source_url(tid, username),
        post_id=tid,
        title="",
        author=username or _coerce_str(user.get("name")) or "",
        author_avatar=_coerce_str(user.get("profile_image_url")) or "",
        raw_text=first_non_empty(tweet, TWEET_TEXT_EXTRACTORS),
        cover_image_url=images[0] if images else "",
        images=images,
        tags=tweet_tags(tweet),
        metrics=_metrics(tweet, TWEET_METRIC_FIELDS),
        publish_time=_coerce_str(tweet.get("created_at")) or "",
        provider_used=provider,
    )


def normalize(
    raw: Mapping[str, Any],
    platform: Platform | str,
    *,
    provider: str | None = None,
    post_id: str | None = None,
    access_token: str | None = None,
) -> NormalizedContent:
    """
    Map one raw provider payload to NormalizedContent.

    Pure: no I/O. Raises ClassificationError for an unknown platform and ValueError
    when the payload carries no usable identity.
    """
    p = Platform.parse(platform)
    if not isinstance(raw, Mapping):
        raise ValueError("raw payload must be a mapping")

    if p is Platform.XIAOHONGSHU:
        return _normalize_xhs(raw, provider=provider or "", post_id=post_id, access_token=access_token)
    if p is Platform.TWITTER:
        return _normalize_tweet(raw, provider=provider or "x_api", post_id=post_id)
    raise ClassificationError(f"Unknown platform: {platform}")


def map_to_card(raw: Mapping[str, Any], platform: Platform | str) -> dict[str, Any]:
    """Boundary variant of normalize() for UI callers; never raises on an unknown platform."""
    try:
        return normalize(raw, platform).to_dict()
    except ClassificationError:
        return {"error": "Unknown platform"}
