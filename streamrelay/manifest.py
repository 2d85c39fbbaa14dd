"""HLS playlist rewriting.

Every line that is not blank and not a ``#`` tag is a URI reference.  Each
one is resolved against the playlist's own (post-redirect) URL and replaced
by a relay URL pointing back at this service, so that variant playlists and
segments are fetched through the relay with the same routing mode.  Tags are
copied untouched.

Everything in here is pure: no I/O, no settings.
"""

import enum
from dataclasses import dataclass
from urllib.parse import quote, urlsplit

HLS_MIME = "application/vnd.apple.mpegurl"
RELAY_PATH = "/relay"


class LineKind(str, enum.Enum):
    COMMENT = "comment"
    BLANK = "blank"
    REFERENCE = "reference"


@dataclass(frozen=True)
class PlaylistLine:
    raw: str
    kind: LineKind
    resolved_url: str | None = None
    rewritten: str | None = None

    @property
    def output(self) -> str:
        return self.rewritten if self.rewritten is not None else self.raw


def looks_like_playlist(content_type: str | None, *urls: str) -> bool:
    """Content sniffing: HLS MIME marker in the content type, or an .m3u8 URL."""
    ct = (content_type or "").lower()
    if "mpegurl" in ct or "m3u8" in ct:
        return True
    return any(".m3u8" in (u or "").lower() for u in urls)


def _origin(base_url: str) -> str:
    parts = urlsplit(base_url)
    return f"{parts.scheme}://{parts.netloc}"


def _dirname(base_url: str) -> str:
    path = urlsplit(base_url).path
    return path[: path.rfind("/") + 1] if "/" in path else "/"


def resolve_reference(ref: str, base_url: str) -> str:
    """Make a playlist entry absolute.

    >>> resolve_reference("seg1.ts", "https://cdn.example/path/live/index.m3u8")
    'https://cdn.example/path/live/seg1.ts'
    >>> resolve_reference("/abs/seg2.ts", "https://cdn.example/path/live/index.m3u8")
    'https://cdn.example/abs/seg2.ts'
    """
    if ref.startswith(("http://", "https://")):
        return ref
    if ref.startswith("/"):
        return _origin(base_url) + ref
    return _origin(base_url) + _dirname(base_url) + ref


def relay_url(proxy_origin: str, target_url: str, mode: str | None = None) -> str:
    url = f"{proxy_origin.rstrip('/')}{RELAY_PATH}?url={quote(target_url, safe='')}"
    if mode:
        url += f"&mode={mode}"
    return url


def classify_line(
    raw: str,
    base_url: str,
    proxy_origin: str | None = None,
    mode: str | None = None,
) -> PlaylistLine:
    trimmed = raw.strip()
    if not trimmed:
        return PlaylistLine(raw, LineKind.BLANK)
    if trimmed.startswith("#"):
        return PlaylistLine(raw, LineKind.COMMENT)

    absolute = resolve_reference(trimmed, base_url)
    if proxy_origin is None:
        rewritten = absolute
    else:
        rewritten = relay_url(proxy_origin, absolute, mode)
    return PlaylistLine(raw, LineKind.REFERENCE, resolved_url=absolute, rewritten=rewritten)


def rewrite(
    playlist_text: str,
    base_url: str,
    proxy_origin: str | None,
    mode: str | None = None,
) -> str:
    """Rewrite every URI line of ``playlist_text``.

    ``base_url`` must be the URL the playlist was finally served from, after
    redirects.  With ``proxy_origin=None`` the references are only made
    absolute, so a player fetches them straight from the CDN.
    """
    return "\n".join(
        classify_line(line, base_url, proxy_origin, mode).output
        for line in playlist_text.split("\n")
    )
