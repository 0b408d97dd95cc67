"""
Fallback Generator - last-resort synthetic assets so a scene never ends empty.

Strategy order:
1. themed_photo   - generic photo service, keyword + scene-role theme (loremflickr)
2. random_photo   - purely random stock image (picsum)
3. text_placeholder - 1920x1080 JPEG rendered locally with Pillow (no I/O)
4. minimal_placeholder - hardcoded PNG buffer (only if Pillow itself fails)

Every asset is MediaAsset(synthetic=True, fallback_strategy=<name>).
generate() never raises.
"""

from __future__ import annotations

import base64
import hashlib
import io
import re
from typing import Callable, List, Optional, Tuple

import requests
from PIL import Image, ImageDraw, ImageFont

from acquisition_validator import sniff_media_type
from media_models import MediaAsset, MediaKind, ProjectDedupState, Provider, SceneContext
from scene_scheduler import scene_role


USER_AGENT = "MediaCuratorBot/1.0 (Short video production; placeholder fetch)"

THEMED_PHOTO_URL = "https://loremflickr.com/{w}/{h}/{tags}?lock={lock}"
RANDOM_PHOTO_URL = "https://picsum.photos/seed/{seed}/{w}/{h}"

# Scene role -> theme tag for the generic photo service
ROLE_THEMES = {
    "hook": "dramatic",
    "intro": "landscape",
    "tips": "workspace",
    "warnings": "caution",
    "conclusion": "success",
    "travel": "travel",
    "content": "abstract",
}

PLACEHOLDER_COLORS: Tuple[Tuple[int, int, int], ...] = (
    (52, 152, 219),
    (46, 204, 113),
    (155, 89, 182),
    (241, 196, 15),
    (230, 126, 34),
)

# 1x1 PNG
MINIMAL_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)

MIN_PHOTO_BYTES = 1000


def _tag(text: str) -> str:
    words = re.findall(r"[a-z0-9]+", str(text or "").lower())
    return "-".join(words[:3])


def render_text_placeholder(
    keyword: str,
    scene_context: Optional[SceneContext] = None,
    attempt_index: int = 0,
    width: int = 1920,
    height: int = 1080,
) -> bytes:
    """Solid-colour JPEG with the keyword and scene title in the middle."""
    color = PLACEHOLDER_COLORS[int(attempt_index) % len(PLACEHOLDER_COLORS)]
    img = Image.new("RGB", (int(width), int(height)), color)
    draw = ImageDraw.Draw(img)

    title = (scene_context.title if scene_context else "") or ""
    lines = [str(keyword or "media").strip()[:60] or "media"]
    if title and title.strip().lower() != lines[0].lower():
        lines.append(title.strip()[:60])
    lines.append(f"visual {int(attempt_index) + 1}")
    text = "\n".join(lines)

    try:
        font = ImageFont.load_default(size=64)
    except TypeError:
        font = ImageFont.load_default()

    bbox = draw.multiline_textbbox((0, 0), text, font=font, align="center")
    x = (img.width - (bbox[2] - bbox[0])) // 2
    y = (img.height - (bbox[3] - bbox[1])) // 2

    # Outline for readability on light colours
    for adj in range(-2, 3, 2):
        for adj2 in range(-2, 3, 2):
            draw.multiline_text((x + adj, y + adj2), text, font=font, fill=(0, 0, 0), align="center")
    draw.multiline_text((x, y), text, font=font, fill=(255, 255, 255), align="center")

    buf = io.BytesIO()
    img.save(buf, "JPEG", quality=85)
    return buf.getvalue()


class FallbackGenerator:
    def __init__(
        self,
        session: Optional[requests.Session] = None,
        dedup_state: Optional[ProjectDedupState] = None,
        timeout_sec: float = 10,
        width: int = 1920,
        height: int = 1080,
        renderer: Callable[..., bytes] = render_text_placeholder,
        verbose: bool = False,
    ):
        self.session = session if session is not None else requests.Session()
        self.dedup_state = dedup_state
        self.timeout_sec = float(timeout_sec)
        self.width = int(width)
        self.height = int(height)
        self.renderer = renderer
        self.verbose = verbose
        self.last_errors: List[str] = []

    def _fetch_photo(self, url: str) -> Optional[Tuple[bytes, str]]:
        """Returns (bytes, content_type) for a genuine image response, else None."""
        try:
            resp = self.session.get(url, headers={"User-Agent": USER_AGENT}, timeout=self.timeout_sec)
        except requests.RequestException as e:
            self.last_errors.append(f"{url}: {e}")
            return None
        status = getattr(resp, "status_code", None)
        if status != 200:
            self.last_errors.append(f"{url}: HTTP {status}")
            return None
        data = resp.content or b""
        content_type = sniff_media_type(data)
        if len(data) < MIN_PHOTO_BYTES or content_type is None or not content_type.startswith("image/"):
            self.last_errors.append(f"{url}: not an image ({len(data)} bytes)")
            return None
        return data, content_type

    def _accept(self, data: bytes, content_type: str, strategy: str, url: Optional[str], attribution: str) -> Optional[MediaAsset]:
        digest = hashlib.sha256(data).hexdigest()
        if self.dedup_state is not None and not self.dedup_state.commit(digest, [url] if url else []):
            self.last_errors.append(f"{strategy}: duplicate content")
            return None
        return MediaAsset(
            data=data,
            provider=Provider.FALLBACK,
            kind=MediaKind.IMAGE,
            content_type=content_type,
            content_hash=digest,
            attribution=attribution,
            synthetic=True,
            fallback_strategy=strategy,
        )

    def generate(self, keyword: str, scene_context: Optional[SceneContext] = None, attempt_index: int = 0) -> MediaAsset:
        self.last_errors = []
        keyword = str(keyword or "").strip() or (scene_context.title if scene_context else "") or "background"
        theme = ROLE_THEMES.get(scene_role(scene_context), "abstract") if scene_context else "abstract"
        scene_part = _tag(scene_context.title) if scene_context else ""
        lock = int(hashlib.md5(f"{keyword}|{scene_part}|{attempt_index}".encode()).hexdigest()[:6], 16)

        tags = ",".join(t for t in (_tag(keyword), theme) if t)
        themed_url = THEMED_PHOTO_URL.format(w=self.width, h=self.height, tags=tags, lock=lock)
        fetched = self._fetch_photo(themed_url)
        if fetched:
            asset = self._accept(fetched[0], fetched[1], "themed_photo", themed_url, "LoremFlickr (Creative Commons)")
            if asset:
                return self._done(asset, keyword)

        seed = f"{_tag(keyword) or 'media'}-{scene_part or 'scene'}-{attempt_index}"
        random_url = RANDOM_PHOTO_URL.format(seed=seed, w=self.width, h=self.height)
        fetched = self._fetch_photo(random_url)
        if fetched:
            asset = self._accept(fetched[0], fetched[1], "random_photo", random_url, "Lorem Picsum (Unsplash)")
            if asset:
                return self._done(asset, keyword)

        try:
            data = self.renderer(keyword, scene_context, attempt_index, self.width, self.height)
            asset = self._accept(data, "image/jpeg", "text_placeholder", None, "Generated placeholder")
            if asset:
                return self._done(asset, keyword)
        except Exception as e:
            self.last_errors.append(f"text_placeholder: {e}")

        return self._done(
            MediaAsset(
                data=MINIMAL_PNG,
                provider=Provider.FALLBACK,
                kind=MediaKind.IMAGE,
                content_type="image/png",
                content_hash=hashlib.sha256(MINIMAL_PNG).hexdigest(),
                attribution="Generated placeholder",
                synthetic=True,
                fallback_strategy="minimal_placeholder",
            ),
            keyword,
        )

    def _done(self, asset: MediaAsset, keyword: str) -> MediaAsset:
        if self.verbose:
            mark = "⚠️ " if asset.fallback_strategy in ("text_placeholder", "minimal_placeholder") else "🔄"
            print(f"{mark} Fallback '{keyword[:40]}' -> {asset.fallback_strategy} ({asset.size} bytes)")
        return asset
