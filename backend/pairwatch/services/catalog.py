import base64
import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

import httpx
from pydantic import ValidationError

from pairwatch.models import CatalogEntry

logger = logging.getLogger(__name__)

VIDEO_EXTENSIONS = {".mp4", ".mov", ".webm", ".mkv", ".m4v"}
SUBTITLE_EXTENSIONS = {".vtt", ".srt"}

# Release tokens that say nothing about which episode a file is
_NOISE_TOKENS = re.compile(
    r"\b(480p|720p|1080p|2160p|4k|hdr|dvdrip|hdtv|webrip|webdl|bluray|bdrip"
    r"|x264|x265|h264|h265|aac|dts|subs|sub|eng|en)\b"
)
_SUBTITLE_PRIORITIES = ["hdtv", "lol", "webdl", "webrip", "bluray", "bdrip", "dvdrip"]
_SRT_TIMESTAMP = re.compile(r"(\d{2}:\d{2}:\d{2}),(\d{3})")


class CatalogUnavailable(Exception):
    pass


def is_video_file(name: str) -> bool:
    return Path(name).suffix.lower() in VIDEO_EXTENSIONS


def is_subtitle_file(name: str) -> bool:
    return Path(name).suffix.lower() in SUBTITLE_EXTENSIONS


def encode_hls_id(name: str) -> str:
    """URL-safe base64 of the file name, unpadded."""
    return base64.urlsafe_b64encode(name.encode("utf-8")).decode("ascii").rstrip("=")


def normalize_name(name: str) -> str:
    base = Path(name).stem.lower()
    base = re.sub(r"s(\d{1,2})\s*e(\d{1,2})", lambda m: f"s{int(m[1])}e{int(m[2])}", base)
    base = re.sub(r"(\d{1,2})x(\d{1,2})", lambda m: f"s{int(m[1])}e{int(m[2])}", base)
    base = re.sub(r"[^a-z0-9]+", " ", base)
    base = _NOISE_TOKENS.sub(" ", base)
    return re.sub(r"\s+", " ", base).strip()


def _subtitle_score(name: str) -> int:
    lowered = name.lower()
    return sum(10 - i for i, token in enumerate(_SUBTITLE_PRIORITIES) if token in lowered)


def _list_files(directory: Path) -> List[str]:
    try:
        return sorted(p.name for p in directory.iterdir() if p.is_file())
    except OSError:
        return []


def build_subtitle_map(*directories: Path) -> Dict[str, List[str]]:
    subtitle_map: Dict[str, List[str]] = {}
    for directory in directories:
        for name in _list_files(directory):
            if not is_subtitle_file(name):
                continue
            matches = subtitle_map.setdefault(normalize_name(name), [])
            if name not in matches:
                matches.append(name)
    for key, matches in subtitle_map.items():
        subtitle_map[key] = sorted(matches, key=_subtitle_score, reverse=True)
    return subtitle_map


def list_videos(videos_dir: Path, hls_dir: Path, subtitles_dir: Optional[Path] = None) -> List[CatalogEntry]:
    """
    Ordered catalog of the media library.

    Raises OSError when the videos directory itself cannot be read.
    """
    names = sorted(p.name for p in Path(videos_dir).iterdir() if p.is_file())
    subtitle_dirs = [Path(videos_dir)] + ([Path(subtitles_dir)] if subtitles_dir else [])
    subtitle_map = build_subtitle_map(*subtitle_dirs)

    entries = []
    for name in filter(is_video_file, names):
        hls_id = encode_hls_id(name)
        hls_ready = (Path(hls_dir) / hls_id / "index.m3u8").exists()
        has_subtitles = (Path(hls_dir) / hls_id / "index_vtt.m3u8").exists()
        primary = f"/hls/{hls_id}/index.m3u8" if hls_ready else None
        master = None
        if hls_ready:
            master = f"/api/hls/{hls_id}/master.m3u8" if has_subtitles else primary
        entries.append(
            CatalogEntry(
                name=name,
                hls_ready=hls_ready,
                primary_playlist_url=primary,
                master_playlist_url=master,
                has_subtitles=has_subtitles,
                subtitles=subtitle_map.get(normalize_name(name), []),
            )
        )
    return entries


def master_playlist(hls_id: str) -> str:
    """Master playlist pairing the video rendition with its WebVTT track."""
    return (
        "#EXTM3U\n"
        '#EXT-X-MEDIA:TYPE=SUBTITLES,GROUP-ID="subs",NAME="Subtitles",DEFAULT=YES,'
        f'AUTOSELECT=YES,LANGUAGE="en",URI="/hls/{hls_id}/index_vtt.m3u8"\n'
        '#EXT-X-STREAM-INF:BANDWIDTH=5000000,SUBTITLES="subs"\n'
        f"/hls/{hls_id}/index.m3u8\n"
    )


def srt_to_vtt(srt: str) -> str:
    content = srt.replace("\r", "").strip()
    lines = [_SRT_TIMESTAMP.sub(r"\1.\2", line) for line in content.split("\n")]
    return "WEBVTT\n\n" + "\n".join(lines) + "\n"


async def fetch_catalog(client: httpx.AsyncClient, base_url: str) -> List[CatalogEntry]:
    try:
        response = await client.get(f"{base_url.rstrip('/')}/api/videos")
        response.raise_for_status()
        files = response.json().get("files") or []
        return [CatalogEntry.model_validate(item) for item in files]
    except (httpx.HTTPError, ValueError, AttributeError, ValidationError) as e:
        logger.error(f"Catalog fetch failed: {e}")
        raise CatalogUnavailable("Could not load the video list.") from e
