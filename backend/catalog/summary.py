"""
Aggregates shown on curriculum cards and detail pages.

Counts and durations are derived from the ordered member lists rather than
stored, so they always reflect the last saved curation.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

YOUTUBE_THUMBNAIL_URL = "https://img.youtube.com/vi/{youtube_id}/mqdefault.jpg"


def lecture_duration(videos: Sequence[dict]) -> int:
    return sum(int(v.get("duration") or 0) for v in videos)


def pick_thumbnail(own_thumbnail: Optional[str], first_video: Optional[dict]) -> Optional[str]:
    """Explicit thumbnail, else the first video's, else YouTube's default frame."""
    if own_thumbnail:
        return own_thumbnail
    if not first_video:
        return None
    if first_video.get("thumbnail_url"):
        return first_video["thumbnail_url"]
    if first_video.get("youtube_id"):
        return YOUTUBE_THUMBNAIL_URL.format(youtube_id=first_video["youtube_id"])
    return None


def summarize_curriculum(curriculum: dict, lectures: List[Dict[str, Any]]) -> dict:
    """Attach counts, total duration and a thumbnail to a curriculum.

    `lectures` is ordered and each entry carries its ordered `videos` list.
    """
    total_videos = sum(len(lec.get("videos") or []) for lec in lectures)
    total_duration = sum(lecture_duration(lec.get("videos") or []) for lec in lectures)
    first_videos = (lectures[0].get("videos") or []) if lectures else []
    return {
        **curriculum,
        "lecture_count": len(lectures),
        "total_video_count": total_videos,
        "total_duration": total_duration,
        "thumbnail": pick_thumbnail(curriculum.get("thumbnail_url"), first_videos[0] if first_videos else None),
    }


__all__ = ["YOUTUBE_THUMBNAIL_URL", "lecture_duration", "pick_thumbnail", "summarize_curriculum"]
