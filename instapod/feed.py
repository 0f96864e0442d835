"""RSS 2.0 podcast feed (iTunes namespace) for the committed episodes."""
import xml.etree.ElementTree as ET
from datetime import timezone
from email.utils import format_datetime
from pathlib import Path
from typing import Iterable, Optional, Union
from urllib.parse import quote

from instapod.config import FeedConfig
from instapod.models import Episode
from instapod.utils import atomic_write_text

ITUNES_NS = "http://www.itunes.com/dtds/podcast-1.0.dtd"
ATOM_NS = "http://www.w3.org/2005/Atom"


def format_duration(seconds: int) -> str:
    """itunes:duration as H:MM:SS, or M:SS under an hour."""
    seconds = max(0, int(seconds))
    h, rest = divmod(seconds, 3600)
    m, s = divmod(rest, 60)
    if h:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def generate_feed(feed: FeedConfig, base_url: str, episodes: Iterable[Episode],
                  audio_dir: Optional[Union[str, Path]] = None) -> str:
    """Render the podcast feed. Episodes are emitted in the order given."""
    base_url = base_url.rstrip("/")

    rss = ET.Element("rss", version="2.0")
    rss.set("xmlns:itunes", ITUNES_NS)
    rss.set("xmlns:atom", ATOM_NS)
    channel = ET.SubElement(rss, "channel")
    ET.SubElement(channel, "title").text = feed.title
    ET.SubElement(channel, "link").text = base_url
    ET.SubElement(channel, "description").text = feed.description
    ET.SubElement(channel, "language").text = feed.language
    ET.SubElement(channel, "atom:link", href=f"{base_url}/feed", rel="self",
                  type="application/rss+xml")
    ET.SubElement(channel, "itunes:author").text = feed.author
    ET.SubElement(channel, "itunes:summary").text = feed.description
    ET.SubElement(channel, "itunes:explicit").text = "no"
    ET.SubElement(channel, "itunes:category", text="Technology")
    if feed.image:
        ET.SubElement(channel, "itunes:image", href=feed.image)

    for ep in episodes:
        item = ET.SubElement(channel, "item")
        ET.SubElement(item, "title").text = ep.title
        ET.SubElement(item, "description").text = feed.episode_description.format(
            source=ep.source, title=ep.title)

        length = 0
        if audio_dir is not None:
            audio_path = Path(audio_dir) / ep.audio_ref
            if audio_path.exists():
                length = audio_path.stat().st_size
        ET.SubElement(item, "enclosure", url=f"{base_url}/audio/{quote(ep.audio_ref)}",
                      type="audio/mpeg", length=str(length))
        ET.SubElement(item, "guid", isPermaLink="false").text = ep.id
        ET.SubElement(item, "pubDate").text = format_datetime(ep.published_at.astimezone(timezone.utc), usegmt=True)
        ET.SubElement(item, "itunes:author").text = feed.author
        ET.SubElement(item, "itunes:duration").text = format_duration(ep.duration_seconds)
        ET.SubElement(item, "itunes:explicit").text = "no"

    tree = ET.ElementTree(rss)
    ET.indent(tree, space="  ")
    body = ET.tostring(rss, encoding="unicode")
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + body + "\n"


def write_feed(path: Union[str, Path], xml: str) -> None:
    atomic_write_text(path, xml)
