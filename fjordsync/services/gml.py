"""Tolerant GML polygon extractor for WFS GetFeature responses.

Each feature element is cut out of the document and run through its own
``XMLPullParser``, with the namespace declarations of the document root
re-applied. A broken fragment only costs that one feature; the scan
carries on with the next one.
"""
from __future__ import annotations

import logging
import math
import re
import xml.etree.ElementTree as ET
from collections.abc import Iterator
from xml.sax.saxutils import quoteattr

from fjordsync.models import PolygonFeature

log = logging.getLogger(__name__)

DEFAULT_FEATURE_TAG = "AkvakulturFlate"

# Child elements copied into feature properties (local name -> property)
_SCALAR_FIELDS = {
    "firmanavn": "owner",
    "akvaPlassering": "plassering",
    "akvaVannmiljø": "vannmiljo",
}
_SPECIES_FIELD = "akvaArt"


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _document_namespaces(text: str, header_end: int) -> dict[str, str]:
    """Collect prefix -> URI declarations from the document header."""
    namespaces: dict[str, str] = {}
    parser = ET.XMLPullParser(events=("start-ns",))
    try:
        parser.feed(text[:header_end])
        for _event, (prefix, uri) in parser.read_events():
            namespaces.setdefault(prefix, uri)
    except ET.ParseError as e:
        log.debug("GML header not parseable: %s", e)
    return namespaces


def _fragments(text: str, feature_tag: str) -> Iterator[tuple[int, str]]:
    """Yield (offset, raw_xml) for every complete feature element."""
    opener = re.compile(r"<((?:[\w.-]+:)?%s)(?=[\s/>])" % re.escape(feature_tag))
    pos = 0
    while True:
        m = opener.search(text, pos)
        if m is None:
            return
        tag_end = text.find(">", m.end())
        if tag_end == -1:
            return
        if text[tag_end - 1] == "/":
            # Empty element, nothing to extract
            pos = tag_end + 1
            continue
        closer = f"</{m.group(1)}>"
        close_at = text.find(closer, tag_end)
        next_open = opener.search(text, tag_end)
        if close_at == -1 or (next_open is not None and next_open.start() < close_at):
            log.debug("Unterminated %s at offset %d", feature_tag, m.start())
            if next_open is None:
                return
            pos = next_open.start()
            continue
        end = close_at + len(closer)
        yield m.start(), text[m.start():end]
        pos = end


def _parse_coordinates(raw: str | None) -> list[tuple[float, float]] | None:
    if not raw:
        return None
    try:
        numbers = [float(n) for n in raw.split()]
    except ValueError:
        return None
    if not all(math.isfinite(n) for n in numbers):
        return None
    # A dangling odd value is ignored
    pairs = list(zip(numbers[0::2], numbers[1::2]))
    if len(pairs) < 3:
        return None
    return pairs


def _parse_fragment(fragment: str, namespaces: dict[str, str]) -> PolygonFeature | None:
    decls = " ".join(
        f"xmlns:{prefix}={quoteattr(uri)}" if prefix else f"xmlns={quoteattr(uri)}"
        for prefix, uri in namespaces.items()
    )
    parser = ET.XMLPullParser(events=("start", "end"))
    try:
        parser.feed(f"<fragment {decls}>{fragment}</fragment>")
        parser.close()
        events = list(parser.read_events())
    except ET.ParseError as e:
        log.debug("Skipping malformed GML feature: %s", e)
        return None

    feature_id: str | None = None
    pos_list: str | None = None
    props: dict[str, str | None] = {v: None for v in _SCALAR_FIELDS.values()}
    species: list[str] = []
    depth = 0

    for event, elem in events:
        if event == "start":
            depth += 1
            # depth 2 is the feature element itself
            if depth == 2:
                for name, value in elem.attrib.items():
                    if _local(name) in ("id", "fid"):
                        feature_id = value
                        break
            continue

        depth -= 1
        name = _local(elem.tag)
        text = (elem.text or "").strip()
        if name == "posList" and pos_list is None:
            pos_list = text
        elif name in _SCALAR_FIELDS and props[_SCALAR_FIELDS[name]] is None:
            props[_SCALAR_FIELDS[name]] = text
        elif name == _SPECIES_FIELD and text:
            species.append(text)

    coordinates = _parse_coordinates(pos_list)
    if coordinates is None:
        return None

    return PolygonFeature(
        id=feature_id,
        coordinates=coordinates,
        properties={
            "owner": props["owner"],
            "organisasjon": props["owner"],
            "plassering": props["plassering"],
            "vannmiljo": props["vannmiljo"],
            "art": ", ".join(species),
        },
    )


def parse_features(
    gml_text: str, feature_tag: str = DEFAULT_FEATURE_TAG
) -> list[PolygonFeature]:
    """Extract polygon features from a GML document, in source order.

    Features without a ``posList`` or with fewer than three coordinate
    pairs are dropped. Never raises on bad input.
    """
    if not isinstance(gml_text, str) or not gml_text.strip():
        return []

    features: list[PolygonFeature] = []
    namespaces: dict[str, str] | None = None
    for offset, fragment in _fragments(gml_text, feature_tag):
        if namespaces is None:
            namespaces = _document_namespaces(gml_text, offset)
        feature = _parse_fragment(fragment, namespaces)
        if feature is not None:
            features.append(feature)
    return features
