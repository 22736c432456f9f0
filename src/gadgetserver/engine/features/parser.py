# src/gadgetserver/engine/features/parser.py

import xml.etree.ElementTree as ET
from typing import List
from urllib.parse import urlparse

from gadgetserver.services.exceptions import ConfigurationError
from .base import Feature, JsLibrary, LibraryContext, LibraryType

FEATURE_FILE_NAME = "feature.xml"


def classify_script_src(src: str) -> JsLibrary:
    """Maps a <script src> value onto a library type (context is filled in by the caller)."""
    parsed = urlparse(src)
    if parsed.scheme in ("http", "https") and parsed.netloc:
        return JsLibrary(type=LibraryType.URL, content=src)
    if parsed.scheme == "res":
        # res://host/path -> bundled resource id "host/path"
        resource_id = f"{parsed.netloc}{parsed.path}".lstrip("/")
        return JsLibrary(type=LibraryType.RESOURCE, content=resource_id)
    return JsLibrary(type=LibraryType.FILE, content=src)


def _parse_scripts(section: ET.Element, context: LibraryContext) -> List[JsLibrary]:
    libraries = []
    for script in section.findall("script"):
        src = (script.get("src") or "").strip()
        if src:
            lib = classify_script_src(src)
            libraries.append(JsLibrary(type=lib.type, content=lib.content, context=context))
        else:
            libraries.append(JsLibrary(type=LibraryType.INLINE, content=script.text or "", context=context))
    return libraries


def parse_feature_xml(content: str, base_path: str, source: str = "<string>") -> Feature:
    """
    Parses one feature descriptor:

        <feature>
          <name>views</name>
          <dependency>core</dependency>
          <gadget><script src="views.js"/></gadget>
          <container><script src="res://container/views.js"/></container>
        </feature>
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise ConfigurationError(f"Malformed feature descriptor {source}: {e}")

    name = (root.findtext("name") or "").strip()
    if not name:
        raise ConfigurationError(f"Invalid name in feature descriptor: {source}")

    dependencies: List[str] = []
    for dep in root.findall("dependency"):
        dep_name = (dep.text or "").strip()
        # repeated declarations of the same dependency collapse to the first one
        if dep_name and dep_name not in dependencies:
            dependencies.append(dep_name)

    libraries: List[JsLibrary] = []
    for section in root.findall("gadget"):
        libraries.extend(_parse_scripts(section, LibraryContext.GADGET))
    for section in root.findall("container"):
        libraries.extend(_parse_scripts(section, LibraryContext.CONTAINER))

    return Feature(
        name=name,
        dependencies=tuple(dependencies),
        libraries=tuple(libraries),
        base_path=base_path,
    )
