"""
Modelo de campos de un feed parseado.

Los parsers XML -> dict devuelven cada campo con formas distintas según el
feed (string, nodo con atributos, lista de <link> con rel/href...). En vez de
ir probando propiedades en cada sitio, cada valor crudo se clasifica una sola
vez en una de estas variantes:

    Text      -> escalar (str / número / bool)
    TextNode  -> contenedor de texto inline ({"value": ...}, {"#text": ...})
    LinkSet   -> uno o varios enlaces ({"href": ..., "rel": ...})

Cualquier otra forma se considera ausente (None). Nunca se convierte un objeto
a string ("[object Object]", "{'a': 1}", etc.).
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Union

# Orden de preferencia al buscar texto dentro de un nodo
TEXT_KEYS = ("#text", "_", "value", "content", "$t")
HREF_KEYS = ("@_href", "href", "url")
REL_KEYS = ("@_rel", "rel")


@dataclass(frozen=True)
class Text:
    value: str


@dataclass(frozen=True)
class TextNode:
    value: str
    type: str | None = None


@dataclass(frozen=True)
class Link:
    href: str | None = None
    rel: str | None = None
    text: str | None = None


@dataclass(frozen=True)
class LinkSet:
    links: tuple[Link, ...]

    def resolve(self) -> str | None:
        """rel="alternate" > href del primer nodo > texto del primer nodo."""
        for link in self.links:
            if link.rel == "alternate" and link.href:
                return link.href
        first = self.links[0]
        return first.href or first.text


FieldValue = Union[Text, TextNode, LinkSet]


def _clean(value: Any) -> str | None:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return None


def _first(node: Mapping, keys: tuple[str, ...]) -> str | None:
    for key in keys:
        found = _clean(node.get(key))
        if found:
            return found
    return None


def _as_link(node: Any) -> Link | None:
    if isinstance(node, str):
        text = _clean(node)
        return Link(text=text) if text else None
    if isinstance(node, Mapping):
        href = _first(node, HREF_KEYS)
        text = _first(node, TEXT_KEYS)
        if not href and not text:
            return None
        return Link(href=href, rel=_first(node, REL_KEYS), text=text)
    return None


def classify(raw: Any) -> FieldValue | None:
    if raw is None:
        return None

    if isinstance(raw, (bool, int, float)):
        return Text(str(raw))

    if isinstance(raw, str):
        value = _clean(raw)
        return Text(value) if value else None

    if isinstance(raw, Mapping):
        text = _first(raw, TEXT_KEYS)
        if text:
            return TextNode(text, _clean(raw.get("type")))
        link = _as_link(raw)
        if link and link.href:
            return LinkSet((link,))
        return None

    if isinstance(raw, (list, tuple)):
        links = tuple(link for link in (_as_link(n) for n in raw) if link)
        return LinkSet(links) if links else None

    return None


def field_text(value: FieldValue | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, LinkSet):
        return value.resolve()
    return value.value


def text_of(raw: Any) -> str | None:
    return field_text(classify(raw))
