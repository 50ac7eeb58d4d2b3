from typing import ClassVar, Dict, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from gitsmith.domain.exceptions import MalformedMessageException

PATCH_MARKER = "patch"
REPLY_MARKER = "reply"
HEAD_REF = "HEAD"


class Tag(BaseModel):
    """
    Typed view of one message tag.
    On the wire a tag is a list of strings whose first element is the tag name.
    """
    model_config = ConfigDict(frozen=True)

    def to_wire(self) -> List[str]:
        raise NotImplementedError


class ValueTag(Tag):
    tag_name: ClassVar[str] = ""
    value: str

    def to_wire(self) -> List[str]:
        return [self.tag_name, self.value]


class Identifier(ValueTag):
    tag_name: ClassVar[str] = "d"


class Name(ValueTag):
    tag_name: ClassVar[str] = "name"


class Description(ValueTag):
    tag_name: ClassVar[str] = "description"


class RootCommit(ValueTag):
    tag_name: ClassVar[str] = "r"


class Relay(ValueTag):
    tag_name: ClassVar[str] = "relays"


class MaintainerRef(ValueTag):
    """Hex public key of a maintainer."""
    tag_name: ClassVar[str] = "p"


class Subject(ValueTag):
    tag_name: ClassVar[str] = "subject"


class CommitRef(ValueTag):
    tag_name: ClassVar[str] = "c"


class RepoCoordinate(ValueTag):
    tag_name: ClassVar[str] = "a"


class Alt(ValueTag):
    tag_name: ClassVar[str] = "alt"


class UrlListTag(Tag):
    tag_name: ClassVar[str] = ""
    urls: Tuple[str, ...] = Field(default_factory=tuple)

    def to_wire(self) -> List[str]:
        return [self.tag_name, *self.urls]


class Clone(UrlListTag):
    tag_name: ClassVar[str] = "clone"


class Web(UrlListTag):
    tag_name: ClassVar[str] = "web"


class EventRef(Tag):
    """
    Reference to another message.

    The third wire element is either the literal "patch" (first-patch
    reference) or a relay hint; the fourth is an optional marker such as
    "reply". Both positions are read independently.

    Wire forms:
        plain             -> ["e", id]
        patch             -> ["e", id, "patch"]
        marker            -> ["e", id, <"patch" or hint>, marker]
    """
    tag_name: ClassVar[str] = "e"
    event_id: str
    patch: bool = False
    relay_hint: str = ""
    marker: Optional[str] = None

    def to_wire(self) -> List[str]:
        third = PATCH_MARKER if self.patch else self.relay_hint
        if self.marker:
            return [self.tag_name, self.event_id, third, self.marker]
        if third:
            return [self.tag_name, self.event_id, third]
        return [self.tag_name, self.event_id]


class RefState(Tag):
    """A git ref and the commit it points at, as carried by state messages."""
    ref: str
    commit: str

    def to_wire(self) -> List[str]:
        return [self.ref, self.commit]


class UnknownTag(Tag):
    raw: Tuple[str, ...]

    def to_wire(self) -> List[str]:
        return list(self.raw)


_VALUE_TAGS: Dict[str, Type[ValueTag]] = {
    cls.tag_name: cls
    for cls in (Identifier, Name, Description, RootCommit, Relay, MaintainerRef, Subject, CommitRef, RepoCoordinate, Alt)
}
_URL_LIST_TAGS: Dict[str, Type[UrlListTag]] = {cls.tag_name: cls for cls in (Clone, Web)}


def decode_tag(raw: Sequence[str]) -> Tag:
    """
    Converts a wire tag into its typed variant.
    Unrecognised tag names decode to UnknownTag rather than failing.

    Raises:
        MalformedMessageException: if the tag is empty or holds non-string elements.
    """
    if not raw or not all(isinstance(item, str) for item in raw):
        raise MalformedMessageException(f"Malformed tag: {raw!r}")

    name = raw[0]
    if name == EventRef.tag_name:
        if len(raw) < 2:
            raise MalformedMessageException(f"Event reference without an id: {raw!r}")
        third = raw[2] if len(raw) > 2 else ""
        is_patch = third == PATCH_MARKER
        return EventRef(
            event_id=raw[1],
            patch=is_patch,
            relay_hint="" if is_patch else third,
            marker=raw[3] if len(raw) > 3 and raw[3] else None,
        )

    if name in _VALUE_TAGS and len(raw) > 1:
        return _VALUE_TAGS[name](value=raw[1])

    if name in _URL_LIST_TAGS:
        return _URL_LIST_TAGS[name](urls=tuple(raw[1:]))

    if (name == HEAD_REF or name.startswith("refs/")) and len(raw) == 2:
        return RefState(ref=name, commit=raw[1])

    return UnknownTag(raw=tuple(raw))


def encode_tags(tags: Iterable[Tag]) -> Tuple[Tuple[str, ...], ...]:
    return tuple(tuple(tag.to_wire()) for tag in tags)


def decode_tags(raw_tags: Iterable[Sequence[str]]) -> List[Tag]:
    return [decode_tag(raw) for raw in raw_tags]


T = TypeVar("T", bound=Tag)


def first_of(tags: Iterable[Tag], tag_type: Type[T]) -> Optional[T]:
    return next((tag for tag in tags if isinstance(tag, tag_type)), None)


def all_of(tags: Iterable[Tag], tag_type: Type[T]) -> List[T]:
    return [tag for tag in tags if isinstance(tag, tag_type)]
