from typing import ClassVar, TypeVar

import msgspec
import orjson


M = TypeVar("M", bound="Message")


class Message(msgspec.Struct, kw_only=True):
    """
    Base class for every payload carried over the message channel.

    Payloads are plain JSON (orjson) so any transport that moves bytes
    can carry them.
    """
    subject: ClassVar[str] = ""

    @classmethod
    def load(cls: type[M], data: bytes) -> M:
        return msgspec.convert(orjson.loads(data), type=cls)

    def dump(self) -> bytes:
        return orjson.dumps(msgspec.to_builtins(self))

    def subject_for(self) -> str:
        return self.subject
