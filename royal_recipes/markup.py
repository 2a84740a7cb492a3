"""The ``<<name|quantity>>`` ingredient markup used in step instructions.

Generated instructions mention ingredients like ``Add <<butter|50g>> to the pan``.
The quantity is the amount for that step, not the recipe total. Anything that
does not look exactly like ``<<name|quantity>>`` is left alone as text.
"""

from dataclasses import dataclass
import re
from typing import Callable, Iterable


ANNOTATION = re.compile(r"<<((?:(?!<<).)*?)>>", re.DOTALL)


@dataclass(frozen=True)
class Text:
    text: str

    @property
    def visible(self) -> str:
        return self.text


@dataclass(frozen=True)
class Annotation:
    name: str
    quantity: str

    @property
    def visible(self) -> str:
        return self.name

    @property
    def spoken(self) -> str:
        return f"{self.quantity} of {self.name}"

    @property
    def raw(self) -> str:
        return f"<<{self.name}|{self.quantity}>>"


type Token = Text | Annotation


def parse_annotation(content: str) -> Annotation | None:
    """``name|quantity`` to an annotation, or None when malformed."""
    parts = content.split("|")
    if len(parts) != 2:
        return None
    name, quantity = parts
    if not (name and quantity):
        return None
    return Annotation(name=name, quantity=quantity)


def parse_instruction(text: str) -> list[Token]:
    tokens: list[Token] = []
    pos = 0
    for match in ANNOTATION.finditer(text):
        annotation = parse_annotation(match.group(1))
        if annotation is None:
            continue
        if match.start() > pos:
            tokens.append(Text(text[pos : match.start()]))
        tokens.append(annotation)
        pos = match.end()
    if pos < len(text):
        tokens.append(Text(text[pos:]))
    return tokens


def annotations(text: str) -> list[Annotation]:
    return [t for t in parse_instruction(text) if isinstance(t, Annotation)]


def visible_text(tokens: Iterable[Token]) -> str:
    return "".join(t.visible for t in tokens)


def _replace(text: str, fn: Callable[[Annotation], str]) -> str:
    def repl(match: re.Match[str]) -> str:
        annotation = parse_annotation(match.group(1))
        return match.group(0) if annotation is None else fn(annotation)

    return ANNOTATION.sub(repl, text)


def to_speech(text: str) -> str:
    """``<<butter|50g>>`` reads as ``50g of butter``."""
    return _replace(text, lambda a: a.spoken)


def strip_markup(text: str) -> str:
    """``<<butter|50g>>`` becomes ``butter``."""
    return _replace(text, lambda a: a.name)
