"""Exception chain parsing for ``exception`` span events.

Turns the ``exception.stacktrace`` text recorded on a span into an ordered
list of :class:`~otel_bugsnag.models.NotifyEventException`, outermost
exception first. Two runtime formats are understood:

- .NET ``Exception.ToString()`` output, including ``" ---> "`` inner
  exception markers and ``--- End of inner exception stack trace ---``
  separators.
- CPython tracebacks as produced by ``traceback.format_exception`` (which is
  what ``Span.record_exception`` stores), including chained causes.

Parsing never raises; text that matches neither format degrades to a single
exception built from the tag-supplied type and message.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from otel_bugsnag.models import (
    BugsnagStacktraceType,
    NotifyEventException,
    NotifyEventStacktrace,
)

DEFAULT_ERROR_CLASS = "Exception"

INNER_EXCEPTION_MARKER = " ---> "
INNER_EXCEPTION_SEPARATOR = "   --- End of inner exception stack trace ---"

_LINE_BREAK = re.compile(r"\r\n|\r|\n")
_DOTNET_HEADER = re.compile(
    r"^(?P<inner> ---> )?(?P<type>[^\s:(]+)(?:\s?\((?P<code>[^)]*)\))?:\s?(?P<message>.*)$"
)
_DOTNET_FRAME = re.compile(r"^\s+?at (?P<method>.+?)(?: in (?P<file>.+?):line (?P<line>\d+))?\s*$")
# An inner marker printed on the outer message line, followed by the inner header.
_INLINE_INNER_MARKER = re.compile(r" ---> (?=[^\s:(]+(?:\s?\([^)]*\))?:)")

_PY_TRACEBACK_HEADER = "Traceback (most recent call last):"
_PY_CHAIN_MARKERS = frozenset(
    {
        "The above exception was the direct cause of the following exception:",
        "During handling of the above exception, another exception occurred:",
    }
)
_PY_FRAME = re.compile(r'^\s+File "(?P<file>[^"]+)", line (?P<line>\d+)(?:, in (?P<method>.+))?$')
_PY_HEADER = re.compile(r"^(?P<type>[A-Za-z_][\w.]*)(?:: ?(?P<message>.*))?$")

FrameClassifier = Callable[[str, str, bool], "bool | None"]
"""``(file, method, default_guess) -> in_project`` for one parsed frame."""


@dataclass
class _ExceptionBuilder:
    error_class: str
    message: str | None
    frames: list[NotifyEventStacktrace] = field(default_factory=list)
    seen_frame: bool = False

    def append_message(self, line: str) -> None:
        self.message = f"{self.message}\n{line}" if self.message else line

    def build(self, runtime: BugsnagStacktraceType) -> NotifyEventException:
        return NotifyEventException(
            error_class=self.error_class,
            message=self.message,
            stacktrace=self.frames,
            type=runtime,
        )


class _FrameFactory:
    """Builds frames, trimming paths and classifying them as in-project or not."""

    def __init__(
        self,
        runtime: BugsnagStacktraceType,
        project_namespaces: Sequence[str],
        classify: FrameClassifier | None,
        trim_path_prefixes: Sequence[str],
    ) -> None:
        self._runtime = runtime
        self._project_namespaces = tuple(project_namespaces)
        self._classify = classify
        self._trim_path_prefixes = tuple(trim_path_prefixes)

    def __call__(self, file: str | None, line: str | None, method: str) -> NotifyEventStacktrace:
        file = self._trim(file or "")
        guess = self._default_guess(file, method)
        if self._classify is not None:
            in_project = self._classify(file, method, guess)
        elif self._project_namespaces:
            in_project = guess
        else:
            in_project = None
        return NotifyEventStacktrace(
            file=file,
            line_number=int(line) if line else 0,
            method=method,
            in_project=in_project,
        )

    def _trim(self, file: str) -> str:
        for prefix in self._trim_path_prefixes:
            if file.startswith(prefix):
                return file[len(prefix) :]
        return file

    def _default_guess(self, file: str, method: str) -> bool:
        if self._runtime is BugsnagStacktraceType.python:
            return _in_python_package(file, self._project_namespaces)
        return method.startswith(self._project_namespaces) if self._project_namespaces else False


def _in_python_package(file: str, namespaces: Sequence[str]) -> bool:
    path = "/" + file.replace("\\", "/").lstrip("/")
    for namespace in namespaces:
        package = namespace.strip(".").replace(".", "/")
        if not package:
            continue
        if f"/{package}/" in path or path.endswith(f"/{package}.py"):
            return True
    return False


def _fallback_error_class(error_class: str | None) -> str:
    if error_class is None or not error_class.strip():
        return DEFAULT_ERROR_CLASS
    return error_class


def _split_lines(text: str) -> list[str]:
    return [line for line in _LINE_BREAK.split(text) if line]


def parse_exception_chain(
    text: str | None,
    *,
    error_class: str | None = None,
    message: str | None = None,
    project_namespaces: Sequence[str] = (),
    classify: FrameClassifier | None = None,
    trim_path_prefixes: Sequence[str] = (),
) -> list[NotifyEventException]:
    """Parse stacktrace *text* into exception records, outermost first.

    *error_class* and *message* come from the event's ``exception.type`` and
    ``exception.message`` tags; they seed the outermost record and are
    replaced when the first line of the text is itself an exception header.

    The default in-project guess is "method starts with a project namespace"
    for .NET frames and "file lives in a project package" for Python frames.
    *classify* receives that guess and has the final say; without a
    classifier the guess is used when namespaces are configured, and
    ``in_project`` is left unset otherwise.
    """
    lines = _split_lines(text or "")
    if not lines:
        return [
            NotifyEventException(
                error_class=_fallback_error_class(error_class),
                message=message,
            )
        ]

    if any(line.strip() == _PY_TRACEBACK_HEADER for line in lines):
        make_frame = _FrameFactory(
            BugsnagStacktraceType.python, project_namespaces, classify, trim_path_prefixes
        )
        return _parse_python(lines, error_class, message, make_frame)

    make_frame = _FrameFactory(
        BugsnagStacktraceType.csharp, project_namespaces, classify, trim_path_prefixes
    )
    lines = _split_lines(_INLINE_INNER_MARKER.sub("\n" + INNER_EXCEPTION_MARKER, text))
    return _parse_dotnet(lines, error_class, message, make_frame)


def _parse_dotnet(
    lines: list[str],
    error_class: str | None,
    message: str | None,
    make_frame: _FrameFactory,
) -> list[NotifyEventException]:
    runtime = BugsnagStacktraceType.csharp
    result: list[NotifyEventException] = []
    suspended: list[_ExceptionBuilder] = []
    current = _ExceptionBuilder(_fallback_error_class(error_class), message)

    for index, line in enumerate(lines):
        header = None if current.seen_frame else _DOTNET_HEADER.match(line)

        if header is not None and header.group("inner"):
            suspended.append(current)
            current = _ExceptionBuilder(header.group("type"), header.group("message") or None)
            continue

        if header is not None and index == 0:
            current.error_class = header.group("type")
            current.message = header.group("message") or None
            continue

        if line == INNER_EXCEPTION_SEPARATOR:
            if not suspended:
                # no open inner exception; keep scanning frames
                continue
            result.insert(0, current.build(runtime))
            current = suspended.pop()
            continue

        frame = _DOTNET_FRAME.match(line)
        if frame is not None:
            current.seen_frame = True
            current.frames.append(
                make_frame(frame.group("file"), frame.group("line"), frame.group("method"))
            )
            continue

        if not current.seen_frame:
            current.append_message(line)

    result.insert(0, current.build(runtime))
    while suspended:
        result.insert(0, suspended.pop().build(runtime))

    return result


def _parse_python(
    lines: list[str],
    error_class: str | None,
    message: str | None,
    make_frame: _FrameFactory,
) -> list[NotifyEventException]:
    sections: list[list[str]] = [[]]
    for line in lines:
        if line.strip() in _PY_CHAIN_MARKERS:
            sections.append([])
        else:
            sections[-1].append(line)
    sections = [section for section in sections if section]

    result: list[NotifyEventException] = []
    # CPython prints the deepest cause first.
    for position, section in enumerate(reversed(sections)):
        if position == 0:
            builder = _ExceptionBuilder(_fallback_error_class(error_class), message)
        else:
            builder = _ExceptionBuilder(DEFAULT_ERROR_CLASS, None)
        frames: list[NotifyEventStacktrace] = []
        seen_header = False

        for line in section:
            if line.strip() == _PY_TRACEBACK_HEADER:
                continue
            frame = _PY_FRAME.match(line)
            if frame is not None:
                frames.append(
                    make_frame(
                        frame.group("file"),
                        frame.group("line"),
                        frame.group("method") or "<module>",
                    )
                )
                continue
            if line[:1].isspace():
                # source echo, caret markers, "[Previous line repeated ...]"
                continue
            header = None if seen_header else _PY_HEADER.match(line)
            if header is not None:
                seen_header = True
                builder.error_class = header.group("type")
                builder.message = header.group("message") or None
            else:
                builder.append_message(line)

        # most recent call first
        builder.frames = frames[::-1]
        result.append(builder.build(BugsnagStacktraceType.python))

    return result
