"""Template engines - Pluggable positional formatting for countdown text.

Format strings come from hosts (config files, the web API), so a bad one
must be reported as a TemplateError instead of blowing up a tick.

PrintfTemplateEngine understands the printf dialect used by countdown
formats, including explicit argument indexes:

    "%1$02d days, %2$02d hours, %3$02d minutes and %4$02d seconds remaining"
    "Formatted time (%s)"

BraceTemplateEngine wraps str.format for hosts that prefer "{0:02d}".
"""

import re
from typing import Any, Protocol


class TemplateError(Exception):
    """Raised when a template cannot be applied to its arguments."""

    def __init__(self, template: str, reason: str):
        super().__init__(f"{reason} in template {template!r}")
        self.template = template
        self.reason = reason


class TemplateEngine(Protocol):
    """Formatting capability: template + positional args -> string."""

    def format(self, template: str, *args: Any) -> str:
        """Apply positional arguments to a template.

        Raises:
            TemplateError: If the template is malformed for these arguments.
        """
        ...


# %[index$][flags][width][.precision]conversion
_SPECIFIER = re.compile(
    r"%(?:(?P<index>\d+)\$)?(?P<flags>[-#+ 0,(<]*)(?P<width>\d+)?"
    r"(?:\.(?P<precision>\d+))?(?P<conversion>[a-zA-Z%])"
)

_INTEGER_CONVERSIONS = {"d": "d", "x": "x", "X": "X", "o": "o"}
# General conversions accept any value; upper case variants upper-case the text
_GENERAL_CONVERSIONS = {"s", "b", "h"}


class PrintfTemplateEngine:
    """printf-style formatter with explicit argument indexes.

    Supported conversions: d, x, X, o (integers), s, S, b, B, h, H (any
    value), %% and %n. %b prints "true" for anything but None or False,
    %h prints the value's hash in hex, computed as the JVM would for
    integers and strings. Supported flags: '-', '0', '+', ' ', ',', '#' and '<'
    (reuse the previous argument). Ordinary specifiers consume arguments
    in order, independently of explicitly indexed ones.
    """

    def format(self, template: str, *args: Any) -> str:
        out: list[str] = []
        pos = 0
        ordinary = 0
        last: int | None = None

        while True:
            start = template.find("%", pos)
            if start < 0:
                out.append(template[pos:])
                break
            out.append(template[pos:start])

            match = _SPECIFIER.match(template, start)
            if match is None:
                raise TemplateError(template, f"Unknown format specifier at {start}")
            pos = match.end()

            conversion = match.group("conversion")
            flags = match.group("flags")
            width = match.group("width")
            precision = match.group("precision")

            if conversion == "%":
                if set(flags) - {"-"} or precision or match.group("index"):
                    raise TemplateError(template, "Flags not allowed on '%%'")
                if flags and not width:
                    raise TemplateError(template, "'-' flag requires a width")
                out.append(_pad("%", width, "-" in flags))
                continue
            if conversion == "n":
                out.append("\n")
                continue

            if "<" in flags:
                if last is None:
                    raise TemplateError(template, "No previous argument for '<'")
                arg_index = last
            elif match.group("index"):
                arg_index = int(match.group("index")) - 1
                if arg_index < 0:
                    raise TemplateError(template, "Argument index must start at 1")
            else:
                arg_index = ordinary
                ordinary += 1

            if arg_index >= len(args):
                raise TemplateError(
                    template, f"Missing argument for specifier {match.group(0)!r}"
                )
            last = arg_index

            out.append(
                _convert(template, args[arg_index], conversion, flags, width, precision)
            )

        return "".join(out)

    def __repr__(self) -> str:
        return "PrintfTemplateEngine()"


def _pad(text: str, width: str | None, left: bool) -> str:
    if not width:
        return text
    size = int(width)
    return text.ljust(size) if left else text.rjust(size)


def _jvm_hash(value: Any) -> int:
    """32-bit hash code matching Long, Boolean and String on the JVM."""
    if isinstance(value, bool):
        return 1231 if value else 1237
    if isinstance(value, int):
        bits = value & 0xFFFFFFFFFFFFFFFF
        return (bits ^ (bits >> 32)) & 0xFFFFFFFF
    if isinstance(value, str):
        # Over UTF-16 code units, like String.hashCode()
        data = value.encode("utf-16-be")
        h = 0
        for i in range(0, len(data), 2):
            h = (31 * h + int.from_bytes(data[i : i + 2], "big")) & 0xFFFFFFFF
        return h
    return hash(value) & 0xFFFFFFFF


def _convert(
    template: str,
    value: Any,
    conversion: str,
    flags: str,
    width: str | None,
    precision: str | None,
) -> str:
    flags = flags.replace("<", "")
    left = "-" in flags
    zero = "0" in flags

    if left and not width:
        raise TemplateError(template, "'-' flag requires a width")
    if zero and not width:
        raise TemplateError(template, "'0' flag requires a width")
    if left and zero:
        raise TemplateError(template, "'-' and '0' flags are exclusive")

    if conversion.lower() in _GENERAL_CONVERSIONS:
        if set(flags) - {"-"}:
            raise TemplateError(
                template, f"Flags {flags!r} not allowed for %{conversion}"
            )
        kind = conversion.lower()
        if kind == "b":
            text = "false" if value is None or value is False else "true"
        elif kind == "h":
            text = "null" if value is None else format(_jvm_hash(value), "x")
        else:
            text = str(value)
        if precision is not None:
            text = text[: int(precision)]
        if conversion.isupper():
            text = text.upper()
        return _pad(text, width, left)

    if conversion in _INTEGER_CONVERSIONS:
        if isinstance(value, bool) or not isinstance(value, int):
            raise TemplateError(
                template,
                f"%{conversion} needs an integer, got {type(value).__name__}",
            )
        if precision is not None:
            raise TemplateError(template, f"Precision not allowed for %{conversion}")
        if "+" in flags and " " in flags:
            raise TemplateError(template, "'+' and ' ' flags are exclusive")
        if "(" in flags:
            raise TemplateError(template, "'(' flag is not supported")
        if "," in flags and conversion != "d":
            raise TemplateError(template, f"',' flag not allowed for %{conversion}")
        if "#" in flags and conversion == "d":
            raise TemplateError(template, "'#' flag not allowed for %d")

        sign = "+" if "+" in flags else (" " if " " in flags else "")
        spec = ""
        if left:
            spec += "<"
        spec += sign
        if "#" in flags:
            spec += "#"
        if zero:
            spec += "0"
        if width:
            spec += width
        if "," in flags:
            spec += ","
        spec += _INTEGER_CONVERSIONS[conversion]
        return format(value, spec)

    raise TemplateError(template, f"Unsupported conversion '%{conversion}'")


class BraceTemplateEngine:
    """str.format based engine ("{0:02d} days", "Time left: {0}")."""

    def format(self, template: str, *args: Any) -> str:
        try:
            return template.format(*args)
        except (ValueError, IndexError, KeyError, TypeError, AttributeError) as e:
            raise TemplateError(template, str(e) or type(e).__name__) from e

    def __repr__(self) -> str:
        return "BraceTemplateEngine()"


DEFAULT_ENGINE = PrintfTemplateEngine()
