"""
gitward — prompt hygiene

File: src/gitward/security/prompt_hygiene.py
Last updated: 2026-10-19

Purpose
- Prompt-injection defenses for untrusted text (diffs, file names, commit
  messages, conflict hunks) before it is sent to the AI backend.

What should be included in this file
- One ordered tuple of named detection rules, evaluated in a single pass.
- Decoders for common encodings (Base64, percent, Unicode/hex escapes, HTML
  entities, hex runs); decoded text is re-scanned with the same rules.
- Structured findings with spans for raw matches.

Functional requirements
- Any finding rejects the prompt before a subprocess is spawned.
- The number of decode layers is bounded by ``MAX_DECODE_DEPTH``.

Non-functional requirements
- New attack shapes are added as rule data, not as new control flow.
- Must stay quiet on ordinary source diffs (docstrings, shell scripts, READMEs).
"""

from __future__ import annotations

import base64
import binascii
import html
import re
from bisect import bisect_right
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Final
from urllib.parse import unquote

from gitward.errors import PromptRejectedError

# One layer catches a single encoding round; nested encodings need a higher value
# at the cost of more false positives on random-looking tokens.
MAX_DECODE_DEPTH: Final[int] = 1

_MIN_DECODED_LENGTH: Final[int] = 4
_PRINTABLE_RATIO: Final[float] = 0.85


class InjectionCategory(str, Enum):
    """Families of injection shapes."""

    INSTRUCTION_OVERRIDE = "instruction_override"
    ROLE_MANIPULATION = "role_manipulation"
    CONTEXT_ESCAPE = "context_escape"
    COMMAND_EXECUTION = "command_execution"
    CONTROL_CHARACTERS = "control_characters"


@dataclass(frozen=True, slots=True)
class TextSpan:
    """Absolute and line-relative span for one detection finding."""

    start: int
    end: int
    line: int
    column: int

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError("TextSpan.start must be >= 0")
        if self.end <= self.start:
            raise ValueError("TextSpan.end must be > start")
        if self.line <= 0:
            raise ValueError("TextSpan.line must be >= 1")
        if self.column <= 0:
            raise ValueError("TextSpan.column must be >= 1")


@dataclass(frozen=True, slots=True)
class InjectionFinding:
    """One detector hit.

    ``encoding`` is ``None`` for raw matches; for matches found after decoding it
    names the decoder and ``span`` is ``None`` because the match is in decoded text.
    """

    rule_id: str
    category: InjectionCategory
    reason: str
    matched_text: str
    encoding: str | None = None
    span: TextSpan | None = None

    def __post_init__(self) -> None:
        if not self.rule_id.strip():
            raise ValueError("InjectionFinding.rule_id must not be empty")
        if not self.matched_text:
            raise ValueError("InjectionFinding.matched_text must not be empty")


@dataclass(frozen=True, slots=True)
class InjectionScanResult:
    """All findings for one text, raw matches first."""

    findings: tuple[InjectionFinding, ...]

    @property
    def is_clean(self) -> bool:
        return not self.findings

    @property
    def rule_ids(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(item.rule_id for item in self.findings))

    @property
    def reasons(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(item.reason for item in self.findings))


@dataclass(frozen=True, slots=True)
class _DetectionRule:
    rule_id: str
    category: InjectionCategory
    reason: str
    pattern: re.Pattern[str]


@dataclass(frozen=True, slots=True)
class _Decoder:
    name: str
    decode: Callable[[str], str | None]


_I = re.IGNORECASE

_DETECTION_RULES: Final[tuple[_DetectionRule, ...]] = (
    # instruction override
    _DetectionRule(
        rule_id="ignore_previous_instructions",
        category=InjectionCategory.INSTRUCTION_OVERRIDE,
        reason="Attempts to override earlier instructions.",
        pattern=re.compile(
            r"\b(ignore|disregard|bypass)\b[^\n]{0,60}?"
            r"\b(instructions?|prompts?|rules|guidelines|directives|task|constraints|"
            r"the\s+above)\b",
            _I,
        ),
    ),
    _DetectionRule(
        rule_id="forget_context",
        category=InjectionCategory.INSTRUCTION_OVERRIDE,
        reason="Asks the model to discard its context or role.",
        pattern=re.compile(
            r"\bforget\s+(everything|all\b|your\s+(instructions|role|rules|task)|the\s+above)",
            _I,
        ),
    ),
    _DetectionRule(
        rule_id="new_instructions",
        category=InjectionCategory.INSTRUCTION_OVERRIDE,
        reason="Introduces replacement instructions.",
        pattern=re.compile(r"\b(new|updated|revised|real)\s+instructions?\s*:", _I),
    ),
    _DetectionRule(
        rule_id="override_directive",
        category=InjectionCategory.INSTRUCTION_OVERRIDE,
        reason="Attempts to override security or safety behavior.",
        pattern=re.compile(
            r"\boverride\b\s*:?\s*(all\s+|the\s+)?"
            r"(security|safety|instructions?|previous|system|restrictions|you\s+must)",
            _I,
        ),
    ),
    _DetectionRule(
        rule_id="system_prompt_reference",
        category=InjectionCategory.INSTRUCTION_OVERRIDE,
        reason="References privileged system/developer prompt channels.",
        pattern=re.compile(r"\b(system|developer)\s+prompt\b", _I),
    ),
    _DetectionRule(
        rule_id="jailbreak_reference",
        category=InjectionCategory.INSTRUCTION_OVERRIDE,
        reason="Names a jailbreak or injection technique.",
        pattern=re.compile(r"\b(jailbreak|prompt\s+injection|DAN\s+mode)\b", _I),
    ),
    # role manipulation
    _DetectionRule(
        rule_id="role_reassignment",
        category=InjectionCategory.ROLE_MANIPULATION,
        reason="Attempts to redefine the assistant's identity.",
        pattern=re.compile(
            r"\byou\s+are\s+now\b"
            r"|\byou\s+are\s+(a|an)\s+[\w\s-]{0,40}?\b"
            r"(terminal|shell|console|administrator|root\s+user|execution\s+environment|"
            r"emulator|interpreter)\b",
            _I,
        ),
    ),
    _DetectionRule(
        rule_id="pretend_or_act_as",
        category=InjectionCategory.ROLE_MANIPULATION,
        reason="Asks the model to impersonate another role.",
        pattern=re.compile(
            r"\bpretend\s+(you\s+are|to\s+be|that\s+you)\b"
            r"|\bact\s+as\s+(if|though)\s+you\b"
            r"|\b(act|behave)\s+(as|like)\s+(a|an)\s+(\w+\s+){0,2}?"
            r"(terminal|shell|administrator|admin|root|unrestricted|unfiltered)\b"
            r"|\byour\s+new\s+role\b"
            r"|\broleplay\s+as\b",
            _I,
        ),
    ),
    _DetectionRule(
        rule_id="mode_switch",
        category=InjectionCategory.ROLE_MANIPULATION,
        reason="Requests a privileged or unrestricted operating mode.",
        pattern=re.compile(
            r"\b(developer|god|admin|root|unrestricted|jailbreak|unsafe|dangerous(\s+operations)?)"
            r"\s+mode\b",
            _I,
        ),
    ),
    _DetectionRule(
        rule_id="privilege_claim",
        category=InjectionCategory.ROLE_MANIPULATION,
        reason="Claims elevated privileges for the conversation.",
        pattern=re.compile(
            r"\b(promoted|elevated|granted|upgraded)\b[^\n]{0,30}?"
            r"\b(system|root|admin(istrator)?)[- ]?(level\s+)?(access|privileges?)\b",
            _I,
        ),
    ),
    _DetectionRule(
        rule_id="system_role_assertion",
        category=InjectionCategory.ROLE_MANIPULATION,
        reason="Impersonates a system message.",
        pattern=re.compile(r"\bsystem\s*:\s*(you\s+(are|must|will|should)|ignore|new\b)", _I),
    ),
    _DetectionRule(
        rule_id="chat_role_marker",
        category=InjectionCategory.ROLE_MANIPULATION,
        reason="Injects a conversation turn marker.",
        pattern=re.compile(r"^[+\- ]?\s*(human|assistant)\s*:\s*\S", _I | re.MULTILINE),
    ),
    _DetectionRule(
        rule_id="chat_template_token",
        category=InjectionCategory.ROLE_MANIPULATION,
        reason="Contains model chat-template control tokens.",
        pattern=re.compile(
            r"\[/?INST\]|<</?SYS>>|<\|(im_start|im_end|system|user|assistant|endoftext)\|>",
            _I,
        ),
    ),
    # context escape
    _DetectionRule(
        rule_id="fence_breakout",
        category=InjectionCategory.CONTEXT_ESCAPE,
        reason="Closes a code fence and continues with instructions.",
        pattern=re.compile(
            r"```[^\n]*\n\s*("
            r"(ignore|disregard|forget)\s+(the|all|previous|everything|your|above)\b"
            r"|system\s*:|assistant\s*:|human\s*:|new\s+instructions"
            r"|end\s+of\s+(code|context|data))",
            _I,
        ),
    ),
    _DetectionRule(
        rule_id="tag_escape",
        category=InjectionCategory.CONTEXT_ESCAPE,
        reason="Opens or closes prompt-structure tags.",
        pattern=re.compile(
            r"<\s*/?\s*(context|system|instructions?|user_data|prompt|new_context|sys)\s*>"
            r"|<!--[^\n]{0,80}?\b(ignore|instructions?|system|override|execute)\b",
            _I,
        ),
    ),
    _DetectionRule(
        rule_id="delimiter_spoofing",
        category=InjectionCategory.CONTEXT_ESCAPE,
        reason="Imitates prompt section delimiters.",
        pattern=re.compile(
            r"===\s*(SYSTEM\s+INSTRUCTIONS|USER\s+DATA\s+(START|END))\s*==="
            r"|\[(CONTEXT_BREAK|END_CONTEXT|SYSTEM_OVERRIDE)\]"
            r"|\|\|\s*ESCAPE\s*\|\|"
            r"|>>>\s*END_PROMPT\s*<<<"
            r"|\b(END|BEGIN)\s+OF\s+(SAFE\s+)?(CONTEXT|PROMPT|INSTRUCTIONS|USER\s+DATA)\b"
            r"|\bSTART_EXECUTION\b",
            _I,
        ),
    ),
    _DetectionRule(
        rule_id="quote_breakout",
        category=InjectionCategory.CONTEXT_ESCAPE,
        reason="Closes a quoted block and continues with instructions.",
        pattern=re.compile(
            r"(\"\"\"|''')\s*\n?\s*(break\s+out\s+of|end\s+of\s+(string|quote)|"
            r"new\s+instructions|system\s*:)",
            _I,
        ),
    ),
    # command execution
    _DetectionRule(
        rule_id="command_execution_request",
        category=InjectionCategory.COMMAND_EXECUTION,
        reason="Requests arbitrary command or code execution.",
        pattern=re.compile(
            r"\b(execute|run)\s+(arbitrary|system|shell|dangerous|malicious|privileged)\s+"
            r"(code|commands?|operations|scripts?)\b",
            _I,
        ),
    ),
    _DetectionRule(
        rule_id="secret_exfiltration",
        category=InjectionCategory.COMMAND_EXECUTION,
        reason="Requests secret or credential exfiltration.",
        pattern=re.compile(
            r"\b(exfiltrate|leak|reveal|steal)\b[^\n]{0,64}?"
            r"\b(secrets?|credentials?|tokens?|passwords?|api\s+keys?)\b",
            _I,
        ),
    ),
    # control characters
    _DetectionRule(
        rule_id="control_characters",
        category=InjectionCategory.CONTROL_CHARACTERS,
        reason="Contains non-printing control characters.",
        pattern=re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]+"),
    ),
    _DetectionRule(
        rule_id="bidi_control",
        category=InjectionCategory.CONTROL_CHARACTERS,
        reason="Contains bidirectional override characters.",
        pattern=re.compile("[\u202a-\u202e\u2066-\u2069]+"),
    ),
)

_BASE64_TOKEN = re.compile(
    r"(?<![A-Za-z0-9+/=])(?:[A-Za-z0-9+/]{4}){3,}"
    r"(?:[A-Za-z0-9+/]{2}==|[A-Za-z0-9+/]{3}=|[A-Za-z0-9+/]{4})(?![A-Za-z0-9+/=])"
)
_PERCENT_ESCAPE = re.compile(r"%[0-9A-Fa-f]{2}")
_UNICODE_ESCAPE = re.compile(r"\\u\{([0-9a-fA-F]{1,6})\}|\\u([0-9a-fA-F]{4})|\\x([0-9a-fA-F]{2})")
_HTML_ENTITY = re.compile(r"&(#[0-9]{1,7}|#[xX][0-9a-fA-F]{1,6}|[A-Za-z][A-Za-z0-9]{1,31});")
_HEX_RUN = re.compile(
    r"(?<![0-9A-Za-z])(?:0x)?((?:[0-9a-fA-F]{2}){8,})(?![0-9A-Za-z])"
    r"|(?<![0-9A-Za-z])((?:[0-9a-fA-F]{2}[ :]){7,}[0-9a-fA-F]{2})(?![0-9A-Za-z])"
)


def _looks_like_text(value: str) -> bool:
    if len(value) < _MIN_DECODED_LENGTH:
        return False
    printable = sum(1 for char in value if char.isprintable() or char in "\n\t")
    return printable / len(value) >= _PRINTABLE_RATIO


def _bytes_to_text(raw: bytes) -> str | None:
    try:
        decoded = raw.decode("utf-8")
    except UnicodeDecodeError:
        return None
    return decoded if _looks_like_text(decoded) else None


def _substitute(
    pattern: re.Pattern[str],
    text: str,
    convert: Callable[[re.Match[str]], str | None],
) -> str | None:
    changed = False

    def _replace(match: re.Match[str]) -> str:
        nonlocal changed
        converted = convert(match)
        if converted is None:
            return match.group(0)
        changed = True
        return converted

    result = pattern.sub(_replace, text)
    return result if changed else None


def _decode_base64(text: str) -> str | None:
    def _convert(match: re.Match[str]) -> str | None:
        try:
            raw = base64.b64decode(match.group(0), validate=True)
        except (binascii.Error, ValueError):
            return None
        return _bytes_to_text(raw)

    return _substitute(_BASE64_TOKEN, text, _convert)


def _decode_percent(text: str) -> str | None:
    if _PERCENT_ESCAPE.search(text) is None:
        return None
    decoded = unquote(text, errors="replace")
    return decoded if decoded != text else None


def _decode_unicode_escapes(text: str) -> str | None:
    def _convert(match: re.Match[str]) -> str | None:
        code = match.group(1) or match.group(2) or match.group(3)
        value = int(code, 16)
        if value > 0x10FFFF:
            return None
        return chr(value)

    return _substitute(_UNICODE_ESCAPE, text, _convert)


def _decode_html_entities(text: str) -> str | None:
    if _HTML_ENTITY.search(text) is None:
        return None
    decoded = html.unescape(text)
    return decoded if decoded != text else None


def _decode_hex(text: str) -> str | None:
    def _convert(match: re.Match[str]) -> str | None:
        digits = match.group(1) or re.sub(r"[ :]", "", match.group(2) or "")
        try:
            raw = bytes.fromhex(digits)
        except ValueError:
            return None
        return _bytes_to_text(raw)

    return _substitute(_HEX_RUN, text, _convert)


_DECODERS: Final[tuple[_Decoder, ...]] = (
    _Decoder("base64", _decode_base64),
    _Decoder("percent", _decode_percent),
    _Decoder("unicode_escape", _decode_unicode_escapes),
    _Decoder("html_entity", _decode_html_entities),
    _Decoder("hex", _decode_hex),
)


def detect_injection(text: str) -> tuple[InjectionFinding, ...]:
    """Return raw findings followed by findings in up to ``MAX_DECODE_DEPTH`` decoded layers."""

    if not isinstance(text, str):
        raise TypeError("text must be a string")
    if not text:
        return ()

    findings = list(_raw_findings(text))
    seen = {(item.rule_id, item.matched_text) for item in findings}

    layer: list[tuple[str, str]] = [("", text)]
    for _ in range(MAX_DECODE_DEPTH):
        next_layer: list[tuple[str, str]] = []
        for label, current in layer:
            for decoder in _DECODERS:
                decoded = decoder.decode(current)
                if decoded is None:
                    continue
                encoding = f"{label}+{decoder.name}" if label else decoder.name
                next_layer.append((encoding, decoded))
                for rule in _DETECTION_RULES:
                    for match in rule.pattern.finditer(decoded):
                        key = (rule.rule_id, match.group(0))
                        if not match.group(0) or key in seen:
                            continue
                        seen.add(key)
                        findings.append(
                            InjectionFinding(
                                rule_id=rule.rule_id,
                                category=rule.category,
                                reason=rule.reason,
                                matched_text=match.group(0),
                                encoding=encoding,
                            )
                        )
        layer = next_layer

    return tuple(findings)


def scan_for_injection(text: str) -> InjectionScanResult:
    """Scan one text and wrap the findings."""

    return InjectionScanResult(findings=detect_injection(text))


def assert_no_injection(*texts: str) -> None:
    """Raise :class:`PromptRejectedError` if any text carries an injection shape."""

    findings: list[InjectionFinding] = []
    for text in texts:
        findings.extend(detect_injection(text))
    if findings:
        raise PromptRejectedError(
            rule_ids=[item.rule_id for item in findings],
            reasons=[item.reason for item in findings],
        )


def _raw_findings(text: str) -> list[InjectionFinding]:
    line_starts = _line_start_offsets(text)
    findings: list[InjectionFinding] = []
    seen: set[tuple[str, int, int]] = set()

    for rule in _DETECTION_RULES:
        for match in rule.pattern.finditer(text):
            start, end = match.span()
            if end <= start:
                continue
            dedupe_key = (rule.rule_id, start, end)
            if dedupe_key in seen:
                continue
            seen.add(dedupe_key)

            line, column = _line_and_column(line_starts, start)
            findings.append(
                InjectionFinding(
                    rule_id=rule.rule_id,
                    category=rule.category,
                    reason=rule.reason,
                    matched_text=text[start:end],
                    span=TextSpan(start=start, end=end, line=line, column=column),
                )
            )

    findings.sort(key=lambda item: (item.span.start if item.span else 0, item.rule_id))
    return findings


def _line_start_offsets(text: str) -> tuple[int, ...]:
    starts = [0]
    for index, char in enumerate(text):
        if char == "\n":
            starts.append(index + 1)
    return tuple(starts)


def _line_and_column(line_starts: tuple[int, ...], offset: int) -> tuple[int, int]:
    index = bisect_right(line_starts, offset) - 1
    safe_index = max(0, index)
    line_start = line_starts[safe_index]
    return safe_index + 1, (offset - line_start) + 1


__all__ = [
    "InjectionCategory",
    "InjectionFinding",
    "InjectionScanResult",
    "MAX_DECODE_DEPTH",
    "TextSpan",
    "assert_no_injection",
    "detect_injection",
    "scan_for_injection",
]
