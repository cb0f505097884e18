# goalcoach/base_utils.py


import json
import logging
import re
from collections import OrderedDict

import commentjson
import yaml
from json_repair import repair_json

from goalcoach.settings import LOG_LEVEL


logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"
)

logger = logging.getLogger("goalcoach")

LIST_MARKER_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")


class BaseUtils():

    # -----------------------
    # General Utils
    # -----------------------

    def color_print(self, text, color=None, level=logging.INFO):
        COLOR_CODES = {
            'black': '30', 'red': '31', 'green': '32', 'yellow': '33', 'blue': '34', 'magenta': '35',
            'cyan': '36', 'white': '37', 'bright_black': '90', 'bright_red': '91', 'bright_green': '92',
            'bright_yellow': '93', 'bright_blue': '94', 'bright_magenta': '95', 'bright_cyan': '96', 'bright_white': '97'
        }
        if color and color.lower() in COLOR_CODES:
            color_code = COLOR_CODES[color.lower()]
            start = f"\033[{color_code}m"
            end = "\033[0m"
            text = f"{start}{text}{end}"
        logger.log(level, str(text))
        return False

    def clean_triple_backticks(self, code) -> str:
        pattern = r'```[a-zA-Z]*\n?|```\n?'
        return re.sub(pattern, '', code or '')

    def _coerce_field_to_str(self, value) -> str:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        if isinstance(value, (list, tuple)):
            return "\n".join(self._coerce_field_to_str(v) for v in value if v is not None).strip()
        try:
            return json.dumps(value, indent=2, ensure_ascii=False)
        except TypeError:
            return str(value).strip()

    def unsafe_string_format(self, dest_string, print_unused_keys_report=True, **kwargs):
        """
        Formats a destination string by replacing placeholders with corresponding values from kwargs.
        Placeholders not found in kwargs are left untouched and reported.

        it works differently from the standard "format" method as instead of looking for all the potential keys, looks only for the keys as passed in kwargs
        (JSON examples inside prompts keep their braces).
        """
        missing_keys = []

        def replacer(match):
            key = match.group(1)
            if key in kwargs:
                return str(kwargs[key])
            else:
                missing_keys.append(key)
                return match.group(0)  # Leave the placeholder unchanged

        pattern = re.compile(r'\{([A-Z][A-Z0-9_]*)\}')
        result = pattern.sub(replacer, dest_string)
        if missing_keys and print_unused_keys_report:
            logger.info(f"\033[93m\033[3mMissing keys within string-to-format in unsafe_string_format: {', '.join(missing_keys)}\033[0m")
        return result

    # -----------------------
    # Fault tolerant JSON
    # -----------------------

    def load_fault_tolerant_json(self, json_str, ensure_ordered=False):
        """
        Attempts to load a JSON-like string: plain json, then commentjson
        (comments / trailing noise), then pyyaml on a sanitized copy, then
        json_repair. Raises ValueError when nothing yields a dict or a list.
        """
        def sanitize_json_string(input_str):
            def process_string_segment(match):
                content = match.group(1)
                # unescaped backslashes not part of an escape sequence
                content = re.sub(r'(?<!\\)\\(?![bfnrtu"\\/])', r'\\\\', content)
                # literal newlines inside strings
                content = re.sub(r'(?<!\\)\n', r'\\n', content)
                return f'"{content}"'

            def remove_comments(input_str):
                return re.sub(r'^\s*//.*?$|/\*.*?\*/', '', input_str, flags=re.MULTILINE | re.DOTALL)

            input_str = self.clean_triple_backticks(input_str)
            input_str = remove_comments(input_str)
            return re.sub(r'(?<!\\)"((?:[^"\\]|\\.)*?)"', process_string_segment, input_str, flags=re.DOTALL)

        def is_structured(data) -> bool:
            return isinstance(data, (dict, list))

        def load_json(json_str, ensure_ordered):
            err = ""
            hook = OrderedDict if ensure_ordered else None
            cleaned = self.clean_triple_backticks(json_str).strip()
            for loader in (json.loads, commentjson.loads):
                try:
                    data = loader(cleaned, object_pairs_hook=hook) if hook else loader(cleaned)
                    if is_structured(data):
                        return data, ""
                    err += f"\n--\n{loader.__module__}: not an object or array"
                except Exception as e:
                    err += f"\n--\n{loader.__module__}: {e}"
            try:
                data = yaml.safe_load(sanitize_json_string(json_str))
                if is_structured(data):
                    return data, ""
                err += "\n--\nyaml: not an object or array"
            except Exception as e:
                err += "\n--\nyaml: " + str(e)
            return None, err

        if not isinstance(json_str, str) or not json_str.strip():
            raise ValueError("load_fault_tolerant_json: empty input")

        data, err = load_json(json_str, ensure_ordered)
        if data is not None:
            return data

        # json_repair turns prose into "" or [] rather than failing, and reads
        # "- task [high]" as ["high"]; only hand it text from the first line
        # that opens with a bracket.
        start = re.search(r"^[ \t]*[\[{]", self.clean_triple_backticks(json_str), flags=re.MULTILINE)
        if start:
            repaired_json_str = repair_json(self.clean_triple_backticks(json_str)[start.start():])
            if isinstance(repaired_json_str, str) and repaired_json_str.strip():
                r_data, r_err = load_json(repaired_json_str, ensure_ordered)
                if r_data is not None and r_data != [] and r_data != {}:
                    return r_data
                err += r_err

        raise ValueError(f"load_fault_tolerant_json: JSON parsing failed: {err}")

    # -----------------------
    # Pattern extraction
    # -----------------------

    def extract_section(self, text: str, *headings: str) -> str:
        """
        Body of the first markdown-ish section whose heading matches one of
        `headings` (case-insensitive). Accepts "## Heading", "**Heading**",
        "Heading:" and "HEADING:" forms. The body ends at the next heading.
        """
        if not text:
            return ""
        for heading in headings:
            h = re.escape(heading)
            head_re = re.compile(
                rf"^[ \t]*(?:#{{1,6}}[ \t]*{h}[ \t]*[:：]?"
                rf"|\*\*[ \t]*{h}[ \t]*[:：]?[ \t]*\*\*[ \t]*[:：]?"
                rf"|{h}[ \t]*[:：])[ \t]*(.*)$",
                flags=re.IGNORECASE | re.MULTILINE,
            )
            m = head_re.search(text)
            if not m:
                continue
            inline = (m.group(1) or "").strip()
            rest = text[m.end():]
            next_head = re.search(
                r"^[ \t]*(?:#{1,6}[ \t]+\S|\*\*[^*\n]+\*\*[ \t]*[:：]?[ \t]*$|[A-Za-z][\w ]{1,30}[:：][ \t]*$|[A-Z][A-Z _]{2,}:)",
                rest,
                flags=re.MULTILINE,
            )
            body = rest[: next_head.start()] if next_head else rest
            return "\n".join(x for x in (inline, body.strip()) if x).strip()
        return ""

    def extract_list_items(self, text: str) -> list[str]:
        """
        Lines that start with "-", "*", "•" or "1." / "1)" markers, with the
        marker, checkbox ("[ ]", "[x]") and surrounding bold markers removed.
        """
        items = []
        for line in (text or "").splitlines():
            if not LIST_MARKER_RE.match(line):
                continue
            item = LIST_MARKER_RE.sub("", line, count=1)
            item = re.sub(r"^\[[ xX]?\]\s*", "", item)
            item = self.strip_emphasis(item)
            if item:
                items.append(item)
        return items

    def extract_labeled_number(self, text: str, label: str) -> float | None:
        """
        Numeric field next to a label: "completeness: 75", "Completeness [75%]",
        "completeness = 0.75". Returns None when not found.
        """
        if not text:
            return None
        m = re.search(
            rf"{re.escape(label)}[\"'*\s]*[:=]?\s*[\[(]?\s*(-?\d+(?:\.\d+)?)\s*%?\s*[\])]?",
            text,
            flags=re.IGNORECASE,
        )
        if not m:
            return None
        try:
            return float(m.group(1))
        except ValueError:
            return None

    def strip_emphasis(self, text: str) -> str:
        text = re.sub(r"\*\*", "", text or "")
        text = re.sub(r"^__|__$", "", text.strip())
        return text.strip()
