#!/usr/bin/env python3
"""
${NAME} template rendering.

Templates are plain text files with shell-style ${NAME} or $NAME placeholders,
substituted for an explicit list of declared variables the way
`envsubst '$A $B'` does. Declared placeholders become Jinja2 expressions and
everything else is wrapped in raw blocks, so service-side syntax such as
${HOSTNAME:-localhost}, ${data.dir} or a literal {# survives unchanged.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, Mapping, Optional

from jinja2 import Environment, TemplateSyntaxError

from .config_schema import StackConfig, TemplateSpec
from .console import info, success
from .errors import TemplateMissingError, TemplateRenderError
from .settings import SettingsFile

logger = logging.getLogger(__name__)

RAW_BLOCK_START = '{% raw %}'
RAW_BLOCK_END = '{% endraw %}'


def _environment() -> Environment:
    return Environment(keep_trailing_newline=True, autoescape=False)


def _placeholder_pattern(names: Iterable[str]) -> re.Pattern:
    alternatives = '|'.join(re.escape(n) for n in sorted(names, key=len, reverse=True))
    return re.compile(r'\$\{(%s)\}|\$(%s)(?![A-Za-z0-9_])' % (alternatives, alternatives))


def _raw(chunk: str) -> str:
    """Wrap literal text in raw blocks; a literal {% closes the block around it."""
    if not chunk:
        return ''
    pieces = chunk.split('{%')
    escaped = f"{RAW_BLOCK_END}{{{{ '{{%' }}}}{RAW_BLOCK_START}".join(pieces)
    return f"{RAW_BLOCK_START}{escaped}{RAW_BLOCK_END}"


def to_jinja_source(text: str, names: Iterable[str]) -> str:
    """
    Translate a ${NAME} template into Jinja2 source.

    Only the given names become {{ NAME }} expressions; all other text is
    emitted verbatim.

    Examples:
        >>> to_jinja_source('a=${A} b=$B', ['A'])
        '{% raw %}a={% endraw %}{{ A }}{% raw %} b=$B{% endraw %}'
    """
    names = [n for n in names if n]
    if not names:
        return _raw(text)

    parts = []
    pos = 0
    for match in _placeholder_pattern(names).finditer(text):
        parts.append(_raw(text[pos:match.start()]))
        parts.append('{{ %s }}' % (match.group(1) or match.group(2)))
        pos = match.end()
    parts.append(_raw(text[pos:]))
    return ''.join(parts)


def resolve_variables(defaults: Mapping[str, str], values: Mapping[str, Optional[str]]) -> Dict[str, str]:
    """
    Resolve declared variables: the settings value when set and non-empty,
    otherwise the documented default.
    """
    resolved = {}
    for name, default in defaults.items():
        value = values.get(name)
        resolved[name] = value if value else default
    return resolved


def render_template_text(text: str, variables: Mapping[str, str], source: str = '<template>') -> str:
    """Substitute the declared variables in text; undeclared tokens are kept as-is."""
    try:
        template = _environment().from_string(to_jinja_source(text, variables))
    except TemplateSyntaxError as e:
        raise TemplateRenderError(f"Template {source} could not be parsed (line {e.lineno}): {e.message}") from e
    return template.render(**variables)


def render_template_file(source: Path, target: Path, variables: Mapping[str, str]) -> Path:
    """
    Render source into target.

    Raises:
        TemplateMissingError: If the source template does not exist
    """
    if not source.exists():
        raise TemplateMissingError(f"Template not found: {source}")

    logger.debug(f"Rendering {source} -> {target} ({', '.join(variables)})")
    rendered = render_template_text(source.read_text(encoding='utf-8'), variables, str(source))
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(rendered, encoding='utf-8')
    return target


def process_template(spec: TemplateSpec, settings: SettingsFile, stack_dir: Path) -> Path:
    variables = resolve_variables(spec.defaults, settings.as_dict())
    target = render_template_file(stack_dir / spec.source, stack_dir / spec.target, variables)
    success(f"Generated {spec.target}")
    return target


def process_templates(config: StackConfig, settings: SettingsFile, stack_dir: Path,
                      names: Optional[list[str]] = None) -> list[Path]:
    """
    Render configured templates (all, or the named subset).

    Raises:
        SettingsFileError: If the settings file does not exist
        TemplateMissingError: If a template source is missing
    """
    settings.require()
    selected = names if names is not None else list(config.templates)
    info(f"Processing {len(selected)} configuration template(s)...")
    return [process_template(config.templates[name], settings, stack_dir) for name in selected]
