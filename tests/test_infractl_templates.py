"""
${NAME} template processing.
"""

from pathlib import Path

import pytest
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))
from infractl.config import load_stack_config  # noqa: E402
from infractl.errors import SettingsFileError, TemplateMissingError  # noqa: E402
from infractl.render_utils import (  # noqa: E402
    process_templates,
    render_template_text,
    resolve_variables,
    to_jinja_source,
)
from infractl.settings import SettingsFile  # noqa: E402

STALWART_TEMPLATE = """[store."postgresql"]
password = "${STALWART_PASSWORD}"

[directory."internal"]
system-password = "${MAIL_SYSTEM_PASSWORD}"
unrelated = "${UNDECLARED}"
"""


def _stack(tmp_path, env_text):
    (tmp_path / ".env").write_text(env_text)
    template = tmp_path / "stalwart" / "config.toml.template"
    template.parent.mkdir()
    template.write_text(STALWART_TEMPLATE)
    config = load_stack_config(tmp_path)
    return config, SettingsFile(tmp_path / ".env")


class TestResolveVariables:
    def test_settings_value_wins_over_default(self):
        resolved = resolve_variables({"A": "default-a", "B": "default-b"}, {"A": "set"})
        assert resolved == {"A": "set", "B": "default-b"}

    def test_empty_value_falls_back_to_default(self):
        assert resolve_variables({"A": "default-a"}, {"A": ""}) == {"A": "default-a"}


class TestRenderTemplateText:
    def test_undeclared_tokens_are_preserved(self):
        assert render_template_text("x=${A} y=${B}\n", {"A": "1"}) == "x=1 y=${B}\n"

    def test_keeps_trailing_newline(self):
        assert render_template_text("a\n", {}).endswith("\n")

    def test_bare_dollar_form_is_substituted(self):
        text = 'pw = "$STALWART_PASSWORD"\nother = "$STALWART_PASSWORD_OLD"\n'
        rendered = render_template_text(text, {"STALWART_PASSWORD": "s3cret"})
        assert rendered == 'pw = "s3cret"\nother = "$STALWART_PASSWORD_OLD"\n'

    def test_shell_default_syntax_is_left_verbatim(self):
        text = 'host = "${HOSTNAME:-localhost}"\npw = "${A}"\n'
        assert render_template_text(text, {"A": "1", "HOSTNAME": "h"}) == 'host = "${HOSTNAME:-localhost}"\npw = "1"\n'

    def test_jinja_syntax_in_literal_text_survives(self):
        text = '# see {# note #} and {{ x }} and {% if %}\npath = "${data.dir}"\nv = "${A}"\n'
        rendered = render_template_text(text, {"A": "1"})
        assert rendered == '# see {# note #} and {{ x }} and {% if %}\npath = "${data.dir}"\nv = "1"\n'

    def test_endraw_in_literal_text_survives(self):
        text = "{% endraw %} ${A}"
        assert render_template_text(text, {"A": "1"}) == "{% endraw %} 1"

    def test_values_are_inserted_verbatim(self):
        assert render_template_text("${A}", {"A": "{{ b }}&<x>"}) == "{{ b }}&<x>"


class TestToJinjaSource:
    def test_only_declared_names_become_expressions(self):
        assert to_jinja_source("a=${A} b=$B", ["A"]) == "{% raw %}a={% endraw %}{{ A }}{% raw %} b=$B{% endraw %}"

    def test_longest_name_wins(self):
        assert to_jinja_source("$AB", ["A", "AB"]) == "{{ AB }}"


class TestProcessTemplates:
    def test_uses_settings_and_defaults(self, tmp_path):
        config, settings = _stack(tmp_path, "STALWART_PASSWORD=fromSettings\n")

        process_templates(config, settings, tmp_path)

        output = (tmp_path / "stalwart" / "config.toml").read_text()
        assert 'password = "fromSettings"' in output
        assert 'system-password = "system_password"' in output
        assert 'unrelated = "${UNDECLARED}"' in output

    def test_unset_variable_uses_documented_default(self, tmp_path):
        config, settings = _stack(tmp_path, "OTHER=1\n")

        process_templates(config, settings, tmp_path)

        output = (tmp_path / "stalwart" / "config.toml").read_text()
        assert 'password = "stalwart_password"' in output

    def test_missing_template_is_fatal(self, tmp_path):
        config, settings = _stack(tmp_path, "A=1\n")
        (tmp_path / "stalwart" / "config.toml.template").unlink()

        with pytest.raises(TemplateMissingError, match="Template not found"):
            process_templates(config, settings, tmp_path)
        assert not (tmp_path / "stalwart" / "config.toml").exists()

    def test_missing_settings_file_is_fatal(self, tmp_path):
        config, _ = _stack(tmp_path, "A=1\n")
        (tmp_path / ".env").unlink()

        with pytest.raises(SettingsFileError):
            process_templates(config, SettingsFile(tmp_path / ".env"), tmp_path)
