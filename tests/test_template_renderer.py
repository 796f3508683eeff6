"""
Tests for the template renderer — substitution, blocks, validation.
"""

import pytest

from safescaffold.core.errors import RenderError, TemplateSyntaxError
from safescaffold.core.services.template_renderer import TemplateRenderer


@pytest.fixture
def renderer() -> TemplateRenderer:
    return TemplateRenderer(use_cache=False)


class TestSubstitution:
    """Tests for {{ variable }} interpolation."""

    def test_simple(self, renderer: TemplateRenderer):
        assert renderer.render_string("Hello {{name}}!", {"name": "World"}) == "Hello World!"

    def test_missing_left_verbatim(self, renderer: TemplateRenderer):
        assert renderer.render_string("Hello {{name}}!", {}) == "Hello {{name}}!"

    def test_missing_keeps_original_spacing(self, renderer: TemplateRenderer):
        assert renderer.render_string("{{ a.b }}", {"a": {}}) == "{{ a.b }}"

    def test_nested_lookup(self, renderer: TemplateRenderer):
        variables = {"author": {"name": "Ada", "langs": ["py", "c"]}}
        assert renderer.render_string("{{author.name}}/{{ author.langs.1 }}", variables) == "Ada/c"

    def test_list_index_out_of_range(self, renderer: TemplateRenderer):
        assert renderer.render_string("{{xs.5}}", {"xs": [1]}) == "{{xs.5}}"

    def test_value_formatting(self, renderer: TemplateRenderer):
        variables = {"t": True, "f": False, "n": None, "i": 3, "x": 1.5, "l": [1, "a"], "m": {"k": 1}}
        out = renderer.render_string("{{t}} {{f}} [{{n}}] {{i}} {{x}} {{l}} {{m}}", variables)
        assert out == 'true false [] 3 1.5 [1, "a"] {"k": 1}'

    def test_invalid_name_left_verbatim(self, renderer: TemplateRenderer):
        assert renderer.render_string("{{ a + b }}", {"a": 1, "b": 2}) == "{{ a + b }}"

    def test_deterministic(self, renderer: TemplateRenderer):
        pattern = "{% for x in xs %}{{x}}{% endfor %}-{{y}}"
        variables = {"xs": [1, 2, 3], "y": "z"}
        assert renderer.render_string(pattern, variables) == renderer.render_string(pattern, variables)


class TestBlocks:
    """Tests for if / for blocks."""

    def test_if_true_and_false(self, renderer: TemplateRenderer):
        pattern = "{% if on %}yes{% else %}no{% endif %}"
        assert renderer.render_string(pattern, {"on": True}) == "yes"
        assert renderer.render_string(pattern, {"on": False}) == "no"
        assert renderer.render_string(pattern, {}) == "no"

    def test_if_not(self, renderer: TemplateRenderer):
        assert renderer.render_string("{% if not on %}off{% endif %}", {"on": 0}) == "off"
        assert renderer.render_string("{% if not on %}off{% endif %}", {"on": 1}) == ""

    @pytest.mark.parametrize("value", [None, False, 0, "", [], {}])
    def test_falsy_values(self, renderer: TemplateRenderer, value):
        assert renderer.render_string("{% if v %}x{% endif %}", {"v": value}) == ""

    def test_for_loop_metadata(self, renderer: TemplateRenderer):
        pattern = (
            "{% for item in items %}"
            "{{loop.index}}/{{loop.length}}:{{item}}"
            "{% if not loop.last %},{% endif %}"
            "{% endfor %}"
        )
        assert renderer.render_string(pattern, {"items": ["a", "b", "c"]}) == "1/3:a,2/3:b,3/3:c"

    def test_for_loop_first_and_index0(self, renderer: TemplateRenderer):
        pattern = "{% for x in xs %}{% if loop.first %}[{% endif %}{{loop.index0}}{% endfor %}"
        assert renderer.render_string(pattern, {"xs": [9, 9]}) == "[01"

    def test_for_over_missing_renders_nothing(self, renderer: TemplateRenderer):
        assert renderer.render_string("a{% for x in nope %}{{x}}{% endfor %}b", {}) == "ab"

    def test_nested_same_named_blocks(self, renderer: TemplateRenderer):
        pattern = (
            "{% for row in rows %}"
            "{% for cell in row.cells %}{% if cell %}{{cell}}{% else %}.{% endif %}{% endfor %};"
            "{% endfor %}"
        )
        variables = {"rows": [{"cells": [1, 0]}, {"cells": ["x"]}]}
        assert renderer.render_string(pattern, variables) == "1.;x;"

    def test_loop_variable_shadows_outer(self, renderer: TemplateRenderer):
        pattern = "{{x}}{% for x in xs %}{{x}}{% endfor %}{{x}}"
        assert renderer.render_string(pattern, {"x": "o", "xs": ["i"]}) == "oio"


class TestSyntaxErrors:
    """Structural problems raise TemplateSyntaxError (a RenderError)."""

    @pytest.mark.parametrize("pattern", [
        "{% if a %}never closed",
        "{% for x in xs %}{% endif %}",
        "{% endfor %}",
        "{% if a %}{% else %}{% else %}{% endif %}",
        "{% else %}",
        "text {{ unterminated",
        "text {% unterminated",
        "{% while x %}{% endwhile %}",
        "{% for x %}{% endfor %}",
    ])
    def test_raises(self, renderer: TemplateRenderer, pattern: str):
        with pytest.raises(TemplateSyntaxError):
            renderer.render(pattern, {})

    def test_is_render_error(self):
        assert issubclass(TemplateSyntaxError, RenderError)

    def test_position_reported(self, renderer: TemplateRenderer):
        with pytest.raises(TemplateSyntaxError) as exc:
            renderer.render("abc{% if x %}", {})
        assert exc.value.position == 3

    def test_stray_closing_braces_are_text(self, renderer: TemplateRenderer):
        assert renderer.render_string("int main() { return 0; }}", {}) == "int main() { return 0; }}"


class TestValidate:
    """Tests for validate() — reports, never raises."""

    def test_valid(self, renderer: TemplateRenderer):
        report = renderer.validate("{% if a %}{{ b.c }}{% endif %}")
        assert report.valid
        assert report.errors == []
        assert report.variables == ["a", "b.c"]

    def test_unclosed_block(self, renderer: TemplateRenderer):
        report = renderer.validate("{% if a %}")
        assert not report.valid
        assert "Unclosed" in report.errors[0]

    def test_invalid_variable_name(self, renderer: TemplateRenderer):
        report = renderer.validate("{{ 1abc }}")
        assert not report.valid
        assert "Invalid variable name" in report.errors[0]

    def test_deep_nesting_warns(self, renderer: TemplateRenderer):
        pattern = "{% if a %}" * 11 + "x" + "{% endif %}" * 11
        report = renderer.validate(pattern)
        assert report.valid
        assert report.warnings


class TestIntrospection:
    """Tests for variable listing and condition evaluation."""

    def test_get_template_variables_excludes_loop_names(self, renderer: TemplateRenderer):
        pattern = "{{a}}{% for it in items %}{{it.name}}{{loop.index}}{{b}}{% endfor %}{{a}}"
        assert renderer.get_template_variables(pattern) == ["a", "items", "b"]

    def test_find_missing_variables(self, renderer: TemplateRenderer):
        pattern = "{{name}} {{author.email}} {{flag}}"
        missing = renderer.find_missing_variables(pattern, {"name": "x", "flag": False})
        assert missing == ["author.email"]

    def test_evaluate_condition(self, renderer: TemplateRenderer):
        assert renderer.evaluate_condition("features.docker", {"features": {"docker": True}})
        assert not renderer.evaluate_condition("not features.docker", {"features": {"docker": True}})
        assert not renderer.evaluate_condition("missing", {})

    def test_evaluate_condition_rejects_expressions(self, renderer: TemplateRenderer):
        with pytest.raises(TemplateSyntaxError):
            renderer.evaluate_condition("a == b", {})


class TestCaching:
    """Renderer + cache integration."""

    def test_hit_matches_miss(self):
        renderer = TemplateRenderer()
        first = renderer.render("Hi {{n}}", {"n": 1})
        second = renderer.render("Hi {{n}}", {"n": 1})
        assert first.cache_hit is False
        assert second.cache_hit is True
        assert first.content == second.content

    def test_different_variables_miss(self):
        renderer = TemplateRenderer()
        renderer.render("Hi {{n}}", {"n": 1})
        assert renderer.render("Hi {{n}}", {"n": 2}).cache_hit is False

    def test_no_cache(self, renderer: TemplateRenderer):
        renderer.render("x", {})
        assert renderer.render("x", {}).cache_hit is False
        assert renderer.cache is None
