"""
Template rendering and phone normalisation.
"""
from dripline.services.rendering import TemplateRenderer, normalize_phone


def test_both_token_syntaxes_render():
    renderer = TemplateRenderer()
    context = {"first-name": "Jane", "company_name": "Paint Pros"}

    result = renderer.render(
        {"subject": "Hi {first-name}", "body": "{{ first_name }}, thanks for choosing {Company-Name}."},
        context,
    )

    assert result.subject == "Hi Jane"
    assert result.body == "Jane, thanks for choosing Paint Pros."


def test_unknown_tokens_render_empty():
    renderer = TemplateRenderer()
    assert renderer.apply("Hello {nickname}!", {"first-name": "Jane"}) == "Hello !"


def test_body_only_template_has_no_subject():
    result = TemplateRenderer().render({"body": "See you soon"}, {})
    assert result.subject is None
    assert result.body == "See you soon"


def test_normalize_phone():
    assert normalize_phone("(555) 123-4567") == "+15551234567"
    assert normalize_phone("15551234567") == "+15551234567"
    assert normalize_phone("+447700900123") == "+447700900123"
    assert normalize_phone("") == ""
    assert normalize_phone(None) == ""
