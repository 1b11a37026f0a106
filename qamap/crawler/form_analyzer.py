"""Form analysis: identifies form fields, labels, and native validation."""

from __future__ import annotations

import logging

from qamap.driver.base import PageDriver
from qamap.models.graph import (
    ElementDescriptor,
    FieldConstraints,
    FormDescriptor,
    FormField,
    SelectorStrategy,
    ValidationRule,
)
from qamap.utils.hashing import stable_id

logger = logging.getLogger(__name__)

_FIELD_TYPES = {"email", "password", "tel", "number", "url", "date", "checkbox", "radio"}

_FORMS_JS = """(deep) => {
    function labelFor(inp) {
        if (inp.labels && inp.labels.length && inp.labels[0].textContent.trim()) {
            return inp.labels[0].textContent.trim();
        }
        if (inp.id) {
            const byFor = document.querySelector(`label[for="${CSS.escape(inp.id)}"]`);
            if (byFor && byFor.textContent.trim()) return byFor.textContent.trim();
        }
        const ancestor = inp.closest('label');
        if (ancestor && ancestor.textContent.trim()) return ancestor.textContent.trim();
        return '';
    }

    const forms = Array.from(document.querySelectorAll('form'));
    return forms.map((form, fi) => {
        const fields = [];
        for (const inp of form.querySelectorAll('input, select, textarea')) {
            const tag = inp.tagName.toLowerCase();
            const type = tag === 'input' ? (inp.getAttribute('type') || 'text').toLowerCase() : tag;
            if (['hidden', 'submit', 'button', 'reset', 'image'].includes(type)) continue;

            const field = {
                tag: tag,
                type: type,
                name: inp.getAttribute('name') || inp.id || '',
                id: inp.id || '',
                testId: inp.getAttribute('data-testid') || '',
                placeholder: inp.getAttribute('placeholder') || '',
                required: inp.required || inp.getAttribute('aria-required') === 'true',
                label: labelFor(inp),
                constraints: {},
                hints: [],
            };
            if (deep) {
                for (const attr of ['minlength', 'maxlength', 'min', 'max', 'pattern', 'step']) {
                    if (inp.hasAttribute(attr)) field.constraints[attr] = inp.getAttribute(attr);
                }
                for (const attr of ['required', 'minlength', 'maxlength', 'min', 'max', 'pattern', 'step']) {
                    if (inp.hasAttribute(attr)) field.hints.push(attr);
                }
                if (['email', 'url', 'number', 'date', 'tel'].includes(type)) field.hints.push('type:' + type);
            }
            fields.push(field);
        }

        const submit = form.querySelector('button[type="submit"], input[type="submit"]')
            || form.querySelector('button:not([type="button"])');
        return {
            index: fi,
            id: form.id || '',
            testId: form.getAttribute('data-testid') || '',
            action: form.getAttribute('action') || '',
            method: (form.getAttribute('method') || 'POST').toUpperCase(),
            fields: fields,
            submit: submit ? {
                testId: submit.getAttribute('data-testid') || '',
                id: submit.id || '',
                text: (submit.textContent || submit.value || '').trim(),
            } : null,
        };
    });
}"""


def _field_type(raw_type: str, tag: str) -> str:
    if tag == "select":
        return "select"
    if tag == "textarea":
        return "text"
    return raw_type if raw_type in _FIELD_TYPES else "text"


def _field_selector(raw: dict) -> SelectorStrategy:
    fallbacks = []
    if raw.get("id"):
        fallbacks.append(f'#{raw["id"]}')
    if raw.get("name"):
        fallbacks.append(f'{raw["tag"]}[name="{raw["name"]}"]')
    if raw.get("placeholder"):
        fallbacks.append(f'{raw["tag"]}[placeholder="{raw["placeholder"]}"]')
    if raw.get("testId"):
        return SelectorStrategy(
            primary=f'[data-testid="{raw["testId"]}"]', fallbacks=fallbacks,
            stability=0.95, type="data-testid",
        )
    if fallbacks:
        return SelectorStrategy(
            primary=fallbacks[0], fallbacks=fallbacks[1:],
            stability=0.7 if raw.get("id") else 0.6, type="css",
        )
    return SelectorStrategy(primary=raw.get("tag", "input"), stability=0.2, type="css")


def _to_number(value):
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return int(number) if number.is_integer() else number


def _constraints(raw: dict) -> FieldConstraints:
    c = raw.get("constraints") or {}
    return FieldConstraints(
        min_length=_to_number(c.get("minlength")),
        max_length=_to_number(c.get("maxlength")),
        min=_to_number(c.get("min")),
        max=_to_number(c.get("max")),
        pattern=c.get("pattern"),
        step=c.get("step"),
    )


def infer_validation_rules(fields: list[FormField]) -> list[ValidationRule]:
    rules = []
    for field in fields:
        if field.required:
            rules.append(ValidationRule(field=field.name, rule="required"))
        if field.type == "email":
            rules.append(ValidationRule(field=field.name, rule="email"))
        if field.constraints.pattern:
            rules.append(ValidationRule(field=field.name, rule="pattern"))
    return rules


def _submit_button(raw_submit: dict | None, form_id: str) -> ElementDescriptor | None:
    if not raw_submit:
        return None
    if raw_submit.get("testId"):
        selector = SelectorStrategy(
            primary=f'[data-testid="{raw_submit["testId"]}"]',
            fallbacks=['button[type="submit"]'], stability=0.95, type="data-testid",
        )
    elif raw_submit.get("id"):
        selector = SelectorStrategy(
            primary=f'#{raw_submit["id"]}', fallbacks=['button[type="submit"]'],
            stability=0.8, type="css",
        )
    else:
        selector = SelectorStrategy(primary='button[type="submit"]', stability=0.7, type="css")
    attributes = {"type": "submit"}
    if raw_submit.get("testId"):
        attributes["data-testid"] = raw_submit["testId"]
    if raw_submit.get("id"):
        attributes["id"] = raw_submit["id"]
    return ElementDescriptor(
        id=stable_id("btn", form_id, selector.primary),
        role="button",
        name=raw_submit.get("text") or "Submit",
        type="button",
        selector=selector,
        attributes=attributes,
        text=raw_submit.get("text") or None,
        confidence=0.9,
    )


async def analyze_forms(page: PageDriver, route: str = "/", deep: bool = False) -> list[FormDescriptor]:
    """Analyze all forms on a page, keeping fields in DOM order."""
    try:
        raw_forms = await page.evaluate(_FORMS_JS, deep)
    except Exception as e:
        logger.error("Form analysis failed: %s", e)
        return []

    forms = []
    for raw in raw_forms or []:
        if raw.get("testId"):
            selector = SelectorStrategy(
                primary=f'[data-testid="{raw["testId"]}"]', stability=0.95, type="data-testid",
            )
        elif raw.get("id"):
            selector = SelectorStrategy(primary=f'#{raw["id"]}', stability=0.7, type="css")
        else:
            selector = SelectorStrategy(
                primary=f'form:nth-of-type({raw.get("index", 0) + 1})', stability=0.3, type="css",
            )
        form_id = stable_id("form", route, selector.primary)

        fields = []
        for i, f in enumerate(raw.get("fields", [])):
            fields.append(FormField(
                name=f.get("name") or f"field-{f.get('tag', 'input')}-{i}",
                type=_field_type(f.get("type", "text"), f.get("tag", "input")),
                selector=_field_selector(f),
                required=bool(f.get("required")),
                placeholder=f.get("placeholder") or None,
                label=f.get("label") or None,
                constraints=_constraints(f),
                validation_hints=list(f.get("hints") or []),
            ))

        forms.append(FormDescriptor(
            id=form_id,
            selector=selector,
            fields=fields,
            submit_button=_submit_button(raw.get("submit"), form_id),
            validation_rules=infer_validation_rules(fields),
            method=raw.get("method") or "POST",
            action=raw.get("action") or "",
        ))

    logger.debug("Analyzed %d forms", len(forms))
    return forms
