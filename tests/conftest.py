"""Pytest configuration and shared fixtures."""

import asyncio
from typing import Any, Optional

import pytest

from qamap.driver.base import BrowserSession, LocatedElement, PageDriver
from qamap.models.config import QAMapConfig
from qamap.models.graph import (
    AppEdge,
    AppGraph,
    AppNode,
    ElementDescriptor,
    FieldConstraints,
    FormDescriptor,
    FormField,
    SelectorStrategy,
)

BASE_URL = "https://app.example.com"


# ============================================================================
# Graph Builders
# ============================================================================


def make_element(
    element_id: str,
    role: str = "button",
    text: Optional[str] = None,
    selector: Optional[str] = None,
    type: Optional[str] = None,
    attributes: Optional[dict[str, str]] = None,
    fallbacks: Optional[list[str]] = None,
) -> ElementDescriptor:
    default_type = {"button": "button", "link": "link", "heading": "heading", "img": "image"}
    return ElementDescriptor(
        id=element_id,
        role=role,
        name=text,
        type=type or default_type.get(role, "other"),
        selector=SelectorStrategy(primary=selector or f"#{element_id}", fallbacks=fallbacks or []),
        attributes=attributes or {},
        text=text,
    )


def make_field(
    name: str, type: str = "text", required: bool = False, label: Optional[str] = None,
    max_length: Optional[int] = None,
) -> FormField:
    return FormField(
        name=name,
        type=type,
        selector=SelectorStrategy(primary=f'input[name="{name}"]'),
        required=required,
        label=label,
        constraints=FieldConstraints(max_length=max_length),
    )


def make_node(
    node_id: str, route: str, name: str = "",
    elements: Optional[list[ElementDescriptor]] = None,
    forms: Optional[list[FormDescriptor]] = None,
) -> AppNode:
    return AppNode(
        id=node_id,
        type="route",
        url=f"{BASE_URL}{route}",
        route=route,
        name=name or route,
        elements=elements or [],
        forms=forms or [],
    )


def make_login_form() -> FormDescriptor:
    return FormDescriptor(
        id="form-login",
        selector=SelectorStrategy(primary="#login-form"),
        fields=[
            make_field("email", "email", required=True, label="Email"),
            make_field("password", "password", required=True, label="Password"),
            make_field("nickname", max_length=10),
        ],
        submit_button=make_element("btn-login", text="Login", selector='[data-testid="login"]'),
    )


def make_graph() -> AppGraph:
    """Login page linking to a dashboard, which links to a users list."""
    login_link = make_element("link-dashboard", "link", "Login", 'a:has-text("Login")')
    users_link = make_element("link-users", "link", "Users", 'a:has-text("Users")')
    login = make_node(
        "node-login", "/", "Login",
        elements=[
            make_element("heading-login", "heading", "Sign in", "h1"),
            make_element("btn-login", text="Login", selector='[data-testid="login"]'),
            login_link,
        ],
        forms=[make_login_form()],
    )
    dashboard = make_node(
        "node-dashboard", "/dashboard", "Dashboard",
        elements=[make_element("heading-dash", "heading", "Dashboard", "h1"), users_link],
    )
    users = make_node(
        "node-users", "/users", "Users",
        elements=[
            make_element("btn-add-user", text="Add User"),
            make_element("btn-edit-user", text="Edit"),
            make_element("btn-delete-user", text="Delete"),
            make_element("img-avatar", "img", None, "img.avatar"),
        ],
    )
    return AppGraph(
        app_name="Example",
        base_url=BASE_URL,
        nodes=[login, dashboard, users],
        edges=[
            AppEdge(from_id="node-login", to_id="node-dashboard", trigger=login_link),
            AppEdge(from_id="node-dashboard", to_id="node-users", trigger=users_link),
        ],
    )


# ============================================================================
# Fake Page Driver
# ============================================================================


class FakePage(PageDriver):
    """In-memory page. Interactions on ``broken`` selectors raise."""

    name = "fake"

    def __init__(self, site: "FakeSite"):
        self.site = site
        self._url = "about:blank"
        self.actions: list[tuple[str, str]] = []
        self.closed = False

    @property
    def url(self) -> str:
        return self._url

    async def navigate(self, url, wait_until="domcontentloaded", timeout_ms=30000):
        if url in self.site.unreachable:
            raise RuntimeError(f"net::ERR_CONNECTION_REFUSED at {url}")
        await asyncio.sleep(0)
        self._url = url
        self.actions.append(("navigate", url))
        return 200

    async def wait_for_load_state(self, state="networkidle", timeout_ms=10000):
        return None

    async def locate_by_role(self, role, limit=20):
        return self.site.roles.get(self._url, {}).get(role, [])[:limit]

    async def locate_by_selector(self, selector, timeout_ms=5000):
        return selector not in self.site.broken

    def _interact(self, action: str, selector: str) -> None:
        self.actions.append((action, selector))
        if selector in self.site.broken:
            raise TimeoutError(f"Timeout 30000ms exceeded waiting for selector {selector}")
        target = self.site.navigations.get(selector)
        if target:
            self._url = target

    async def click(self, selector, timeout_ms=30000):
        if self.site.click_failures.get(selector, 0) > 0:
            self.site.click_failures[selector] -= 1
            raise RuntimeError(f"Element is not attached: {selector} detached from DOM")
        self._interact("click", selector)

    async def fill(self, selector, value, timeout_ms=30000):
        self._interact("fill", selector)
        self.site.values[selector] = value

    async def select_option(self, selector, value, timeout_ms=30000):
        self._interact("select", selector)
        self.site.values[selector] = value

    async def check(self, selector, timeout_ms=30000):
        self._interact("check", selector)

    async def hover(self, selector, timeout_ms=30000):
        self._interact("hover", selector)

    async def is_visible(self, selector, timeout_ms=5000):
        return selector not in self.site.hidden and selector not in self.site.broken

    async def text_content(self, selector, timeout_ms=5000):
        return self.site.texts.get(selector, "")

    async def input_value(self, selector, timeout_ms=5000):
        return self.site.values.get(selector, "")

    async def get_attribute(self, selector, name, timeout_ms=5000):
        return self.site.attributes.get((selector, name))

    async def count(self, selector):
        return self.site.counts.get(selector, 0 if selector in self.site.broken else 1)

    async def evaluate(self, script: str, arg: Any = None):
        if "a[href]" in script:
            return self.site.links.get(self._url, [])
        if "querySelectorAll('form')" in script:
            return self.site.forms.get(self._url, [])
        self.site.scripts.append((script, arg))
        return None

    async def screenshot(self, path):
        self.site.screenshots.append(path)

    async def reload(self, timeout_ms=30000):
        self.actions.append(("reload", self._url))

    async def title(self):
        return self.site.titles.get(self._url, "")

    async def wait(self, ms):
        return None

    async def close(self):
        self.closed = True


class FakeSite:
    """Shared state behind every FakePage of a FakeSession."""

    def __init__(self):
        self.broken: set[str] = set()
        self.hidden: set[str] = set()
        self.unreachable: set[str] = set()
        self.click_failures: dict[str, int] = {}
        self.navigations: dict[str, str] = {}
        self.texts: dict[str, str] = {}
        self.values: dict[str, str] = {}
        self.attributes: dict[tuple[str, str], str] = {}
        self.counts: dict[str, int] = {}
        self.links: dict[str, list[dict]] = {}
        self.forms: dict[str, list[dict]] = {}
        self.roles: dict[str, dict[str, list[LocatedElement]]] = {}
        self.titles: dict[str, str] = {}
        self.scripts: list[tuple[str, Any]] = []
        self.screenshots: list[str] = []


class FakeSession(BrowserSession):
    name = "fake"

    def __init__(self, site: Optional[FakeSite] = None):
        self.site = site or FakeSite()
        self.pages: list[FakePage] = []
        self.cookies: list[dict] = []
        self.closed = False

    async def new_page(self) -> FakePage:
        page = FakePage(self.site)
        self.pages.append(page)
        return page

    async def add_cookies(self, cookies):
        self.cookies.extend(cookies)

    async def close(self):
        self.closed = True


def fake_factory(site: FakeSite, sessions: Optional[list[FakeSession]] = None):
    """Session factory handing out FakeSessions over one shared site."""
    async def factory() -> FakeSession:
        session = FakeSession(site)
        if sessions is not None:
            sessions.append(session)
        return session
    return factory


def make_app_site() -> FakeSite:
    """Home page with a call-to-action linking to a signup page."""
    site = FakeSite()
    about_url = f"{BASE_URL}/about"
    site.roles[BASE_URL] = {
        "heading": [LocatedElement(role="heading", tag="h1", text="Welcome")],
        "button": [LocatedElement(role="button", tag="button", text="Get started", attributes={"data-testid": "cta"})],
    }
    site.links[BASE_URL] = [{"href": "/about", "text": "About", "testId": "", "ariaLabel": ""}]
    site.navigations['a:has-text("About")'] = about_url
    site.titles[about_url] = "About"
    site.forms[about_url] = [{
        "index": 0, "id": "signup", "testId": "", "action": "", "method": "POST",
        "fields": [{
            "tag": "input", "type": "email", "name": "email", "id": "email", "testId": "",
            "placeholder": "", "required": True, "label": "Email", "constraints": {}, "hints": [],
        }],
        "submit": {"testId": "", "id": "signup-btn", "text": "Sign up"},
    }]
    return site


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def graph() -> AppGraph:
    return make_graph()


@pytest.fixture
def site() -> FakeSite:
    return FakeSite()


@pytest.fixture
def config(tmp_path) -> QAMapConfig:
    cfg = QAMapConfig(base_url=BASE_URL, app_name="Example", work_dir=str(tmp_path / ".qamap"))
    cfg.learning.kb_path = str(tmp_path / ".qamap" / "kb.db")
    return cfg
