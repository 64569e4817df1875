from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from .config import Settings
from .errors import LoginError
from .page import Delays, PageHandle, base_url

logger = logging.getLogger(__name__)


class Site(enum.Enum):
    CASEINE = "caseine"
    UCA_MOODLE = "uca_moodle"

    @classmethod
    def detect(cls, url: str) -> "Site":
        return cls.CASEINE if "caseine.org" in url else cls.UCA_MOODLE

    @property
    def host(self) -> str:
        return {Site.CASEINE: "caseine.org", Site.UCA_MOODLE: "moodle2025.uca.fr"}[self]


class LoginPage(enum.Enum):
    TARGET = "target"
    ENROLLMENT = "enrollment"
    PROVIDER_SELECT = "provider_select"
    FEDERATION_SEARCH = "federation_search"
    CREDENTIAL_FORM = "credential_form"
    CONSENT = "consent"
    AUTHENTICATED = "authenticated"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class PageObservation:
    url: str
    target_url: str
    has_logout: bool = False

    @property
    def at_target(self) -> bool:
        return base_url(self.url) == base_url(self.target_url)


def classify_caseine(obs: PageObservation) -> LoginPage:
    url = obs.url
    if obs.at_target:
        return LoginPage.TARGET
    if "enrol/index.php" in url:
        return LoginPage.ENROLLMENT
    if "moodle.caseine.org/login/index.php" in url:
        return LoginPage.PROVIDER_SELECT
    if "discovery.renater.fr" in url or "wayf" in url:
        return LoginPage.FEDERATION_SEARCH
    if "ent.uca.fr/cas" in url:
        return LoginPage.CREDENTIAL_FORM
    if "idp.uca.fr" in url:
        return LoginPage.CONSENT
    if obs.has_logout and "caseine.org" in url:
        return LoginPage.AUTHENTICATED
    return LoginPage.UNKNOWN


def classify_uca(obs: PageObservation) -> LoginPage:
    # moodle2025 redirects straight to CAS and back, no federation hop
    if obs.at_target:
        return LoginPage.TARGET
    if "ent.uca.fr/cas" in obs.url:
        return LoginPage.CREDENTIAL_FORM
    if obs.has_logout and "uca.fr" in obs.url:
        return LoginPage.AUTHENTICATED
    return LoginPage.UNKNOWN


@dataclass
class LoginContext:
    target_url: str
    settings: Settings
    delays: Delays


Transition = Callable[[PageHandle, LoginContext], Awaitable[None]]


HAS_LOGOUT_JS = """() => document.querySelector('a[href*="login/logout.php"], [data-action="logout"]') !== null"""

CLICK_CONTINUE_JS = r"""() => {
    for (const btn of document.querySelectorAll('button, input[type="submit"], a.btn')) {
        const text = (btn.textContent || btn.value || '').trim();
        if (text === 'Continue' || text === 'Continuer') { btn.click(); return true; }
    }
    return false;
}"""

CLICK_PROVIDER_JS = r"""() => {
    const link = document.querySelector('a.btn:nth-child(3)');
    if (!link) return false;
    link.click();
    return true;
}"""

OPEN_FEDERATION_DROPDOWN_JS = r"""() => {
    if (typeof $ === 'undefined') return false;
    $('select').select2('open');
    return true;
}"""

TYPE_INSTITUTION_JS = r"""(institution) => {
    const input = document.querySelector('input.select2-search__field');
    if (!input) return false;
    input.focus();
    input.value = institution;
    input.dispatchEvent(new Event('input', { bubbles: true }));
    return true;
}"""

PRESS_ENTER_JS = r"""() => {
    const input = document.querySelector('input.select2-search__field');
    if (!input) return false;
    input.dispatchEvent(new KeyboardEvent('keydown', { key: 'Enter', keyCode: 13, bubbles: true }));
    return true;
}"""

CLICK_SELECT_JS = r"""() => {
    const buttons = document.querySelectorAll('button, input[type="submit"]');
    for (const btn of buttons) {
        const text = (btn.textContent || btn.value || '').toLowerCase();
        if (text.includes('select') || text.includes('sélectionner')) { btn.click(); return true; }
    }
    if (buttons.length > 0) { buttons[0].click(); return true; }
    return false;
}"""

FILL_CREDENTIALS_JS = r"""(creds) => {
    const user = document.querySelector('input[name="username"], input[id="username"]');
    const pass = document.querySelector('input[name="password"], input[id="password"], input[type="password"]');
    if (!user || !pass) return false;
    user.value = creds.username;
    pass.value = creds.password;
    return true;
}"""

SUBMIT_FORM_JS = r"""() => {
    const btn = document.querySelector('button[type="submit"], input[type="submit"]');
    if (btn) { btn.click(); return true; }
    const form = document.querySelector('form');
    if (form) { form.submit(); return true; }
    return false;
}"""

CLICK_CONSENT_JS = r"""() => {
    const btn = document.querySelector('input[name="_eventId_proceed"]');
    if (!btn) return false;
    btn.click();
    return true;
}"""


async def _require(page: PageHandle, script: str, what: str, arg=None) -> None:
    if arg is None:
        ok = await page.evaluate(script)
    else:
        ok = await page.evaluate(script, arg)
    if not ok:
        raise LoginError(f"{what} not found on {await page.current_url()}")


async def click_continue(page: PageHandle, ctx: LoginContext) -> None:
    await _require(page, CLICK_CONTINUE_JS, "enrollment Continue button")


async def click_provider(page: PageHandle, ctx: LoginContext) -> None:
    await _require(page, CLICK_PROVIDER_JS, "federation login button")


async def search_federation(page: PageHandle, ctx: LoginContext) -> None:
    await page.wait_for_navigation()
    await asyncio.sleep(ctx.delays.settle)
    await _require(page, OPEN_FEDERATION_DROPDOWN_JS, "institution dropdown")
    await asyncio.sleep(ctx.delays.settle)
    await _require(page, TYPE_INSTITUTION_JS, "institution search field", ctx.settings.institution)
    await asyncio.sleep(ctx.delays.action)
    await _require(page, PRESS_ENTER_JS, "institution search field")
    await asyncio.sleep(ctx.delays.action)
    await _require(page, CLICK_SELECT_JS, "institution Select button")


async def submit_credentials(page: PageHandle, ctx: LoginContext) -> None:
    settings = ctx.settings
    if not settings.username or not settings.password:
        raise LoginError("MOODLE_USERNAME and MOODLE_PASSWORD are required to log in")
    await asyncio.sleep(ctx.delays.action)
    await _require(
        page,
        FILL_CREDENTIALS_JS,
        "credential form",
        {"username": settings.username, "password": settings.password},
    )
    await _require(page, SUBMIT_FORM_JS, "credential form submit button")


async def accept_consent(page: PageHandle, ctx: LoginContext) -> None:
    await asyncio.sleep(ctx.delays.action)
    await _require(page, CLICK_CONSENT_JS, "consent Accept button")


async def open_target(page: PageHandle, ctx: LoginContext) -> None:
    await page.goto(ctx.target_url)


@dataclass(frozen=True)
class SiteFlow:
    classify: Callable[[PageObservation], LoginPage]
    transitions: dict[LoginPage, Transition] = field(default_factory=dict)


FLOWS: dict[Site, SiteFlow] = {
    Site.CASEINE: SiteFlow(
        classify=classify_caseine,
        transitions={
            LoginPage.ENROLLMENT: click_continue,
            LoginPage.PROVIDER_SELECT: click_provider,
            LoginPage.FEDERATION_SEARCH: search_federation,
            LoginPage.CREDENTIAL_FORM: submit_credentials,
            LoginPage.CONSENT: accept_consent,
            LoginPage.AUTHENTICATED: open_target,
        },
    ),
    Site.UCA_MOODLE: SiteFlow(
        classify=classify_uca,
        transitions={
            LoginPage.CREDENTIAL_FORM: submit_credentials,
            LoginPage.AUTHENTICATED: open_target,
        },
    ),
}


async def observe(page: PageHandle, target_url: str) -> PageObservation:
    url = await page.current_url()
    has_logout = bool(await page.evaluate(HAS_LOGOUT_JS))
    return PageObservation(url=url, target_url=target_url, has_logout=has_logout)


async def login(
    page: PageHandle,
    site: Site,
    target_url: str,
    settings: Settings,
    *,
    semi_manual: bool = False,
    flow: SiteFlow | None = None,
    delays: Delays = Delays(),
    max_steps: int = 12,
    max_repeats: int = 3,
) -> None:
    """Drive the page from wherever it is to ``target_url``.

    Each iteration classifies the live page and performs the single action for
    that state. Unknown pages fail at once unless ``semi_manual`` is set, in
    which case they are re-polled while a human finishes the step; that wait
    is unbounded. A state seen ``max_repeats`` times in a row at the same URL
    means the action had no effect and is fatal.
    """
    flow = flow or FLOWS[site]
    ctx = LoginContext(target_url=target_url, settings=settings, delays=delays)
    last: tuple[LoginPage, str] | None = None
    repeats = 0
    steps = 0
    while True:
        obs = await observe(page, target_url)
        state = flow.classify(obs)
        logger.info("login_state: site=%s state=%s url=%s", site.value, state.value, obs.url)
        if state is LoginPage.TARGET:
            logger.info("login_done: site=%s url=%s", site.value, obs.url)
            return
        if state is LoginPage.UNKNOWN:
            if not semi_manual:
                raise LoginError(f"unexpected page during login: {obs.url}")
            await asyncio.sleep(delays.navigation or delays.poll)
            continue

        key = (state, base_url(obs.url))
        repeats = repeats + 1 if key == last else 1
        last = key
        if repeats > max_repeats:
            raise LoginError(f"login stuck at {state.value} ({obs.url})")
        steps += 1
        if steps > max_steps:
            raise LoginError(f"login did not reach {target_url} after {max_steps} steps")

        action = flow.transitions.get(state)
        if action is None:
            raise LoginError(f"no login action for {state.value} on {site.host}")
        try:
            await action(page, ctx)
        except LoginError:
            raise
        except Exception as exc:
            raise LoginError(f"login action {state.value} failed: {exc}") from exc
        await asyncio.sleep(delays.navigation)
