import asyncio

import pytest

from coursepilot import login as login_mod
from coursepilot.errors import LoginError
from coursepilot.login import (
    FLOWS,
    LoginPage,
    PageObservation,
    Site,
    SiteFlow,
    classify_caseine,
    classify_uca,
    login,
)
from coursepilot.page import Delays
from tests.page_harness.fakes import FakePage, make_settings

TARGET = "https://moodle.caseine.org/mod/vpl/view.php?id=42"
ENROL = "https://moodle.caseine.org/enrol/index.php?id=7"
LOGIN = "https://moodle.caseine.org/login/index.php"
WAYF = "https://discovery.renater.fr/caseine/WAYF?entityID=x"
CAS = "https://ent.uca.fr/cas/login?service=y"
IDP = "https://idp.uca.fr/idp/profile/SAML2/Redirect/SSO?execution=e1s2"


def _obs(url, target=TARGET, has_logout=False):
    return PageObservation(url=url, target_url=target, has_logout=has_logout)


def test_site_detect():
    assert Site.detect(TARGET) is Site.CASEINE
    assert Site.detect("https://moodle2025.uca.fr/mod/quiz/attempt.php?attempt=1") is Site.UCA_MOODLE


def test_classify_caseine_states():
    assert classify_caseine(_obs(ENROL)) is LoginPage.ENROLLMENT
    assert classify_caseine(_obs(LOGIN)) is LoginPage.PROVIDER_SELECT
    assert classify_caseine(_obs(WAYF)) is LoginPage.FEDERATION_SEARCH
    assert classify_caseine(_obs(CAS)) is LoginPage.CREDENTIAL_FORM
    assert classify_caseine(_obs(IDP)) is LoginPage.CONSENT
    assert classify_caseine(_obs("https://moodle.caseine.org/my/", has_logout=True)) is LoginPage.AUTHENTICATED
    assert classify_caseine(_obs("https://elsewhere.example/")) is LoginPage.UNKNOWN


def test_target_ignores_query_string():
    assert classify_caseine(_obs("https://moodle.caseine.org/mod/vpl/view.php?id=42&lang=fr")) is LoginPage.TARGET
    assert classify_caseine(_obs("https://moodle.caseine.org/mod/vpl/view.php")) is LoginPage.TARGET


def test_classify_uca_states():
    target = "https://moodle2025.uca.fr/mod/quiz/view.php?id=3"
    assert classify_uca(_obs(target + "&x=1", target)) is LoginPage.TARGET
    assert classify_uca(_obs(CAS, target)) is LoginPage.CREDENTIAL_FORM
    assert classify_uca(_obs("https://moodle2025.uca.fr/my/", target, has_logout=True)) is LoginPage.AUTHENTICATED
    assert classify_uca(_obs(WAYF, target)) is LoginPage.UNKNOWN


def _scripted_caseine_page():
    page = FakePage(ENROL)

    def goto(url):
        def _go(arg):
            page.url = url
            return True

        return _go

    page.on(login_mod.HAS_LOGOUT_JS, False)
    page.on(login_mod.CLICK_CONTINUE_JS, goto(LOGIN))
    page.on(login_mod.CLICK_PROVIDER_JS, goto(WAYF))
    page.on(login_mod.OPEN_FEDERATION_DROPDOWN_JS, True)
    page.on(login_mod.TYPE_INSTITUTION_JS, True)
    page.on(login_mod.PRESS_ENTER_JS, True)
    page.on(login_mod.CLICK_SELECT_JS, goto(CAS))
    page.on(login_mod.FILL_CREDENTIALS_JS, True)
    page.on(login_mod.SUBMIT_FORM_JS, goto(IDP))
    page.on(login_mod.CLICK_CONSENT_JS, goto(TARGET))
    return page


def test_login_walks_caseine_chain_one_action_per_step():
    async def _run():
        page = _scripted_caseine_page()
        acted = []
        base = FLOWS[Site.CASEINE]

        def _recording(state, action):
            async def _wrapped(p, ctx):
                acted.append(state)
                await action(p, ctx)

            return _wrapped

        flow = SiteFlow(
            classify=base.classify,
            transitions={state: _recording(state, action) for state, action in base.transitions.items()},
        )
        await login(page, Site.CASEINE, TARGET, make_settings(), flow=flow, delays=Delays.none())
        assert acted == [
            LoginPage.ENROLLMENT,
            LoginPage.PROVIDER_SELECT,
            LoginPage.FEDERATION_SEARCH,
            LoginPage.CREDENTIAL_FORM,
            LoginPage.CONSENT,
        ]
        assert page.url == TARGET

    asyncio.run(_run())


def test_login_passes_credentials_and_institution_as_arguments():
    async def _run():
        page = _scripted_caseine_page()
        settings = make_settings(username="o'brien", password='p"w')
        await login(page, Site.CASEINE, TARGET, settings, delays=Delays.none())
        assert page.args(login_mod.FILL_CREDENTIALS_JS) == [{"username": "o'brien", "password": 'p"w'}]
        assert page.args(login_mod.TYPE_INSTITUTION_JS) == [settings.institution]

    asyncio.run(_run())


def test_login_already_at_target_does_nothing():
    async def _run():
        page = FakePage(TARGET + "&foo=bar").on(login_mod.HAS_LOGOUT_JS, True)
        await login(page, Site.CASEINE, TARGET, make_settings(), delays=Delays.none())
        assert page.calls == [(login_mod.HAS_LOGOUT_JS, None)]

    asyncio.run(_run())


def test_unknown_page_fails_immediately():
    async def _run():
        page = FakePage("https://elsewhere.example/").on(login_mod.HAS_LOGOUT_JS, False)
        with pytest.raises(LoginError, match="unexpected page"):
            await login(page, Site.CASEINE, TARGET, make_settings(), delays=Delays.none())

    asyncio.run(_run())


def test_semi_manual_waits_on_unknown_page():
    async def _run():
        page = FakePage("https://2fa.example/challenge")
        polls = []

        def _has_logout(arg):
            polls.append(1)
            if len(polls) == 3:
                page.url = TARGET
            return False

        page.on(login_mod.HAS_LOGOUT_JS, _has_logout)
        await login(page, Site.CASEINE, TARGET, make_settings(), semi_manual=True, delays=Delays.none())
        assert len(polls) == 4

    asyncio.run(_run())


def test_missing_control_is_fatal():
    async def _run():
        page = FakePage(ENROL).on(login_mod.HAS_LOGOUT_JS, False).on(login_mod.CLICK_CONTINUE_JS, False)
        with pytest.raises(LoginError, match="Continue"):
            await login(page, Site.CASEINE, TARGET, make_settings(), delays=Delays.none())

    asyncio.run(_run())


def test_action_without_effect_is_reported_as_stuck():
    async def _run():
        page = FakePage(IDP).on(login_mod.HAS_LOGOUT_JS, False).on(login_mod.CLICK_CONSENT_JS, True)
        with pytest.raises(LoginError, match="stuck"):
            await login(page, Site.CASEINE, TARGET, make_settings(), delays=Delays.none(), max_repeats=2)
        assert page.count(login_mod.CLICK_CONSENT_JS) == 2

    asyncio.run(_run())


def test_missing_credentials_fail_before_touching_form():
    async def _run():
        page = FakePage(CAS).on(login_mod.HAS_LOGOUT_JS, False)
        with pytest.raises(LoginError, match="MOODLE_USERNAME"):
            await login(page, Site.UCA_MOODLE, "https://moodle2025.uca.fr/x", make_settings(username=""), delays=Delays.none())
        assert page.count(login_mod.FILL_CREDENTIALS_JS) == 0

    asyncio.run(_run())


def test_authenticated_elsewhere_navigates_to_target():
    async def _run():
        page = FakePage("https://moodle.caseine.org/my/").on(login_mod.HAS_LOGOUT_JS, True)
        await login(page, Site.CASEINE, TARGET, make_settings(), delays=Delays.none())
        assert page.gotos == [TARGET]

    asyncio.run(_run())


def test_unexpected_exception_in_action_becomes_login_error():
    async def _run():
        page = FakePage(ENROL).on(login_mod.HAS_LOGOUT_JS, False)

        def _boom(arg):
            raise RuntimeError("target closed")

        page.on(login_mod.CLICK_CONTINUE_JS, _boom)
        with pytest.raises(LoginError, match="target closed"):
            await login(page, Site.CASEINE, TARGET, make_settings(), delays=Delays.none())

    asyncio.run(_run())
