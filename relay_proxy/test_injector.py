"""Tests for the client behavior injector."""

import json

from bs4 import BeautifulSoup

from relay_proxy.injector import CONFIG_PLACEHOLDER, SCRIPT_MARKER, ClientInjector, load_template, script_json


def test_template_has_single_interpolation_point():
    assert load_template().count(CONFIG_PLACEHOLDER) == 1


def test_render_fills_config():
    script = ClientInjector().render('http://proxy.test')

    assert CONFIG_PLACEHOLDER not in script
    assert 'const CONFIG = {"proxyBase": "http://proxy.test", "messageOrigins": []};' in script


def test_render_includes_message_origins():
    script = ClientInjector(['https://panel.example.com']).render('http://proxy.test')
    assert '"messageOrigins": ["https://panel.example.com"]' in script


def test_script_json_cannot_close_the_script_element():
    encoded = script_json({'proxyBase': 'http://x/</script><script>alert(1)</script>'})

    assert '</script>' not in encoded
    assert json.loads(encoded)['proxyBase'] == 'http://x/</script><script>alert(1)</script>'


def test_wraps_network_and_navigation_apis():
    script = load_template()
    for hook in ('window.open', "['assign', 'replace']", 'window.fetch', 'XMLHttpRequest.prototype.open',
                 "addEventListener('click'", "addEventListener('submit'"):
        assert hook in script


def test_inject_at_head_start():
    soup = BeautifulSoup('<html><head><title>t</title></head><body></body></html>', 'lxml')
    ClientInjector().inject(soup, 'http://proxy.test')

    first = soup.head.contents[0]
    assert first.name == 'script'
    assert first.has_attr(SCRIPT_MARKER)


def test_inject_creates_head():
    soup = BeautifulSoup('<p>bare</p>', 'lxml')
    ClientInjector().inject(soup, 'http://proxy.test')

    assert soup.head is not None
    assert soup.head.script.has_attr(SCRIPT_MARKER)
    assert soup.head.parent is soup.html


def test_client_script_guards():
    script = load_template()
    # Eval channel only exists for configured origins, and checks each sender
    assert 'if (CONFIG.messageOrigins && CONFIG.messageOrigins.length) {' in script
    assert 'if (CONFIG.messageOrigins.indexOf(e.origin) === -1) return;' in script
    # Non-GET forms submit natively only when already aimed at the proxy
    assert "if (method !== 'GET') {" in script
    assert 'if (action.indexOf(GO_PREFIX) === 0) return;' in script
    assert 'window.alert(message);' in script
    # Location navigations are caught through the Navigation API
    assert "window.navigation.addEventListener('navigate'" in script
    assert 'if (url.indexOf(GO_PREFIX) === 0) return;' in script
