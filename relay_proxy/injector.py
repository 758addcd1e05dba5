"""
Relay Proxy - Client Behavior Injector
Places the client behavior script into rewritten documents.
"""

import json
import os
from functools import lru_cache
from typing import Iterable

from bs4 import BeautifulSoup


CLIENT_SCRIPT_PATH = os.path.join(os.path.dirname(os.path.abspath(__file__)), 'static', 'client.js')

# The single interpolation point of the template
CONFIG_PLACEHOLDER = '__RELAY_CONFIG__'

SCRIPT_MARKER = 'data-relay-client'


@lru_cache(maxsize=1)
def load_template() -> str:
    with open(CLIENT_SCRIPT_PATH, encoding='utf-8') as f:
        template = f.read()
    if template.count(CONFIG_PLACEHOLDER) != 1:
        raise RuntimeError(f"{CLIENT_SCRIPT_PATH} must contain {CONFIG_PLACEHOLDER} exactly once")
    return template


def script_json(value) -> str:
    """JSON that is safe to place inside a <script> element."""
    return json.dumps(value).replace('</', '<\\/')


class ClientInjector:
    """Renders the client behavior script and inserts it into documents."""

    def __init__(self, message_origins: Iterable[str] = ()):
        self.message_origins = list(message_origins)

    def render(self, proxy_base_url: str) -> str:
        config = {
            'proxyBase': proxy_base_url,
            'messageOrigins': self.message_origins,
        }
        return load_template().replace(CONFIG_PLACEHOLDER, script_json(config))

    def inject(self, soup: BeautifulSoup, proxy_base_url: str) -> None:
        """
        Insert the script at the start of <head>, after <base> if present,
        so it runs before any page script.
        """
        script = soup.new_tag('script')
        script[SCRIPT_MARKER] = ''
        script.string = self.render(proxy_base_url)

        head = soup.head
        if head is None:
            head = soup.new_tag('head')
            if soup.html:
                soup.html.insert(0, head)
            else:
                soup.insert(0, head)

        base = head.find('base', recursive=False)
        if base is not None:
            base.insert_after(script)
        else:
            head.insert(0, script)
