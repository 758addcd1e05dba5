"""
Relay Proxy - Content Rewriting Module
Routes every resource reference in a fetched HTML document back through the proxy.
"""

import logging
import re
from dataclasses import dataclass, replace
from typing import List, Optional, Tuple, Union

from bs4 import BeautifulSoup

from .injector import ClientInjector, script_json
from .utils import PROXY_SCHEMES, is_valid_url, make_absolute_url, proxy_url, should_skip_url


logger = logging.getLogger(__name__)

# Attributes holding a single URL, on any element
URL_ATTRIBUTES = (
    'href', 'src', 'data-src', 'data-href', 'action', 'poster', 'background',
    'cite', 'formaction', 'icon', 'manifest', 'archive', 'code', 'codebase',
    'usemap',
)

# Attributes holding comma separated "url descriptor" candidates
SRCSET_ATTRIBUTES = ('srcset', 'data-srcset')

CSP_META = ('content-security-policy', 'content-security-policy-report-only')

JAVASCRIPT_TYPES = (
    '',
    'text/javascript',
    'application/javascript',
    'application/x-javascript',
    'text/ecmascript',
    'application/ecmascript',
)

CSS_URL_REGEX = re.compile(r'url\(\s*([\'"]?)(.*?)\1\s*\)', re.IGNORECASE | re.DOTALL)
CSS_IMPORT_REGEX = re.compile(r'(@import\s+)([\'"])(.*?)\2', re.IGNORECASE)
REFRESH_URL_REGEX = re.compile(r'(url\s*=\s*)([\'"]?)([^\'"]+)\2', re.IGNORECASE)

# Replaced external scripts are chained on one promise to keep document order
SCRIPT_LOADER = (
    "window.__relayScripts=(window.__relayScripts||Promise.resolve()).then(function(){"
    "return fetch(%(url)s).then(function(r){"
    "if(!r.ok){throw new Error('HTTP '+r.status);}return r.text();"
    "}).then(function(t){(0,eval)(t);});"
    "}).catch(function(e){console.error('[relay] script failed to load',%(url)s,e);});"
)


def split_srcset(srcset: str) -> List[Tuple[str, str]]:
    """
    Split a srcset value into (url, descriptor) candidates.

    The URL runs to the next whitespace, so commas inside it survive. A URL
    ending in commas has no descriptor; otherwise the descriptor runs to the
    next comma.
    """
    candidates = []
    pos, length = 0, len(srcset)
    while pos < length:
        while pos < length and (srcset[pos].isspace() or srcset[pos] == ','):
            pos += 1
        if pos >= length:
            break

        start = pos
        while pos < length and not srcset[pos].isspace():
            pos += 1
        url = srcset[start:pos]

        if url.endswith(','):
            candidates.append((url.rstrip(','), ''))
            continue

        end = srcset.find(',', pos)
        if end == -1:
            end = length
        candidates.append((url, ' '.join(srcset[pos:end].split())))
        pos = end

    return candidates


@dataclass(frozen=True)
class RewriteContext:
    """Per-document rewrite parameters."""
    target_url: str
    proxy_base_url: str

    @property
    def go_prefix(self) -> str:
        return f"{self.proxy_base_url.rstrip('/')}/go?"


class ContentRewriter:
    """Handles content rewriting for proxied documents."""

    def __init__(self, injector: Optional[ClientInjector] = None):
        self.injector = injector

    def rewrite_url(self, url: str, context: RewriteContext) -> str:
        """
        Rewrite a single URL to go through the proxy.

        Args:
            url: Original reference
            context: Rewrite context for this document

        Returns:
            The proxy reference, or the original value when it is not rewritable
        """
        if should_skip_url(url):
            return url

        try:
            absolute_url = make_absolute_url(url, context.target_url)
        except ValueError as e:
            logger.warning("Left reference %r unmodified in %s: %s", url, context.target_url, e)
            return url

        if not is_valid_url(absolute_url):
            logger.warning("Left reference %r unmodified in %s: unsupported scheme",
                           url, context.target_url)
            return url

        # Already routed through this proxy
        if absolute_url.startswith(context.go_prefix):
            return url

        return proxy_url(absolute_url, context.proxy_base_url)

    def rewrite_srcset(self, srcset: str, context: RewriteContext) -> str:
        """
        Rewrite srcset attribute value.

        Args:
            srcset: Original srcset value
            context: Rewrite context for this document

        Returns:
            Rewritten srcset value with descriptors preserved
        """
        parts = []
        for url, descriptor in split_srcset(srcset):
            rewritten = self.rewrite_url(url, context)
            parts.append(f"{rewritten} {descriptor}" if descriptor else rewritten)
        return ', '.join(parts)

    def rewrite_css(self, css: str, context: RewriteContext, imports: bool = False) -> str:
        """
        Rewrite url() references, and optionally string @import rules.

        Args:
            css: CSS text
            context: Rewrite context for this document
            imports: Also rewrite @import "..." rules

        Returns:
            CSS with rewritten URLs
        """
        def replace_url(match):
            quote, url = match.group(1), match.group(2)
            rewritten = self.rewrite_url(url, context)
            if rewritten == url:
                return match.group(0)
            return f'url({quote}{rewritten}{quote})'

        css = CSS_URL_REGEX.sub(replace_url, css)

        if imports:
            def replace_import(match):
                rewritten = self.rewrite_url(match.group(3), context)
                return f'{match.group(1)}{match.group(2)}{rewritten}{match.group(2)}'

            css = CSS_IMPORT_REGEX.sub(replace_import, css)

        return css

    def rewrite_meta(self, element, context: RewriteContext) -> None:
        content = element.get('content')
        if not content:
            return

        if (element.get('http-equiv') or '').strip().lower() == 'refresh':
            def replace_refresh(match):
                rewritten = self.rewrite_url(match.group(3).strip(), context)
                return f'{match.group(1)}{match.group(2)}{rewritten}{match.group(2)}'

            element['content'] = REFRESH_URL_REGEX.sub(replace_refresh, content, count=1)
        elif content.strip().lower().startswith(tuple(f'{s}://' for s in PROXY_SCHEMES)):
            element['content'] = self.rewrite_url(content, context)

    def rewrite_script(self, script, context: RewriteContext) -> None:
        """Replace an external classic script with an inline fetch-and-run loader."""
        src = script['src']
        rewritten = self.rewrite_url(src, context)
        if rewritten == src:
            return

        script_type = (script.get('type') or '').strip().lower()
        if script_type not in JAVASCRIPT_TYPES:
            # Modules and data blocks cannot be evaluated as classic scripts
            script['src'] = rewritten
            return

        for attr in ('src', 'integrity', 'crossorigin', 'async', 'defer'):
            if script.has_attr(attr):
                del script[attr]
        script.string = SCRIPT_LOADER % {'url': script_json(rewritten)}

    def rewrite_html(self, markup: Union[str, bytes], context: RewriteContext,
                     encoding: Optional[str] = None) -> str:
        """
        Rewrite all resource references in an HTML document.

        Args:
            markup: HTML content, text or raw bytes
            context: Rewrite context for this document
            encoding: Declared charset when markup is bytes

        Returns:
            The rewritten document
        """
        if isinstance(markup, bytes) and encoding:
            soup = BeautifulSoup(markup, 'lxml', from_encoding=encoding)
        else:
            soup = BeautifulSoup(markup, 'lxml')

        # CSP meta would block the proxied references
        for meta in soup.find_all('meta', attrs={'http-equiv': True}):
            if meta['http-equiv'].strip().lower() in CSP_META:
                meta.decompose()

        context = self._apply_base(soup, context)

        elements = [el for el in soup.find_all(True) if el.name != 'base']
        for element in elements:
            for attr in URL_ATTRIBUTES:
                if not element.has_attr(attr):
                    continue
                if element.name == 'script' and attr == 'src':
                    continue
                value = element[attr]
                if isinstance(value, list):
                    element[attr] = [self.rewrite_url(item, context) for item in value]
                else:
                    element[attr] = self.rewrite_url(value, context)

            for attr in SRCSET_ATTRIBUTES:
                if element.has_attr(attr):
                    element[attr] = self.rewrite_srcset(element[attr], context)

            if element.has_attr('style'):
                element['style'] = self.rewrite_css(element['style'], context)

            if element.name == 'meta':
                self.rewrite_meta(element, context)
            elif element.name == 'script' and element.has_attr('src'):
                self.rewrite_script(element, context)
            elif element.name == 'style' and element.string:
                element.string = self.rewrite_css(element.string, context, imports=True)

        if self.injector is not None:
            self.injector.inject(soup, context.proxy_base_url)

        return str(soup)

    def _apply_base(self, soup: BeautifulSoup, context: RewriteContext) -> RewriteContext:
        """
        Replace any <base> elements with one carrying the effective base URL.

        Returns:
            The context to resolve references against
        """
        base_url = context.target_url
        existing = soup.find('base', href=True)
        if existing is not None:
            try:
                candidate = make_absolute_url(existing['href'], context.target_url)
            except ValueError:
                candidate = None
            if candidate and is_valid_url(candidate):
                base_url = candidate
            else:
                logger.warning("Ignoring unusable <base href=%r> in %s", existing['href'], context.target_url)

        # First <base target> wins
        target = soup.find('base', target=True)
        attrs = {'href': base_url}
        if target is not None:
            attrs['target'] = target['target']

        for base in soup.find_all('base'):
            base.decompose()

        head = soup.head
        if head is None:
            head = soup.new_tag('head')
            if soup.html:
                soup.html.insert(0, head)
            else:
                soup.insert(0, head)
        head.insert(0, soup.new_tag('base', attrs=attrs))

        return replace(context, target_url=base_url)
