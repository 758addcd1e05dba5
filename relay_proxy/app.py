"""
Relay Proxy - Main Application
Flask-based rewriting reverse proxy.
"""

import logging
from typing import Optional

from flask import Flask, request, Response, jsonify, make_response
from flask_cors import CORS
import requests
from werkzeug.exceptions import HTTPException

from .cache import CacheEntry, ResponseCache, cache_key
from .config import get_config
from .errors import MalformedTarget, ProxyError, UpstreamUnavailable
from .fetcher import UpstreamFetcher
from .injector import ClientInjector
from .rewriter import ContentRewriter, RewriteContext
from .utils import (
    decode_url, encode_url, get_charset, get_content_type, is_html_content,
    is_media_content, is_valid_url, sanitize_headers,
)


logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def create_app(config=None, cache: Optional[ResponseCache] = None,
               fetcher: Optional[UpstreamFetcher] = None) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config: Optional config object or class; defaults to get_config()
        cache: Optional response cache, one is built from config otherwise
        fetcher: Optional upstream fetcher, one is built from config otherwise

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)
    CORS(app)

    app.config.from_object(config or get_config())

    if cache is None:
        cache = ResponseCache(max_size=app.config['MAX_CACHE_SIZE'], ttl=app.config['CACHE_TTL'])
    if fetcher is None:
        fetcher = UpstreamFetcher(
            timeout=app.config['REQUEST_TIMEOUT'],
            max_retries=app.config['MAX_RETRIES'],
            retry_delay=app.config['RETRY_DELAY'],
            user_agent=app.config['USER_AGENT'],
        )
    injector = ClientInjector(app.config['MESSAGE_ORIGINS']) if app.config['INJECT_SCRIPTS'] else None
    rewriter = ContentRewriter(injector)

    # Store in app context
    app.config['RESPONSE_CACHE'] = cache
    app.config['UPSTREAM_FETCHER'] = fetcher

    # ============== Helpers ==============

    def get_proxy_base() -> str:
        """Origin under which this proxy's endpoints are reachable."""
        if app.config['PROXY_BASE_URL']:
            return app.config['PROXY_BASE_URL'].rstrip('/')
        # Honor reverse proxies in front of us (nginx, Codespaces, ...)
        proto = request.headers.get('X-Forwarded-Proto', request.scheme).split(',')[0].strip()
        host = request.headers.get('X-Forwarded-Host', request.host).split(',')[0].strip()
        return f"{proto}://{host}"

    def forward_headers() -> dict:
        return sanitize_headers(request.headers, app.config['FORWARD_HEADERS'])

    def passthrough(upstream: requests.Response) -> Response:
        """Stream a non-HTML upstream response to the client."""
        content_type = get_content_type(upstream.headers)
        allowed = list(app.config['PASSTHROUGH_HEADERS'])
        if is_media_content(content_type):
            allowed += app.config['MEDIA_HEADERS']
        headers = {k.lower(): v for k, v in sanitize_headers(upstream.headers, allowed).items()}
        # requests hands us decoded bytes, so the encoded length no longer applies
        if upstream.headers.get('Content-Encoding'):
            headers.pop('content-length', None)
        headers.setdefault('content-type', 'application/octet-stream')

        def generate():
            try:
                for chunk in upstream.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        yield chunk
            except requests.RequestException as e:
                logger.warning("Upstream stream from %s broke off: %s", upstream.url, e)
            finally:
                upstream.close()

        resp = Response(generate(), status=upstream.status_code, headers=headers,
                        direct_passthrough=True)
        resp.headers['X-Proxy-Cache'] = 'BYPASS'
        return resp

    def render(upstream: requests.Response, target_url: str, proxy_base: str) -> CacheEntry:
        """Buffer an HTML response and run the rewrite pass over it."""
        try:
            raw = upstream.content
        except requests.RequestException as e:
            raise UpstreamUnavailable(f"Upstream body could not be read: {e}") from e
        finally:
            upstream.close()

        content_type = get_content_type(upstream.headers)
        # Redirects were followed; the final URL is the document's real location
        context = RewriteContext(target_url=upstream.url or target_url, proxy_base_url=proxy_base)
        body = rewriter.rewrite_html(raw, context, encoding=get_charset(upstream.headers))
        headers = {'Content-Type': f'{content_type}; charset=utf-8'}
        return cache.new_entry(context.target_url, headers, body, proxy_base_url=proxy_base)

    def document_response(entry: CacheEntry, state: str) -> Response:
        resp = make_response(entry.body, 200)
        for key, value in entry.headers.items():
            resp.headers[key] = value
        resp.headers['X-Proxy-Cache'] = state
        return resp

    def relay(encoded_target: str) -> Response:
        target_url = decode_url(encoded_target)
        proxy_base = get_proxy_base()
        headers = forward_headers()
        logger.info("%s %s", request.method, target_url)

        if request.method == 'POST':
            # Never cached: not idempotent
            if request.form:
                data = list(request.form.items(multi=True))
            else:
                data = request.get_data()
                if request.content_type:
                    headers['Content-Type'] = request.content_type
            upstream = fetcher.fetch(target_url, method='POST', data=data, headers=headers)
            if not is_html_content(get_content_type(upstream.headers)):
                return passthrough(upstream)
            return document_response(render(upstream, target_url, proxy_base), 'BYPASS')

        key = cache_key('GET', encode_url(target_url))
        with cache.lock_for(key):
            entry = cache.get(key)
            if entry is not None and entry.proxy_base_url == proxy_base:
                return document_response(entry, 'HIT')

            upstream = fetcher.fetch(target_url, headers=headers)
            if not is_html_content(get_content_type(upstream.headers)):
                return passthrough(upstream)

            entry = render(upstream, target_url, proxy_base)
            cache.put(key, entry)
        return document_response(entry, 'MISS')

    # ============== Proxy Routes ==============

    @app.route('/go', methods=['GET', 'POST'])
    def go():
        """Main proxy endpoint: rewritten HTML or streamed passthrough."""
        return relay(request.args.get('url', ''))

    @app.route('/rendered', methods=['GET'])
    def rendered():
        """Control panel entry point, same as /go."""
        return relay(request.args.get('target', ''))

    @app.route('/proxy', methods=['GET'])
    def proxy_asset():
        """Asset-only endpoint taking a plain URL; never rewritten or cached."""
        target_url = request.args.get('url', '').strip()
        if not is_valid_url(target_url):
            raise MalformedTarget('Invalid or missing URL.')
        logger.info("GET %s (asset)", target_url)
        upstream = fetcher.fetch(target_url, headers=forward_headers())
        return passthrough(upstream)

    # ============== Diagnostics ==============

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify(status='ok', cache_size=len(cache))

    @app.route('/clear-cache', methods=['POST'])
    def clear_cache():
        previous = cache.clear()
        logger.info("Cache cleared (%d entries)", previous)
        return jsonify(previous_size=previous, size=len(cache))

    # ============== Error Handlers ==============

    @app.errorhandler(ProxyError)
    def handle_proxy_error(e):
        return Response(e.message, status=e.status_code, mimetype='text/plain')

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        if isinstance(e, HTTPException):
            return e
        logger.exception("Unhandled error for %s", request.url)
        return Response(f"Proxy server error: {e}", status=500, mimetype='text/plain')

    return app
